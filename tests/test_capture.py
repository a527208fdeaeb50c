"""Capture lifecycle: the source is released on every exit path."""

import pytest

from services.capture import AudioSource, BufferedAudioSource, CaptureManager
from services.errors import ValidationFault


class FailingSource(AudioSource):
    def __init__(self, fail_on: str):
        self.fail_on = fail_on
        self.closed = 0

    async def open(self):
        if self.fail_on == "open":
            raise OSError("microphone busy")

    async def write(self, chunk):
        if self.fail_on == "write":
            raise OSError("disk full")

    async def read_all(self):
        if self.fail_on == "read":
            raise OSError("buffer lost")
        return b""

    async def close(self):
        self.closed += 1


class TestCaptureManager:
    async def test_start_chunk_stop(self):
        source = BufferedAudioSource()
        capture = CaptureManager(source)

        info = await capture.start("Standup", "ogg")
        await capture.add_chunk(b"abc")
        await capture.add_chunk(b"def")
        captured = await capture.stop()

        assert info.is_active is True
        assert captured.audio == b"abcdef"
        assert captured.filename == "recording.ogg"
        assert captured.title == "Standup"
        assert captured.duration_seconds >= 0
        assert capture.is_active is False
        assert source.is_open is False

    async def test_unknown_format_falls_back_to_webm(self):
        capture = CaptureManager(BufferedAudioSource())

        info = await capture.start(audio_format="aiff")

        assert info.audio_format == "webm"

    async def test_only_one_recording_at_a_time(self):
        capture = CaptureManager(BufferedAudioSource())
        await capture.start()

        with pytest.raises(ValidationFault):
            await capture.start()

    async def test_stop_and_chunk_require_active_recording(self):
        capture = CaptureManager(BufferedAudioSource())

        with pytest.raises(ValidationFault):
            await capture.stop()
        with pytest.raises(ValidationFault):
            await capture.add_chunk(b"x")

    async def test_cancel_discards(self):
        source = BufferedAudioSource()
        capture = CaptureManager(source)
        await capture.start()
        await capture.add_chunk(b"abc")

        assert await capture.cancel() is True
        assert await capture.cancel() is False
        assert source.is_open is False

    async def test_stopped_recording_stays_pending_until_discarded(self):
        capture = CaptureManager(BufferedAudioSource())
        await capture.start("Standup")
        await capture.add_chunk(b"abc")

        captured = await capture.stop()

        assert capture.pending is captured
        assert await capture.cancel() is True
        assert capture.pending is None
        assert await capture.cancel() is False

    async def test_new_recording_replaces_pending(self):
        capture = CaptureManager(BufferedAudioSource())
        await capture.start("First")
        await capture.stop()

        await capture.start("Second")

        assert capture.pending is None
        await capture.add_chunk(b"xyz")
        assert (await capture.stop()).title == "Second"

    async def test_size_limit_releases_source(self):
        source = BufferedAudioSource(max_bytes=4)
        capture = CaptureManager(source)
        await capture.start()

        with pytest.raises(ValidationFault):
            await capture.add_chunk(b"too many bytes")

        assert capture.is_active is False
        assert source.is_open is False

    @pytest.mark.parametrize("fail_on", ["open", "write", "read"])
    async def test_source_closed_on_errors(self, fail_on):
        source = FailingSource(fail_on)
        capture = CaptureManager(source)

        with pytest.raises(OSError):
            await capture.start()
            await capture.add_chunk(b"x")
            await capture.stop()

        assert source.closed == 1
        assert capture.is_active is False
