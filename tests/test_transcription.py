"""Transcription adapter: format hints, disabled mode and fault mapping."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from services.errors import TranscriptionFault
from services.transcription import (
    DisabledTranscription,
    WhisperTranscription,
    audio_format_hint,
    create_transcription_service,
)


class TestFormatHint:
    @pytest.mark.parametrize(
        "filename, expected",
        [
            ("meeting.MP3", "mp3"),
            ("voice.m4a", "m4a"),
            ("clip.aiff", "webm"),
            ("noext", "webm"),
            (None, "webm"),
        ],
    )
    def test_hint(self, filename, expected):
        assert audio_format_hint(filename) == expected


class TestServices:
    def test_factory_without_key_is_disabled(self):
        service = create_transcription_service(openai_api_key="")

        assert isinstance(service, DisabledTranscription)
        assert service.is_available is False

    async def test_disabled_raises(self):
        with pytest.raises(TranscriptionFault):
            await DisabledTranscription().transcribe(b"audio")

    async def test_whisper_result(self):
        service = WhisperTranscription(api_key="sk-test")
        create = AsyncMock(return_value=SimpleNamespace(text="  Hello team. ", duration=12.5))
        service.client = SimpleNamespace(
            audio=SimpleNamespace(transcriptions=SimpleNamespace(create=create))
        )

        result = await service.transcribe(b"audio", "call.wav")

        assert result.text == "Hello team."
        assert result.duration == 12.5
        assert create.await_args.kwargs["file"][0] == "recording.wav"

    async def test_whisper_errors_become_transcription_faults(self):
        service = WhisperTranscription(api_key="sk-test")
        create = AsyncMock(side_effect=RuntimeError("quota exceeded"))
        service.client = SimpleNamespace(
            audio=SimpleNamespace(transcriptions=SimpleNamespace(create=create))
        )

        with pytest.raises(TranscriptionFault):
            await service.transcribe(b"audio", "call.wav")
