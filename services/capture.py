"""Audio capture lifecycle: tracks the active recording and buffers its chunks.

The browser owns the microphone and streams encoded chunks to the server
between ``start`` and ``stop``. The audio source is released on stop, on
cancel and on every error path. A stopped recording stays ``pending`` until
it has been processed or discarded, so a failed transcription can be retried.
"""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone

from models.schemas import CaptureInfo
from services.errors import ValidationFault
from services.transcription import audio_format_hint

logger = logging.getLogger(__name__)


class AudioSource(ABC):
    """Where captured audio accumulates while a recording is active."""

    @abstractmethod
    async def open(self) -> None: ...

    @abstractmethod
    async def write(self, chunk: bytes) -> None: ...

    @abstractmethod
    async def read_all(self) -> bytes: ...

    @abstractmethod
    async def close(self) -> None: ...


class BufferedAudioSource(AudioSource):
    """Keeps streamed chunks in memory."""

    def __init__(self, max_bytes: int = 50 * 1024 * 1024):
        self.max_bytes = max_bytes
        self._chunks: list[bytes] = []
        self._size = 0
        self.is_open = False

    async def open(self) -> None:
        self._chunks = []
        self._size = 0
        self.is_open = True

    async def write(self, chunk: bytes) -> None:
        if self._size + len(chunk) > self.max_bytes:
            raise ValidationFault("Recording exceeds the maximum upload size")
        self._chunks.append(chunk)
        self._size += len(chunk)

    async def read_all(self) -> bytes:
        return b"".join(self._chunks)

    async def close(self) -> None:
        self._chunks = []
        self._size = 0
        self.is_open = False


@dataclass
class CapturedAudio:
    audio: bytes
    filename: str
    duration_seconds: int
    title: str = ""


class CaptureManager:
    """Manages the single active recording."""

    def __init__(self, source: AudioSource):
        self.source = source
        self.current: CaptureInfo | None = None
        self.pending: CapturedAudio | None = None
        self._started_monotonic: float | None = None

    @property
    def is_active(self) -> bool:
        return self.current is not None

    async def start(self, title: str = "", audio_format: str = "webm") -> CaptureInfo:
        if self.is_active:
            raise ValidationFault("A recording is already in progress")

        self.discard_pending()
        try:
            await self.source.open()
        except Exception:
            await self.source.close()
            raise
        self.current = CaptureInfo(
            id=str(uuid.uuid4()),
            title=title,
            started_at=datetime.now(timezone.utc),
            audio_format=audio_format_hint(f"recording.{audio_format}"),
            is_active=True,
        )
        self._started_monotonic = time.monotonic()
        logger.info(f"[CAPTURE] Started {self.current.id}")
        return self.current

    async def add_chunk(self, chunk: bytes) -> int:
        """Append a chunk; returns the elapsed recording time in seconds."""
        if not self.is_active:
            raise ValidationFault("No active recording")
        if chunk:
            try:
                await self.source.write(chunk)
            except Exception:
                await self._release()
                raise
        return self.elapsed_seconds()

    def elapsed_seconds(self) -> int:
        if self._started_monotonic is None:
            return 0
        return int(time.monotonic() - self._started_monotonic)

    async def stop(self) -> CapturedAudio:
        """Finish the recording and hand back everything captured."""
        if not self.is_active or self.current is None:
            raise ValidationFault("No active recording")

        info = self.current
        duration = self.elapsed_seconds()
        try:
            audio = await self.source.read_all()
        finally:
            await self._release()

        logger.info(f"[CAPTURE] Stopped {info.id}: {len(audio)} bytes, {duration}s")
        self.pending = CapturedAudio(
            audio=audio,
            filename=f"recording.{info.audio_format}",
            duration_seconds=duration,
            title=info.title,
        )
        return self.pending

    def discard_pending(self) -> None:
        """Forget the finished recording once it has been processed."""
        self.pending = None

    async def cancel(self) -> bool:
        """Discard the active or unprocessed recording. Returns False when there was none."""
        if not self.is_active:
            if self.pending is None:
                return False
            self.discard_pending()
            logger.info("[CAPTURE] Discarded unprocessed recording")
            return True
        capture_id = self.current.id if self.current else ""
        await self._release()
        logger.info(f"[CAPTURE] Cancelled {capture_id}")
        return True

    async def _release(self) -> None:
        self.current = None
        self._started_monotonic = None
        await self.source.close()
