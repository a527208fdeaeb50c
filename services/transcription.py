"""Speech-to-text adapter. Every failure surfaces as a single TranscriptionFault."""

import asyncio
import logging
import os
from abc import ABC, abstractmethod

from models.schemas import TranscriptionResult
from services.errors import TranscriptionFault

logger = logging.getLogger(__name__)

# Containers the Whisper API accepts; anything else is sent as webm,
# which is what browsers record by default.
SUPPORTED_FORMATS = ("flac", "m4a", "mp3", "mp4", "mpeg", "mpga", "oga", "ogg", "wav", "webm")
DEFAULT_FORMAT = "webm"


def audio_format_hint(filename: str | None) -> str:
    """Container format inferred from a file name's extension."""
    if not filename:
        return DEFAULT_FORMAT
    ext = os.path.splitext(filename)[1].lower().lstrip(".")
    return ext if ext in SUPPORTED_FORMATS else DEFAULT_FORMAT


class TranscriptionService(ABC):
    """Abstract base class for speech-to-text backends."""

    @property
    def is_available(self) -> bool:
        return True

    @abstractmethod
    async def transcribe(self, audio: bytes, filename: str | None = None) -> TranscriptionResult:
        """Transcribe raw audio bytes. ``filename`` is only a format hint."""
        ...


class DisabledTranscription(TranscriptionService):
    @property
    def is_available(self) -> bool:
        return False

    async def transcribe(self, audio: bytes, filename: str | None = None) -> TranscriptionResult:
        raise TranscriptionFault("Transcription is disabled. Set MINUTES_OPENAI_API_KEY.")


class WhisperTranscription(TranscriptionService):
    """Transcription via the OpenAI audio API."""

    def __init__(self, api_key: str, model: str = "whisper-1", timeout: float = 120.0):
        import openai

        self.client = openai.AsyncOpenAI(api_key=api_key)
        self.model = model
        self.timeout = timeout

    async def transcribe(self, audio: bytes, filename: str | None = None) -> TranscriptionResult:
        if not audio:
            raise TranscriptionFault("No audio data provided")

        audio_format = audio_format_hint(filename)
        logger.info(f"[TRANSCRIBE] {len(audio)} bytes as {audio_format} ({self.model})")

        try:
            response = await asyncio.wait_for(
                self.client.audio.transcriptions.create(
                    model=self.model,
                    file=(f"recording.{audio_format}", audio),
                    response_format="verbose_json",
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Transcription timed out ({self.timeout:.0f}s)")
            raise TranscriptionFault("Transcription timed out") from e
        except Exception as e:
            logger.error(f"Transcription error: {e}")
            raise TranscriptionFault(f"Failed to transcribe audio: {e}") from e

        return TranscriptionResult(
            text=(response.text or "").strip(),
            duration=getattr(response, "duration", None) or 0,
        )


def create_transcription_service(
    openai_api_key: str = "",
    model: str = "whisper-1",
    timeout: float = 120.0,
) -> TranscriptionService:
    if not openai_api_key:
        logger.warning("No OpenAI API key set, transcription disabled")
        return DisabledTranscription()
    return WhisperTranscription(api_key=openai_api_key, model=model, timeout=timeout)
