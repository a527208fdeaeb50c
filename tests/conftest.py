"""Shared fixtures: a real SQLite store on tmp_path and scripted fakes for the
LLM, the transcription service and the mail transport."""

import json
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from db.database import Database
from models.schemas import Meeting, SmtpCredentials, TranscriptionResult
from services.analysis import (
    ACTIONS_SYSTEM,
    PARTICIPANTS_SYSTEM,
    SPEAKERS_SYSTEM,
    SUMMARY_SYSTEM,
    TITLE_SYSTEM,
    MeetingAnalyzer,
)
from services.email_sender import EmailSender, MailTransport
from services.errors import TranscriptionFault
from services.llm import LLMService
from services.meeting_store import MeetingStore
from services.pipeline import MeetingPipeline
from services.transcription import TranscriptionService

_STAGE_SYSTEMS = {
    "title": TITLE_SYSTEM,
    "summary": SUMMARY_SYSTEM,
    "actions": ACTIONS_SYSTEM,
    "speakers": SPEAKERS_SYSTEM,
    "participants": PARTICIPANTS_SYSTEM,
}


def _echo_transcript(prompt: str) -> str:
    return prompt.split("Transcript:\n", 1)[1].strip()


DEFAULT_REPLIES = {
    "title": "Release Planning",
    "summary": "The team agreed to ship v2 on Friday. Alice owns QA.",
    "actions": json.dumps(
        {
            "actionItems": [
                {"text": "Ship v2", "assignee": None, "dueDate": None},
                {"text": "Own QA", "assignee": "Alice", "dueDate": None},
            ]
        }
    ),
    "speakers": _echo_transcript,
    "participants": json.dumps({"participants": [{"name": "Alice", "isHost": False}]}),
}


class FakeLLM(LLMService):
    """Answers by analysis stage, recognized from the system prompt."""

    name = "fake"

    def __init__(self, replies: dict | None = None, failures=()):
        self.replies = {**DEFAULT_REPLIES, **(replies or {})}
        self.failures = set(failures)
        self.calls: list[str] = []
        self.prompts: dict[str, list[str]] = {}

    def _stage(self, system: str) -> str:
        for stage, prefix in _STAGE_SYSTEMS.items():
            if system.startswith(prefix):
                return stage
        raise AssertionError(f"Unexpected system prompt: {system[:40]}")

    async def generate_text(self, prompt: str, system: str = "", max_tokens: int = 2000) -> str:
        stage = self._stage(system)
        self.calls.append(stage)
        self.prompts.setdefault(stage, []).append(prompt)
        if stage in self.failures:
            raise RuntimeError(f"{stage} backend unavailable")
        reply = self.replies[stage]
        return reply(prompt) if callable(reply) else reply


class FakeTranscriber(TranscriptionService):
    def __init__(self, text: str = "", duration: float = 0, error: Exception | None = None):
        self.text = text
        self.duration = duration
        self.error = error
        self.calls: list[tuple[bytes, str | None]] = []

    async def transcribe(self, audio: bytes, filename: str | None = None) -> TranscriptionResult:
        self.calls.append((audio, filename))
        if self.error is not None:
            raise self.error
        return TranscriptionResult(text=self.text, duration=self.duration)


class RecordingTransport(MailTransport):
    """Keeps every message instead of sending it."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.verified: list[SmtpCredentials] = []
        self.sent: list[tuple] = []

    async def verify(self, credentials):
        if self.error is not None:
            raise self.error
        self.verified.append(credentials)

    async def send(self, credentials, message, recipients):
        if self.error is not None:
            raise self.error
        self.sent.append((credentials, message, recipients))
        return message["Message-ID"]


def make_meeting(**overrides) -> Meeting:
    defaults = {
        "id": 1,
        "title": "Sprint Review",
        "date": datetime(2023, 7, 12, 15, 30, tzinfo=timezone.utc),
        "duration": 2700,
        "tags": ["Product"],
    }
    defaults.update(overrides)
    return Meeting(**defaults)


@pytest.fixture
def credentials():
    return SmtpCredentials(email="minutes@example.com", password="app-password")


@pytest_asyncio.fixture
async def store(tmp_path):
    meeting_store = MeetingStore(Database(str(tmp_path / "minutes.db")))
    await meeting_store.init()
    yield meeting_store
    await meeting_store.close()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def transcriber():
    return FakeTranscriber(text="We will ship v2 on Friday. Alice owns QA.", duration=95.4)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def email_sender(transport):
    return EmailSender(transport)


@pytest.fixture
def pipeline(store, transcriber, llm, email_sender):
    return MeetingPipeline(store, transcriber, MeetingAnalyzer(llm), email_sender)


@pytest.fixture
def failing_transcriber():
    return FakeTranscriber(error=TranscriptionFault("Whisper is down"))
