"""Pydantic models for the Smart Minutes API and services.

JSON uses camelCase keys (``actionItems``, ``isHost``); Python code uses the
snake_case attribute names. Both spellings are accepted on input.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Meetings ---


class Participant(CamelModel):
    id: str
    name: str
    is_host: bool | None = None


class ActionItem(CamelModel):
    id: str
    text: str
    completed: bool = False
    assignee: str | None = None
    due_date: str | None = None  # date only, YYYY-MM-DD


class MeetingCreate(CamelModel):
    """A meeting before the store assigns its id."""

    title: str = Field(min_length=1)
    date: datetime | None = None
    duration: int = Field(default=0, ge=0)
    tags: list[str] = Field(default_factory=list)
    user_id: int = 1
    transcript: str | None = None
    summary: str | None = None
    audio_url: str | None = None
    participants: list[Participant] = Field(default_factory=list)
    action_items: list[ActionItem] = Field(default_factory=list)
    notes: str | None = None


class Meeting(MeetingCreate):
    id: int
    date: datetime


class MeetingUpdate(CamelModel):
    """Partial update. Only the fields that were explicitly set are merged."""

    title: str | None = Field(default=None, min_length=1)
    date: datetime | None = None
    duration: int | None = Field(default=None, ge=0)
    tags: list[str] | None = None
    transcript: str | None = None
    summary: str | None = None
    audio_url: str | None = None
    participants: list[Participant] | None = None
    action_items: list[ActionItem] | None = None
    notes: str | None = None


class CreateMeetingRequest(CamelModel):
    title: str = Field(min_length=1)
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None


class ActionItemCreate(CamelModel):
    text: str = Field(min_length=1)
    assignee: str | None = None
    due_date: str | None = None


class ActionItemUpdate(CamelModel):
    text: str | None = Field(default=None, min_length=1)
    completed: bool | None = None
    assignee: str | None = None
    due_date: str | None = None


# --- Email templates ---


class TemplateType(str, Enum):
    SUMMARY = "summary"
    ACTION_ITEMS = "action_items"
    FULL_REPORT = "full_report"


class EmailTemplateCreate(CamelModel):
    name: str = Field(min_length=1)
    type: TemplateType
    subject: str
    body: str


class EmailTemplateUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1)
    type: TemplateType | None = None
    subject: str | None = None
    body: str | None = None


class EmailTemplate(EmailTemplateCreate):
    id: int | None = None
    variables: list[str] = Field(default_factory=list)


class RenderedEmail(CamelModel):
    subject: str
    body: str


class RenderRequest(CamelModel):
    """Pick a stored template by id, or pass one inline."""

    template_id: int | None = None
    template: EmailTemplateCreate | None = None


# --- Mail transport ---


class SmtpCredentials(CamelModel):
    email: str
    password: str = Field(repr=False)


class Attachment(CamelModel):
    filename: str
    content: str
    content_type: str = "text/plain"


class OutgoingEmail(CamelModel):
    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    subject: str = ""
    text: str | None = None
    html: str | None = None
    attachments: list[Attachment] = Field(default_factory=list)


class ConnectionResult(CamelModel):
    ok: bool = True


class SendResult(CamelModel):
    ok: bool = True
    message_id: str | None = None


class EmailTestRequest(CamelModel):
    credentials: SmtpCredentials | None = None


class EmailSendRequest(CamelModel):
    message: OutgoingEmail
    credentials: SmtpCredentials | None = None


class MeetingEmailRequest(CamelModel):
    """Render a template for a meeting and send it."""

    template_id: int | None = None
    template: EmailTemplateCreate | None = None
    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    attach_transcript: bool = False
    credentials: SmtpCredentials | None = None


# --- Preferences ---


class PreferenceValue(CamelModel):
    value: Any = None


# --- Adapters ---


class TranscriptionResult(CamelModel):
    text: str
    duration: float = 0


class AnalyzedActionItem(CamelModel):
    """Action item as returned by the LLM, before it gets an id."""

    text: str
    assignee: str | None = None
    due_date: str | None = None


class AnalyzedParticipant(CamelModel):
    name: str
    is_host: bool | None = None


class TranscriptRequest(CamelModel):
    transcript: str = Field(min_length=1)
    template_type: TemplateType | None = None


# --- Pipeline ---


class MeetingDraft(CamelModel):
    """Caller-supplied fields for a pipeline run.

    When ``meeting_id`` is set, the run updates that meeting instead of
    creating a new one.
    """

    title: str = ""
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    participants: list[Participant] = Field(default_factory=list)
    meeting_id: int | None = None
    template_type: TemplateType | None = None


class TextPipelineRequest(MeetingDraft):
    text: str


class PipelineResponse(CamelModel):
    meeting: Meeting
    state: str
    history: list[str]
    failed_stages: dict[str, str] = Field(default_factory=dict)


# --- Capture ---


class CaptureStartRequest(CamelModel):
    title: str = ""
    audio_format: str = "webm"


class CaptureInfo(CamelModel):
    id: str
    title: str
    started_at: datetime
    audio_format: str
    is_active: bool = True
