"""Meeting pipeline: ingest -> transcribe -> analyze -> persist -> compose -> send.

A run starts from typed text, uploaded audio or a finished capture. The
draft meeting is written first, then the analysis stages (title, summary,
action items, speaker separation, and participants when none were given)
run concurrently over the transcript. A failed analysis stage only
defaults its own field; the merged result is written back in a single
update once every stage has settled.

Fatal for a run: transcription faults and store faults. Email faults are
reported to the caller but never touch the persisted meeting.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from models.schemas import (
    ActionItem,
    EmailTemplate,
    EmailTemplateCreate,
    Meeting,
    MeetingCreate,
    MeetingDraft,
    MeetingEmailRequest,
    OutgoingEmail,
    Participant,
    RenderedEmail,
    SendResult,
    SmtpCredentials,
    TemplateType,
)
from services.analysis import MeetingAnalyzer
from services.capture import CapturedAudio
from services.email_sender import EmailSender, html_from_text, transcript_attachment
from services.errors import (
    AnalysisFault,
    MinutesError,
    NotFound,
    TranscriptionFault,
    ValidationFault,
)
from services.meeting_store import MeetingStore, new_action_item_id
from services.template_engine import NO_TITLE, render
from services.transcription import TranscriptionService

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    INGESTED = "ingested"
    TRANSCRIBING = "transcribing"
    TRANSCRIBED = "transcribed"
    ANALYZING_TITLE = "analyzing_title"
    ANALYZING_SUMMARY = "analyzing_summary"
    ANALYZING_ACTIONS = "analyzing_actions"
    ANALYZING_SPEAKERS = "analyzing_speakers"
    ANALYZING_PARTICIPANTS = "analyzing_participants"
    PERSISTED = "persisted"
    TEMPLATE_SELECTION = "template_selection"
    COMPOSED = "composed"
    SENT = "sent"
    FAILED = "failed"


_STAGE_STATES = {
    "title": PipelineState.ANALYZING_TITLE,
    "summary": PipelineState.ANALYZING_SUMMARY,
    "actions": PipelineState.ANALYZING_ACTIONS,
    "speakers": PipelineState.ANALYZING_SPEAKERS,
    "participants": PipelineState.ANALYZING_PARTICIPANTS,
}


@dataclass
class PipelineRun:
    """State of one run. Lives only as long as the request that drives it."""

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    state: PipelineState = PipelineState.IDLE
    history: list[PipelineState] = field(default_factory=lambda: [PipelineState.IDLE])
    meeting: Meeting | None = None
    failed_stages: dict[str, str] = field(default_factory=dict)
    error: str | None = None

    def advance(self, state: PipelineState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug(f"[PIPELINE] {self.id} -> {state.value}")

    def fail(self, error: MinutesError) -> None:
        self.error = error.message
        self.advance(PipelineState.FAILED)


@dataclass
class AnalysisOutcome:
    title: str
    summary: str
    action_items: list[ActionItem]
    transcript: str
    participants: list[Participant] | None
    failures: dict[str, str]


class MeetingPipeline:
    """Drives meetings from raw input to an analyzed, emailable record."""

    def __init__(
        self,
        store: MeetingStore,
        transcriber: TranscriptionService,
        analyzer: MeetingAnalyzer,
        email_sender: EmailSender,
    ):
        self.store = store
        self.transcriber = transcriber
        self.analyzer = analyzer
        self.email_sender = email_sender

    # --- Ingestion ---

    async def process_text(self, text: str, draft: MeetingDraft | None = None) -> PipelineRun:
        """Run the pipeline on typed meeting text. Typed meetings have no duration."""
        if not text or not text.strip():
            raise ValidationFault("No meeting content to process")

        run = PipelineRun()
        run.advance(PipelineState.INGESTED)
        logger.info(f"[PIPELINE] {run.id} text input, {len(text)} chars")
        return await self._analyze_and_persist(run, text, draft or MeetingDraft(), 0)

    async def process_audio(
        self,
        audio: bytes,
        filename: str | None = None,
        draft: MeetingDraft | None = None,
        duration: int | None = None,
        run: PipelineRun | None = None,
    ) -> PipelineRun:
        """Transcribe audio, then run the pipeline on the transcript.

        ``duration`` overrides the length reported by the transcription
        service (a live capture knows its own wall-clock length).
        """
        if not audio:
            raise ValidationFault("No audio data provided")

        run = run or PipelineRun()
        run.advance(PipelineState.INGESTED)
        logger.info(f"[PIPELINE] {run.id} audio input, {len(audio)} bytes ({filename or 'unnamed'})")

        text, reported_duration = await self._transcribe(run, audio, filename)
        if duration is None:
            duration = int(round(reported_duration))
        return await self._analyze_and_persist(run, text, draft or MeetingDraft(), duration)

    async def process_capture(
        self, captured: CapturedAudio, draft: MeetingDraft | None = None
    ) -> PipelineRun:
        draft = draft or MeetingDraft()
        if not draft.title and captured.title:
            draft = draft.model_copy(update={"title": captured.title})
        return await self.process_audio(
            captured.audio,
            filename=captured.filename,
            draft=draft,
            duration=captured.duration_seconds,
            run=PipelineRun(
                state=PipelineState.CAPTURING,
                history=[PipelineState.IDLE, PipelineState.CAPTURING],
            ),
        )

    async def _transcribe(
        self, run: PipelineRun, audio: bytes, filename: str | None
    ) -> tuple[str, float]:
        run.advance(PipelineState.TRANSCRIBING)
        try:
            result = await self.transcriber.transcribe(audio, filename)
            if not result.text.strip():
                raise TranscriptionFault("No speech was recognized in the audio")
        except TranscriptionFault as e:
            logger.error(f"[PIPELINE] {run.id} transcription failed: {e.message}")
            run.advance(PipelineState.INGESTED)
            raise
        run.advance(PipelineState.TRANSCRIBED)
        return result.text.strip(), result.duration

    # --- Draft, analysis, persist ---

    async def _save_draft(self, transcript: str, draft: MeetingDraft, duration: int) -> Meeting:
        if draft.meeting_id is not None:
            existing = await self.store.get_meeting(draft.meeting_id)
            if existing is None:
                raise NotFound(f"Meeting {draft.meeting_id} not found")
            updates: dict[str, Any] = {"transcript": transcript}
            if duration:
                updates["duration"] = duration
            return await self.store.update_meeting(existing.id, updates)

        return await self.store.save_meeting(
            MeetingCreate(
                title=draft.title.strip() or NO_TITLE,
                duration=duration,
                tags=draft.tags,
                user_id=self.store.user_id,
                transcript=transcript,
                participants=draft.participants,
                notes=draft.notes or "",
            )
        )

    async def _analyze_and_persist(
        self, run: PipelineRun, transcript: str, draft: MeetingDraft, duration: int
    ) -> PipelineRun:
        try:
            meeting = await self._save_draft(transcript, draft, duration)
        except MinutesError as e:
            run.fail(e)
            raise
        run.meeting = meeting
        logger.info(f"[PIPELINE] {run.id} draft saved as meeting {meeting.id}")

        outcome = await self.analyze(
            transcript,
            fallback_title=meeting.title,
            include_title=draft.meeting_id is None or meeting.title == NO_TITLE,
            include_participants=not meeting.participants,
            template_type=draft.template_type,
            run=run,
        )
        run.failed_stages = outcome.failures

        updates: dict[str, Any] = {
            "title": outcome.title,
            "summary": outcome.summary,
            "action_items": outcome.action_items,
            "transcript": outcome.transcript,
        }
        if outcome.participants is not None:
            updates["participants"] = outcome.participants

        try:
            run.meeting = await self.store.update_meeting(meeting.id, updates)
        except MinutesError as e:
            logger.error(f"[PIPELINE] {run.id} failed to persist analysis: {e.message}")
            run.fail(e)
            raise
        run.advance(PipelineState.PERSISTED)

        logger.info(
            f"[PIPELINE] {run.id} meeting {meeting.id} persisted: "
            f"{len(outcome.action_items)} action items, "
            f"failed stages: {sorted(outcome.failures) or 'none'}"
        )
        return run

    async def analyze(
        self,
        transcript: str,
        fallback_title: str = NO_TITLE,
        include_title: bool = True,
        include_participants: bool = False,
        template_type: TemplateType | None = None,
        run: PipelineRun | None = None,
    ) -> AnalysisOutcome:
        """Run every analysis stage concurrently and default the ones that fail."""
        stages = {
            "summary": self.analyzer.generate_summary(transcript, template_type),
            "actions": self.analyzer.extract_action_items(transcript),
            "speakers": self.analyzer.separate_speakers(transcript),
        }
        if include_title:
            stages["title"] = self.analyzer.generate_title(transcript)
        if include_participants:
            stages["participants"] = self.analyzer.identify_participants(transcript)

        if run is not None:
            for name in stages:
                run.advance(_STAGE_STATES[name])

        results = await asyncio.gather(*stages.values(), return_exceptions=True)
        outcome: dict[str, Any] = {}
        failures: dict[str, str] = {}
        for name, result in zip(stages, results):
            if isinstance(result, AnalysisFault):
                logger.warning(f"[PIPELINE] Analysis stage '{name}' failed, using default: {result.message}")
                failures[name] = result.message
            elif isinstance(result, BaseException):
                raise result
            else:
                outcome[name] = result

        action_items = [
            ActionItem(
                id=new_action_item_id(),
                text=item.text.strip(),
                completed=False,
                assignee=item.assignee or None,
                due_date=item.due_date or None,
            )
            for item in outcome.get("actions", [])
        ]
        participants = None
        if "participants" in outcome:
            participants = [
                Participant(id=uuid.uuid4().hex, name=p.name.strip(), is_host=p.is_host)
                for p in outcome["participants"]
            ]

        return AnalysisOutcome(
            title=outcome.get("title") or fallback_title or NO_TITLE,
            summary=outcome.get("summary", ""),
            action_items=action_items,
            transcript=outcome.get("speakers") or transcript,
            participants=participants,
            failures=failures,
        )

    # --- Single-meeting operations ---

    async def attach_recording(
        self, meeting_id: int, audio: bytes, filename: str | None = None
    ) -> Meeting:
        """Transcribe and analyze a recording for an existing meeting.

        Stores transcript, measured duration, summary, action items and (when
        the meeting has none) participants. A user-given title is kept.
        """
        if await self.store.get_meeting(meeting_id) is None:
            raise NotFound(f"Meeting {meeting_id} not found")
        run = await self.process_audio(audio, filename, MeetingDraft(meeting_id=meeting_id))
        return run.meeting

    async def regenerate_summary(
        self, meeting_id: int, template_type: TemplateType | None = None
    ) -> Meeting:
        """Re-run the summary stage. Faults propagate: the user asked for it."""
        meeting = await self.store.get_meeting(meeting_id)
        if meeting is None or not meeting.transcript:
            raise NotFound("Meeting or transcript not found")
        summary = await self.analyzer.generate_summary(meeting.transcript, template_type)
        return await self.store.update_meeting(meeting_id, {"summary": summary})

    # --- Template selection, compose, send ---

    async def resolve_template(
        self, template_id: int | None, template: EmailTemplateCreate | None
    ) -> EmailTemplateCreate:
        if template is not None:
            return template
        if template_id is None:
            raise ValidationFault("Choose a template to compose the email")
        stored = await self.store.get_template(template_id)
        if stored is None:
            raise NotFound(f"Template {template_id} not found")
        return stored

    async def compose(
        self, meeting_id: int, template: EmailTemplate | EmailTemplateCreate
    ) -> RenderedEmail:
        meeting = await self.store.get_meeting(meeting_id)
        if meeting is None:
            raise NotFound(f"Meeting {meeting_id} not found")
        return render(template, meeting)

    async def send_meeting_email(
        self, meeting_id: int, request: MeetingEmailRequest, credentials: SmtpCredentials | None
    ) -> SendResult:
        """Render the chosen template for a meeting and send it."""
        run = PipelineRun(state=PipelineState.PERSISTED, history=[PipelineState.PERSISTED])
        meeting = await self.store.get_meeting(meeting_id)
        if meeting is None:
            raise NotFound(f"Meeting {meeting_id} not found")
        run.meeting = meeting

        run.advance(PipelineState.TEMPLATE_SELECTION)
        template = await self.resolve_template(request.template_id, request.template)
        rendered = render(template, meeting)
        run.advance(PipelineState.COMPOSED)

        attachments = []
        if request.attach_transcript:
            attachment = transcript_attachment(meeting)
            if attachment is not None:
                attachments.append(attachment)

        message = OutgoingEmail(
            to=request.to,
            cc=request.cc,
            bcc=request.bcc,
            subject=rendered.subject,
            text=rendered.body,
            html=html_from_text(rendered.body),
            attachments=attachments,
        )
        try:
            result = await self.email_sender.send(message, credentials)
        except MinutesError as e:
            logger.error(f"[PIPELINE] {run.id} email for meeting {meeting_id} failed: {e.message}")
            run.fail(e)
            raise
        run.advance(PipelineState.SENT)
        return result
