"""Smart Minutes: FastAPI application.

Records or ingests meetings, transcribes and analyzes them with an LLM,
stores them in the embedded record store and emails rendered minutes.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import APIRouter, Depends, FastAPI, File, Form, Request, Response, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from config import Settings, settings
from db.database import Database
from models.schemas import (
    ActionItem,
    ActionItemCreate,
    ActionItemUpdate,
    CaptureInfo,
    CaptureStartRequest,
    ConnectionResult,
    CreateMeetingRequest,
    EmailSendRequest,
    EmailTemplate,
    EmailTemplateCreate,
    EmailTemplateUpdate,
    EmailTestRequest,
    Meeting,
    MeetingCreate,
    MeetingDraft,
    MeetingEmailRequest,
    MeetingUpdate,
    PipelineResponse,
    PreferenceValue,
    RenderedEmail,
    RenderRequest,
    SendResult,
    SmtpCredentials,
    TextPipelineRequest,
    TranscriptionResult,
    TranscriptRequest,
)
from services.analysis import MeetingAnalyzer
from services.capture import BufferedAudioSource, CaptureManager
from services.email_sender import EmailSender, SmtpTransport
from services.errors import MinutesError, NotFound, ValidationFault
from services.llm import create_llm_service
from services.meeting_store import MeetingStore
from services.pipeline import MeetingPipeline, PipelineRun
from services.transcription import TranscriptionService, create_transcription_service

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("smart_minutes")

GMAIL_CONFIG_KEY = "gmail_config"


# --- Service container ---


@dataclass
class AppServices:
    """Everything the request handlers need, built once per process."""

    store: MeetingStore
    transcriber: TranscriptionService
    analyzer: MeetingAnalyzer
    email_sender: EmailSender
    pipeline: MeetingPipeline
    capture: CaptureManager
    settings: Settings


def build_services(app_settings: Settings) -> AppServices:
    store = MeetingStore(
        Database(str(app_settings.db_path.expanduser())),
        user_id=app_settings.demo_user_id,
    )
    llm = create_llm_service(
        provider=app_settings.llm_provider,
        openai_api_key=app_settings.openai_api_key,
        openai_model=app_settings.openai_model,
        anthropic_api_key=app_settings.anthropic_api_key,
        anthropic_model=app_settings.anthropic_model,
        openrouter_api_key=app_settings.openrouter_api_key,
        openrouter_model=app_settings.openrouter_model,
        timeout=app_settings.llm_timeout_secs,
    )
    transcriber = create_transcription_service(
        openai_api_key=app_settings.openai_api_key,
        model=app_settings.transcription_model,
        timeout=app_settings.transcription_timeout_secs,
    )
    analyzer = MeetingAnalyzer(llm)
    email_sender = EmailSender(
        SmtpTransport(
            host=app_settings.smtp_host,
            port=app_settings.smtp_port,
            timeout=app_settings.smtp_timeout_secs,
        ),
        sender_name=app_settings.mail_sender_name,
    )
    return AppServices(
        store=store,
        transcriber=transcriber,
        analyzer=analyzer,
        email_sender=email_sender,
        pipeline=MeetingPipeline(store, transcriber, analyzer, email_sender),
        capture=CaptureManager(BufferedAudioSource(max_bytes=app_settings.max_upload_bytes)),
        settings=app_settings,
    )


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def _pipeline_response(run: PipelineRun) -> PipelineResponse:
    return PipelineResponse(
        meeting=run.meeting,
        state=run.state.value,
        history=[state.value for state in run.history],
        failed_stages=run.failed_stages,
    )


async def _read_upload(upload: UploadFile, limit: int) -> bytes:
    data = await upload.read()
    if not data:
        raise ValidationFault("No audio file provided")
    if len(data) > limit:
        raise ValidationFault(f"Audio file exceeds the {limit // (1024 * 1024)}MB limit")
    return data


async def _credentials(
    services: AppServices, credentials: SmtpCredentials | None
) -> SmtpCredentials | None:
    """Explicit credentials, else the ones saved after the last successful test."""
    if credentials is not None:
        return credentials
    saved = await services.store.get_preference(GMAIL_CONFIG_KEY)
    if not saved:
        return None
    try:
        return SmtpCredentials.model_validate(saved)
    except ValidationError:
        logger.warning("Saved mail credentials are malformed, ignoring them")
        return None


async def _process_pending_capture(
    services: AppServices, draft: MeetingDraft | None
) -> PipelineResponse:
    captured = services.capture.pending
    if captured is None:
        raise ValidationFault("No stopped recording to process")
    run = await services.pipeline.process_capture(captured, draft)
    services.capture.discard_pending()
    return _pipeline_response(run)


router = APIRouter(prefix="/api")


# --- Meetings ---


@router.get("/meetings", response_model=list[Meeting])
async def list_meetings(services: AppServices = Depends(get_services)):
    return await services.store.get_all_meetings()


@router.post("/meetings", response_model=Meeting, status_code=201)
async def create_meeting(
    request: CreateMeetingRequest, services: AppServices = Depends(get_services)
):
    return await services.store.save_meeting(
        MeetingCreate(
            title=request.title,
            tags=request.tags,
            notes=request.notes,
            user_id=services.store.user_id,
            duration=0,
        )
    )


@router.get("/meetings/search/{query}", response_model=list[Meeting])
async def search_meetings(query: str, services: AppServices = Depends(get_services)):
    return await services.store.search_meetings(query)


@router.get("/meetings/tag/{tag}", response_model=list[Meeting])
async def meetings_by_tag(tag: str, services: AppServices = Depends(get_services)):
    return await services.store.get_meetings_by_tag(tag)


@router.get("/meetings/{meeting_id}", response_model=Meeting)
async def get_meeting(meeting_id: int, services: AppServices = Depends(get_services)):
    meeting = await services.store.get_meeting(meeting_id)
    if meeting is None:
        raise NotFound("Meeting not found")
    return meeting


@router.patch("/meetings/{meeting_id}", response_model=Meeting)
async def update_meeting(
    meeting_id: int, updates: MeetingUpdate, services: AppServices = Depends(get_services)
):
    return await services.store.update_meeting(meeting_id, updates)


@router.delete("/meetings/{meeting_id}", status_code=204)
async def delete_meeting(meeting_id: int, services: AppServices = Depends(get_services)):
    if not await services.store.delete_meeting(meeting_id):
        raise NotFound("Meeting not found")
    return Response(status_code=204)


@router.post("/meetings/{meeting_id}/record", response_model=Meeting)
async def record_meeting(
    meeting_id: int,
    audio: UploadFile = File(...),
    services: AppServices = Depends(get_services),
):
    """Transcribe and analyze an uploaded recording for an existing meeting."""
    data = await _read_upload(audio, services.settings.max_upload_bytes)
    return await services.pipeline.attach_recording(meeting_id, data, audio.filename)


@router.post("/meetings/{meeting_id}/summary")
async def regenerate_summary(meeting_id: int, services: AppServices = Depends(get_services)):
    meeting = await services.pipeline.regenerate_summary(meeting_id)
    return {"summary": meeting.summary}


@router.post("/meetings/{meeting_id}/action-items", response_model=ActionItem)
async def add_action_item(
    meeting_id: int, item: ActionItemCreate, services: AppServices = Depends(get_services)
):
    return await services.store.add_action_item(
        meeting_id, item.text, assignee=item.assignee, due_date=item.due_date
    )


@router.patch("/meetings/{meeting_id}/action-items/{item_id}", response_model=ActionItem)
async def update_action_item(
    meeting_id: int,
    item_id: str,
    updates: ActionItemUpdate,
    services: AppServices = Depends(get_services),
):
    return await services.store.update_action_item(meeting_id, item_id, updates)


@router.post("/meetings/{meeting_id}/render", response_model=RenderedEmail)
async def render_meeting_email(
    meeting_id: int, request: RenderRequest, services: AppServices = Depends(get_services)
):
    template = await services.pipeline.resolve_template(request.template_id, request.template)
    return await services.pipeline.compose(meeting_id, template)


@router.post("/meetings/{meeting_id}/email", response_model=SendResult)
async def email_meeting(
    meeting_id: int, request: MeetingEmailRequest, services: AppServices = Depends(get_services)
):
    credentials = await _credentials(services, request.credentials)
    return await services.pipeline.send_meeting_email(meeting_id, request, credentials)


# --- Single analysis operations ---


@router.post("/transcribe-audio", response_model=TranscriptionResult)
async def transcribe_audio(
    audio: UploadFile = File(...), services: AppServices = Depends(get_services)
):
    data = await _read_upload(audio, services.settings.max_upload_bytes)
    return await services.transcriber.transcribe(data, audio.filename)


@router.post("/meetings/generate-title-text")
async def generate_title(request: TranscriptRequest, services: AppServices = Depends(get_services)):
    return {"title": await services.analyzer.generate_title(request.transcript)}


@router.post("/meetings/generate-summary-text")
async def generate_summary(
    request: TranscriptRequest, services: AppServices = Depends(get_services)
):
    summary = await services.analyzer.generate_summary(request.transcript, request.template_type)
    return {"summary": summary}


@router.post("/meetings/generate-actions-text")
async def generate_actions(
    request: TranscriptRequest, services: AppServices = Depends(get_services)
):
    items = await services.analyzer.extract_action_items(request.transcript)
    return {"actionItems": [item.model_dump(by_alias=True) for item in items]}


@router.post("/meetings/separate-speakers")
async def separate_speakers(
    request: TranscriptRequest, services: AppServices = Depends(get_services)
):
    return {"separatedTranscript": await services.analyzer.separate_speakers(request.transcript)}


# --- Pipeline ---


@router.post("/pipeline/text", response_model=PipelineResponse)
async def pipeline_text(
    request: TextPipelineRequest, services: AppServices = Depends(get_services)
):
    draft = MeetingDraft.model_validate(request.model_dump(exclude={"text"}))
    run = await services.pipeline.process_text(request.text, draft)
    return _pipeline_response(run)


@router.post("/pipeline/audio", response_model=PipelineResponse)
async def pipeline_audio(
    audio: UploadFile = File(...),
    draft: str = Form("{}"),
    services: AppServices = Depends(get_services),
):
    """Run the pipeline on an uploaded file. ``draft`` is a JSON MeetingDraft."""
    try:
        meeting_draft = MeetingDraft.model_validate_json(draft)
    except ValidationError as e:
        raise ValidationFault("Invalid meeting draft", errors=e.errors()) from e
    data = await _read_upload(audio, services.settings.max_upload_bytes)
    run = await services.pipeline.process_audio(data, audio.filename, meeting_draft)
    return _pipeline_response(run)


# --- Capture ---


@router.post("/capture/start", response_model=CaptureInfo)
async def capture_start(
    request: CaptureStartRequest, services: AppServices = Depends(get_services)
):
    return await services.capture.start(request.title, request.audio_format)


@router.post("/capture/chunk")
async def capture_chunk(request: Request, services: AppServices = Depends(get_services)):
    """Append raw encoded audio (request body) to the active recording."""
    elapsed = await services.capture.add_chunk(await request.body())
    return {"recordingTime": elapsed}


@router.post("/capture/stop", response_model=PipelineResponse)
async def capture_stop(
    draft: MeetingDraft | None = None, services: AppServices = Depends(get_services)
):
    await services.capture.stop()
    return await _process_pending_capture(services, draft)


@router.post("/capture/retry", response_model=PipelineResponse)
async def capture_retry(
    draft: MeetingDraft | None = None, services: AppServices = Depends(get_services)
):
    """Process the stopped recording again after a failed run."""
    return await _process_pending_capture(services, draft)


@router.post("/capture/cancel")
async def capture_cancel(services: AppServices = Depends(get_services)):
    return {"cancelled": await services.capture.cancel()}


# --- Templates ---


@router.get("/templates", response_model=list[EmailTemplate])
async def list_templates(services: AppServices = Depends(get_services)):
    return await services.store.get_templates()


@router.post("/templates", response_model=EmailTemplate, status_code=201)
async def create_template(
    template: EmailTemplateCreate, services: AppServices = Depends(get_services)
):
    return await services.store.save_template(template)


@router.get("/templates/{template_id}", response_model=EmailTemplate)
async def get_template(template_id: int, services: AppServices = Depends(get_services)):
    template = await services.store.get_template(template_id)
    if template is None:
        raise NotFound("Template not found")
    return template


@router.put("/templates/{template_id}", response_model=EmailTemplate)
async def update_template(
    template_id: int, updates: EmailTemplateUpdate, services: AppServices = Depends(get_services)
):
    return await services.store.update_template(template_id, updates)


@router.delete("/templates/{template_id}", status_code=204)
async def delete_template(template_id: int, services: AppServices = Depends(get_services)):
    if not await services.store.delete_template(template_id):
        raise NotFound("Template not found")
    return Response(status_code=204)


# --- Preferences ---


@router.get("/preferences")
async def list_preferences(services: AppServices = Depends(get_services)):
    preferences = await services.store.get_preferences()
    preferences.pop(GMAIL_CONFIG_KEY, None)
    return preferences


@router.get("/preferences/{key}", response_model=PreferenceValue)
async def get_preference(key: str, services: AppServices = Depends(get_services)):
    if key == GMAIL_CONFIG_KEY:
        raise NotFound("Preference not found")
    return PreferenceValue(value=await services.store.get_preference(key))


@router.put("/preferences/{key}", response_model=PreferenceValue)
async def save_preference(
    key: str, request: PreferenceValue, services: AppServices = Depends(get_services)
):
    await services.store.save_preference(key, request.value)
    return request


@router.delete("/preferences/{key}", status_code=204)
async def delete_preference(key: str, services: AppServices = Depends(get_services)):
    if not await services.store.delete_preference(key):
        raise NotFound("Preference not found")
    return Response(status_code=204)


# --- Email ---


@router.post("/email/test", response_model=ConnectionResult)
async def test_email_connection(
    request: EmailTestRequest, services: AppServices = Depends(get_services)
):
    credentials = await _credentials(services, request.credentials)
    result = await services.email_sender.test_connection(credentials)
    if request.credentials is not None:
        await services.store.save_preference(
            GMAIL_CONFIG_KEY, request.credentials.model_dump()
        )
    return result


@router.post("/email/send", response_model=SendResult)
async def send_email(request: EmailSendRequest, services: AppServices = Depends(get_services)):
    credentials = await _credentials(services, request.credentials)
    return await services.email_sender.send(request.message, credentials)


# --- Health ---


@router.get("/health")
async def health(services: AppServices = Depends(get_services)):
    return {
        "status": "ok",
        "llm_provider": services.analyzer.llm.name,
        "transcription_available": services.transcriber.is_available,
        "capture_active": services.capture.is_active,
    }


# --- Error handlers ---


async def handle_minutes_error(request: Request, exc: MinutesError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    content = {"message": exc.message}
    if isinstance(exc, ValidationFault) and exc.errors:
        content["errors"] = jsonable_encoder(exc.errors)
    return JSONResponse(status_code=exc.status_code, content=content)


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"message": "Invalid request data", "errors": jsonable_encoder(exc.errors())},
    )


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"{request.method} {request.url.path} crashed: {exc}")
    return JSONResponse(status_code=500, content={"message": f"Internal error: {exc}"})


# --- Application lifecycle ---


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    logger.info("Starting Smart Minutes")
    services: AppServices = app.state.services

    await services.store.init()
    if services.settings.seed_demo_data:
        await services.store.seed_demo_meetings()
    await services.store.ensure_default_templates()

    yield

    logger.info("Shutting down Smart Minutes")
    await services.capture.cancel()
    await services.store.close()


def create_app(
    app_settings: Settings | None = None, services: AppServices | None = None
) -> FastAPI:
    app_settings = app_settings or settings
    application = FastAPI(
        title="Smart Minutes",
        description="Meeting recording, AI minutes and email distribution",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.state.services = services or build_services(app_settings)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_exception_handler(MinutesError, handle_minutes_error)
    application.add_exception_handler(RequestValidationError, handle_request_validation)
    application.add_exception_handler(Exception, handle_unexpected)
    application.include_router(router)
    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
    )
