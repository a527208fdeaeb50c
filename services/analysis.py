"""Meeting analysis via LLM: title, summary, action items, speakers, participants.

Each operation is independent and takes only the transcript. Any failure is
raised as ``AnalysisFault`` carrying the stage name, so the pipeline can
default that one field and carry on.
"""

import logging
from typing import Awaitable, TypeVar

from pydantic import ValidationError

from models.schemas import AnalyzedActionItem, AnalyzedParticipant, TemplateType
from services.errors import AnalysisFault, ValidationFault
from services.llm import LLMService

logger = logging.getLogger(__name__)

T = TypeVar("T")

SUMMARY_SYSTEM = (
    "You are a meeting assistant that creates concise, accurate summaries of meeting "
    "transcripts. Focus on key points, decisions, and action items. Be professional and "
    "objective. Always write in the same language as the transcript; never translate."
)

SUMMARY_PROMPT = """\
Summarize the following meeting transcript in a paragraph or two.
{style}
Transcript:
{transcript}
"""

SUMMARY_STYLES = {
    TemplateType.SUMMARY: "Keep it short and focused on outcomes and decisions.",
    TemplateType.ACTION_ITEMS: "Emphasize follow-ups, owners and deadlines.",
    TemplateType.FULL_REPORT: "Be thorough: cover every topic discussed, in order.",
}

CHUNK_SUMMARY_PROMPT = """\
Summarize the following meeting transcript segment concisely.
Keep all key points, decisions, and action items.

Transcript segment:
{chunk}
"""

SYNTHESIS_PROMPT = """\
The following are summaries of consecutive segments of a long meeting:

{summaries}

Combine them into a single summary of the whole meeting in a paragraph or two.
{style}
"""

TITLE_SYSTEM = (
    "You write short, specific meeting titles. Use the language of the transcript. "
    "Reply with the title only, without quotes."
)

TITLE_PROMPT = """\
Write a title of at most 8 words for this meeting:

{transcript}
"""

ACTIONS_SYSTEM = (
    "You are a meeting assistant that extracts action items from meeting transcripts. "
    "For each action item, identify the task, the assignee, and the due date if mentioned. "
    "Write the tasks in the language of the transcript."
)

ACTIONS_PROMPT = """\
Extract the action items from the following meeting transcript. Return JSON of the form
{{"actionItems": [{{"text": "...", "assignee": "... or null", "dueDate": "YYYY-MM-DD or null"}}]}}.
Return an empty list when there are none.

Transcript:
{transcript}
"""

SPEAKERS_SYSTEM = (
    "You separate meeting transcripts by speaker. Keep every sentence exactly as spoken: "
    "do not shorten, summarize, translate or reword anything."
)

SPEAKERS_PROMPT = """\
Rewrite the transcript below with one line per speaker turn, each line prefixed with the
speaker label ("Name:" when the name is known, otherwise "Speaker 1:", "Speaker 2:", ...).
Output only the labelled transcript.

Transcript:
{transcript}
"""

PARTICIPANTS_SYSTEM = (
    "You are a meeting assistant that identifies participants from meeting transcripts. "
    "Extract the names of all speakers, and determine who is most likely the host."
)

PARTICIPANTS_PROMPT = """\
Identify all participants in this meeting transcript. Return JSON of the form
{{"participants": [{{"name": "...", "isHost": true|false}}]}}.

Transcript:
{transcript}
"""

# Above this many characters the summary is built from per-chunk summaries
CHUNK_THRESHOLD = 12000
CHUNK_SIZE = 6000

MAX_TITLE_LENGTH = 120

# Labelled output shorter than this share of the input was summarized, not separated
MIN_SEPARATED_RATIO = 0.8


class MeetingAnalyzer:
    """Runs the individual LLM analysis operations over a transcript."""

    def __init__(self, llm_service: LLMService):
        self.llm = llm_service

    async def _stage(self, stage: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except AnalysisFault:
            raise
        except NotImplementedError as e:
            raise AnalysisFault(stage, str(e)) from e
        except Exception as e:
            logger.error(f"Analysis stage '{stage}' failed: {e}")
            raise AnalysisFault(stage, f"Failed to generate {stage}: {e}") from e

    @staticmethod
    def _require(transcript: str) -> str:
        if not transcript or not transcript.strip():
            raise ValidationFault("Transcript is empty")
        return transcript.strip()

    # --- Title ---

    async def generate_title(self, transcript: str) -> str:
        transcript = self._require(transcript)
        return await self._stage("title", self._title(transcript))

    async def _title(self, transcript: str) -> str:
        raw = await self.llm.generate_text(
            TITLE_PROMPT.format(transcript=transcript[:CHUNK_SIZE]),
            system=TITLE_SYSTEM,
            max_tokens=40,
        )
        lines = [line for line in raw.strip().splitlines() if line.strip()]
        title = lines[0].strip().strip("\"'").strip() if lines else ""
        if not title:
            raise AnalysisFault("title", "The model returned an empty title")
        return title[:MAX_TITLE_LENGTH]

    # --- Summary ---

    async def generate_summary(
        self, transcript: str, template_type: TemplateType | None = None
    ) -> str:
        transcript = self._require(transcript)
        return await self._stage("summary", self._summary(transcript, template_type))

    async def _summary(self, transcript: str, template_type: TemplateType | None) -> str:
        style = SUMMARY_STYLES.get(template_type, "") if template_type else ""
        if len(transcript) > CHUNK_THRESHOLD:
            summary = await self._chunked_summary(transcript, style)
        else:
            summary = await self.llm.generate_text(
                SUMMARY_PROMPT.format(style=style, transcript=transcript),
                system=SUMMARY_SYSTEM,
                max_tokens=800,
            )
        summary = summary.strip()
        if not summary:
            raise AnalysisFault("summary", "The model returned an empty summary")
        return summary

    async def _chunked_summary(self, transcript: str, style: str) -> str:
        """Summarize long transcripts chunk by chunk, then synthesize."""
        chunks = split_transcript(transcript)
        logger.info(f"Long transcript ({len(transcript)} chars) split into {len(chunks)} chunks")

        summaries = []
        for i, chunk in enumerate(chunks, 1):
            summary = await self.llm.generate_text(
                CHUNK_SUMMARY_PROMPT.format(chunk=chunk),
                system=SUMMARY_SYSTEM,
                max_tokens=500,
            )
            summaries.append(f"Segment {i}:\n{summary.strip()}")

        return await self.llm.generate_text(
            SYNTHESIS_PROMPT.format(summaries="\n\n".join(summaries), style=style),
            system=SUMMARY_SYSTEM,
            max_tokens=800,
        )

    # --- Action items ---

    async def extract_action_items(self, transcript: str) -> list[AnalyzedActionItem]:
        transcript = self._require(transcript)
        return await self._stage("actions", self._action_items(transcript))

    async def _action_items(self, transcript: str) -> list[AnalyzedActionItem]:
        data = await self.llm.generate_json(
            ACTIONS_PROMPT.format(transcript=transcript),
            system=ACTIONS_SYSTEM,
            max_tokens=1200,
        )
        raw_items = data.get("actionItems") or data.get("action_items") or []
        items = []
        for raw in raw_items:
            if not isinstance(raw, dict):
                continue
            try:
                item = AnalyzedActionItem.model_validate(raw)
            except ValidationError:
                logger.debug(f"Skipping malformed action item: {raw!r}")
                continue
            if item.text.strip():
                items.append(item)
        return items

    # --- Speakers ---

    async def separate_speakers(self, transcript: str) -> str:
        transcript = self._require(transcript)
        return await self._stage("speakers", self._speakers(transcript))

    async def _speakers(self, transcript: str) -> str:
        separated = await self.llm.generate_text(
            SPEAKERS_PROMPT.format(transcript=transcript),
            system=SPEAKERS_SYSTEM,
            max_tokens=max(1000, len(transcript) // 2),
        )
        separated = separated.strip()
        if len(separated) < len(transcript) * MIN_SEPARATED_RATIO:
            raise AnalysisFault("speakers", "Speaker separation shortened the transcript")
        return separated

    # --- Participants ---

    async def identify_participants(self, transcript: str) -> list[AnalyzedParticipant]:
        transcript = self._require(transcript)
        return await self._stage("participants", self._participants(transcript))

    async def _participants(self, transcript: str) -> list[AnalyzedParticipant]:
        data = await self.llm.generate_json(
            PARTICIPANTS_PROMPT.format(transcript=transcript),
            system=PARTICIPANTS_SYSTEM,
            max_tokens=500,
        )
        people = []
        for raw in data.get("participants") or []:
            if isinstance(raw, dict) and str(raw.get("name") or "").strip():
                people.append(AnalyzedParticipant.model_validate(raw))
        return people


def split_transcript(transcript: str) -> list[str]:
    """Split transcript into chunks at paragraph boundaries."""
    paragraphs = transcript.split("\n\n")
    chunks: list[str] = []
    current_chunk: list[str] = []
    current_len = 0

    for para in paragraphs:
        if current_len + len(para) > CHUNK_SIZE and current_chunk:
            chunks.append("\n\n".join(current_chunk))
            current_chunk = []
            current_len = 0
        current_chunk.append(para)
        current_len += len(para)

    if current_chunk:
        chunks.append("\n\n".join(current_chunk))

    return chunks if chunks else [transcript]
