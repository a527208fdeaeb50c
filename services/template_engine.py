"""Email template rendering.

``render`` merges a template's subject and body with a meeting's fields.
It is a pure function: no I/O, no clock, no locale lookup, so the same
(template, meeting) pair always yields byte-identical output.
"""

import re

from models.schemas import (
    ActionItem,
    EmailTemplate,
    EmailTemplateCreate,
    Meeting,
    Participant,
    RenderedEmail,
    TemplateType,
)

VARIABLE_PATTERN = re.compile(r"\{\{(\w+)\}\}")
_WORD_PATTERN = re.compile(r"\S+")

TRANSCRIPT_PREVIEW_WORDS = 50

_MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

NO_TITLE = "Untitled Meeting"
NO_PARTICIPANTS = "No participant information"
NO_SUMMARY = "No summary has been generated."
NO_ACTION_ITEMS = "No action items."
NO_COMPLETED_ITEMS = "No completed action items."
NO_PENDING_ITEMS = "No pending action items."
NO_TAGS = "No tags"
NO_TRANSCRIPT = "No transcript available."
NO_NOTES = "No additional notes."


def extract_variables(text: str) -> list[str]:
    """Placeholder names in ``text``, de-duplicated in order of appearance."""
    return list(dict.fromkeys(VARIABLE_PATTERN.findall(text)))


def template_variables(subject: str, body: str) -> list[str]:
    return extract_variables(subject + "\n" + body)


def format_date(meeting: Meeting) -> str:
    d = meeting.date
    return f"{_MONTHS[d.month - 1]} {d.day}, {d.year}"


def format_duration(seconds: int) -> str:
    hours, rest = divmod(max(seconds, 0), 3600)
    minutes = rest // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_participants(participants: list[Participant]) -> str:
    if not participants:
        return NO_PARTICIPANTS
    return ", ".join(f"{p.name} (Host)" if p.is_host else p.name for p in participants)


def _item_line(index: int, item: ActionItem, with_due: bool = True) -> str:
    glyph = "[x]" if item.completed else "[ ]"
    line = f"{index}. {glyph} {item.text}"
    if item.assignee:
        line += f" (Assignee: {item.assignee})"
    if with_due and item.due_date:
        line += f" (Due: {item.due_date})"
    return line


def format_action_items(items: list[ActionItem]) -> str:
    if not items:
        return NO_ACTION_ITEMS
    return "\n".join(_item_line(i, item) for i, item in enumerate(items, 1))


def format_completed_items(items: list[ActionItem]) -> str:
    done = [item for item in items if item.completed]
    if not done:
        return NO_COMPLETED_ITEMS
    return "\n".join(_item_line(i, item, with_due=False) for i, item in enumerate(done, 1))


def format_pending_items(items: list[ActionItem]) -> str:
    pending = [item for item in items if not item.completed]
    if not pending:
        return NO_PENDING_ITEMS
    return "\n".join(_item_line(i, item) for i, item in enumerate(pending, 1))


def transcript_preview(transcript: str | None) -> str:
    """First words of the transcript with its line breaks intact."""
    if not transcript or not transcript.strip():
        return NO_TRANSCRIPT
    words = list(_WORD_PATTERN.finditer(transcript))
    if len(words) <= TRANSCRIPT_PREVIEW_WORDS:
        return transcript.strip()
    return transcript[words[0].start() : words[TRANSCRIPT_PREVIEW_WORDS - 1].end()] + "..."


def meeting_variables(meeting: Meeting) -> dict[str, str]:
    """Values for every supported placeholder."""
    return {
        "meeting_title": meeting.title or NO_TITLE,
        "meeting_date": format_date(meeting),
        "meeting_duration": format_duration(meeting.duration),
        "meeting_participants": format_participants(meeting.participants),
        "meeting_summary": meeting.summary or NO_SUMMARY,
        "action_items": format_action_items(meeting.action_items),
        "completed_action_items": format_completed_items(meeting.action_items),
        "pending_action_items": format_pending_items(meeting.action_items),
        "meeting_tags": ", ".join(meeting.tags) if meeting.tags else NO_TAGS,
        "meeting_transcript": transcript_preview(meeting.transcript),
        "meeting_notes": meeting.notes or NO_NOTES,
    }


def substitute(text: str, values: dict[str, str]) -> str:
    """Replace every known ``{{name}}``; unknown placeholders stay verbatim."""

    def _replace(match: re.Match) -> str:
        return values.get(match.group(1), match.group(0))

    return VARIABLE_PATTERN.sub(_replace, text)


def render(template: EmailTemplateCreate, meeting: Meeting) -> RenderedEmail:
    values = meeting_variables(meeting)
    return RenderedEmail(
        subject=substitute(template.subject, values),
        body=substitute(template.body, values),
    )


# Seed data for an empty template table.

_SUMMARY_BODY = """Hello,

Please find the minutes for {{meeting_title}} below.

Meeting details
- Date: {{meeting_date}}
- Duration: {{meeting_duration}}
- Participants: {{meeting_participants}}

Summary
{{meeting_summary}}

Action items
{{action_items}}

The full transcript is available on request.

Best regards"""

_ACTION_ITEMS_BODY = """Hello,

Here are the action items from {{meeting_title}} ({{meeting_date}}).

Completed
{{completed_action_items}}

Pending
{{pending_action_items}}

Please check the items assigned to you and share progress updates.

Best regards"""

_FULL_REPORT_BODY = """{{meeting_title}} - Detailed Minutes

Meeting details
- Date: {{meeting_date}}
- Participants: {{meeting_participants}}
- Duration: {{meeting_duration}}
- Tags: {{meeting_tags}}

Transcript
{{meeting_transcript}}

Summary
{{meeting_summary}}

Action items
{{action_items}}

Notes
{{meeting_notes}}

Feel free to reach out with any questions."""


def _default(name: str, type_: TemplateType, subject: str, body: str) -> EmailTemplate:
    return EmailTemplate(
        name=name,
        type=type_,
        subject=subject,
        body=body,
        variables=template_variables(subject, body),
    )


DEFAULT_TEMPLATES: tuple[EmailTemplate, ...] = (
    _default(
        "Meeting Summary",
        TemplateType.SUMMARY,
        "[Minutes] {{meeting_title}} - {{meeting_date}}",
        _SUMMARY_BODY,
    ),
    _default(
        "Action Item List",
        TemplateType.ACTION_ITEMS,
        "[Action Items] {{meeting_title}} - To-do list",
        _ACTION_ITEMS_BODY,
    ),
    _default(
        "Full Report",
        TemplateType.FULL_REPORT,
        "[Full Minutes] {{meeting_title}} - Complete record",
        _FULL_REPORT_BODY,
    ),
)
