"""Record store for meetings, email templates and user preferences.

Backed by SQLite through async SQLAlchemy. Every failure of the medium is
re-raised as ``StorageFault``; operations that need an existing record raise
``NotFound``.

``search_meetings`` and ``get_meetings_by_tag`` are O(n) scans over
``get_all_meetings()`` on every call. That is fine for one user's meeting
history; the tag index is kept for lookups outside the scan path.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import Database
from db.models import EmailTemplateRow, MeetingRow, MeetingTag, PreferenceRow
from models.schemas import (
    ActionItem,
    ActionItemUpdate,
    EmailTemplate,
    EmailTemplateCreate,
    EmailTemplateUpdate,
    Meeting,
    MeetingCreate,
    MeetingUpdate,
)
from services.demo_data import demo_meetings
from services.errors import NotFound, StorageFault, ValidationFault
from services.template_engine import DEFAULT_TEMPLATES, template_variables

logger = logging.getLogger(__name__)


def new_action_item_id() -> str:
    return f"action_{uuid.uuid4().hex}"


def _to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _meeting_from_row(row: MeetingRow) -> Meeting:
    return Meeting(
        id=row.id,
        title=row.title,
        date=row.date.replace(tzinfo=timezone.utc),
        duration=row.duration,
        tags=list(row.tags or []),
        user_id=row.user_id,
        transcript=row.transcript,
        summary=row.summary,
        audio_url=row.audio_url,
        participants=row.participants or [],
        action_items=row.action_items or [],
        notes=row.notes,
    )


def _apply_meeting(row: MeetingRow, meeting: MeetingCreate) -> None:
    row.title = meeting.title
    row.date = _to_utc_naive(meeting.date or datetime.now(timezone.utc))
    row.duration = meeting.duration
    row.tags = list(meeting.tags)
    row.user_id = meeting.user_id
    row.transcript = meeting.transcript
    row.summary = meeting.summary
    row.audio_url = meeting.audio_url
    row.participants = [p.model_dump(exclude_none=True) for p in meeting.participants]
    row.action_items = [a.model_dump(exclude_none=True) for a in meeting.action_items]
    row.notes = meeting.notes


def _template_from_row(row: EmailTemplateRow) -> EmailTemplate:
    return EmailTemplate(
        id=row.id,
        name=row.name,
        type=row.type,
        subject=row.subject,
        body=row.body,
        variables=list(row.variables or []),
    )


class MeetingStore:
    """Meetings, email templates and preferences for the single demo user."""

    def __init__(self, database: Database, user_id: int = 1):
        self._db = database
        self.user_id = user_id
        self._seed_lock = asyncio.Lock()

    async def init(self) -> None:
        try:
            await self._db.init()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to open record store: {e}")
            raise StorageFault("Failed to open the local record store") from e

    async def close(self) -> None:
        await self._db.close()

    @asynccontextmanager
    async def _session(self, action: str) -> AsyncIterator[AsyncSession]:
        await self.init()
        try:
            async with self._db.session() as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Storage error while trying to {action}: {e}")
            raise StorageFault(f"Failed to {action}") from e

    @staticmethod
    async def _sync_tags(session: AsyncSession, meeting_id: int, tags: list[str]) -> None:
        await session.execute(delete(MeetingTag).where(MeetingTag.meeting_id == meeting_id))
        for tag in dict.fromkeys(tags):
            session.add(MeetingTag(meeting_id=meeting_id, tag=tag))

    # --- Meetings ---

    async def save_meeting(self, meeting: MeetingCreate) -> Meeting:
        """Insert a new meeting and return it with its assigned id."""
        async with self._session("save meeting") as session:
            row = MeetingRow()
            _apply_meeting(row, meeting)
            session.add(row)
            await session.flush()
            await self._sync_tags(session, row.id, meeting.tags)
            await session.commit()
            saved = _meeting_from_row(row)
        logger.info(f"Meeting {saved.id} saved: {saved.title}")
        return saved

    async def get_meeting(self, meeting_id: int) -> Meeting | None:
        async with self._session("get meeting") as session:
            row = await session.get(MeetingRow, meeting_id)
            return _meeting_from_row(row) if row else None

    async def update_meeting(
        self, meeting_id: int, updates: MeetingUpdate | dict[str, Any]
    ) -> Meeting:
        """Shallow-merge ``updates`` into the stored meeting.

        Only keys that are present in ``updates`` overwrite stored values.
        """
        try:
            if isinstance(updates, dict):
                updates = MeetingUpdate.model_validate(updates)
            changes = updates.model_dump(exclude_unset=True)
        except ValidationError as e:
            raise ValidationFault("Invalid update data", errors=e.errors()) from e

        async with self._session("update meeting") as session:
            row = await session.get(MeetingRow, meeting_id)
            if row is None:
                raise NotFound(f"Meeting {meeting_id} not found")

            merged = _meeting_from_row(row).model_dump()
            merged.update(changes)
            try:
                meeting = Meeting.model_validate(merged)
            except ValidationError as e:
                raise ValidationFault("Invalid update data", errors=e.errors()) from e

            _apply_meeting(row, meeting)
            if "tags" in changes:
                await self._sync_tags(session, meeting_id, meeting.tags)
            await session.commit()
            return _meeting_from_row(row)

    async def get_all_meetings(self) -> list[Meeting]:
        """All meetings, newest first."""
        async with self._session("get meetings") as session:
            result = await session.execute(
                select(MeetingRow).order_by(MeetingRow.date.desc(), MeetingRow.id.desc())
            )
            return [_meeting_from_row(row) for row in result.scalars()]

    async def delete_meeting(self, meeting_id: int) -> bool:
        """Hard delete. Returns False when there was nothing to delete."""
        async with self._session("delete meeting") as session:
            await session.execute(delete(MeetingTag).where(MeetingTag.meeting_id == meeting_id))
            result = await session.execute(delete(MeetingRow).where(MeetingRow.id == meeting_id))
            await session.commit()
            deleted = result.rowcount > 0
        if deleted:
            logger.info(f"Meeting {meeting_id} deleted")
        return deleted

    async def search_meetings(self, query: str) -> list[Meeting]:
        """Case-insensitive substring match on title, transcript, summary or any tag."""
        needle = query.lower()
        meetings = await self.get_all_meetings()
        return [
            m
            for m in meetings
            if needle in m.title.lower()
            or (m.transcript and needle in m.transcript.lower())
            or (m.summary and needle in m.summary.lower())
            or any(needle in tag.lower() for tag in m.tags)
        ]

    async def get_meetings_by_tag(self, tag: str) -> list[Meeting]:
        meetings = await self.get_all_meetings()
        return [m for m in meetings if tag in m.tags]

    async def count_meetings(self) -> int:
        async with self._session("count meetings") as session:
            return await session.scalar(select(func.count()).select_from(MeetingRow)) or 0

    # --- Action items ---

    async def add_action_item(
        self,
        meeting_id: int,
        text: str,
        assignee: str | None = None,
        due_date: str | None = None,
    ) -> ActionItem:
        meeting = await self.get_meeting(meeting_id)
        if meeting is None:
            raise NotFound(f"Meeting {meeting_id} not found")

        item = ActionItem(
            id=new_action_item_id(),
            text=text,
            completed=False,
            assignee=assignee,
            due_date=due_date,
        )
        await self.update_meeting(meeting_id, {"action_items": [*meeting.action_items, item]})
        return item

    async def update_action_item(
        self, meeting_id: int, item_id: str, updates: ActionItemUpdate
    ) -> ActionItem:
        """Edit or toggle one action item. The item keeps its id."""
        meeting = await self.get_meeting(meeting_id)
        if meeting is None:
            raise NotFound(f"Meeting {meeting_id} not found")

        items = list(meeting.action_items)
        for index, item in enumerate(items):
            if item.id == item_id:
                items[index] = item.model_copy(update=updates.model_dump(exclude_unset=True))
                await self.update_meeting(meeting_id, {"action_items": items})
                return items[index]
        raise NotFound(f"Action item {item_id} not found")

    # --- Email templates ---

    async def save_template(self, template: EmailTemplateCreate) -> EmailTemplate:
        async with self._session("save email template") as session:
            row = EmailTemplateRow(
                name=template.name,
                type=template.type.value,
                subject=template.subject,
                body=template.body,
                variables=template_variables(template.subject, template.body),
            )
            session.add(row)
            await session.commit()
            return _template_from_row(row)

    async def get_template(self, template_id: int) -> EmailTemplate | None:
        async with self._session("get email template") as session:
            row = await session.get(EmailTemplateRow, template_id)
            return _template_from_row(row) if row else None

    async def update_template(
        self, template_id: int, updates: EmailTemplateUpdate
    ) -> EmailTemplate:
        changes = updates.model_dump(exclude_unset=True, exclude_none=True)
        async with self._session("update email template") as session:
            row = await session.get(EmailTemplateRow, template_id)
            if row is None:
                raise NotFound(f"Template {template_id} not found")
            if "name" in changes:
                row.name = changes["name"]
            if "type" in changes:
                row.type = changes["type"].value
            if "subject" in changes:
                row.subject = changes["subject"]
            if "body" in changes:
                row.body = changes["body"]
            row.variables = template_variables(row.subject, row.body)
            await session.commit()
            return _template_from_row(row)

    async def delete_template(self, template_id: int) -> bool:
        async with self._session("delete email template") as session:
            result = await session.execute(
                delete(EmailTemplateRow).where(EmailTemplateRow.id == template_id)
            )
            await session.commit()
            return result.rowcount > 0

    async def get_templates(self) -> list[EmailTemplate]:
        """All templates. Seeds the built-in set if the table is empty."""
        await self.ensure_default_templates()
        async with self._session("get email templates") as session:
            result = await session.execute(select(EmailTemplateRow).order_by(EmailTemplateRow.id))
            return [_template_from_row(row) for row in result.scalars()]

    async def ensure_default_templates(self) -> bool:
        """Insert the built-in templates the first time the table is seen empty."""
        async with self._seed_lock:
            async with self._session("seed email templates") as session:
                count = await session.scalar(select(func.count()).select_from(EmailTemplateRow))
            if count:
                return False
            for template in DEFAULT_TEMPLATES:
                await self.save_template(template)
        logger.info(f"Seeded {len(DEFAULT_TEMPLATES)} default email templates")
        return True

    # --- Preferences ---

    async def save_preference(self, key: str, value: Any) -> None:
        async with self._session("save preference") as session:
            await session.merge(PreferenceRow(key=key, value=value))
            await session.commit()

    async def get_preference(self, key: str, default: Any = None) -> Any:
        async with self._session("get preference") as session:
            row = await session.get(PreferenceRow, key)
            if row is None or row.value is None:
                return default
            return row.value

    async def get_preferences(self) -> dict[str, Any]:
        async with self._session("get preferences") as session:
            result = await session.execute(select(PreferenceRow))
            return {row.key: row.value for row in result.scalars()}

    async def delete_preference(self, key: str) -> bool:
        async with self._session("delete preference") as session:
            result = await session.execute(delete(PreferenceRow).where(PreferenceRow.key == key))
            await session.commit()
            return result.rowcount > 0

    # --- Demo data ---

    async def seed_demo_meetings(self) -> int:
        """Insert sample meetings into an empty store. Returns how many were added."""
        if await self.count_meetings():
            return 0
        meetings = demo_meetings(self.user_id)
        for meeting in meetings:
            await self.save_meeting(meeting)
        logger.info(f"Seeded {len(meetings)} demo meetings")
        return len(meetings)
