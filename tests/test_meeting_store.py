"""Record store tests against a real SQLite file."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from db.database import Database
from models.schemas import (
    ActionItemUpdate,
    EmailTemplateCreate,
    EmailTemplateUpdate,
    MeetingCreate,
    TemplateType,
)
from services.errors import NotFound, StorageFault, ValidationFault
from services.meeting_store import MeetingStore


def _meeting(title="Sprint Review", **overrides) -> MeetingCreate:
    return MeetingCreate(title=title, **overrides)


class TestMeetings:
    async def test_save_assigns_id_and_round_trips(self, store):
        saved = await store.save_meeting(
            _meeting(tags=["Product"], transcript="hello", duration=60)
        )

        assert saved.id > 0
        fetched = await store.get_meeting(saved.id)
        assert fetched == saved
        assert fetched.date.tzinfo is not None

    async def test_get_missing_returns_none(self, store):
        assert await store.get_meeting(999) is None

    async def test_update_is_a_shallow_merge(self, store):
        saved = await store.save_meeting(
            _meeting(summary="Old summary", tags=["a", "b"], notes="keep me")
        )

        updated = await store.update_meeting(saved.id, {"title": "Renamed"})

        assert updated.title == "Renamed"
        assert updated.summary == "Old summary"
        assert updated.tags == ["a", "b"]
        assert updated.notes == "keep me"

    async def test_tag_update_leaves_other_fields(self, store):
        saved = await store.save_meeting(
            _meeting(tags=["old"], transcript="Full transcript", summary="Short summary")
        )

        updated = await store.update_meeting(saved.id, {"tags": ["new", "Product"]})

        assert updated.tags == ["new", "Product"]
        assert updated.transcript == "Full transcript"
        assert updated.summary == "Short summary"
        assert updated.title == saved.title
        assert [m.id for m in await store.get_meetings_by_tag("Product")] == [saved.id]
        assert await store.get_meetings_by_tag("old") == []

    async def test_update_accepts_camel_case_keys(self, store):
        saved = await store.save_meeting(_meeting())

        updated = await store.update_meeting(saved.id, {"audioUrl": "blob:1"})

        assert updated.audio_url == "blob:1"

    async def test_update_rejects_invalid_fields(self, store):
        saved = await store.save_meeting(_meeting())

        with pytest.raises(ValidationFault):
            await store.update_meeting(saved.id, {"duration": -5})
        with pytest.raises(ValidationFault):
            await store.update_meeting(saved.id, {"title": ""})

    async def test_update_missing_meeting(self, store):
        with pytest.raises(NotFound):
            await store.update_meeting(42, {"title": "x"})

    async def test_delete_twice(self, store):
        saved = await store.save_meeting(_meeting())

        assert await store.delete_meeting(saved.id) is True
        assert await store.delete_meeting(saved.id) is False
        assert await store.get_meeting(saved.id) is None

    async def test_get_all_newest_first(self, store):
        older = await store.save_meeting(
            _meeting("Older", date=datetime(2023, 1, 1, tzinfo=timezone.utc))
        )
        newer = await store.save_meeting(
            _meeting("Newer", date=datetime(2024, 1, 1, tzinfo=timezone.utc))
        )

        meetings = await store.get_all_meetings()

        assert [m.id for m in meetings] == [newer.id, older.id]


class TestSearch:
    @pytest.fixture
    async def seeded(self, store):
        await store.save_meeting(_meeting("Product Roadmap", tags=["Product"]))
        await store.save_meeting(
            _meeting("Weekly sync", transcript="We talked about the Q3 budget.")
        )
        await store.save_meeting(
            _meeting("Campaign review", summary="Launch slipped", tags=["Marketing"])
        )
        return store

    async def test_matches_title_case_insensitively(self, seeded):
        results = await seeded.search_meetings("roadmap")
        assert [m.title for m in results] == ["Product Roadmap"]

    async def test_matches_transcript_and_summary(self, seeded):
        assert [m.title for m in await seeded.search_meetings("BUDGET")] == ["Weekly sync"]
        assert [m.title for m in await seeded.search_meetings("slipped")] == ["Campaign review"]

    async def test_matches_tags(self, seeded):
        results = await seeded.search_meetings("market")
        assert [m.title for m in results] == ["Campaign review"]

    async def test_no_match(self, seeded):
        assert await seeded.search_meetings("nothing like this") == []

    async def test_by_tag_is_exact(self, seeded):
        assert [m.title for m in await seeded.get_meetings_by_tag("Product")] == [
            "Product Roadmap"
        ]
        assert await seeded.get_meetings_by_tag("product") == []


class TestActionItems:
    async def test_add_generates_id(self, store):
        meeting = await store.save_meeting(_meeting())

        item = await store.add_action_item(meeting.id, "Send deck", assignee="Bob")

        assert item.id.startswith("action_")
        assert item.completed is False
        stored = await store.get_meeting(meeting.id)
        assert [i.id for i in stored.action_items] == [item.id]

    async def test_toggle_keeps_id(self, store):
        meeting = await store.save_meeting(_meeting())
        first = await store.add_action_item(meeting.id, "First")
        second = await store.add_action_item(meeting.id, "Second")

        toggled = await store.update_action_item(
            meeting.id, second.id, ActionItemUpdate(completed=True)
        )

        assert toggled.id == second.id
        assert toggled.text == "Second"
        stored = await store.get_meeting(meeting.id)
        assert [(i.id, i.completed) for i in stored.action_items] == [
            (first.id, False),
            (second.id, True),
        ]

    async def test_unknown_item(self, store):
        meeting = await store.save_meeting(_meeting())

        with pytest.raises(NotFound):
            await store.update_action_item(meeting.id, "action_missing", ActionItemUpdate())

    async def test_unknown_meeting(self, store):
        with pytest.raises(NotFound):
            await store.add_action_item(404, "Anything")


class TestTemplates:
    async def test_defaults_seeded_once(self, store):
        first, second = await asyncio.gather(store.get_templates(), store.get_templates())

        assert len(first) == 3
        assert len(second) == 3
        assert {t.type for t in first} == set(TemplateType)
        assert await store.ensure_default_templates() is False

    async def test_variables_recomputed_on_save_and_update(self, store):
        template = await store.save_template(
            EmailTemplateCreate(
                name="Short",
                type=TemplateType.SUMMARY,
                subject="{{meeting_title}}",
                body="{{meeting_summary}} {{meeting_title}}",
            )
        )
        assert template.variables == ["meeting_title", "meeting_summary"]

        updated = await store.update_template(
            template.id, EmailTemplateUpdate(body="{{action_items}}")
        )

        assert updated.subject == "{{meeting_title}}"
        assert updated.variables == ["meeting_title", "action_items"]

    async def test_update_and_delete_missing(self, store):
        with pytest.raises(NotFound):
            await store.update_template(77, EmailTemplateUpdate(name="x"))
        assert await store.delete_template(77) is False


class TestPreferences:
    async def test_save_overwrite_delete(self, store):
        await store.save_preference("theme", "dark")
        await store.save_preference("theme", {"mode": "light"})

        assert await store.get_preference("theme") == {"mode": "light"}
        assert await store.get_preferences() == {"theme": {"mode": "light"}}
        assert await store.delete_preference("theme") is True
        assert await store.get_preference("theme", "default") == "default"
        assert await store.delete_preference("theme") is False


class TestLifecycle:
    async def test_concurrent_init_creates_one_engine(self, tmp_path):
        database = Database(str(tmp_path / "concurrent.db"))
        meeting_store = MeetingStore(database)

        with patch("db.database.create_async_engine", wraps=create_async_engine) as engine_factory:
            await asyncio.gather(meeting_store.init(), meeting_store.init(), database.init())
        try:
            assert engine_factory.call_count == 1
            assert database.is_initialized
            saved = await meeting_store.save_meeting(_meeting("After init"))
            assert [m.id for m in await meeting_store.get_all_meetings()] == [saved.id]
        finally:
            await meeting_store.close()

    async def test_demo_meetings_seeded_only_into_empty_store(self, store):
        assert await store.seed_demo_meetings() == 3
        assert await store.seed_demo_meetings() == 0
        titles = [m.title for m in await store.get_all_meetings()]
        assert titles[0] == "Product Roadmap Discussion"

    async def test_data_survives_reopen(self, tmp_path):
        path = str(tmp_path / "reopen.db")
        first = MeetingStore(Database(path))
        saved = await first.save_meeting(_meeting("Persistent"))
        await first.close()

        second = MeetingStore(Database(path))
        try:
            assert (await second.get_meeting(saved.id)).title == "Persistent"
        finally:
            await second.close()

    async def test_unusable_path_is_a_storage_fault(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file")
        broken = MeetingStore(Database(str(blocker / "minutes.db")))

        with pytest.raises(StorageFault):
            await broken.init()
