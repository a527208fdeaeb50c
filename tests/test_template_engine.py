"""Template rendering is pure: same inputs, same bytes."""

from conftest import make_meeting

from models.schemas import ActionItem, EmailTemplateCreate, Participant, TemplateType
from services.template_engine import (
    DEFAULT_TEMPLATES,
    NO_ACTION_ITEMS,
    NO_PARTICIPANTS,
    NO_SUMMARY,
    extract_variables,
    format_duration,
    meeting_variables,
    render,
    transcript_preview,
)


def _template(subject: str, body: str = "") -> EmailTemplateCreate:
    return EmailTemplateCreate(name="t", type=TemplateType.SUMMARY, subject=subject, body=body)


class TestRender:
    def test_same_inputs_render_identically(self):
        meeting = make_meeting(
            summary="Shipped it.",
            action_items=[ActionItem(id="action_1", text="Write notes", assignee="Ana")],
        )
        template = DEFAULT_TEMPLATES[0]

        assert render(template, meeting) == render(template, meeting)

    def test_every_occurrence_is_replaced(self):
        rendered = render(
            _template("{{meeting_title}}", "{{meeting_title}} / {{meeting_title}}"),
            make_meeting(),
        )

        assert rendered.subject == "Sprint Review"
        assert rendered.body == "Sprint Review / Sprint Review"

    def test_unknown_placeholders_stay_verbatim(self):
        rendered = render(_template("Hi {{recipient_name}}", "{{meeting_title}}"), make_meeting())

        assert rendered.subject == "Hi {{recipient_name}}"

    def test_fallbacks_for_empty_meeting(self):
        rendered = render(
            _template("", "{{meeting_summary}}|{{action_items}}|{{meeting_participants}}"),
            make_meeting(),
        )

        assert rendered.body == f"{NO_SUMMARY}|{NO_ACTION_ITEMS}|{NO_PARTICIPANTS}"

    def test_date_does_not_depend_on_locale(self):
        assert render(_template("{{meeting_date}}"), make_meeting()).subject == "July 12, 2023"


class TestFormatting:
    def test_durations(self):
        assert format_duration(0) == "0m"
        assert format_duration(59) == "0m"
        assert format_duration(2700) == "45m"
        assert format_duration(3600) == "1h 0m"
        assert format_duration(5430) == "1h 30m"

    def test_action_item_lines(self):
        meeting = make_meeting(
            action_items=[
                ActionItem(id="a", text="Draft plan", assignee="Ana", due_date="2023-07-19"),
                ActionItem(id="b", text="Book room", completed=True, due_date="2023-07-20"),
            ]
        )

        values = meeting_variables(meeting)

        assert values["action_items"] == (
            "1. [ ] Draft plan (Assignee: Ana) (Due: 2023-07-19)\n2. [x] Book room (Due: 2023-07-20)"
        )
        assert values["completed_action_items"] == "1. [x] Book room"
        assert values["pending_action_items"] == (
            "1. [ ] Draft plan (Assignee: Ana) (Due: 2023-07-19)"
        )

    def test_participants_mark_host(self):
        meeting = make_meeting(
            participants=[
                Participant(id="1", name="Ana", is_host=True),
                Participant(id="2", name="Bo"),
            ]
        )

        assert meeting_variables(meeting)["meeting_participants"] == "Ana (Host), Bo"

    def test_transcript_preview_truncates_at_fifty_words(self):
        words = [f"w{i}" for i in range(60)]

        preview = transcript_preview(" ".join(words))

        assert preview == " ".join(words[:50]) + "..."
        assert transcript_preview("short one") == "short one"

    def test_transcript_preview_keeps_line_breaks(self):
        assert transcript_preview("Alice: hi\nBob: hello") == "Alice: hi\nBob: hello"

        lines = [" ".join(f"w{row}_{col}" for col in range(10)) for row in range(6)]
        transcript = "\n".join(lines)

        preview = transcript_preview(transcript)

        assert preview == "\n".join(lines[:5]) + "..."
        assert preview.count("\n") == 4



class TestVariables:
    def test_extract_deduplicates_in_order(self):
        assert extract_variables("{{b}} {{a}} {{b}} {{ not_one }}") == ["b", "a"]

    def test_default_templates_list_their_variables(self):
        for template in DEFAULT_TEMPLATES:
            assert template.variables
            assert set(template.variables) <= set(meeting_variables(make_meeting()))
