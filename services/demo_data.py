"""Sample meetings inserted into an empty store when MINUTES_SEED_DEMO_DATA is on."""

from datetime import datetime, timezone

from models.schemas import ActionItem, MeetingCreate, Participant

_ROADMAP_TRANSCRIPT = """\
John (00:01:23): Welcome everyone to our product roadmap discussion. Today we'll be reviewing the features planned for Q3 and prioritizing our backlog based on customer feedback and business goals.

Sarah (00:02:10): Thanks, John. I've prepared a summary of the user testing results from last month. The main pain points users reported were around the onboarding flow and notification management.

Michael (00:03:42): I agree with Sarah. Our analytics also show a significant drop-off during the onboarding process. We're losing about 30% of new users in the first week.

Alex (00:05:17): From a development perspective, we need to consider the technical debt we've accumulated from the last two releases. I suggest we allocate at least 20% of our sprint capacity to refactoring.

John (00:07:35): That's a good point, Alex. Sarah, can you work with the design team to create a new onboarding flow proposal by next week?"""


def demo_meetings(user_id: int) -> list[MeetingCreate]:
    return [
        MeetingCreate(
            title="Product Roadmap Discussion",
            date=datetime(2023, 7, 12, tzinfo=timezone.utc),
            duration=2700,
            tags=["Product", "Roadmap"],
            user_id=user_id,
            transcript=_ROADMAP_TRANSCRIPT,
            summary=(
                "The team discussed the Q3 roadmap, focusing on the onboarding flow and "
                "notification management. Analytics show a 30% first-week drop-off. Alex "
                "proposed reserving 20% of sprint capacity for technical debt."
            ),
            participants=[
                Participant(id="1", name="John", is_host=True),
                Participant(id="2", name="Sarah"),
                Participant(id="3", name="Michael"),
                Participant(id="4", name="Alex"),
            ],
            action_items=[
                ActionItem(
                    id="action_demo_1",
                    text="Create onboarding flow proposal with design team",
                    completed=True,
                    assignee="Sarah",
                    due_date="2023-07-19",
                ),
                ActionItem(
                    id="action_demo_2",
                    text="Analyze technical debt and propose refactoring plan",
                    assignee="Alex",
                    due_date="2023-07-21",
                ),
                ActionItem(
                    id="action_demo_3",
                    text="Prepare analytics report on user retention",
                    assignee="Michael",
                    due_date="2023-07-20",
                ),
            ],
        ),
        MeetingCreate(
            title="Marketing Strategy Session",
            date=datetime(2023, 7, 10, tzinfo=timezone.utc),
            duration=3600,
            tags=["Marketing"],
            user_id=user_id,
            summary=(
                "Analyzed Q2 campaign results and developed strategy for Q3. Social media "
                "engagement up 24%, email open rates stable."
            ),
        ),
        MeetingCreate(
            title="Weekly Team Check-in",
            date=datetime(2023, 7, 7, tzinfo=timezone.utc),
            duration=1800,
            tags=["Team"],
            user_id=user_id,
        ),
    ]
