from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone

import pytest

from app.services.applications import ApplicationLifecycle
from app.services.dispatcher import NotificationDispatcher
from app.services.errors import (
    InvalidStateError,
    InvalidSubmissionPeriodError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryValidationError,
)
from app.services.missions import MissionLifecycle
from app.services.records import (
    ApplicationStatus,
    CampaignApprovalStatus,
    CampaignRecord,
    MissionStatus,
    NotificationType,
)
from app.services.registry import ConnectionRegistry, Frame
from app.services.store import InMemoryRepository

APPLY_AT = datetime(2026, 5, 10, 12, 0, tzinfo=timezone.utc)
MISSION_AT = datetime(2026, 5, 30, 12, 0, tzinfo=timezone.utc)
POST_URL = "https://instagram.com/p/abc"


class RecordingStream:
    def __init__(self) -> None:
        self.frames: list[Frame] = []
        self.closed = False

    def send(self, frame: Frame) -> None:
        self.frames.append(frame)

    def close(self) -> None:
        self.closed = True


class World:
    def __init__(self) -> None:
        self.repository = InMemoryRepository()
        self.repository.add_campaign(
            CampaignRecord(
                id="42",
                owner_id="client-1",
                title="Summer Glow",
                approval_status=CampaignApprovalStatus.APPROVED,
                recruitment_start_date=date(2026, 5, 1),
                recruitment_end_date=date(2026, 5, 20),
                mission_start_date=date(2026, 5, 25),
                mission_deadline_date=date(2026, 6, 10),
            )
        )
        self.registry = ConnectionRegistry()
        dispatcher = NotificationDispatcher(self.repository, self.registry)
        self.applications = ApplicationLifecycle(self.repository, dispatcher)
        self.missions = MissionLifecycle(self.repository, dispatcher)

    def application(self, user_id: str = "5", status: ApplicationStatus | None = ApplicationStatus.APPROVED) -> str:
        application = asyncio.run(
            self.applications.apply(user_id=user_id, campaign_id="42", role="influencer", now=APPLY_AT)
        )
        if status is not None:
            asyncio.run(self.applications.transition(application_id=application.id, new_status=status))
        return application.id

    def submit(self, application_id: str, caller_id: str = "5", url: str = POST_URL, now: datetime = MISSION_AT):
        return asyncio.run(
            self.missions.submit(application_id=application_id, caller_id=caller_id, submission_url=url, now=now)
        )

    def review(self, submission_id: str, caller_id: str = "client-1", **kwargs):
        return asyncio.run(self.missions.review(submission_id=submission_id, caller_id=caller_id, **kwargs))

    def latest_notification(self, user_id: str):
        return asyncio.run(self.repository.list_notifications(user_id=user_id, limit=1))[0]


def test_submit_creates_submitted_mission_and_notifies_owner() -> None:
    world = World()
    application_id = world.application()
    owner_stream = RecordingStream()
    world.registry.register("client-1", owner_stream)

    submission = world.submit(application_id)

    assert submission.status is MissionStatus.SUBMITTED
    assert submission.submission_url == POST_URL
    notification = world.latest_notification("client-1")
    assert notification.type is NotificationType.MISSION_SUBMITTED
    assert notification.related_entity_id == submission.id
    assert [frame.event for frame in owner_stream.frames] == ["notification"]


def test_second_submit_before_review_is_invalid() -> None:
    world = World()
    application_id = world.application()
    world.submit(application_id)

    with pytest.raises(InvalidStateError):
        world.submit(application_id, url="https://instagram.com/p/other")


def test_submit_access_rules() -> None:
    world = World()
    approved = world.application(user_id="5")
    pending = world.application(user_id="6", status=None)

    with pytest.raises(RepositoryForbiddenError):
        world.submit(approved, caller_id="6")
    with pytest.raises(RepositoryForbiddenError):
        world.submit(pending, caller_id="6")
    with pytest.raises(RepositoryNotFoundError):
        world.submit("missing")


def test_submit_outside_mission_window() -> None:
    world = World()
    application_id = world.application()

    with pytest.raises(InvalidSubmissionPeriodError):
        world.submit(application_id, now=datetime(2026, 5, 24, 23, 0, tzinfo=timezone.utc))
    with pytest.raises(InvalidSubmissionPeriodError):
        world.submit(application_id, now=datetime(2026, 6, 11, 0, 30, tzinfo=timezone.utc))

    on_deadline = world.submit(application_id, now=datetime(2026, 6, 10, 20, 0, tzinfo=timezone.utc))
    assert on_deadline.status is MissionStatus.SUBMITTED


def test_submit_rejects_blank_url() -> None:
    world = World()
    application_id = world.application()
    with pytest.raises(RepositoryValidationError):
        world.submit(application_id, url="   ")


def test_review_without_reason_completes_mission() -> None:
    world = World()
    submission = world.submit(world.application())

    reviewed = world.review(submission.id, feedback="good")

    assert reviewed.status is MissionStatus.COMPLETED
    assert reviewed.reviewed_at is not None
    assert reviewed.client_feedback == "good"
    assert world.latest_notification("5").type is NotificationType.MISSION_APPROVED

    with pytest.raises(InvalidStateError):
        world.review(submission.id, feedback="again")


def test_completed_mission_never_changes_again() -> None:
    world = World()
    application_id = world.application()
    submission = world.submit(application_id)
    world.review(submission.id, feedback="good")

    with pytest.raises(InvalidStateError):
        world.submit(application_id)
    with pytest.raises(InvalidStateError):
        world.review(submission.id, revision_reason="one more thing")

    stored = asyncio.run(world.repository.get_submission(submission.id))
    assert stored.status is MissionStatus.COMPLETED
    assert stored.revisions == []


def test_revision_then_resubmission_keeps_submission_id() -> None:
    world = World()
    application_id = world.application()
    submission = world.submit(application_id)

    revised = world.review(submission.id, revision_reason="missing product name")
    assert revised.status is MissionStatus.REVISION_REQUESTED
    assert [revision.revision_number for revision in revised.revisions] == [1]
    assert revised.revisions[0].requested_by == "client-1"
    notification = world.latest_notification("5")
    assert notification.type is NotificationType.MISSION_REVISION_REQUESTED
    assert "missing product name" in notification.message

    resubmitted = world.submit(application_id, url="https://instagram.com/p/abc2")
    assert resubmitted.id == submission.id
    assert resubmitted.status is MissionStatus.SUBMITTED
    assert resubmitted.submission_url == "https://instagram.com/p/abc2"
    assert resubmitted.revisions[0].revised_url == "https://instagram.com/p/abc2"
    assert resubmitted.revisions[0].revised_at is not None


def test_review_while_revision_requested_is_invalid() -> None:
    world = World()
    submission = world.submit(world.application())
    world.review(submission.id, revision_reason="missing product name")

    with pytest.raises(InvalidStateError):
        world.review(submission.id, feedback="fine")


def test_blank_revision_reason_counts_as_approval() -> None:
    world = World()
    submission = world.submit(world.application())
    assert world.review(submission.id, revision_reason="   ").status is MissionStatus.COMPLETED


def test_review_requires_campaign_owner() -> None:
    world = World()
    submission = world.submit(world.application())

    with pytest.raises(RepositoryForbiddenError):
        world.review(submission.id, caller_id="client-2", feedback="good")
    with pytest.raises(RepositoryNotFoundError):
        world.review("missing", feedback="good")


def test_history_and_statistics() -> None:
    world = World()
    completed = world.submit(world.application(user_id="5"))
    world.review(completed.id, feedback="good")
    revising = world.submit(world.application(user_id="6"), caller_id="6")
    world.review(revising.id, revision_reason="reshoot")
    world.submit(world.application(user_id="7"), caller_id="7")

    assert [row.id for row in asyncio.run(world.missions.history_for("5"))] == [completed.id]
    campaign_history = asyncio.run(world.missions.history_for_campaign(campaign_id="42", client_id="client-1"))
    assert len(campaign_history) == 3

    stats = asyncio.run(world.missions.statistics_for_campaign(campaign_id="42", client_id="client-1"))
    assert stats == {"total": 3, "completed": 1, "pending_review": 1, "revision_requested": 1}

    with pytest.raises(RepositoryForbiddenError):
        asyncio.run(world.missions.history_for_campaign(campaign_id="42", client_id="client-2"))
