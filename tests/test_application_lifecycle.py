from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone

import pytest

from app.services.applications import ApplicationLifecycle
from app.services.dispatcher import NotificationDispatcher
from app.services.errors import (
    CampaignFullError,
    CampaignNotOpenError,
    DuplicateApplicationError,
    InvalidStateError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryValidationError,
)
from app.services.records import (
    ApplicationStatus,
    CampaignApprovalStatus,
    CampaignRecord,
    NotificationType,
)
from app.services.registry import ConnectionRegistry, Frame
from app.services.store import InMemoryRepository

NOW = datetime(2026, 5, 10, 12, 0, tzinfo=timezone.utc)


class RecordingStream:
    def __init__(self) -> None:
        self.frames: list[Frame] = []
        self.closed = False

    def send(self, frame: Frame) -> None:
        self.frames.append(frame)

    def close(self) -> None:
        self.closed = True


def _campaign(campaign_id: str = "42", **overrides) -> CampaignRecord:
    values = {
        "id": campaign_id,
        "owner_id": "client-1",
        "title": "Summer Glow",
        "approval_status": CampaignApprovalStatus.APPROVED,
        "recruitment_start_date": date(2026, 5, 1),
        "recruitment_end_date": date(2026, 5, 20),
        "mission_start_date": date(2026, 5, 25),
        "mission_deadline_date": date(2026, 6, 10),
    }
    values.update(overrides)
    return CampaignRecord(**values)


def _lifecycle(*campaigns: CampaignRecord) -> tuple[ApplicationLifecycle, InMemoryRepository, ConnectionRegistry]:
    repository = InMemoryRepository()
    for campaign in campaigns or (_campaign(),):
        repository.add_campaign(campaign)
    registry = ConnectionRegistry()
    lifecycle = ApplicationLifecycle(repository, NotificationDispatcher(repository, registry))
    return lifecycle, repository, registry


def _apply(lifecycle: ApplicationLifecycle, user_id: str = "5", campaign_id: str = "42", role: str = "influencer"):
    return asyncio.run(lifecycle.apply(user_id=user_id, campaign_id=campaign_id, role=role, now=NOW))


def test_apply_creates_pending_application_and_second_apply_is_duplicate() -> None:
    lifecycle, repository, _ = _lifecycle()

    application = _apply(lifecycle)
    assert application.status is ApplicationStatus.PENDING
    assert application.user_id == "5"
    assert application.campaign_id == "42"

    with pytest.raises(DuplicateApplicationError):
        _apply(lifecycle)
    assert len(repository.applications) == 1


def test_apply_notifies_applicant() -> None:
    lifecycle, repository, _ = _lifecycle()
    application = _apply(lifecycle)

    notifications = asyncio.run(repository.list_notifications(user_id="5"))
    assert [row.type for row in notifications] == [NotificationType.CAMPAIGN_APPLICATION_RECEIVED]
    assert notifications[0].related_entity_id == application.id
    assert "Summer Glow" in notifications[0].message


def test_apply_requires_influencer_role() -> None:
    lifecycle, repository, _ = _lifecycle()
    with pytest.raises(RepositoryForbiddenError):
        _apply(lifecycle, role="client")
    assert repository.applications == {}
    assert repository.notifications == {}


def test_apply_unknown_campaign() -> None:
    lifecycle, _, _ = _lifecycle()
    with pytest.raises(RepositoryNotFoundError):
        _apply(lifecycle, campaign_id="missing")


@pytest.mark.parametrize(
    "overrides",
    [
        {"approval_status": CampaignApprovalStatus.PENDING},
        {"recruitment_end_date": date(2026, 5, 9)},
        {"recruitment_start_date": date(2026, 5, 11)},
    ],
)
def test_apply_rejects_closed_campaigns(overrides: dict) -> None:
    lifecycle, _, _ = _lifecycle(_campaign(**overrides))
    with pytest.raises(CampaignNotOpenError):
        _apply(lifecycle)


def test_always_open_campaign_ignores_recruitment_window() -> None:
    lifecycle, _, _ = _lifecycle(
        _campaign(is_always_open=True, recruitment_start_date=None, recruitment_end_date=date(2026, 1, 1))
    )
    assert _apply(lifecycle).status is ApplicationStatus.PENDING


def test_apply_enforces_capacity() -> None:
    lifecycle, _, _ = _lifecycle(_campaign(max_applicants=1))
    _apply(lifecycle, user_id="5")
    with pytest.raises(CampaignFullError):
        _apply(lifecycle, user_id="6")


def test_concurrent_apply_yields_exactly_one_application() -> None:
    lifecycle, repository, _ = _lifecycle()

    async def scenario():
        return await asyncio.gather(
            *(lifecycle.apply(user_id="5", campaign_id="42", role="influencer", now=NOW) for _ in range(5)),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())
    created = [result for result in results if not isinstance(result, Exception)]
    failures = [result for result in results if isinstance(result, Exception)]
    assert len(created) == 1
    assert all(isinstance(error, (DuplicateApplicationError, CampaignFullError)) for error in failures)
    assert len(repository.applications) == 1
    assert len(repository.notifications) == 1


def test_concurrent_apply_for_last_seat() -> None:
    lifecycle, repository, _ = _lifecycle(_campaign(max_applicants=2))

    async def scenario():
        return await asyncio.gather(
            *(lifecycle.apply(user_id=f"user-{index}", campaign_id="42", role="influencer", now=NOW) for index in range(6)),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())
    assert sum(1 for result in results if isinstance(result, CampaignFullError)) == 4
    assert len(repository.applications) == 2


def test_transition_rejects_and_notifies_connected_owner() -> None:
    lifecycle, repository, registry = _lifecycle()
    application = _apply(lifecycle)
    stream = RecordingStream()
    registry.register("5", stream)

    updated = asyncio.run(
        lifecycle.transition(application_id=application.id, new_status=ApplicationStatus.REJECTED, now=NOW)
    )

    assert updated.status is ApplicationStatus.REJECTED
    latest = asyncio.run(repository.list_notifications(user_id="5", limit=1))[0]
    assert latest.type is NotificationType.CAMPAIGN_REJECTED
    assert latest.related_entity_id == application.id
    assert [frame.event for frame in stream.frames] == ["notification"]
    assert stream.frames[0].id == latest.id


def test_transition_appends_comment() -> None:
    lifecycle, repository, _ = _lifecycle()
    application = _apply(lifecycle)

    asyncio.run(
        lifecycle.transition(
            application_id=application.id,
            new_status=ApplicationStatus.APPROVED,
            comment="Welcome aboard",
        )
    )

    latest = asyncio.run(repository.list_notifications(user_id="5", limit=1))[0]
    assert latest.type is NotificationType.CAMPAIGN_APPROVED
    assert latest.message.endswith("Welcome aboard")


def test_transition_only_from_pending() -> None:
    lifecycle, repository, _ = _lifecycle()
    application = _apply(lifecycle)
    asyncio.run(lifecycle.transition(application_id=application.id, new_status=ApplicationStatus.APPROVED))
    before = len(repository.notifications)

    with pytest.raises(InvalidStateError):
        asyncio.run(lifecycle.transition(application_id=application.id, new_status=ApplicationStatus.REJECTED))
    assert len(repository.notifications) == before
    assert repository.applications[application.id].status is ApplicationStatus.APPROVED


def test_transition_to_pending_is_invalid() -> None:
    lifecycle, _, _ = _lifecycle()
    application = _apply(lifecycle)
    with pytest.raises(RepositoryValidationError):
        asyncio.run(lifecycle.transition(application_id=application.id, new_status=ApplicationStatus.PENDING))


def test_transition_unknown_application() -> None:
    lifecycle, _, _ = _lifecycle()
    with pytest.raises(RepositoryNotFoundError):
        asyncio.run(lifecycle.transition(application_id="missing", new_status=ApplicationStatus.APPROVED))


def test_concurrent_transitions_apply_once() -> None:
    lifecycle, repository, _ = _lifecycle()
    application = _apply(lifecycle)

    async def scenario():
        return await asyncio.gather(
            lifecycle.transition(application_id=application.id, new_status=ApplicationStatus.APPROVED),
            lifecycle.transition(application_id=application.id, new_status=ApplicationStatus.REJECTED),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())
    assert sum(1 for result in results if isinstance(result, InvalidStateError)) == 1
    outcome_notifications = [
        row for row in repository.notifications.values() if row.type is not NotificationType.CAMPAIGN_APPLICATION_RECEIVED
    ]
    assert len(outcome_notifications) == 1


def test_cancel_rules() -> None:
    lifecycle, repository, _ = _lifecycle()
    pending = _apply(lifecycle, user_id="5")
    approved = _apply(lifecycle, user_id="6")
    asyncio.run(lifecycle.transition(application_id=approved.id, new_status=ApplicationStatus.APPROVED))

    with pytest.raises(RepositoryForbiddenError):
        asyncio.run(lifecycle.cancel(application_id=pending.id, caller_id="6"))
    with pytest.raises(InvalidStateError):
        asyncio.run(lifecycle.cancel(application_id=approved.id, caller_id="6"))
    with pytest.raises(RepositoryNotFoundError):
        asyncio.run(lifecycle.cancel(application_id="missing", caller_id="5"))

    asyncio.run(lifecycle.cancel(application_id=pending.id, caller_id="5"))
    assert pending.id not in repository.applications


def test_rejected_application_must_be_cancelled_before_reapplying() -> None:
    lifecycle, _, _ = _lifecycle()
    application = _apply(lifecycle)
    asyncio.run(lifecycle.transition(application_id=application.id, new_status=ApplicationStatus.REJECTED))

    with pytest.raises(DuplicateApplicationError):
        _apply(lifecycle)

    asyncio.run(lifecycle.cancel(application_id=application.id, caller_id="5"))
    assert _apply(lifecycle).status is ApplicationStatus.PENDING


def test_list_for_user_filters_by_status() -> None:
    lifecycle, _, _ = _lifecycle(_campaign("42"), _campaign("43"))
    first = _apply(lifecycle, campaign_id="42")
    _apply(lifecycle, campaign_id="43")
    asyncio.run(lifecycle.transition(application_id=first.id, new_status=ApplicationStatus.APPROVED))

    approved = asyncio.run(lifecycle.list_for_user(user_id="5", status=ApplicationStatus.APPROVED))
    everything = asyncio.run(lifecycle.list_for_user(user_id="5"))
    assert [row.id for row in approved] == [first.id]
    assert len(everything) == 2
