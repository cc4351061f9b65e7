from __future__ import annotations

import copy
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from uuid import uuid4

from app.services.errors import (
    CampaignFullError,
    DuplicateApplicationError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
)
from app.services.records import (
    ApplicationRecord,
    ApplicationStatus,
    CampaignRecord,
    MissionStatus,
    NotificationDraft,
    NotificationRecord,
    RevisionRecord,
    SubmissionRecord,
)
from app.services.transitions import (
    validate_application_cancel,
    validate_application_transition,
    validate_mission_review,
    validate_mission_submit,
)


class InMemoryRepository:
    """Process-local repository used when no database is configured and in tests.

    No method awaits between reading and writing, so each call is atomic on the
    event loop; ``transaction()`` restores a snapshot when its block raises.
    Records handed out are copies, callers cannot mutate stored state.
    """

    def __init__(self) -> None:
        self.campaigns: dict[str, CampaignRecord] = {}
        self.applications: dict[str, ApplicationRecord] = {}
        self.submissions: dict[str, SubmissionRecord] = {}
        self.notifications: dict[str, NotificationRecord] = {}
        self._notification_seq = 0

    async def close(self) -> None:
        return None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryRepository]:
        snapshot = copy.deepcopy(
            (self.applications, self.submissions, self.notifications, self._notification_seq)
        )
        try:
            yield self
        except BaseException:
            self.applications, self.submissions, self.notifications, self._notification_seq = snapshot
            raise

    def add_campaign(self, campaign: CampaignRecord) -> CampaignRecord:
        self.campaigns[campaign.id] = campaign
        return campaign

    async def get_campaign(self, campaign_id: str) -> CampaignRecord:
        campaign = self.campaigns.get(campaign_id)
        if campaign is None:
            raise RepositoryNotFoundError("campaign not found")
        return replace(campaign)

    async def get_application(self, application_id: str) -> ApplicationRecord:
        application = self.applications.get(application_id)
        if application is None:
            raise RepositoryNotFoundError("application not found")
        return replace(application)

    async def list_applications_for_user(
        self,
        *,
        user_id: str,
        status: ApplicationStatus | None = None,
    ) -> list[ApplicationRecord]:
        rows = [row for row in self.applications.values() if row.user_id == user_id]
        if status is not None:
            rows = [row for row in rows if row.status is status]
        return [replace(row) for row in sorted(rows, key=lambda row: row.created_at, reverse=True)]

    async def list_applications_for_campaign(self, *, campaign_id: str) -> list[ApplicationRecord]:
        rows = [row for row in self.applications.values() if row.campaign_id == campaign_id]
        return [replace(row) for row in sorted(rows, key=lambda row: row.created_at)]

    async def create_application(
        self,
        *,
        user_id: str,
        campaign_id: str,
        max_applicants: int | None,
        now: datetime,
    ) -> ApplicationRecord:
        existing = [row for row in self.applications.values() if row.campaign_id == campaign_id]
        if any(row.user_id == user_id for row in existing):
            raise DuplicateApplicationError("application already exists for this campaign")
        if max_applicants is not None and len(existing) >= max_applicants:
            raise CampaignFullError("campaign reached its applicant limit")

        application = ApplicationRecord(
            id=str(uuid4()),
            user_id=user_id,
            campaign_id=campaign_id,
            status=ApplicationStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self.applications[application.id] = application
        return replace(application)

    async def delete_application(self, *, application_id: str, user_id: str) -> None:
        application = self.applications.get(application_id)
        if application is None:
            raise RepositoryNotFoundError("application not found")
        if application.user_id != user_id:
            raise RepositoryForbiddenError("only the applicant can cancel this application")
        validate_application_cancel(application.status)
        del self.applications[application_id]

    async def update_application_status(
        self,
        *,
        application_id: str,
        status: ApplicationStatus,
        now: datetime,
    ) -> ApplicationRecord:
        application = self.applications.get(application_id)
        if application is None:
            raise RepositoryNotFoundError("application not found")
        validate_application_transition(from_status=application.status, to_status=status)
        application.status = status
        application.updated_at = now
        return replace(application)

    async def get_submission(self, submission_id: str) -> SubmissionRecord:
        submission = self.submissions.get(submission_id)
        if submission is None:
            raise RepositoryNotFoundError("mission submission not found")
        return copy.deepcopy(submission)

    async def get_submission_for_application(self, application_id: str) -> SubmissionRecord | None:
        submission = self._submission_by_application(application_id)
        return copy.deepcopy(submission) if submission is not None else None

    async def save_submission(
        self,
        *,
        application_id: str,
        submission_url: str,
        now: datetime,
    ) -> SubmissionRecord:
        application = self.applications.get(application_id)
        if application is None:
            raise RepositoryNotFoundError("application not found")

        submission = self._submission_by_application(application_id)
        current = validate_mission_submit(submission)
        if current is MissionStatus.NOT_SUBMITTED:
            submission = SubmissionRecord(
                id=str(uuid4()),
                application_id=application_id,
                user_id=application.user_id,
                campaign_id=application.campaign_id,
                submission_url=submission_url,
                submitted_at=now,
                created_at=now,
                updated_at=now,
            )
            self.submissions[submission.id] = submission
        else:
            open_revision = submission.revisions[-1]
            open_revision.revised_url = submission_url
            open_revision.revised_at = now
            submission.submission_url = submission_url
            submission.submitted_at = now
            submission.updated_at = now
        return copy.deepcopy(submission)

    async def review_submission(
        self,
        *,
        submission_id: str,
        reviewer_id: str,
        feedback: str | None,
        revision_reason: str | None,
        now: datetime,
    ) -> SubmissionRecord:
        submission = self.submissions.get(submission_id)
        if submission is None:
            raise RepositoryNotFoundError("mission submission not found")
        validate_mission_review(submission)

        if revision_reason:
            submission.revisions.append(
                RevisionRecord(
                    id=str(uuid4()),
                    revision_number=len(submission.revisions) + 1,
                    requested_by=reviewer_id,
                    revision_reason=revision_reason,
                    requested_at=now,
                )
            )
        else:
            submission.reviewed_at = now
            submission.client_feedback = feedback
        submission.updated_at = now
        return copy.deepcopy(submission)

    async def list_submissions_for_user(self, *, user_id: str) -> list[SubmissionRecord]:
        rows = [row for row in self.submissions.values() if row.user_id == user_id]
        return [copy.deepcopy(row) for row in sorted(rows, key=lambda row: row.submitted_at, reverse=True)]

    async def list_submissions_for_campaign(self, *, campaign_id: str) -> list[SubmissionRecord]:
        rows = [row for row in self.submissions.values() if row.campaign_id == campaign_id]
        return [copy.deepcopy(row) for row in sorted(rows, key=lambda row: row.submitted_at, reverse=True)]

    async def create_notification(self, *, draft: NotificationDraft, now: datetime | None = None) -> NotificationRecord:
        self._notification_seq += 1
        notification = NotificationRecord(
            id=str(self._notification_seq),
            user_id=draft.user_id,
            type=draft.type,
            title=draft.title,
            message=draft.message,
            related_entity_id=draft.related_entity_id,
            related_entity_type=draft.related_entity_type,
            is_read=False,
            created_at=now or datetime.now(timezone.utc),
        )
        self.notifications[notification.id] = notification
        return replace(notification)

    async def get_notification(self, *, user_id: str, notification_id: str) -> NotificationRecord:
        notification = self.notifications.get(notification_id)
        if notification is None or notification.user_id != user_id:
            raise RepositoryNotFoundError("notification not found")
        return replace(notification)

    async def list_notifications(
        self,
        *,
        user_id: str,
        read_filter: str = "all",
        limit: int = 20,
        offset: int = 0,
    ) -> list[NotificationRecord]:
        rows = [row for row in self.notifications.values() if row.user_id == user_id]
        if read_filter == "unread":
            rows = [row for row in rows if not row.is_read]
        elif read_filter == "read":
            rows = [row for row in rows if row.is_read]
        rows.sort(key=lambda row: (row.created_at, int(row.id)), reverse=True)
        return [replace(row) for row in rows[offset : offset + limit]]

    async def count_unread(self, *, user_id: str) -> int:
        return sum(1 for row in self.notifications.values() if row.user_id == user_id and not row.is_read)

    async def mark_notifications_read(
        self,
        *,
        user_id: str,
        notification_ids: list[str] | None,
        now: datetime,
    ) -> int:
        if notification_ids:
            wanted = set(notification_ids)
            targets = [self.notifications[item] for item in wanted if item in self.notifications]
        else:
            targets = list(self.notifications.values())

        updated = 0
        for notification in targets:
            if notification.user_id != user_id or notification.is_read:
                continue
            notification.is_read = True
            notification.read_at = now
            updated += 1
        return updated

    def _submission_by_application(self, application_id: str) -> SubmissionRecord | None:
        for submission in self.submissions.values():
            if submission.application_id == application_id:
                return submission
        return None
