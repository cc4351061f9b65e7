from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone

from opentelemetry import trace

from app.services.dispatcher import NotificationDispatcher, render_notification
from app.services.errors import (
    InvalidSubmissionPeriodError,
    RepositoryForbiddenError,
    RepositoryValidationError,
)
from app.services.progress import in_submission_period
from app.services.records import (
    ApplicationStatus,
    CampaignRecord,
    MissionStatus,
    NotificationDraft,
    NotificationType,
    RelatedEntityType,
    SubmissionRecord,
)
from app.services.repository import Repository
from app.services.transitions import normalize_revision_reason

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class MissionLifecycle:
    """Mission submission and client review for approved applications.

    Status is derived from the submission row: COMPLETED once reviewed,
    REVISION_REQUESTED while the latest revision is unanswered, SUBMITTED
    otherwise.
    """

    def __init__(self, repository: Repository, dispatcher: NotificationDispatcher) -> None:
        self.repository = repository
        self.dispatcher = dispatcher

    async def submit(
        self,
        *,
        application_id: str,
        caller_id: str,
        submission_url: str,
        now: datetime | None = None,
    ) -> SubmissionRecord:
        with tracer.start_as_current_span("missions.submit") as span:
            span.set_attribute("application.id", application_id)
            url = submission_url.strip()
            if not url:
                raise RepositoryValidationError("submission_url must not be blank")

            current = now or datetime.now(timezone.utc)
            application = await self.repository.get_application(application_id)
            if application.user_id != caller_id:
                raise RepositoryForbiddenError("only the applicant can submit this mission")
            if application.status is not ApplicationStatus.APPROVED:
                raise RepositoryForbiddenError("mission submission requires an approved application")

            campaign = await self.repository.get_campaign(application.campaign_id)
            if not in_submission_period(campaign, current.date()):
                raise InvalidSubmissionPeriodError("outside the mission submission period")

            title, message = render_notification(
                NotificationType.MISSION_SUBMITTED,
                campaign_title=campaign.title,
            )
            async with self.repository.transaction() as tx:
                submission = await tx.save_submission(
                    application_id=application_id,
                    submission_url=url,
                    now=current,
                )
                notification = await self.dispatcher.record(
                    tx,
                    NotificationDraft(
                        user_id=campaign.owner_id,
                        type=NotificationType.MISSION_SUBMITTED,
                        title=title,
                        message=message,
                        related_entity_id=submission.id,
                        related_entity_type=RelatedEntityType.MISSION.value,
                    ),
                )

            span.set_attribute("mission.id", submission.id)
            logger.info(
                "mission submitted id=%s application_id=%s revisions=%s",
                submission.id,
                application_id,
                len(submission.revisions),
            )
            self.dispatcher.publish(notification)
            return submission

    async def review(
        self,
        *,
        submission_id: str,
        caller_id: str,
        feedback: str | None = None,
        revision_reason: str | None = None,
        now: datetime | None = None,
    ) -> SubmissionRecord:
        with tracer.start_as_current_span("missions.review") as span:
            span.set_attribute("mission.id", submission_id)
            current = now or datetime.now(timezone.utc)
            reason = normalize_revision_reason(revision_reason)

            existing = await self.repository.get_submission(submission_id)
            campaign = await self.repository.get_campaign(existing.campaign_id)
            self._require_owner(campaign, caller_id)

            if reason is not None:
                notification_type = NotificationType.MISSION_REVISION_REQUESTED
                title, message = render_notification(
                    notification_type,
                    campaign_title=campaign.title,
                    revision_reason=reason,
                )
            else:
                notification_type = NotificationType.MISSION_APPROVED
                title, message = render_notification(
                    notification_type,
                    campaign_title=campaign.title,
                    comment=feedback,
                )

            async with self.repository.transaction() as tx:
                submission = await tx.review_submission(
                    submission_id=submission_id,
                    reviewer_id=caller_id,
                    feedback=feedback,
                    revision_reason=reason,
                    now=current,
                )
                notification = await self.dispatcher.record(
                    tx,
                    NotificationDraft(
                        user_id=submission.user_id,
                        type=notification_type,
                        title=title,
                        message=message,
                        related_entity_id=submission.id,
                        related_entity_type=RelatedEntityType.MISSION.value,
                    ),
                )

            span.set_attribute("mission.status", submission.status.value)
            logger.info("mission reviewed id=%s status=%s", submission.id, submission.status.value)
            self.dispatcher.publish(notification)
            return submission

    async def history_for(self, user_id: str) -> list[SubmissionRecord]:
        return await self.repository.list_submissions_for_user(user_id=user_id)

    async def history_for_campaign(self, *, campaign_id: str, client_id: str) -> list[SubmissionRecord]:
        campaign = await self.repository.get_campaign(campaign_id)
        self._require_owner(campaign, client_id)
        return await self.repository.list_submissions_for_campaign(campaign_id=campaign_id)

    async def statistics_for_campaign(self, *, campaign_id: str, client_id: str) -> dict[str, int]:
        submissions = await self.history_for_campaign(campaign_id=campaign_id, client_id=client_id)
        counts = Counter(submission.status for submission in submissions)
        return {
            "total": len(submissions),
            "completed": counts[MissionStatus.COMPLETED],
            "pending_review": counts[MissionStatus.SUBMITTED],
            "revision_requested": counts[MissionStatus.REVISION_REQUESTED],
        }

    @staticmethod
    def _require_owner(campaign: CampaignRecord, caller_id: str) -> None:
        if campaign.owner_id != caller_id:
            raise RepositoryForbiddenError("only the campaign owner can access its missions")
