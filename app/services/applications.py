from __future__ import annotations

import logging
from datetime import datetime, timezone

from opentelemetry import trace

from app.core.auth import UserRole
from app.services.dispatcher import NotificationDispatcher, render_notification
from app.services.errors import CampaignNotOpenError, RepositoryForbiddenError
from app.services.progress import is_recruiting
from app.services.records import (
    ApplicationRecord,
    ApplicationStatus,
    NotificationDraft,
    NotificationType,
    RelatedEntityType,
)
from app.services.repository import Repository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_OUTCOME_NOTIFICATIONS = {
    ApplicationStatus.APPROVED: NotificationType.CAMPAIGN_APPROVED,
    ApplicationStatus.REJECTED: NotificationType.CAMPAIGN_REJECTED,
}


class ApplicationLifecycle:
    """Apply, cancel and selection outcome for campaign applications."""

    def __init__(self, repository: Repository, dispatcher: NotificationDispatcher) -> None:
        self.repository = repository
        self.dispatcher = dispatcher

    async def apply(
        self,
        *,
        user_id: str,
        campaign_id: str,
        role: str | None,
        now: datetime | None = None,
    ) -> ApplicationRecord:
        with tracer.start_as_current_span("applications.apply") as span:
            span.set_attribute("campaign.id", campaign_id)
            if role != UserRole.INFLUENCER.value:
                raise RepositoryForbiddenError("only influencers can apply to campaigns")

            current = now or datetime.now(timezone.utc)
            campaign = await self.repository.get_campaign(campaign_id)
            if not is_recruiting(campaign, current.date()):
                raise CampaignNotOpenError("campaign is not accepting applications")

            title, message = render_notification(
                NotificationType.CAMPAIGN_APPLICATION_RECEIVED,
                campaign_title=campaign.title,
            )
            async with self.repository.transaction() as tx:
                application = await tx.create_application(
                    user_id=user_id,
                    campaign_id=campaign.id,
                    max_applicants=campaign.max_applicants,
                    now=current,
                )
                notification = await self.dispatcher.record(
                    tx,
                    NotificationDraft(
                        user_id=user_id,
                        type=NotificationType.CAMPAIGN_APPLICATION_RECEIVED,
                        title=title,
                        message=message,
                        related_entity_id=application.id,
                        related_entity_type=RelatedEntityType.APPLICATION.value,
                    ),
                )

            span.set_attribute("application.id", application.id)
            logger.info(
                "application created id=%s campaign_id=%s user_id=%s",
                application.id,
                campaign.id,
                user_id,
            )
            self.dispatcher.publish(notification)
            return application

    async def cancel(self, *, application_id: str, caller_id: str) -> None:
        with tracer.start_as_current_span("applications.cancel") as span:
            span.set_attribute("application.id", application_id)
            await self.repository.delete_application(application_id=application_id, user_id=caller_id)
            logger.info("application cancelled id=%s user_id=%s", application_id, caller_id)

    async def transition(
        self,
        *,
        application_id: str,
        new_status: ApplicationStatus,
        comment: str | None = None,
        now: datetime | None = None,
    ) -> ApplicationRecord:
        with tracer.start_as_current_span("applications.transition") as span:
            span.set_attribute("application.id", application_id)
            span.set_attribute("application.status", new_status.value)
            current = now or datetime.now(timezone.utc)

            existing = await self.repository.get_application(application_id)
            campaign = await self.repository.get_campaign(existing.campaign_id)

            async with self.repository.transaction() as tx:
                application = await tx.update_application_status(
                    application_id=application_id,
                    status=new_status,
                    now=current,
                )
                notification_type = _OUTCOME_NOTIFICATIONS[application.status]
                title, message = render_notification(
                    notification_type,
                    campaign_title=campaign.title,
                    comment=comment,
                )
                notification = await self.dispatcher.record(
                    tx,
                    NotificationDraft(
                        user_id=application.user_id,
                        type=notification_type,
                        title=title,
                        message=message,
                        related_entity_id=application.id,
                        related_entity_type=RelatedEntityType.APPLICATION.value,
                    ),
                )

            logger.info(
                "application transitioned id=%s status=%s user_id=%s",
                application.id,
                application.status.value,
                application.user_id,
            )
            self.dispatcher.publish(notification)
            return application

    async def list_for_user(
        self,
        *,
        user_id: str,
        status: ApplicationStatus | None = None,
    ) -> list[ApplicationRecord]:
        return await self.repository.list_applications_for_user(user_id=user_id, status=status)
