from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from app.services.records import NotificationDraft, NotificationRecord, NotificationType
from app.services.registry import NOTIFICATION_EVENT, SUMMARY_EVENT, ConnectionRegistry, Frame

logger = logging.getLogger(__name__)

_TEMPLATES: dict[NotificationType, tuple[str, str]] = {
    NotificationType.CAMPAIGN_APPROVED: (
        "Application approved",
        "Your application for '{campaign_title}' was approved.",
    ),
    NotificationType.CAMPAIGN_REJECTED: (
        "Application not selected",
        "Your application for '{campaign_title}' was not selected.",
    ),
    NotificationType.CAMPAIGN_APPLICATION_RECEIVED: (
        "Application received",
        "Your application for '{campaign_title}' was received and is awaiting selection.",
    ),
    NotificationType.MISSION_SUBMITTED: (
        "Mission submitted",
        "A mission for '{campaign_title}' was submitted and is ready for review.",
    ),
    NotificationType.MISSION_REVISION_REQUESTED: (
        "Revision requested",
        "A revision was requested for your mission in '{campaign_title}': {revision_reason}",
    ),
    NotificationType.MISSION_APPROVED: (
        "Mission approved",
        "Your mission for '{campaign_title}' was approved.",
    ),
    NotificationType.SYSTEM_NOTICE: (
        "{title}",
        "{message}",
    ),
}

_missing_templates = set(NotificationType) - set(_TEMPLATES)
if _missing_templates:
    raise RuntimeError(f"notification types without a template: {sorted(item.value for item in _missing_templates)}")


def render_notification(notification_type: NotificationType, /, **context: Any) -> tuple[str, str]:
    """Return ``(title, message)`` for a notification type.

    ``comment`` is appended to the message when given and non-blank.
    Raises ``KeyError`` when the template needs a context key that is missing.
    """
    title_template, message_template = _TEMPLATES[notification_type]
    title = title_template.format(**context)
    message = message_template.format(**context)
    comment = context.get("comment")
    if isinstance(comment, str) and comment.strip():
        message = f"{message}\n{comment.strip()}"
    return title, message


def notification_payload(notification: NotificationRecord) -> dict[str, Any]:
    return {
        "id": notification.id,
        "type": notification.type.value,
        "title": notification.title,
        "message": notification.message,
        "related_entity_id": notification.related_entity_id,
        "related_entity_type": notification.related_entity_type,
        "is_read": notification.is_read,
        "created_at": notification.created_at.isoformat(),
    }


class NotificationDispatcher:
    """Persists notifications, then pushes them to a live stream when one exists.

    Persistence errors propagate. Push is best-effort: the pull API stays
    authoritative, so every delivery error is logged and dropped.
    """

    def __init__(self, repository: Any, registry: ConnectionRegistry) -> None:
        self.repository = repository
        self.registry = registry

    async def dispatch(
        self,
        *,
        recipient_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        related_entity_id: str | None = None,
        related_entity_type: str | None = None,
    ) -> NotificationRecord:
        draft = NotificationDraft(
            user_id=recipient_id,
            type=notification_type,
            title=title,
            message=message,
            related_entity_id=related_entity_id,
            related_entity_type=related_entity_type,
        )
        notification = await self.record(self.repository, draft)
        self.publish(notification)
        return notification

    async def record(self, repository: Any, draft: NotificationDraft) -> NotificationRecord:
        notification = await repository.create_notification(draft=draft)
        logger.info(
            "notification stored id=%s user_id=%s type=%s",
            notification.id,
            notification.user_id,
            notification.type.value,
        )
        return notification

    def publish(self, notification: NotificationRecord) -> bool:
        frame = Frame(
            event=NOTIFICATION_EVENT,
            data=json.dumps(notification_payload(notification)),
            id=notification.id,
        )
        return self._push(notification.user_id, frame)

    async def mark_read(self, *, user_id: str, notification_ids: list[str] | None = None) -> int:
        updated = await self.repository.mark_notifications_read(
            user_id=user_id,
            notification_ids=notification_ids or None,
            now=datetime.now(timezone.utc),
        )
        logger.info("notifications marked read user_id=%s updated=%s", user_id, updated)
        await self.publish_summary(user_id)
        return updated

    async def summary(self, user_id: str) -> dict[str, Any]:
        unread_count = await self.repository.count_unread(user_id=user_id)
        return {"unread_count": unread_count, "connected": self.registry.is_connected(user_id)}

    async def publish_summary(self, user_id: str) -> bool:
        if not self.registry.is_connected(user_id):
            return False
        try:
            summary = await self.summary(user_id)
        except Exception as exc:
            logger.warning("notification summary unavailable user_id=%s: %s", user_id, exc)
            return False
        frame = Frame(event=SUMMARY_EVENT, data=json.dumps(summary))
        return self._push(user_id, frame)

    def _push(self, user_id: str, frame: Frame) -> bool:
        try:
            delivered = self.registry.try_deliver(user_id, frame)
        except Exception as exc:
            logger.warning("notification push failed user_id=%s event=%s: %s", user_id, frame.event, exc)
            return False
        if delivered:
            logger.debug("notification pushed user_id=%s event=%s", user_id, frame.event)
        return delivered
