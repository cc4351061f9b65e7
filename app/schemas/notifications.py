from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from app.services.records import NotificationType

ReadFilter = Literal["all", "unread", "read"]


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: NotificationType
    title: str
    message: str
    related_entity_id: str | None = None
    related_entity_type: str | None = None
    is_read: bool
    created_at: datetime
    read_at: datetime | None = None


class NotificationSummaryOut(BaseModel):
    unread_count: int
    connected: bool


class MarkReadRequest(BaseModel):
    notification_ids: list[str] | None = Field(
        default=None,
        description="Ids to mark read; omitted or empty marks every unread notification.",
    )


class MarkReadResponse(BaseModel):
    updated: int


class NotificationDispatchRequest(BaseModel):
    recipient_id: str = Field(min_length=1)
    type: NotificationType
    title: str | None = Field(default=None, min_length=1, max_length=200)
    message: str | None = Field(default=None, min_length=1)
    context: dict[str, str] = Field(default_factory=dict)
    related_entity_id: str | None = None
    related_entity_type: str | None = None
