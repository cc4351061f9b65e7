from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


class ApplicationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class MissionStatus(str, Enum):
    NOT_SUBMITTED = "NOT_SUBMITTED"
    SUBMITTED = "SUBMITTED"
    REVISION_REQUESTED = "REVISION_REQUESTED"
    COMPLETED = "COMPLETED"


class CampaignApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class NotificationType(str, Enum):
    CAMPAIGN_APPROVED = "CAMPAIGN_APPROVED"
    CAMPAIGN_REJECTED = "CAMPAIGN_REJECTED"
    CAMPAIGN_APPLICATION_RECEIVED = "CAMPAIGN_APPLICATION_RECEIVED"
    MISSION_SUBMITTED = "MISSION_SUBMITTED"
    MISSION_REVISION_REQUESTED = "MISSION_REVISION_REQUESTED"
    MISSION_APPROVED = "MISSION_APPROVED"
    SYSTEM_NOTICE = "SYSTEM_NOTICE"


class RelatedEntityType(str, Enum):
    CAMPAIGN = "CAMPAIGN"
    APPLICATION = "APPLICATION"
    MISSION = "MISSION"


@dataclass(slots=True)
class CampaignRecord:
    id: str
    owner_id: str
    title: str
    approval_status: CampaignApprovalStatus
    is_always_open: bool = False
    recruitment_start_date: date | None = None
    recruitment_end_date: date | None = None
    mission_start_date: date | None = None
    mission_deadline_date: date | None = None
    max_applicants: int | None = None


@dataclass(slots=True)
class ApplicationRecord:
    id: str
    user_id: str
    campaign_id: str
    status: ApplicationStatus
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class RevisionRecord:
    id: str
    revision_number: int
    requested_by: str
    revision_reason: str
    requested_at: datetime
    revised_url: str | None = None
    revised_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.revised_at is None


@dataclass(slots=True)
class SubmissionRecord:
    id: str
    application_id: str
    user_id: str
    campaign_id: str
    submission_url: str
    submitted_at: datetime
    created_at: datetime
    updated_at: datetime
    reviewed_at: datetime | None = None
    client_feedback: str | None = None
    revisions: list[RevisionRecord] = field(default_factory=list)

    @property
    def status(self) -> MissionStatus:
        if self.reviewed_at is not None:
            return MissionStatus.COMPLETED
        if self.revisions and self.revisions[-1].is_open:
            return MissionStatus.REVISION_REQUESTED
        return MissionStatus.SUBMITTED


@dataclass(slots=True)
class NotificationDraft:
    user_id: str
    type: NotificationType
    title: str
    message: str
    related_entity_id: str | None = None
    related_entity_type: str | None = None


@dataclass(slots=True)
class NotificationRecord:
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    related_entity_id: str | None
    related_entity_type: str | None
    is_read: bool
    created_at: datetime
    read_at: datetime | None = None
