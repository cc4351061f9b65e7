from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.services.records import MissionStatus


class RevisionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    revision_number: int
    requested_by: str
    revision_reason: str
    requested_at: datetime
    revised_url: str | None = None
    revised_at: datetime | None = None


class MissionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    application_id: str
    user_id: str
    campaign_id: str
    status: MissionStatus
    submission_url: str
    submitted_at: datetime
    reviewed_at: datetime | None = None
    client_feedback: str | None = None
    revisions: list[RevisionOut] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class MissionSubmitRequest(BaseModel):
    submission_url: str = Field(min_length=1, max_length=2048)


class MissionReviewRequest(BaseModel):
    client_feedback: str | None = Field(default=None, max_length=2000)
    revision_reason: str | None = Field(default=None, max_length=2000)


class MissionStatisticsOut(BaseModel):
    total: int
    completed: int
    pending_review: int
    revision_requested: int
