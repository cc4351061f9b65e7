from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

from app.services.records import ApplicationStatus


class ApplicationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    campaign_id: str
    status: ApplicationStatus
    created_at: datetime
    updated_at: datetime


class ApplicationTransitionRequest(BaseModel):
    status: Literal["APPROVED", "REJECTED"]
    comment: str | None = None
