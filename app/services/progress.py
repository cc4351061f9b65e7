"""Campaign progress as seen by its owner, derived on read and never stored."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from enum import Enum

from app.services.records import (
    ApplicationRecord,
    ApplicationStatus,
    CampaignApprovalStatus,
    CampaignRecord,
    MissionStatus,
    SubmissionRecord,
)


class CampaignProgress(str, Enum):
    ALWAYS_OPEN = "ALWAYS_OPEN"
    RECRUITING = "RECRUITING"
    RECRUITMENT_COMPLETED = "RECRUITMENT_COMPLETED"
    SELECTION_COMPLETED = "SELECTION_COMPLETED"
    MISSION_IN_PROGRESS = "MISSION_IN_PROGRESS"
    CONTENT_REVIEW_PENDING = "CONTENT_REVIEW_PENDING"


PROGRESS_MESSAGES: dict[CampaignProgress, str] = {
    CampaignProgress.ALWAYS_OPEN: "Campaign accepts applications at any time.",
    CampaignProgress.RECRUITING: "Recruiting influencers.",
    CampaignProgress.RECRUITMENT_COMPLETED: "Recruitment closed; select influencers.",
    CampaignProgress.SELECTION_COMPLETED: "Selection done; waiting for the mission period.",
    CampaignProgress.MISSION_IN_PROGRESS: "Mission period in progress.",
    CampaignProgress.CONTENT_REVIEW_PENDING: "Submitted content is waiting for review.",
}


def within(today: date, start: date | None, end: date | None) -> bool:
    """Inclusive date window; a missing bound is open."""
    if start is not None and today < start:
        return False
    if end is not None and today > end:
        return False
    return True


def is_recruiting(campaign: CampaignRecord, today: date) -> bool:
    if campaign.approval_status is not CampaignApprovalStatus.APPROVED:
        return False
    if campaign.is_always_open:
        return True
    return within(today, campaign.recruitment_start_date, campaign.recruitment_end_date)


def in_submission_period(campaign: CampaignRecord, today: date) -> bool:
    return within(today, campaign.mission_start_date, campaign.mission_deadline_date)


def campaign_progress(
    campaign: CampaignRecord,
    *,
    today: date,
    applications: Iterable[ApplicationRecord],
    submissions: Iterable[SubmissionRecord],
) -> CampaignProgress:
    if campaign.is_always_open:
        return CampaignProgress.ALWAYS_OPEN
    if campaign.recruitment_end_date is None or today <= campaign.recruitment_end_date:
        return CampaignProgress.RECRUITING

    statuses = [application.status for application in applications]
    if ApplicationStatus.PENDING in statuses or ApplicationStatus.APPROVED not in statuses:
        return CampaignProgress.RECRUITMENT_COMPLETED
    if campaign.mission_start_date is not None and today < campaign.mission_start_date:
        return CampaignProgress.SELECTION_COMPLETED
    if any(submission.status is MissionStatus.SUBMITTED for submission in submissions):
        return CampaignProgress.CONTENT_REVIEW_PENDING
    return CampaignProgress.MISSION_IN_PROGRESS
