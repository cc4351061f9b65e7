"""Lifecycle rules shared by every repository implementation.

Repositories call these while holding the row lock (or, in memory, without
yielding to the event loop) so the check and the write form one unit.
"""

from __future__ import annotations

from app.services.errors import InvalidStateError, RepositoryValidationError
from app.services.records import ApplicationStatus, MissionStatus, SubmissionRecord

SELECTION_OUTCOMES = {ApplicationStatus.APPROVED, ApplicationStatus.REJECTED}
CANCELLABLE_APPLICATION_STATUSES = {ApplicationStatus.PENDING, ApplicationStatus.REJECTED}


def validate_application_transition(*, from_status: ApplicationStatus, to_status: ApplicationStatus) -> None:
    if to_status not in SELECTION_OUTCOMES:
        raise RepositoryValidationError(f"invalid selection outcome: {to_status.value}")
    if from_status is not ApplicationStatus.PENDING:
        raise InvalidStateError(f"invalid application transition: {from_status.value} -> {to_status.value}")


def validate_application_cancel(status: ApplicationStatus) -> None:
    if status not in CANCELLABLE_APPLICATION_STATUSES:
        raise InvalidStateError(f"cannot cancel application in status {status.value}")


def mission_status(submission: SubmissionRecord | None) -> MissionStatus:
    if submission is None:
        return MissionStatus.NOT_SUBMITTED
    return submission.status


def validate_mission_submit(submission: SubmissionRecord | None) -> MissionStatus:
    """Return the state the submit starts from; only first submissions and resubmissions pass."""
    current = mission_status(submission)
    if current is MissionStatus.COMPLETED:
        raise InvalidStateError("mission already completed")
    if current is MissionStatus.SUBMITTED:
        raise InvalidStateError("mission already submitted and awaiting review")
    return current


def validate_mission_review(submission: SubmissionRecord) -> None:
    current = submission.status
    if current is MissionStatus.COMPLETED:
        raise InvalidStateError("mission already completed")
    if current is MissionStatus.REVISION_REQUESTED:
        raise InvalidStateError("revision requested; waiting for resubmission")


def normalize_revision_reason(revision_reason: str | None) -> str | None:
    if revision_reason is None:
        return None
    stripped = revision_reason.strip()
    return stripped or None
