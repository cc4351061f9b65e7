class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition rules."""


class RepositoryForbiddenError(RepositoryError):
    """Raised when an operation is not permitted for the actor."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


class InvalidStateError(RepositoryConflictError):
    """Raised when an operation is not valid for the current lifecycle state."""


class DuplicateApplicationError(RepositoryConflictError):
    """Raised when the user already has an application for the campaign."""


class CampaignFullError(RepositoryConflictError):
    """Raised when the campaign reached its applicant limit."""


class CampaignNotOpenError(RepositoryConflictError):
    """Raised when the campaign is not approved or outside its recruitment window."""


class InvalidSubmissionPeriodError(RepositoryValidationError):
    """Raised when a mission is submitted outside the campaign mission window."""
