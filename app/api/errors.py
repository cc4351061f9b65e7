from fastapi import HTTPException, status

from app.services.errors import (
    RepositoryConflictError,
    RepositoryError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)

_STATUS_BY_ERROR: list[tuple[type[RepositoryError], int]] = [
    (RepositoryUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (RepositoryNotFoundError, status.HTTP_404_NOT_FOUND),
    (RepositoryForbiddenError, status.HTTP_403_FORBIDDEN),
    (RepositoryConflictError, status.HTTP_409_CONFLICT),
    (RepositoryValidationError, 422),
]


def to_http_exception(exc: RepositoryError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def require_scopes(principal, scopes: set[str]) -> None:
    try:
        principal.require_scopes(scopes)
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


def require_actor(principal) -> str:
    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid human principal")
    return principal.actor_id
