from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_application_lifecycle
from app.api.errors import require_actor, require_scopes, to_http_exception
from app.core.security import get_human_principal, get_machine_principal
from app.schemas.applications import ApplicationOut, ApplicationTransitionRequest
from app.services.applications import ApplicationLifecycle
from app.services.errors import RepositoryError
from app.services.records import ApplicationStatus

router = APIRouter()


@router.post(
    "/campaigns/{campaign_id}/applications",
    response_model=ApplicationOut,
    status_code=status.HTTP_201_CREATED,
)
async def apply_to_campaign(
    campaign_id: str,
    principal=Depends(get_human_principal),
    lifecycle: ApplicationLifecycle = Depends(get_application_lifecycle),
) -> ApplicationOut:
    require_scopes(principal, {"applications:write"})
    user_id = require_actor(principal)

    try:
        application = await lifecycle.apply(user_id=user_id, campaign_id=campaign_id, role=principal.role)
    except RepositoryError as exc:
        raise to_http_exception(exc) from exc

    return ApplicationOut.model_validate(application)


@router.get("/applications", response_model=list[ApplicationOut])
async def list_my_applications(
    principal=Depends(get_human_principal),
    lifecycle: ApplicationLifecycle = Depends(get_application_lifecycle),
    application_status: ApplicationStatus | None = Query(default=None, alias="status"),
) -> list[ApplicationOut]:
    user_id = require_actor(principal)

    try:
        rows = await lifecycle.list_for_user(user_id=user_id, status=application_status)
    except RepositoryError as exc:
        raise to_http_exception(exc) from exc

    return [ApplicationOut.model_validate(row) for row in rows]


@router.delete("/applications/{application_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_application(
    application_id: str,
    principal=Depends(get_human_principal),
    lifecycle: ApplicationLifecycle = Depends(get_application_lifecycle),
) -> None:
    user_id = require_actor(principal)

    try:
        await lifecycle.cancel(application_id=application_id, caller_id=user_id)
    except RepositoryError as exc:
        raise to_http_exception(exc) from exc


@router.post("/applications/{application_id}/transition", response_model=ApplicationOut)
async def transition_application(
    application_id: str,
    payload: ApplicationTransitionRequest,
    principal=Depends(get_machine_principal),
    lifecycle: ApplicationLifecycle = Depends(get_application_lifecycle),
) -> ApplicationOut:
    require_scopes(principal, {"selection:write"})

    try:
        application = await lifecycle.transition(
            application_id=application_id,
            new_status=ApplicationStatus(payload.status),
            comment=payload.comment,
        )
    except RepositoryError as exc:
        raise to_http_exception(exc) from exc

    return ApplicationOut.model_validate(application)
