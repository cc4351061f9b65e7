from fastapi import APIRouter, Depends, status

from app.api.deps import get_mission_lifecycle
from app.api.errors import require_actor, require_scopes, to_http_exception
from app.core.security import get_human_principal
from app.schemas.missions import MissionOut, MissionReviewRequest, MissionSubmitRequest
from app.services.errors import RepositoryError
from app.services.missions import MissionLifecycle

router = APIRouter()


@router.post(
    "/applications/{application_id}/mission",
    response_model=MissionOut,
    status_code=status.HTTP_201_CREATED,
)
async def submit_mission(
    application_id: str,
    payload: MissionSubmitRequest,
    principal=Depends(get_human_principal),
    lifecycle: MissionLifecycle = Depends(get_mission_lifecycle),
) -> MissionOut:
    require_scopes(principal, {"missions:write"})
    user_id = require_actor(principal)

    try:
        submission = await lifecycle.submit(
            application_id=application_id,
            caller_id=user_id,
            submission_url=payload.submission_url,
        )
    except RepositoryError as exc:
        raise to_http_exception(exc) from exc

    return MissionOut.model_validate(submission)


@router.post("/missions/{submission_id}/review", response_model=MissionOut)
async def review_mission(
    submission_id: str,
    payload: MissionReviewRequest,
    principal=Depends(get_human_principal),
    lifecycle: MissionLifecycle = Depends(get_mission_lifecycle),
) -> MissionOut:
    require_scopes(principal, {"missions:review"})
    user_id = require_actor(principal)

    try:
        submission = await lifecycle.review(
            submission_id=submission_id,
            caller_id=user_id,
            feedback=payload.client_feedback,
            revision_reason=payload.revision_reason,
        )
    except RepositoryError as exc:
        raise to_http_exception(exc) from exc

    return MissionOut.model_validate(submission)


@router.get("/missions", response_model=list[MissionOut])
async def my_mission_history(
    principal=Depends(get_human_principal),
    lifecycle: MissionLifecycle = Depends(get_mission_lifecycle),
) -> list[MissionOut]:
    user_id = require_actor(principal)

    try:
        rows = await lifecycle.history_for(user_id)
    except RepositoryError as exc:
        raise to_http_exception(exc) from exc

    return [MissionOut.model_validate(row) for row in rows]
