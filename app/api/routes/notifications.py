from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps import get_dispatcher
from app.api.errors import require_actor, require_scopes, to_http_exception
from app.core.security import get_human_principal, get_machine_principal
from app.schemas.notifications import (
    MarkReadRequest,
    MarkReadResponse,
    NotificationDispatchRequest,
    NotificationOut,
    NotificationSummaryOut,
    ReadFilter,
)
from app.services.dispatcher import NotificationDispatcher, render_notification
from app.services.errors import RepositoryError
from app.services.repository import get_repository

router = APIRouter()


@router.get("", response_model=list[NotificationOut])
async def list_notifications(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    read_filter: ReadFilter = Query(default="all"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> list[NotificationOut]:
    require_scopes(principal, {"notifications:read"})
    user_id = require_actor(principal)

    try:
        rows = await repository.list_notifications(
            user_id=user_id,
            read_filter=read_filter,
            limit=limit,
            offset=offset,
        )
    except RepositoryError as exc:
        raise to_http_exception(exc) from exc

    return [NotificationOut.model_validate(row) for row in rows]


@router.get("/summary", response_model=NotificationSummaryOut)
async def notification_summary(
    principal=Depends(get_human_principal),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> NotificationSummaryOut:
    require_scopes(principal, {"notifications:read"})
    user_id = require_actor(principal)

    try:
        summary = await dispatcher.summary(user_id)
    except RepositoryError as exc:
        raise to_http_exception(exc) from exc

    return NotificationSummaryOut(**summary)


@router.post("/read", response_model=MarkReadResponse)
async def mark_notifications_read(
    payload: MarkReadRequest,
    principal=Depends(get_human_principal),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> MarkReadResponse:
    require_scopes(principal, {"notifications:read"})
    user_id = require_actor(principal)

    try:
        updated = await dispatcher.mark_read(user_id=user_id, notification_ids=payload.notification_ids)
    except RepositoryError as exc:
        raise to_http_exception(exc) from exc

    return MarkReadResponse(updated=updated)


@router.get("/{notification_id}", response_model=NotificationOut)
async def get_notification(
    notification_id: str,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> NotificationOut:
    require_scopes(principal, {"notifications:read"})
    user_id = require_actor(principal)

    try:
        row = await repository.get_notification(user_id=user_id, notification_id=notification_id)
    except RepositoryError as exc:
        raise to_http_exception(exc) from exc

    return NotificationOut.model_validate(row)


@router.post("", response_model=NotificationOut, status_code=status.HTTP_201_CREATED)
async def dispatch_notification(
    payload: NotificationDispatchRequest,
    principal=Depends(get_machine_principal),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> NotificationOut:
    require_scopes(principal, {"notifications:write"})

    explicit = {
        key: value
        for key, value in (("title", payload.title), ("message", payload.message))
        if value is not None
    }
    if len(explicit) == 2:
        title, message = payload.title, payload.message
    else:
        try:
            title, message = render_notification(payload.type, **{**payload.context, **explicit})
        except KeyError as exc:
            raise HTTPException(status_code=422, detail=f"missing template context: {exc.args[0]}") from exc
        title = explicit.get("title", title)
        message = explicit.get("message", message)

    try:
        notification = await dispatcher.dispatch(
            recipient_id=payload.recipient_id,
            notification_type=payload.type,
            title=title,
            message=message,
            related_entity_id=payload.related_entity_id,
            related_entity_type=payload.related_entity_type,
        )
    except RepositoryError as exc:
        raise to_http_exception(exc) from exc

    return NotificationOut.model_validate(notification)
