import json
from collections.abc import AsyncIterator
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from app.api.deps import get_dispatcher, get_registry
from app.api.errors import require_actor, require_scopes
from app.core.config import Settings, get_settings
from app.core.security import get_human_principal
from app.schemas.connections import ConnectionStatusOut, DisconnectOut
from app.services.dispatcher import NotificationDispatcher
from app.services.registry import CONNECT_EVENT, ConnectionRegistry, Frame, QueueEventStream

router = APIRouter()


@router.get("/connect")
async def connect(
    principal=Depends(get_human_principal),
    registry: ConnectionRegistry = Depends(get_registry),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    require_scopes(principal, {"notifications:read"})
    user_id = require_actor(principal)

    return StreamingResponse(
        stream_events(user_id, registry=registry, dispatcher=dispatcher, settings=settings),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


async def stream_events(
    user_id: str,
    *,
    registry: ConnectionRegistry,
    dispatcher: NotificationDispatcher,
    settings: Settings,
) -> AsyncIterator[str]:
    """Encoded frames for one client; the connection exists only while the body is being sent."""
    stream = QueueEventStream(max_size=settings.sse_queue_max_size)
    connection = registry.register(user_id, stream)
    try:
        stream.send(
            Frame(
                event=CONNECT_EVENT,
                data=json.dumps(
                    {
                        "user_id": user_id,
                        "connected_at": datetime.now(timezone.utc).isoformat(),
                    }
                ),
            )
        )
        await dispatcher.publish_summary(user_id)
        async for chunk in stream.iter_frames(
            timeout_seconds=settings.sse_connection_timeout_seconds,
            poll_seconds=settings.sse_poll_seconds,
        ):
            yield chunk
    finally:
        registry.unregister(user_id, connection)


@router.get("/status", response_model=ConnectionStatusOut)
async def connection_status(
    principal=Depends(get_human_principal),
    registry: ConnectionRegistry = Depends(get_registry),
) -> ConnectionStatusOut:
    user_id = require_actor(principal)
    return ConnectionStatusOut(
        user_id=user_id,
        connected=registry.is_connected(user_id),
        total_connections=registry.count(),
    )


@router.post("/disconnect", response_model=DisconnectOut)
async def disconnect(
    principal=Depends(get_human_principal),
    registry: ConnectionRegistry = Depends(get_registry),
) -> DisconnectOut:
    user_id = require_actor(principal)
    return DisconnectOut(disconnected=registry.unregister(user_id))
