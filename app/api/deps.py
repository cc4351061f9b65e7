from fastapi import Depends, Request

from app.services.applications import ApplicationLifecycle
from app.services.dispatcher import NotificationDispatcher
from app.services.missions import MissionLifecycle
from app.services.registry import ConnectionRegistry
from app.services.repository import get_repository


def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.registry


def get_dispatcher(
    repository=Depends(get_repository),
    registry: ConnectionRegistry = Depends(get_registry),
) -> NotificationDispatcher:
    return NotificationDispatcher(repository, registry)


def get_application_lifecycle(
    repository=Depends(get_repository),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ApplicationLifecycle:
    return ApplicationLifecycle(repository, dispatcher)


def get_mission_lifecycle(
    repository=Depends(get_repository),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> MissionLifecycle:
    return MissionLifecycle(repository, dispatcher)
