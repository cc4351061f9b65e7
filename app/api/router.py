from fastapi import APIRouter

from app.api.routes import applications, campaigns, health, missions, notifications, sse

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(sse.router, prefix="/sse", tags=["stream"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
api_router.include_router(applications.router, tags=["applications"])
api_router.include_router(missions.router, tags=["missions"])
api_router.include_router(campaigns.router, prefix="/campaigns", tags=["campaigns"])
