from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from app.api.deps import get_mission_lifecycle
from app.api.errors import require_actor, require_scopes, to_http_exception
from app.core.security import get_human_principal
from app.schemas.campaigns import CampaignProgressOut
from app.schemas.missions import MissionOut, MissionStatisticsOut
from app.services.errors import RepositoryError, RepositoryForbiddenError
from app.services.missions import MissionLifecycle
from app.services.progress import PROGRESS_MESSAGES, campaign_progress
from app.services.repository import get_repository

router = APIRouter()


@router.get("/{campaign_id}/missions", response_model=list[MissionOut])
async def campaign_mission_history(
    campaign_id: str,
    principal=Depends(get_human_principal),
    lifecycle: MissionLifecycle = Depends(get_mission_lifecycle),
) -> list[MissionOut]:
    require_scopes(principal, {"missions:review"})
    user_id = require_actor(principal)

    try:
        rows = await lifecycle.history_for_campaign(campaign_id=campaign_id, client_id=user_id)
    except RepositoryError as exc:
        raise to_http_exception(exc) from exc

    return [MissionOut.model_validate(row) for row in rows]


@router.get("/{campaign_id}/missions/statistics", response_model=MissionStatisticsOut)
async def campaign_mission_statistics(
    campaign_id: str,
    principal=Depends(get_human_principal),
    lifecycle: MissionLifecycle = Depends(get_mission_lifecycle),
) -> MissionStatisticsOut:
    require_scopes(principal, {"missions:review"})
    user_id = require_actor(principal)

    try:
        stats = await lifecycle.statistics_for_campaign(campaign_id=campaign_id, client_id=user_id)
    except RepositoryError as exc:
        raise to_http_exception(exc) from exc

    return MissionStatisticsOut(**stats)


@router.get("/{campaign_id}/progress", response_model=CampaignProgressOut)
async def campaign_progress_view(
    campaign_id: str,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> CampaignProgressOut:
    require_scopes(principal, {"campaigns:read"})
    user_id = require_actor(principal)

    try:
        campaign = await repository.get_campaign(campaign_id)
        if campaign.owner_id != user_id:
            raise RepositoryForbiddenError("only the campaign owner can view its progress")
        applications = await repository.list_applications_for_campaign(campaign_id=campaign_id)
        submissions = await repository.list_submissions_for_campaign(campaign_id=campaign_id)
    except RepositoryError as exc:
        raise to_http_exception(exc) from exc

    progress = campaign_progress(
        campaign,
        today=datetime.now(timezone.utc).date(),
        applications=applications,
        submissions=submissions,
    )
    return CampaignProgressOut(campaign_id=campaign.id, status=progress, message=PROGRESS_MESSAGES[progress])
