from pydantic import BaseModel

from app.services.progress import CampaignProgress


class CampaignProgressOut(BaseModel):
    campaign_id: str
    status: CampaignProgress
    message: str
