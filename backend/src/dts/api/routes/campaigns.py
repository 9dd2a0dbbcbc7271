"""
Campaign endpoints.

Listing is open to every authenticated role; creating a campaign is
restricted by the access policy.
"""

from fastapi import APIRouter, status

from dts.api.dependencies import CurrentActor, Engine, Queries
from dts.api.schemas import BalanceResponse, CampaignResponse, CreateCampaignRequest

router = APIRouter(prefix="/campaigns", tags=["campaigns"])


@router.get("", response_model=list[CampaignResponse])
async def list_campaigns(actor: CurrentActor, queries: Queries) -> list[CampaignResponse]:
    return [CampaignResponse.from_domain(c) for c in await queries.list_campaigns()]


@router.post("", response_model=CampaignResponse, status_code=status.HTTP_201_CREATED)
async def create_campaign(
    request: CreateCampaignRequest,
    actor: CurrentActor,
    engine: Engine,
) -> CampaignResponse:
    """Open a campaign (Operator, Admin)."""
    campaign = await engine.create_campaign(
        actor,
        title=request.title,
        description=request.description,
        end_date=request.end_date,
        start_date=request.start_date,
    )
    return CampaignResponse.from_domain(campaign)


@router.get("/{campaign_id}", response_model=CampaignResponse)
async def get_campaign(campaign_id: int, actor: CurrentActor, queries: Queries) -> CampaignResponse:
    return CampaignResponse.from_domain(await queries.get_campaign(campaign_id))


@router.get("/{campaign_id}/balance", response_model=BalanceResponse)
async def get_campaign_balance(campaign_id: int, actor: CurrentActor, queries: Queries) -> BalanceResponse:
    """
    Campaign balance, cached and recomputed from donation and disbursement history.
    """
    return BalanceResponse.from_domain(await queries.campaign_balance(campaign_id))
