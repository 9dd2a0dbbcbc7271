"""
Donation endpoints.

Handles recording donations, verifying them and listing them. Donors only
ever see their own donations.
"""

from fastapi import APIRouter, status

from dts.api.dependencies import CurrentActor, Engine, Queries
from dts.api.schemas import (
    AllocationResponse,
    DonationReceiptResponse,
    DonationResponse,
    RecordDonationRequest,
    VerificationResponse,
)
from dts.domain.money import format_amount

router = APIRouter(prefix="/donations", tags=["donations"])


@router.get("", response_model=list[DonationResponse])
async def list_donations(actor: CurrentActor, queries: Queries) -> list[DonationResponse]:
    return [DonationResponse.from_view(v) for v in await queries.list_donations(actor)]


@router.post(
    "",
    response_model=DonationReceiptResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"description": "Campaign not found"},
        409: {"description": "Campaign closed"},
        422: {"description": "Invalid amount"},
    },
)
async def record_donation(
    request: RecordDonationRequest,
    actor: CurrentActor,
    engine: Engine,
) -> DonationReceiptResponse:
    """
    Record a donation by the calling donor.

    The donation starts unverified and gets a pending allocation to a
    receiver chosen by the configured assignment rule.
    """
    receipt = await engine.record_donation(actor, request.campaign_id, request.amount)
    return DonationReceiptResponse(
        donation=DonationResponse.from_domain(receipt.donation),
        allocation=AllocationResponse.from_domain(receipt.allocation),
    )


@router.put(
    "/{donation_id}/verify",
    response_model=VerificationResponse,
    responses={
        404: {"description": "Donation not found"},
        409: {"description": "Donation already verified"},
    },
)
async def verify_donation(donation_id: int, actor: CurrentActor, engine: Engine) -> VerificationResponse:
    """Confirm the donation's funds were received and credit the campaign balance."""
    outcome = await engine.verify_donation(actor, donation_id)
    return VerificationResponse(
        donation=DonationResponse.from_domain(outcome.donation),
        campaign_balance=format_amount(outcome.campaign_balance),
    )
