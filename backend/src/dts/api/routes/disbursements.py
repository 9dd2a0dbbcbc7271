"""
Disbursement endpoints.

Recording a disbursement only stores a reference to the external payment;
no money is moved by this service.
"""

from fastapi import APIRouter, status

from dts.api.dependencies import CurrentActor, Engine, Queries
from dts.api.schemas import (
    AllocationResponse,
    DisbursementOutcomeResponse,
    DisbursementResponse,
    RecordDisbursementRequest,
)
from dts.domain.money import format_amount

router = APIRouter(prefix="/disbursements", tags=["disbursements"])


@router.get("", response_model=list[DisbursementResponse])
async def list_disbursements(actor: CurrentActor, queries: Queries) -> list[DisbursementResponse]:
    return [DisbursementResponse.from_view(v) for v in await queries.list_disbursements()]


@router.post(
    "",
    response_model=DisbursementOutcomeResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"description": "Allocation not found"},
        409: {"description": "Allocation not approved or campaign balance insufficient"},
        422: {"description": "Amount invalid or does not match the allocation"},
    },
)
async def record_disbursement(
    request: RecordDisbursementRequest,
    actor: CurrentActor,
    engine: Engine,
) -> DisbursementOutcomeResponse:
    """Record the payout of an approved allocation (Accountant, Admin)."""
    outcome = await engine.record_disbursement(
        actor,
        request.allocation_id,
        request.amount,
        request.payment_ref,
    )
    return DisbursementOutcomeResponse(
        disbursement=DisbursementResponse.from_domain(outcome.disbursement),
        allocation=AllocationResponse.from_domain(outcome.allocation),
        new_balance=format_amount(outcome.campaign_balance),
    )
