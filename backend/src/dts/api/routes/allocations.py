"""
Allocation endpoints.
"""

from fastapi import APIRouter

from dts.api.dependencies import CurrentActor, Engine, Queries
from dts.api.schemas import AllocationResponse, SetAllocationStatusRequest

router = APIRouter(prefix="/allocations", tags=["allocations"])


@router.get("", response_model=list[AllocationResponse])
async def list_allocations(actor: CurrentActor, queries: Queries) -> list[AllocationResponse]:
    return [AllocationResponse.from_view(v) for v in await queries.list_allocations(actor)]


@router.put(
    "/{allocation_id}/status",
    response_model=AllocationResponse,
    responses={
        404: {"description": "Allocation not found"},
        409: {"description": "Transition not allowed from the current status"},
    },
)
async def set_allocation_status(
    allocation_id: int,
    request: SetAllocationStatusRequest,
    actor: CurrentActor,
    engine: Engine,
) -> AllocationResponse:
    """Approve, reject or revert an allocation (Operator, Accountant, Admin)."""
    allocation = await engine.set_allocation_status(actor, allocation_id, request.status)
    return AllocationResponse.from_domain(allocation)
