"""
Receiver endpoints.
"""

from fastapi import APIRouter, status

from dts.api.dependencies import CurrentActor, Engine, Queries
from dts.api.schemas import CreateReceiverRequest, ReceiverResponse

router = APIRouter(prefix="/receivers", tags=["receivers"])


@router.get("", response_model=list[ReceiverResponse])
async def list_receivers(actor: CurrentActor, queries: Queries) -> list[ReceiverResponse]:
    return [ReceiverResponse.from_domain(r) for r in await queries.list_receivers()]


@router.post("", response_model=ReceiverResponse, status_code=status.HTTP_201_CREATED)
async def create_receiver(
    request: CreateReceiverRequest,
    actor: CurrentActor,
    engine: Engine,
) -> ReceiverResponse:
    """Register a receiver (Accountant, Admin)."""
    receiver = await engine.create_receiver(
        actor,
        name=request.name,
        category=request.category,
        payment_destination=request.payment_destination,
    )
    return ReceiverResponse.from_domain(receiver)
