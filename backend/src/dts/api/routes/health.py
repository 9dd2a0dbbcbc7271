"""
Health check endpoint.

Provides system health status for monitoring and load balancers.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from dts import __version__
from dts.api.dependencies import get_services
from dts.api.schemas import HealthResponse
from dts.services import LedgerServices

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    services: Annotated[LedgerServices, Depends(get_services)],
) -> HealthResponse:
    """
    Check system health.

    Returns status of core components for monitoring dashboards
    and load balancer health checks.
    """
    return HealthResponse(
        status="healthy" if services.store.is_open else "degraded",
        version=__version__,
        database="connected" if services.store.is_open else "closed",
        receiver_assignment=services.engine.assigner.name,
    )
