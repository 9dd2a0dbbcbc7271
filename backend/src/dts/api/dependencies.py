"""
Request dependencies shared by all routes.

Authentication is done upstream (gateway or auth service); it forwards the
authenticated identity in the X-Actor-Id, X-Actor-Name and X-Actor-Role
headers, which are turned into an Actor here.
"""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from dts.domain.models import Actor, Role
from dts.services import LedgerServices, LedgerQueries, LifecycleEngine


def get_services(request: Request) -> LedgerServices:
    """Ledger services created by the application lifespan."""
    return request.app.state.ledger


def get_engine(services: Annotated[LedgerServices, Depends(get_services)]) -> LifecycleEngine:
    return services.engine


def get_queries(services: Annotated[LedgerServices, Depends(get_services)]) -> LedgerQueries:
    return services.queries


async def get_actor(
    x_actor_id: Annotated[int | None, Header()] = None,
    x_actor_name: Annotated[str | None, Header()] = None,
    x_actor_role: Annotated[str | None, Header()] = None,
) -> Actor:
    """Build the calling actor from the forwarded identity headers."""
    if x_actor_id is None or not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    try:
        role = Role(x_actor_role)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown role: {x_actor_role}",
        ) from None

    return Actor(id=x_actor_id, username=x_actor_name or f"user-{x_actor_id}", role=role)


CurrentActor = Annotated[Actor, Depends(get_actor)]
Engine = Annotated[LifecycleEngine, Depends(get_engine)]
Queries = Annotated[LedgerQueries, Depends(get_queries)]
