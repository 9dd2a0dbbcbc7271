"""
Audit endpoints (Auditor, Admin).

Read-only views over the append-only audit log, its hash chain, and the
campaign balance reconciliation.
"""

from datetime import datetime

from fastapi import APIRouter, Query

from dts.api.dependencies import CurrentActor, Queries
from dts.api.schemas import (
    AuditEntryResponse,
    BalanceResponse,
    ChainVerificationResponse,
    ReconciliationResponse,
)
from dts.domain.models import EntityType

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("", response_model=list[AuditEntryResponse])
async def list_audit_entries(
    actor: CurrentActor,
    queries: Queries,
    entity_type: EntityType | None = None,
    entity_id: int | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int | None = Query(default=None, ge=1, le=10_000),
) -> list[AuditEntryResponse]:
    """
    List audit entries in sequence order.

    Filters combine: entity type and id narrow the target, since/until bound
    the timestamp (since inclusive, until exclusive).
    """
    views = await queries.audit_log(
        actor,
        entity_type=entity_type,
        entity_id=entity_id,
        since=since,
        until=until,
        limit=limit,
    )
    return [AuditEntryResponse.from_view(v) for v in views]


@router.get("/verify", response_model=ChainVerificationResponse)
async def verify_audit_chain(actor: CurrentActor, queries: Queries) -> ChainVerificationResponse:
    """Recompute the audit hash chain and report the first broken entry, if any."""
    return ChainVerificationResponse.from_domain(await queries.verify_audit_chain(actor))


@router.get("/reconciliation", response_model=ReconciliationResponse)
async def reconcile_balances(actor: CurrentActor, queries: Queries) -> ReconciliationResponse:
    reports = await queries.reconcile_balances(actor)
    return ReconciliationResponse(
        consistent=all(r.consistent for r in reports),
        campaigns=[BalanceResponse.from_domain(r) for r in reports],
    )
