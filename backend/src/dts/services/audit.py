"""
Audit recorder.

Appends one immutable entry per state-changing ledger operation, inside the
same transaction as the change itself, so a committed mutation always has
its entry and an entry never exists for a rolled-back mutation.

Entries are totally ordered by sequence number and chained by hash:
each entry stores the hash of its predecessor and a hash over its own
content. verify_chain() walks the log and reports the first broken link.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select

from dts.domain.hashing import GENESIS_HASH, compute_entry_hash, verify_entry_hash
from dts.domain.models import (
    Actor,
    AuditAction,
    AuditEntryView,
    AuditLogEntry,
    ChainVerification,
    EntityType,
)
from dts.domain.policy import Operation, require
from dts.infrastructure.database import ActorRecord, AuditLogRecord, as_utc
from dts.infrastructure.store import LedgerSession

logger = logging.getLogger(__name__)


def _hash_payload(
    timestamp: datetime,
    actor_id: int,
    action: str,
    entity_type: str,
    entity_id: int,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    details: dict[str, Any],
) -> dict[str, Any]:
    return {
        "timestamp": as_utc(timestamp).isoformat(),
        "actor_id": actor_id,
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "before": before,
        "after": after,
        "details": details,
    }


class AuditRecorder:
    """Append-only audit log over the ledger store."""

    def __init__(self, clock=None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def append(
        self,
        ledger: LedgerSession,
        actor: Actor,
        action: AuditAction,
        entity_type: EntityType,
        entity_id: int,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
        details: dict[str, Any] | None = None,
    ) -> AuditLogEntry:
        """
        Append an entry within the caller's unit of work.

        Args:
            ledger: Session of the enclosing unit of work
            actor: Who performed the operation
            action: Kind of operation
            entity_type: Type of the target entity
            entity_id: Identifier of the target entity
            before: Snapshot of the target before the change (None on create)
            after: Snapshot of the target after the change
            details: Side effects on other entities (balances, paired records)

        Returns:
            The entry as it will be committed
        """
        details = details or {}
        timestamp = self._clock()

        last = await ledger.last_audit_record()
        prev_hash = last.entry_hash if last is not None else GENESIS_HASH

        entry_hash = compute_entry_hash(
            prev_hash,
            _hash_payload(
                timestamp, actor.id, action.value, entity_type.value,
                entity_id, before, after, details,
            ),
        )

        record = await ledger.add(
            AuditLogRecord(
                timestamp=timestamp,
                actor_id=actor.id,
                action=action.value,
                entity_type=entity_type.value,
                entity_id=entity_id,
                before=before,
                after=after,
                details=details,
                prev_hash=prev_hash,
                entry_hash=entry_hash,
            )
        )
        logger.debug(f"Audit #{record.sequence}: {action.value} {entity_type.value} {entity_id} by {actor.username}")
        return record.to_domain()

    async def list_entries(
        self,
        ledger: LedgerSession,
        actor: Actor,
        *,
        entity_type: EntityType | None = None,
        entity_id: int | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[AuditEntryView]:
        """
        List entries in sequence order, optionally filtered.

        Only Auditor and Admin may read the log.

        Args:
            entity_type: Only entries targeting this entity type
            entity_id: Only entries targeting this id
            since: Inclusive lower bound on timestamp
            until: Exclusive upper bound on timestamp
            limit: Maximum number of entries
        """
        require(actor, Operation.READ_AUDIT_LOG)

        stmt = (
            select(AuditLogRecord, ActorRecord.username)
            .outerjoin(ActorRecord, AuditLogRecord.actor_id == ActorRecord.id)
            .order_by(AuditLogRecord.sequence)
        )
        if entity_type is not None:
            stmt = stmt.where(AuditLogRecord.entity_type == entity_type.value)
        if entity_id is not None:
            stmt = stmt.where(AuditLogRecord.entity_id == entity_id)
        if since is not None:
            stmt = stmt.where(AuditLogRecord.timestamp >= as_utc(since))
        if until is not None:
            stmt = stmt.where(AuditLogRecord.timestamp < as_utc(until))
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await ledger.session.execute(stmt)
        return [
            AuditEntryView(entry=record.to_domain(), actor_name=username or "System/Unknown")
            for record, username in result.all()
        ]

    async def verify_chain(self, ledger: LedgerSession, actor: Actor) -> ChainVerification:
        """
        Recompute every entry hash and check each link to its predecessor.
        """
        require(actor, Operation.READ_AUDIT_LOG)

        result = await ledger.session.execute(select(AuditLogRecord).order_by(AuditLogRecord.sequence))
        expected_prev = GENESIS_HASH
        checked = 0
        for record in result.scalars():
            checked += 1
            payload = _hash_payload(
                record.timestamp, record.actor_id, record.action, record.entity_type,
                record.entity_id, record.before, record.after, record.details or {},
            )
            if record.prev_hash != expected_prev or not verify_entry_hash(
                record.prev_hash, payload, record.entry_hash
            ):
                logger.error(f"Audit chain broken at entry #{record.sequence}")
                return ChainVerification(
                    entries_checked=checked,
                    valid=False,
                    first_broken_sequence=record.sequence,
                )
            expected_prev = record.entry_hash

        return ChainVerification(entries_checked=checked, valid=True)
