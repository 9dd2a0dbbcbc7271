"""
Read side of the ledger.

Listings are enriched with display fields (campaign title, receiver name,
donor name) by joining at read time; none of these are stored on the ledger
rows themselves. Listings use their own session and never take the writer
lock. Balance reports do, since the cached and recomputed values must come
from the same committed state.
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import aliased

from dts.domain.models import (
    Actor,
    AllocationView,
    AuditEntryView,
    BalanceReport,
    Campaign,
    ChainVerification,
    DisbursementView,
    Document,
    DonationView,
    EntityType,
    Receiver,
    Role,
)
from dts.domain.policy import Operation, require
from dts.infrastructure.database import (
    ActorRecord,
    AllocationRecord,
    CampaignRecord,
    DisbursementRecord,
    DocumentRecord,
    DonationRecord,
    ReceiverRecord,
)
from dts.infrastructure.store import LedgerStore

from .accountant import BalanceAccountant
from .audit import AuditRecorder

logger = logging.getLogger(__name__)


class LedgerQueries:
    """Listing and inspection operations over committed ledger state."""

    def __init__(
        self,
        store: LedgerStore,
        *,
        accountant: BalanceAccountant | None = None,
        recorder: AuditRecorder | None = None,
    ) -> None:
        self.store = store
        self.accountant = accountant or BalanceAccountant()
        self.recorder = recorder or AuditRecorder()

    async def list_campaigns(self) -> list[Campaign]:
        async with self.store.reader() as ledger:
            result = await ledger.session.execute(select(CampaignRecord).order_by(CampaignRecord.id))
            return [record.to_domain() for record in result.scalars()]

    async def get_campaign(self, campaign_id: int) -> Campaign:
        async with self.store.reader() as ledger:
            record = await ledger.require_campaign(campaign_id)
            return record.to_domain()

    async def campaign_balance(self, campaign_id: int) -> BalanceReport:
        """Cached balance next to the value recomputed from history."""
        return await self.accountant.consistent_report(self.store, campaign_id)

    async def list_receivers(self) -> list[Receiver]:
        async with self.store.reader() as ledger:
            return [record.to_domain() for record in await ledger.receivers()]

    async def list_donations(self, actor: Actor) -> list[DonationView]:
        """All donations, or only the actor's own when the actor is a donor."""
        stmt = (
            select(DonationRecord, CampaignRecord.title, ActorRecord.username)
            .join(CampaignRecord, DonationRecord.campaign_id == CampaignRecord.id)
            .outerjoin(ActorRecord, DonationRecord.donor_id == ActorRecord.id)
            .order_by(DonationRecord.id)
        )
        if actor.role is Role.DONOR:
            stmt = stmt.where(DonationRecord.donor_id == actor.id)

        async with self.store.reader() as ledger:
            result = await ledger.session.execute(stmt)
            return [
                DonationView(
                    donation=record.to_domain(),
                    campaign_title=title,
                    donor_name=username or "Unknown Donor",
                )
                for record, title, username in result.all()
            ]

    async def list_allocations(self, actor: Actor) -> list[AllocationView]:
        """All allocations, or only those of the actor's own donations when the actor is a donor."""
        stmt = (
            select(
                AllocationRecord,
                CampaignRecord.title,
                ReceiverRecord.name,
                ActorRecord.username,
                DonationRecord.verified,
            )
            .join(DonationRecord, AllocationRecord.donation_id == DonationRecord.id)
            .join(CampaignRecord, AllocationRecord.campaign_id == CampaignRecord.id)
            .join(ReceiverRecord, AllocationRecord.receiver_id == ReceiverRecord.id)
            .outerjoin(ActorRecord, DonationRecord.donor_id == ActorRecord.id)
            .order_by(AllocationRecord.id)
        )
        if actor.role is Role.DONOR:
            stmt = stmt.where(DonationRecord.donor_id == actor.id)

        async with self.store.reader() as ledger:
            result = await ledger.session.execute(stmt)
            return [
                AllocationView(
                    allocation=record.to_domain(),
                    campaign_title=title,
                    receiver_name=receiver_name,
                    donor_name=username or "Unknown Donor",
                    donation_verified=verified,
                )
                for record, title, receiver_name, username, verified in result.all()
            ]

    async def list_disbursements(self) -> list[DisbursementView]:
        executor = aliased(ActorRecord)
        stmt = (
            select(DisbursementRecord, CampaignRecord.title, ReceiverRecord.name, executor.username)
            .join(AllocationRecord, DisbursementRecord.allocation_id == AllocationRecord.id)
            .join(CampaignRecord, AllocationRecord.campaign_id == CampaignRecord.id)
            .join(ReceiverRecord, AllocationRecord.receiver_id == ReceiverRecord.id)
            .outerjoin(executor, DisbursementRecord.executed_by == executor.id)
            .order_by(DisbursementRecord.id)
        )
        async with self.store.reader() as ledger:
            result = await ledger.session.execute(stmt)
            return [
                DisbursementView(
                    disbursement=record.to_domain(),
                    campaign_title=title,
                    receiver_name=receiver_name,
                    recorded_by=username or "System",
                )
                for record, title, receiver_name, username in result.all()
            ]

    async def list_documents(self, disbursement_id: int | None = None) -> list[Document]:
        stmt = select(DocumentRecord).order_by(DocumentRecord.id)
        if disbursement_id is not None:
            stmt = stmt.where(DocumentRecord.disbursement_id == disbursement_id)
        async with self.store.reader() as ledger:
            result = await ledger.session.execute(stmt)
            return [record.to_domain() for record in result.scalars()]

    # =========================================================================
    # Oversight (Auditor / Admin)
    # =========================================================================

    async def audit_log(
        self,
        actor: Actor,
        *,
        entity_type: EntityType | None = None,
        entity_id: int | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[AuditEntryView]:
        require(actor, Operation.READ_AUDIT_LOG)
        async with self.store.reader() as ledger:
            return await self.recorder.list_entries(
                ledger,
                actor,
                entity_type=entity_type,
                entity_id=entity_id,
                since=since,
                until=until,
                limit=limit,
            )

    async def verify_audit_chain(self, actor: Actor) -> ChainVerification:
        require(actor, Operation.READ_AUDIT_LOG)
        async with self.store.reader() as ledger:
            return await self.recorder.verify_chain(ledger, actor)

    async def reconcile_balances(self, actor: Actor) -> list[BalanceReport]:
        """Compare every campaign's cached balance with its recomputed value."""
        require(actor, Operation.RECONCILE_BALANCES)
        reports = await self.accountant.reconcile(self.store)
        drifted = [r.campaign_id for r in reports if not r.consistent]
        if drifted:
            logger.error(f"Reconciliation found balance drift on campaigns {drifted}")
        else:
            logger.info(f"Reconciliation clean across {len(reports)} campaigns")
        return reports
