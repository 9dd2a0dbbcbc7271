"""
Lifecycle engine: the only component that mutates the ledger.

Coordinates every state-changing operation:
1. Access policy check (before anything is read)
2. Input validation
3. Entity state validation inside the unit of work
4. The transition itself
5. Balance adjustment through the accountant
6. One audit entry through the recorder

Steps 3-6 run inside a single LedgerStore unit of work, serialized per
campaign, so either all of their effects commit or none do.

This is the primary interface for the donation ledger.
"""

import functools
import logging
from datetime import date, datetime, timezone

from dts.domain.errors import AlreadyVerified, AmountMismatch, CampaignClosed, LedgerError, MissingHash, ValidationFailed
from dts.domain.models import (
    Actor,
    Allocation,
    AllocationStatus,
    AuditAction,
    Campaign,
    DisbursementOutcome,
    Document,
    DonationReceipt,
    EntityType,
    Receiver,
    VerificationOutcome,
)
from dts.domain.money import ZERO, format_amount, parse_amount
from dts.domain.policy import Operation, require
from dts.domain.transitions import check_disbursable, check_transition, parse_status
from dts.infrastructure.database import (
    AllocationRecord,
    CampaignRecord,
    DisbursementRecord,
    DocumentRecord,
    DonationRecord,
    ReceiverRecord,
)
from dts.infrastructure.store import GLOBAL_KEY, LedgerStore

from .accountant import BalanceAccountant
from .assignment import ReceiverAssigner, RoundRobinAssigner
from .audit import AuditRecorder

logger = logging.getLogger(__name__)


def _required_text(value: str | None, field_name: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationFailed(f"{field_name} is required")
    return text


def _logged(func):
    """Log rejected operations with the actor and error kind, then re-raise."""

    @functools.wraps(func)
    async def wrapper(self, actor: Actor, *args, **kwargs):
        try:
            return await func(self, actor, *args, **kwargs)
        except LedgerError as e:
            logger.warning(
                f"{func.__name__} rejected for {actor.username} ({actor.role.value}): {e.code}: {e.message}"
            )
            raise

    return wrapper


class LifecycleEngine:
    """
    State machine over donations, allocations and disbursements.

    Holds references to its collaborators; it owns no state of its own.
    """

    def __init__(
        self,
        store: LedgerStore,
        *,
        accountant: BalanceAccountant | None = None,
        recorder: AuditRecorder | None = None,
        assigner: ReceiverAssigner | None = None,
        enforce_campaign_end_date: bool = True,
        clock=None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            store: Opened ledger store
            accountant: Balance accountant (default instance if None)
            recorder: Audit recorder (default instance if None)
            assigner: Receiver assignment rule (round robin if None)
            enforce_campaign_end_date: Reject donations outside a campaign's dates
            clock: Callable returning the current aware datetime
        """
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.accountant = accountant or BalanceAccountant()
        self.recorder = recorder or AuditRecorder(clock=self._clock)
        self.assigner = assigner or RoundRobinAssigner()
        self.enforce_campaign_end_date = enforce_campaign_end_date

    # =========================================================================
    # Catalog
    # =========================================================================

    @_logged
    async def create_campaign(
        self,
        actor: Actor,
        title: str,
        description: str,
        end_date: date,
        start_date: date | None = None,
    ) -> Campaign:
        """Open a new campaign with a zero balance."""
        require(actor, Operation.CREATE_CAMPAIGN)

        title = _required_text(title, "Title")
        description = _required_text(description, "Description")
        if end_date is None:
            raise ValidationFailed("End date is required")
        start_date = start_date or self._clock().date()
        if end_date < start_date:
            raise ValidationFailed(f"End date {end_date} is before start date {start_date}")

        async with self.store.unit_of_work(GLOBAL_KEY) as ledger:
            await ledger.ensure_actor(actor)
            record = await ledger.add(
                CampaignRecord(
                    title=title,
                    description=description,
                    start_date=start_date,
                    end_date=end_date,
                    created_by=actor.id,
                    balance=ZERO,
                )
            )
            campaign = record.to_domain()
            await self.recorder.append(
                ledger, actor, AuditAction.CREATE, EntityType.CAMPAIGN,
                campaign.id, None, campaign.snapshot(),
            )

        logger.info(f"Campaign {campaign.id} '{campaign.title}' created by {actor.username}")
        return campaign

    @_logged
    async def create_receiver(
        self,
        actor: Actor,
        name: str,
        category: str,
        payment_destination: str,
    ) -> Receiver:
        """Register a receiver that allocations can be bound to."""
        require(actor, Operation.CREATE_RECEIVER)

        name = _required_text(name, "Name")
        category = _required_text(category, "Category")
        payment_destination = _required_text(payment_destination, "Payment destination")

        async with self.store.unit_of_work(GLOBAL_KEY) as ledger:
            await ledger.ensure_actor(actor)
            record = await ledger.add(
                ReceiverRecord(name=name, category=category, payment_destination=payment_destination)
            )
            receiver = record.to_domain()
            await self.recorder.append(
                ledger, actor, AuditAction.CREATE, EntityType.RECEIVER,
                receiver.id, None, receiver.snapshot(),
            )

        logger.info(f"Receiver {receiver.id} '{receiver.name}' created by {actor.username}")
        return receiver

    # =========================================================================
    # Donation lifecycle
    # =========================================================================

    @_logged
    async def record_donation(self, actor: Actor, campaign_id: int, amount) -> DonationReceipt:
        """
        Record a donation by the acting donor and its pending allocation.

        The allocation is bound to a receiver by the configured assignment
        rule and carries the same amount as the donation.

        Raises:
            Forbidden: Role may not donate
            InvalidAmount: Amount is not positive or has more than 2 decimals
            CampaignNotFound: Unknown campaign
            CampaignClosed: Today is outside the campaign's start and end dates
            ValidationFailed: No receiver exists
        """
        require(actor, Operation.RECORD_DONATION)
        value = parse_amount(amount)

        async with self.store.reader() as reader:
            await reader.require_campaign(campaign_id)

        async with self.store.unit_of_work(campaign_id) as ledger:
            campaign = await ledger.require_campaign(campaign_id)
            today = self._clock().date()
            if self.enforce_campaign_end_date and not campaign.to_domain().is_open_on(today):
                if today < campaign.start_date:
                    raise CampaignClosed(f"Campaign {campaign_id} opens on {campaign.start_date}")
                raise CampaignClosed(f"Campaign {campaign_id} closed on {campaign.end_date}")

            await ledger.ensure_actor(actor)
            receiver = await self.assigner.choose(ledger)

            donation_record = await ledger.add(
                DonationRecord(
                    donor_id=actor.id,
                    campaign_id=campaign_id,
                    amount=value,
                    donated_at=self._clock(),
                    verified=False,
                )
            )
            allocation_record = await ledger.add(
                AllocationRecord(
                    donation_id=donation_record.id,
                    campaign_id=campaign_id,
                    receiver_id=receiver.id,
                    amount=value,
                    status=AllocationStatus.PENDING.value,
                )
            )
            donation = donation_record.to_domain()
            allocation = allocation_record.to_domain()

            await self.recorder.append(
                ledger, actor, AuditAction.CREATE, EntityType.DONATION,
                donation.id, None, donation.snapshot(),
                details={"allocation": allocation.snapshot()},
            )

        logger.info(
            f"Donation {donation.id} of {value} to campaign {campaign_id} by {actor.username}; "
            f"allocation {allocation.id} -> receiver {allocation.receiver_id}"
        )
        return DonationReceipt(donation=donation, allocation=allocation)

    @_logged
    async def verify_donation(self, actor: Actor, donation_id: int) -> VerificationOutcome:
        """
        Confirm a donation's funds were received and credit its campaign.

        One-way: a verified donation can never be unverified.

        Raises:
            Forbidden, NotFound, AlreadyVerified
        """
        require(actor, Operation.VERIFY_DONATION)

        async with self.store.reader() as reader:
            campaign_id = await reader.campaign_id_of_donation(donation_id)

        async with self.store.unit_of_work(campaign_id) as ledger:
            record = await ledger.require_donation(donation_id)
            if record.verified:
                raise AlreadyVerified(f"Donation {donation_id} is already verified")

            await ledger.ensure_actor(actor)
            before = record.to_domain().snapshot()
            campaign = await ledger.require_campaign(record.campaign_id)
            balance_before = campaign.balance

            record.verified = True
            balance_after = await self.accountant.credit(ledger, record.campaign_id, record.amount)
            donation = record.to_domain()

            await self.recorder.append(
                ledger, actor, AuditAction.VERIFY, EntityType.DONATION,
                donation.id, before, donation.snapshot(),
                details={
                    "campaign_id": donation.campaign_id,
                    "balance_before": format_amount(balance_before),
                    "balance_after": format_amount(balance_after),
                },
            )

        logger.info(
            f"Donation {donation_id} verified by {actor.username}; "
            f"campaign {donation.campaign_id} balance {balance_before} -> {balance_after}"
        )
        return VerificationOutcome(donation=donation, campaign_balance=balance_after)

    @_logged
    async def set_allocation_status(
        self,
        actor: Actor,
        allocation_id: int,
        new_status: AllocationStatus | str,
    ) -> Allocation:
        """
        Approve, reject or revert an allocation.

        Only pending->approved, pending->rejected and approved->pending are
        allowed. Has no balance effect; approval only makes the allocation
        eligible for disbursement.

        Raises:
            Forbidden, NotFound, InvalidTransition, ValidationFailed
        """
        require(actor, Operation.SET_ALLOCATION_STATUS)
        target = parse_status(new_status)

        async with self.store.reader() as reader:
            campaign_id = await reader.campaign_id_of_allocation(allocation_id)

        async with self.store.unit_of_work(campaign_id) as ledger:
            record = await ledger.require_allocation(allocation_id)
            current = AllocationStatus(record.status)
            check_transition(current, target)

            await ledger.ensure_actor(actor)
            before = record.to_domain().snapshot()
            record.status = target.value
            await ledger.flush()
            allocation = record.to_domain()

            await self.recorder.append(
                ledger, actor, AuditAction.UPDATE_STATUS, EntityType.ALLOCATION,
                allocation.id, before, allocation.snapshot(),
            )

        logger.info(f"Allocation {allocation_id} {current.value} -> {target.value} by {actor.username}")
        return allocation

    @_logged
    async def record_disbursement(
        self,
        actor: Actor,
        allocation_id: int,
        amount,
        payment_ref: str,
    ) -> DisbursementOutcome:
        """
        Record the payout of an approved allocation.

        Creates the disbursement, moves the allocation to ``disbursed`` and
        debits the campaign. If the campaign balance cannot cover the amount
        nothing is written.

        Raises:
            Forbidden, InvalidAmount, ValidationFailed, NotFound,
            InvalidTransition (not approved), AmountMismatch,
            InsufficientBalance
        """
        require(actor, Operation.RECORD_DISBURSEMENT)
        value = parse_amount(amount)
        payment_ref = _required_text(payment_ref, "Payment reference")

        async with self.store.reader() as reader:
            campaign_id = await reader.campaign_id_of_allocation(allocation_id)

        async with self.store.unit_of_work(campaign_id) as ledger:
            allocation_record = await ledger.require_allocation(allocation_id)
            check_disbursable(AllocationStatus(allocation_record.status))
            if value != allocation_record.amount:
                raise AmountMismatch(
                    f"Disbursement amount {value} must match allocation amount {allocation_record.amount}"
                )

            campaign = await ledger.require_campaign(allocation_record.campaign_id)
            balance_before = campaign.balance
            balance_after = await self.accountant.debit(ledger, allocation_record.campaign_id, value)

            await ledger.ensure_actor(actor)
            allocation_before = allocation_record.to_domain().snapshot()
            disbursement_record = await ledger.add(
                DisbursementRecord(
                    allocation_id=allocation_id,
                    amount=value,
                    executed_by=actor.id,
                    payment_ref=payment_ref,
                    executed_at=self._clock(),
                )
            )
            allocation_record.status = AllocationStatus.DISBURSED.value
            await ledger.flush()

            disbursement = disbursement_record.to_domain()
            allocation = allocation_record.to_domain()

            await self.recorder.append(
                ledger, actor, AuditAction.DISBURSE, EntityType.DISBURSEMENT,
                disbursement.id, None, disbursement.snapshot(),
                details={
                    "allocation": {"before": allocation_before, "after": allocation.snapshot()},
                    "campaign_id": allocation.campaign_id,
                    "balance_before": format_amount(balance_before),
                    "balance_after": format_amount(balance_after),
                },
            )

        logger.info(
            f"Disbursement {disbursement.id} of {value} for allocation {allocation_id} by {actor.username}; "
            f"campaign {allocation.campaign_id} balance {balance_before} -> {balance_after}"
        )
        return DisbursementOutcome(
            disbursement=disbursement,
            allocation=allocation,
            campaign_balance=balance_after,
        )

    @_logged
    async def attach_document(
        self,
        actor: Actor,
        disbursement_id: int,
        locator: str,
        content_hash: str | None,
    ) -> Document:
        """
        Attach evidence to a disbursement. No balance effect.

        Raises:
            Forbidden, NotFound, MissingHash, ValidationFailed
        """
        require(actor, Operation.ATTACH_DOCUMENT)

        async with self.store.reader() as reader:
            campaign_id = await reader.campaign_id_of_disbursement(disbursement_id)

        if not (content_hash or "").strip():
            raise MissingHash("File hash is required for integrity")
        content_hash = content_hash.strip()
        locator = _required_text(locator, "Storage locator")

        async with self.store.unit_of_work(campaign_id) as ledger:
            await ledger.require_disbursement(disbursement_id)
            await ledger.ensure_actor(actor)
            record = await ledger.add(
                DocumentRecord(
                    disbursement_id=disbursement_id,
                    locator=locator,
                    content_hash=content_hash,
                    uploaded_by=actor.id,
                    uploaded_at=self._clock(),
                )
            )
            document = record.to_domain()

            await self.recorder.append(
                ledger, actor, AuditAction.UPLOAD_DOC, EntityType.DOCUMENT,
                document.id, None, document.snapshot(),
                details={"disbursement_id": disbursement_id},
            )

        logger.info(f"Document {document.id} attached to disbursement {disbursement_id} by {actor.username}")
        return document
