"""
Tests for the lifecycle engine: donations through verification, approval,
disbursement and documentation.
"""

import asyncio
from datetime import date, timedelta
from decimal import Decimal

import pytest

from conftest import ACCOUNTANT, ADMIN, AUDITOR, DONOR, OPERATOR, OTHER_DONOR
from dts.domain.errors import (
    AlreadyVerified,
    AmountMismatch,
    CampaignClosed,
    CampaignNotFound,
    Forbidden,
    InsufficientBalance,
    InvalidAmount,
    InvalidTransition,
    MissingHash,
    NotFound,
    ValidationFailed,
)
from dts.domain.models import AllocationStatus, AuditAction, EntityType
from dts.domain.money import ZERO


async def audit_count(queries) -> int:
    return len(await queries.audit_log(AUDITOR))


async def approved_allocation(engine, campaign, amount="50.00", verify=True):
    receipt = await engine.record_donation(DONOR, campaign.id, amount)
    if verify:
        await engine.verify_donation(OPERATOR, receipt.donation.id)
    await engine.set_allocation_status(OPERATOR, receipt.allocation.id, "approved")
    return receipt


class TestFullLifecycle:
    """The happy path from donation to documented disbursement."""

    async def test_fifty_dollar_donation_end_to_end(self, engine, queries, campaign):
        start = await audit_count(queries)

        receipt = await engine.record_donation(DONOR, campaign.id, "50.00")
        assert receipt.donation.amount == Decimal("50.00")
        assert receipt.donation.verified is False
        assert receipt.allocation.amount == receipt.donation.amount
        assert receipt.allocation.status is AllocationStatus.PENDING
        assert receipt.allocation.donation_id == receipt.donation.id

        balance = await queries.campaign_balance(campaign.id)
        assert balance.cached == ZERO

        verified = await engine.verify_donation(OPERATOR, receipt.donation.id)
        assert verified.donation.verified is True
        assert verified.campaign_balance == Decimal("50.00")

        approved = await engine.set_allocation_status(OPERATOR, receipt.allocation.id, "approved")
        assert approved.status is AllocationStatus.APPROVED

        outcome = await engine.record_disbursement(ACCOUNTANT, receipt.allocation.id, "50.00", "TX-0001")
        assert outcome.allocation.status is AllocationStatus.DISBURSED
        assert outcome.disbursement.amount == Decimal("50.00")
        assert outcome.disbursement.executed_by == ACCOUNTANT.id
        assert outcome.campaign_balance == ZERO

        document = await engine.attach_document(
            ACCOUNTANT, outcome.disbursement.id, "s3://receipts/tx-0001.pdf", "sha256:abc123"
        )
        assert document.disbursement_id == outcome.disbursement.id

        entries = (await queries.audit_log(AUDITOR))[start:]
        assert [(e.entry.action, e.entry.entity_type) for e in entries] == [
            (AuditAction.CREATE, EntityType.DONATION),
            (AuditAction.VERIFY, EntityType.DONATION),
            (AuditAction.UPDATE_STATUS, EntityType.ALLOCATION),
            (AuditAction.DISBURSE, EntityType.DISBURSEMENT),
            (AuditAction.UPLOAD_DOC, EntityType.DOCUMENT),
        ]
        assert [e.actor_name for e in entries] == [
            "donor1", "operator1", "operator1", "accountant1", "accountant1",
        ]

        report = await queries.campaign_balance(campaign.id)
        assert report.cached == report.recomputed == ZERO

    async def test_mismatched_amount_changes_nothing(self, engine, queries, campaign):
        receipt = await approved_allocation(engine, campaign)
        before = await audit_count(queries)

        with pytest.raises(AmountMismatch):
            await engine.record_disbursement(ACCOUNTANT, receipt.allocation.id, "49.99", "TX-0002")

        assert await audit_count(queries) == before
        assert await queries.list_disbursements() == []
        (view,) = await queries.list_allocations(ADMIN)
        assert view.allocation.status is AllocationStatus.APPROVED
        assert (await queries.campaign_balance(campaign.id)).cached == Decimal("50.00")


class TestRecordDonation:

    async def test_rejects_invalid_amounts_before_touching_storage(self, engine, queries, campaign):
        before = await audit_count(queries)
        for amount in ("0", "-1", "10.001", "ten"):
            with pytest.raises(InvalidAmount):
                await engine.record_donation(DONOR, campaign.id, amount)
        assert await audit_count(queries) == before

    async def test_unknown_campaign(self, engine, receivers):
        with pytest.raises(CampaignNotFound):
            await engine.record_donation(DONOR, 999, "10.00")

    async def test_closed_campaign(self, engine, queries, receivers):
        past = await engine.create_campaign(
            ADMIN,
            title="Winter Coats",
            description="Ended last week.",
            start_date=date.today() - timedelta(days=30),
            end_date=date.today() - timedelta(days=7),
        )
        with pytest.raises(CampaignClosed):
            await engine.record_donation(DONOR, past.id, "10.00")

    async def test_campaign_not_started_yet(self, engine, queries, receivers):
        upcoming = await engine.create_campaign(
            ADMIN,
            title="Spring Books",
            description="Starts next week.",
            start_date=date.today() + timedelta(days=7),
            end_date=date.today() + timedelta(days=60),
        )
        before = await audit_count(queries)

        with pytest.raises(CampaignClosed):
            await engine.record_donation(DONOR, upcoming.id, "10.00")

        assert await audit_count(queries) == before
        assert upcoming.is_open_on(upcoming.start_date)
        assert not upcoming.is_open_on(upcoming.start_date - timedelta(days=1))

    async def test_end_date_itself_is_still_open(self, engine, receivers):
        last_day = await engine.create_campaign(
            ADMIN,
            title="Last Day",
            description="Ends today.",
            start_date=date.today() - timedelta(days=1),
            end_date=date.today(),
        )
        receipt = await engine.record_donation(DONOR, last_day.id, "5.00")
        assert receipt.donation.campaign_id == last_day.id

    @pytest.mark.parametrize("actor", [OPERATOR, ACCOUNTANT, AUDITOR])
    async def test_only_donors_and_admins_donate(self, engine, campaign, actor):
        with pytest.raises(Forbidden):
            await engine.record_donation(actor, campaign.id, "10.00")

    async def test_requires_a_receiver(self, engine):
        campaign = await engine.create_campaign(
            ADMIN, title="No Receivers", description="x", end_date=date.today() + timedelta(days=1)
        )
        with pytest.raises(ValidationFailed):
            await engine.record_donation(DONOR, campaign.id, "10.00")

    async def test_allocation_snapshot_is_audited_with_the_donation(self, engine, queries, campaign):
        receipt = await engine.record_donation(DONOR, campaign.id, "12.50")

        (view,) = await queries.audit_log(
            AUDITOR, entity_type=EntityType.DONATION, entity_id=receipt.donation.id
        )
        assert view.entry.before is None
        assert view.entry.after == receipt.donation.snapshot()
        assert view.entry.details["allocation"] == receipt.allocation.snapshot()


class TestVerifyDonation:

    async def test_verification_is_one_way(self, engine, queries, campaign):
        receipt = await engine.record_donation(DONOR, campaign.id, "20.00")
        await engine.verify_donation(OPERATOR, receipt.donation.id)
        before = await audit_count(queries)

        with pytest.raises(AlreadyVerified):
            await engine.verify_donation(ADMIN, receipt.donation.id)

        assert await audit_count(queries) == before
        assert (await queries.campaign_balance(campaign.id)).cached == Decimal("20.00")

    async def test_audit_entry_records_balance_change(self, engine, queries, campaign):
        receipt = await engine.record_donation(DONOR, campaign.id, "20.00")
        await engine.verify_donation(OPERATOR, receipt.donation.id)

        entries = await queries.audit_log(AUDITOR, entity_type=EntityType.DONATION)
        verify = entries[-1].entry
        assert verify.action is AuditAction.VERIFY
        assert verify.before["verified"] is False
        assert verify.after["verified"] is True
        assert verify.details == {
            "campaign_id": campaign.id,
            "balance_before": "0.00",
            "balance_after": "20.00",
        }

    async def test_unknown_donation(self, engine, campaign):
        with pytest.raises(NotFound):
            await engine.verify_donation(OPERATOR, 42)

    @pytest.mark.parametrize("actor", [DONOR, ACCOUNTANT, AUDITOR])
    async def test_forbidden_roles(self, engine, campaign, actor):
        receipt = await engine.record_donation(DONOR, campaign.id, "20.00")
        with pytest.raises(Forbidden):
            await engine.verify_donation(actor, receipt.donation.id)


class TestAllocationStatus:

    async def test_donor_cannot_change_status_and_nothing_is_audited(self, engine, queries, campaign):
        receipt = await engine.record_donation(DONOR, campaign.id, "10.00")
        before = await audit_count(queries)

        with pytest.raises(Forbidden):
            await engine.set_allocation_status(DONOR, receipt.allocation.id, "approved")

        assert await audit_count(queries) == before

    async def test_forbidden_is_raised_even_for_unknown_allocation(self, engine, campaign):
        with pytest.raises(Forbidden):
            await engine.set_allocation_status(DONOR, 12345, "approved")

    async def test_approval_can_be_reverted(self, engine, campaign):
        receipt = await engine.record_donation(DONOR, campaign.id, "10.00")
        await engine.set_allocation_status(ACCOUNTANT, receipt.allocation.id, "approved")
        reverted = await engine.set_allocation_status(OPERATOR, receipt.allocation.id, "pending")
        assert reverted.status is AllocationStatus.PENDING

    async def test_rejected_is_terminal(self, engine, campaign):
        receipt = await engine.record_donation(DONOR, campaign.id, "10.00")
        await engine.set_allocation_status(OPERATOR, receipt.allocation.id, "rejected")

        for target in ("pending", "approved", "disbursed"):
            with pytest.raises(InvalidTransition):
                await engine.set_allocation_status(ADMIN, receipt.allocation.id, target)

    async def test_disbursed_is_terminal(self, engine, campaign):
        receipt = await approved_allocation(engine, campaign)
        await engine.record_disbursement(ACCOUNTANT, receipt.allocation.id, "50.00", "TX-1")

        for target in ("pending", "approved", "rejected"):
            with pytest.raises(InvalidTransition):
                await engine.set_allocation_status(ADMIN, receipt.allocation.id, target)

    async def test_disbursed_cannot_be_set_manually(self, engine, campaign):
        receipt = await approved_allocation(engine, campaign)
        with pytest.raises(InvalidTransition):
            await engine.set_allocation_status(ADMIN, receipt.allocation.id, "disbursed")

    async def test_unknown_and_blank_status(self, engine, campaign):
        receipt = await engine.record_donation(DONOR, campaign.id, "10.00")
        with pytest.raises(InvalidTransition):
            await engine.set_allocation_status(OPERATOR, receipt.allocation.id, "cancelled")
        with pytest.raises(ValidationFailed):
            await engine.set_allocation_status(OPERATOR, receipt.allocation.id, "")

    async def test_audit_entry_has_before_and_after(self, engine, queries, campaign):
        receipt = await engine.record_donation(DONOR, campaign.id, "10.00")
        approved = await engine.set_allocation_status(OPERATOR, receipt.allocation.id, "approved")

        (view,) = await queries.audit_log(
            AUDITOR, entity_type=EntityType.ALLOCATION, entity_id=receipt.allocation.id
        )
        assert view.entry.before == receipt.allocation.snapshot()
        assert view.entry.after == approved.snapshot()


class TestDisbursement:

    async def test_requires_approved_allocation(self, engine, campaign):
        receipt = await engine.record_donation(DONOR, campaign.id, "10.00")
        await engine.verify_donation(OPERATOR, receipt.donation.id)

        with pytest.raises(InvalidTransition):
            await engine.record_disbursement(ACCOUNTANT, receipt.allocation.id, "10.00", "TX-1")

    async def test_insufficient_balance_leaves_allocation_approved(self, engine, queries, campaign):
        receipt = await approved_allocation(engine, campaign, verify=False)
        before = await audit_count(queries)

        with pytest.raises(InsufficientBalance):
            await engine.record_disbursement(ACCOUNTANT, receipt.allocation.id, "50.00", "TX-1")

        (view,) = await queries.list_allocations(ADMIN)
        assert view.allocation.status is AllocationStatus.APPROVED
        assert await queries.list_disbursements() == []
        assert await audit_count(queries) == before
        assert (await queries.campaign_balance(campaign.id)).cached == ZERO

    async def test_balance_is_shared_across_donations(self, engine, queries, campaign):
        first = await approved_allocation(engine, campaign, amount="30.00")
        second = await approved_allocation(engine, campaign, amount="20.00", verify=False)

        # 30.00 verified covers the unverified 20.00 donation's allocation
        outcome = await engine.record_disbursement(ACCOUNTANT, second.allocation.id, "20.00", "TX-2")
        assert outcome.campaign_balance == Decimal("10.00")

        with pytest.raises(InsufficientBalance):
            await engine.record_disbursement(ACCOUNTANT, first.allocation.id, "30.00", "TX-3")

    async def test_cannot_disburse_twice(self, engine, campaign):
        receipt = await approved_allocation(engine, campaign)
        await engine.record_disbursement(ACCOUNTANT, receipt.allocation.id, "50.00", "TX-1")
        with pytest.raises(InvalidTransition):
            await engine.record_disbursement(ACCOUNTANT, receipt.allocation.id, "50.00", "TX-1b")

    async def test_payment_reference_is_required(self, engine, campaign):
        receipt = await approved_allocation(engine, campaign)
        with pytest.raises(ValidationFailed):
            await engine.record_disbursement(ACCOUNTANT, receipt.allocation.id, "50.00", "  ")

    async def test_unknown_allocation(self, engine, campaign):
        with pytest.raises(NotFound):
            await engine.record_disbursement(ACCOUNTANT, 777, "50.00", "TX-1")

    @pytest.mark.parametrize("actor", [DONOR, OPERATOR, AUDITOR])
    async def test_forbidden_roles(self, engine, campaign, actor):
        receipt = await approved_allocation(engine, campaign)
        with pytest.raises(Forbidden):
            await engine.record_disbursement(actor, receipt.allocation.id, "50.00", "TX-1")

    async def test_audit_entry_carries_allocation_and_balance_change(self, engine, queries, campaign):
        receipt = await approved_allocation(engine, campaign)
        outcome = await engine.record_disbursement(ACCOUNTANT, receipt.allocation.id, "50.00", "TX-1")

        (view,) = await queries.audit_log(AUDITOR, entity_type=EntityType.DISBURSEMENT)
        entry = view.entry
        assert entry.after == outcome.disbursement.snapshot()
        assert entry.details["allocation"]["before"]["status"] == "approved"
        assert entry.details["allocation"]["after"] == outcome.allocation.snapshot()
        assert entry.details["balance_before"] == "50.00"
        assert entry.details["balance_after"] == "0.00"


class TestAttachDocument:

    async def disbursement(self, engine, campaign):
        receipt = await approved_allocation(engine, campaign)
        outcome = await engine.record_disbursement(ACCOUNTANT, receipt.allocation.id, "50.00", "TX-1")
        return outcome.disbursement

    async def test_missing_hash(self, engine, queries, campaign):
        disbursement = await self.disbursement(engine, campaign)
        before = await audit_count(queries)

        for content_hash in (None, "", "   "):
            with pytest.raises(MissingHash):
                await engine.attach_document(ACCOUNTANT, disbursement.id, "s3://doc.pdf", content_hash)

        assert await audit_count(queries) == before
        assert await queries.list_documents() == []

    async def test_unknown_disbursement_is_reported_before_missing_hash(self, engine, campaign):
        with pytest.raises(NotFound):
            await engine.attach_document(ACCOUNTANT, 99, "s3://doc.pdf", None)

    async def test_several_documents_per_disbursement(self, engine, queries, campaign):
        disbursement = await self.disbursement(engine, campaign)
        await engine.attach_document(ACCOUNTANT, disbursement.id, "s3://invoice.pdf", "sha256:aa")
        await engine.attach_document(ADMIN, disbursement.id, "s3://photo.jpg", "sha256:bb")

        documents = await queries.list_documents(disbursement.id)
        assert [d.locator for d in documents] == ["s3://invoice.pdf", "s3://photo.jpg"]
        assert (await queries.campaign_balance(campaign.id)).cached == ZERO

    async def test_operator_cannot_attach(self, engine, campaign):
        disbursement = await self.disbursement(engine, campaign)
        with pytest.raises(Forbidden):
            await engine.attach_document(OPERATOR, disbursement.id, "s3://doc.pdf", "sha256:aa")


class TestCatalog:

    async def test_create_campaign_validates_dates(self, engine):
        with pytest.raises(ValidationFailed):
            await engine.create_campaign(
                ADMIN,
                title="Backwards",
                description="x",
                start_date=date.today(),
                end_date=date.today() - timedelta(days=1),
            )

    async def test_create_campaign_requires_title(self, engine):
        with pytest.raises(ValidationFailed):
            await engine.create_campaign(
                OPERATOR, title="  ", description="x", end_date=date.today() + timedelta(days=1)
            )

    async def test_campaign_starts_at_zero(self, engine, queries):
        campaign = await engine.create_campaign(
            OPERATOR, title="Clean Water", description="Wells", end_date=date.today() + timedelta(days=30)
        )
        assert campaign.balance == ZERO
        assert campaign.start_date == date.today()
        assert [c.id for c in await queries.list_campaigns()] == [campaign.id]

    @pytest.mark.parametrize("actor", [DONOR, OPERATOR, AUDITOR])
    async def test_create_receiver_forbidden(self, engine, actor):
        with pytest.raises(Forbidden):
            await engine.create_receiver(actor, "Clinic", "Hospital", "1111")


class TestListings:

    async def test_donor_sees_only_own_donations(self, engine, queries, campaign):
        mine = await engine.record_donation(DONOR, campaign.id, "10.00")
        await engine.record_donation(OTHER_DONOR, campaign.id, "15.00")

        donations = await queries.list_donations(DONOR)
        assert [v.donation.id for v in donations] == [mine.donation.id]
        assert donations[0].campaign_title == "School Lunch Program"
        assert donations[0].donor_name == "donor1"

        allocations = await queries.list_allocations(DONOR)
        assert [v.allocation.id for v in allocations] == [mine.allocation.id]

        assert len(await queries.list_donations(OPERATOR)) == 2
        assert len(await queries.list_allocations(ACCOUNTANT)) == 2

    async def test_disbursement_listing_names_receiver_and_recorder(self, engine, queries, campaign, receivers):
        receipt = await approved_allocation(engine, campaign)
        await engine.record_disbursement(ACCOUNTANT, receipt.allocation.id, "50.00", "TX-1")

        (view,) = await queries.list_disbursements()
        assert view.campaign_title == "School Lunch Program"
        assert view.receiver_name == receivers[0].name
        assert view.recorded_by == "accountant1"


class TestConcurrency:

    async def test_concurrent_donations_and_verifications_keep_balances_exact(self, engine, queries, campaign):
        amounts = [Decimal("1.01") * n for n in range(1, 21)]
        receipts = await asyncio.gather(
            *(engine.record_donation(DONOR, campaign.id, amount) for amount in amounts)
        )
        outcomes = await asyncio.gather(
            *(engine.verify_donation(OPERATOR, r.donation.id) for r in receipts)
        )

        assert len({r.donation.id for r in receipts}) == len(amounts)
        assert max(o.campaign_balance for o in outcomes) == sum(amounts)
        report = await queries.campaign_balance(campaign.id)
        assert report.cached == report.recomputed == sum(amounts)
        assert (await queries.verify_audit_chain(AUDITOR)).valid

    async def test_concurrent_disbursements_never_overdraw(self, engine, queries, campaign):
        receipts = [await approved_allocation(engine, campaign, amount="10.00", verify=False) for _ in range(3)]
        funding = await engine.record_donation(DONOR, campaign.id, "20.00")
        await engine.verify_donation(OPERATOR, funding.donation.id)

        results = await asyncio.gather(
            *(
                engine.record_disbursement(ACCOUNTANT, r.allocation.id, "10.00", f"TX-{r.allocation.id}")
                for r in receipts
            ),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], InsufficientBalance)
        report = await queries.campaign_balance(campaign.id)
        assert report.cached == report.recomputed == ZERO
