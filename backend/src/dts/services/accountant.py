"""
Balance accountant.

Keeps each campaign's balance (verified funds not yet disbursed) as a cached
column that is adjusted on every write, and can recompute the same value from
the full donation and disbursement history as a consistency check.

credit() and debit() must only be called from inside a lifecycle engine
unit of work; a failed debit aborts that whole unit. Reports are taken under
the same per-campaign writer lock, so the cached and recomputed values always
come from the same committed state.
"""

import logging
from decimal import Decimal

from dts.domain.errors import InsufficientBalance
from dts.domain.models import BalanceReport
from dts.infrastructure.store import LedgerSession, LedgerStore

logger = logging.getLogger(__name__)


class BalanceAccountant:
    """Maintains and audits campaign balances."""

    async def credit(self, ledger: LedgerSession, campaign_id: int, amount: Decimal) -> Decimal:
        """
        Increase a campaign's balance.

        Returns:
            The new balance
        """
        campaign = await ledger.require_campaign(campaign_id)
        campaign.balance = campaign.balance + amount
        await ledger.flush()
        logger.debug(f"Campaign {campaign_id} credited {amount}; balance {campaign.balance}")
        return campaign.balance

    async def debit(self, ledger: LedgerSession, campaign_id: int, amount: Decimal) -> Decimal:
        """
        Decrease a campaign's balance.

        Returns:
            The new balance

        Raises:
            InsufficientBalance: If the balance would go negative; nothing
                is changed
        """
        campaign = await ledger.require_campaign(campaign_id)
        if amount > campaign.balance:
            raise InsufficientBalance(
                f"Campaign {campaign_id} balance {campaign.balance} is insufficient for {amount}"
            )
        campaign.balance = campaign.balance - amount
        await ledger.flush()
        logger.debug(f"Campaign {campaign_id} debited {amount}; balance {campaign.balance}")
        return campaign.balance

    async def recompute(self, ledger: LedgerSession, campaign_id: int) -> Decimal:
        """Derive the balance from history: verified donations minus disbursements."""
        await ledger.require_campaign(campaign_id)
        verified = await ledger.verified_total(campaign_id)
        disbursed = await ledger.disbursed_total(campaign_id)
        return verified - disbursed

    async def report(self, ledger: LedgerSession, campaign_id: int) -> BalanceReport:
        campaign = await ledger.require_campaign(campaign_id)
        return BalanceReport(
            campaign_id=campaign_id,
            cached=campaign.balance,
            recomputed=await self.recompute(ledger, campaign_id),
        )

    async def consistent_report(self, store: LedgerStore, campaign_id: int) -> BalanceReport:
        """
        Report one campaign with writers to it held off.

        The campaign is resolved through a reader first so an unknown id
        never takes a writer lock.

        Raises:
            CampaignNotFound: Unknown campaign
        """
        async with store.reader() as reader:
            await reader.require_campaign(campaign_id)
        async with store.unit_of_work(campaign_id) as ledger:
            return await self.report(ledger, campaign_id)

    async def reconcile(self, store: LedgerStore) -> list[BalanceReport]:
        """
        Compare cached and recomputed balances for every campaign.

        Each campaign is read under its own writer lock. Logs an error for
        each campaign whose values disagree.
        """
        async with store.reader() as reader:
            campaign_ids = await reader.campaign_ids()

        reports = []
        for campaign_id in campaign_ids:
            async with store.unit_of_work(campaign_id) as ledger:
                report = await self.report(ledger, campaign_id)
            if not report.consistent:
                logger.error(
                    f"Balance drift on campaign {campaign_id}: "
                    f"cached {report.cached} vs recomputed {report.recomputed}"
                )
            reports.append(report)
        return reports
