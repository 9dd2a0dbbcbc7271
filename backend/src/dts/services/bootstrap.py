"""
Wiring for the ledger components.

Builds the store, lifecycle engine and query service from settings, with an
explicit start/stop lifecycle. The API lifespan owns one instance per
process; tests build their own against a throwaway database.
"""

import logging
from dataclasses import dataclass

from dts.config import Settings
from dts.infrastructure.store import LedgerStore

from .accountant import BalanceAccountant
from .assignment import make_assigner
from .audit import AuditRecorder
from .lifecycle import LifecycleEngine
from .queries import LedgerQueries

logger = logging.getLogger(__name__)


@dataclass
class LedgerServices:
    """The store plus the two services that use it."""
    store: LedgerStore
    engine: LifecycleEngine
    queries: LedgerQueries

    @classmethod
    def from_settings(cls, settings: Settings, *, clock=None) -> "LedgerServices":
        store = LedgerStore(
            settings.database_url,
            timeout_seconds=settings.storage_timeout_seconds,
            echo=settings.debug,
            serialize_writes=settings.is_sqlite,
        )
        accountant = BalanceAccountant()
        recorder = AuditRecorder(clock=clock)
        engine = LifecycleEngine(
            store,
            accountant=accountant,
            recorder=recorder,
            assigner=make_assigner(settings.receiver_assignment),
            enforce_campaign_end_date=settings.enforce_campaign_end_date,
            clock=clock,
        )
        queries = LedgerQueries(store, accountant=accountant, recorder=recorder)
        return cls(store=store, engine=engine, queries=queries)

    async def start(self) -> None:
        await self.store.open()
        logger.info(f"Ledger services started (receiver assignment: {self.engine.assigner.name})")

    async def stop(self) -> None:
        await self.store.close()
