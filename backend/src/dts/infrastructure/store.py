"""
Ledger store: durable holder of every ledger record.

The store is constructed once per process, opened at startup and closed at
shutdown, and handed by reference to the lifecycle engine. All writes go
through unit_of_work(), which serializes writers, bounds the work with a
timeout and commits or rolls back as a whole.

Design Decisions:
- Session-per-unit-of-work; the audit entry and the mutation share the
  same transaction
- One asyncio.Lock per campaign; SQLite gets a single global writer lock
  because it only supports one writer at a time
- Timeouts and connectivity errors surface as StorageUnavailable after the
  transaction has already been rolled back
- Lookups are by exact key; nothing is ever deleted
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Hashable, Sequence
from contextlib import asynccontextmanager
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from dts.domain.errors import CampaignNotFound, NotFound, StorageUnavailable
from dts.domain.models import Actor, AllocationStatus
from dts.domain.money import ZERO

from .database import (
    ActorRecord,
    AllocationRecord,
    AuditLogRecord,
    CampaignRecord,
    DisbursementRecord,
    DonationRecord,
    ReceiverRecord,
    create_engine,
    create_schema,
)

logger = logging.getLogger(__name__)

# Lock key for writes that are not scoped to one campaign (catalog changes)
GLOBAL_KEY = "global"


class KeyedLocks:
    """asyncio locks handed out per key, or one shared lock when serialize_all is set."""

    def __init__(self, serialize_all: bool = False) -> None:
        self._serialize_all = serialize_all
        self._locks: dict[Hashable, asyncio.Lock] = {}

    def get(self, key: Hashable) -> asyncio.Lock:
        if self._serialize_all:
            key = GLOBAL_KEY
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock


class LedgerSession:
    """
    Typed access to ledger records inside one session.

    Thin on purpose: it loads, adds and aggregates records. Business rules
    live in the lifecycle engine.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # -- identity -----------------------------------------------------------

    async def ensure_actor(self, actor: Actor) -> ActorRecord:
        """Mirror the actor's id, username and role so listings can name them."""
        record = await self.session.get(ActorRecord, actor.id)
        if record is None:
            record = ActorRecord(id=actor.id, username=actor.username, role=actor.role.value)
            self.session.add(record)
            await self.session.flush()
        elif record.username != actor.username or record.role != actor.role.value:
            record.username = actor.username
            record.role = actor.role.value
        return record

    # -- lookups ------------------------------------------------------------

    async def require_campaign(self, campaign_id: int) -> CampaignRecord:
        record = await self.session.get(CampaignRecord, campaign_id)
        if record is None:
            raise CampaignNotFound(f"Campaign {campaign_id} not found")
        return record

    async def require_donation(self, donation_id: int) -> DonationRecord:
        record = await self.session.get(DonationRecord, donation_id)
        if record is None:
            raise NotFound(f"Donation {donation_id} not found")
        return record

    async def require_allocation(self, allocation_id: int) -> AllocationRecord:
        record = await self.session.get(AllocationRecord, allocation_id)
        if record is None:
            raise NotFound(f"Allocation {allocation_id} not found")
        return record

    async def require_disbursement(self, disbursement_id: int) -> DisbursementRecord:
        record = await self.session.get(DisbursementRecord, disbursement_id)
        if record is None:
            raise NotFound(f"Disbursement {disbursement_id} not found")
        return record

    async def campaign_id_of_allocation(self, allocation_id: int) -> int:
        record = await self.require_allocation(allocation_id)
        return record.campaign_id

    async def campaign_id_of_donation(self, donation_id: int) -> int:
        record = await self.require_donation(donation_id)
        return record.campaign_id

    async def campaign_id_of_disbursement(self, disbursement_id: int) -> int:
        result = await self.session.execute(
            select(AllocationRecord.campaign_id)
            .join(DisbursementRecord, DisbursementRecord.allocation_id == AllocationRecord.id)
            .where(DisbursementRecord.id == disbursement_id)
        )
        campaign_id = result.scalar_one_or_none()
        if campaign_id is None:
            raise NotFound(f"Disbursement {disbursement_id} not found")
        return campaign_id

    # -- writes -------------------------------------------------------------

    async def add(self, record):
        """Insert a record and flush so its identifier is assigned."""
        self.session.add(record)
        await self.session.flush()
        return record

    async def flush(self) -> None:
        await self.session.flush()

    # -- receivers ----------------------------------------------------------

    async def receivers(self) -> Sequence[ReceiverRecord]:
        result = await self.session.execute(select(ReceiverRecord).order_by(ReceiverRecord.id))
        return result.scalars().all()

    async def count_allocations(self) -> int:
        result = await self.session.execute(select(func.count(AllocationRecord.id)))
        return result.scalar_one()

    async def open_allocation_counts(self) -> dict[int, int]:
        """Pending or approved allocations per receiver id."""
        result = await self.session.execute(
            select(AllocationRecord.receiver_id, func.count(AllocationRecord.id))
            .where(AllocationRecord.status.in_([
                AllocationStatus.PENDING.value,
                AllocationStatus.APPROVED.value,
            ]))
            .group_by(AllocationRecord.receiver_id)
        )
        return {receiver_id: count for receiver_id, count in result.all()}

    # -- balance history ----------------------------------------------------

    async def campaign_ids(self) -> list[int]:
        result = await self.session.execute(select(CampaignRecord.id).order_by(CampaignRecord.id))
        return list(result.scalars().all())

    async def verified_total(self, campaign_id: int) -> Decimal:
        result = await self.session.execute(
            select(func.sum(DonationRecord.amount))
            .where(DonationRecord.campaign_id == campaign_id, DonationRecord.verified.is_(True))
        )
        return result.scalar_one() or ZERO

    async def disbursed_total(self, campaign_id: int) -> Decimal:
        result = await self.session.execute(
            select(func.sum(DisbursementRecord.amount))
            .join(AllocationRecord, DisbursementRecord.allocation_id == AllocationRecord.id)
            .where(AllocationRecord.campaign_id == campaign_id)
        )
        return result.scalar_one() or ZERO

    # -- audit --------------------------------------------------------------

    async def last_audit_record(self) -> AuditLogRecord | None:
        result = await self.session.execute(
            select(AuditLogRecord).order_by(AuditLogRecord.sequence.desc()).limit(1)
        )
        return result.scalar_one_or_none()


class LedgerStore:
    """
    Owns the database engine and hands out units of work.

    Usage:
        store = LedgerStore("sqlite+aiosqlite:///./dts.db")
        await store.open()
        async with store.unit_of_work(campaign_id) as ledger:
            ...
        await store.close()
    """

    def __init__(
        self,
        database_url: str,
        *,
        timeout_seconds: float = 5.0,
        echo: bool = False,
        serialize_writes: bool | None = None,
    ) -> None:
        """
        Configure the store without connecting.

        Args:
            database_url: SQLAlchemy async URL
            timeout_seconds: Bound on one unit of work (lock wait included)
            echo: Log SQL statements
            serialize_writes: Use one global writer lock; defaults to True
                for SQLite URLs
        """
        if serialize_writes is None:
            serialize_writes = database_url.startswith("sqlite")

        self.database_url = database_url
        self.timeout_seconds = timeout_seconds
        self._echo = echo
        self._locks = KeyedLocks(serialize_all=serialize_writes)
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    async def open(self) -> None:
        """Create the engine and make sure the schema exists."""
        if self._engine is not None:
            return
        self._engine = create_engine(self.database_url, echo=self._echo)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        await create_schema(self._engine)
        logger.info("Ledger store opened")

    async def close(self) -> None:
        """Dispose of all connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
        logger.info("Ledger store closed")

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise StorageUnavailable("Ledger store is not open")
        return self._session_factory

    @asynccontextmanager
    async def unit_of_work(self, lock_key: Hashable = GLOBAL_KEY) -> AsyncIterator[LedgerSession]:
        """
        Run one atomic write.

        Everything done through the yielded LedgerSession commits together
        when the block exits normally and is rolled back if it raises.

        Raises:
            StorageUnavailable: On timeout or database connectivity failure
        """
        factory = self._factory()
        lock = self._locks.get(lock_key)
        try:
            async with asyncio.timeout(self.timeout_seconds):
                async with lock:
                    async with factory() as session:
                        async with session.begin():
                            yield LedgerSession(session)
        except TimeoutError:
            logger.error(f"Unit of work timed out after {self.timeout_seconds}s; rolled back")
            raise StorageUnavailable(
                f"Storage did not respond within {self.timeout_seconds} seconds"
            ) from None
        except (OperationalError, InterfaceError) as e:
            logger.exception("Storage failure; unit of work rolled back")
            raise StorageUnavailable("Storage is temporarily unavailable") from e
        except IntegrityError as e:
            # Existence checks run first, so this is a lost race on a unique key
            logger.warning(f"Conflicting concurrent write rolled back: {e.orig}")
            raise StorageUnavailable("Conflicting concurrent write; retry the request") from e

    @asynccontextmanager
    async def reader(self) -> AsyncIterator[LedgerSession]:
        """
        Read-only session over committed data.

        Does not take the writer lock, so listings never wait on in-flight
        writes.
        """
        factory = self._factory()
        try:
            async with asyncio.timeout(self.timeout_seconds):
                async with factory() as session:
                    yield LedgerSession(session)
        except TimeoutError:
            raise StorageUnavailable(
                f"Storage did not respond within {self.timeout_seconds} seconds"
            ) from None
        except (OperationalError, InterfaceError) as e:
            logger.exception("Storage failure during read")
            raise StorageUnavailable("Storage is temporarily unavailable") from e
