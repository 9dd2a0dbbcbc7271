"""
Database schema for the donation ledger with SQLAlchemy.

Uses async SQLAlchemy for non-blocking database operations. Every table the
lifecycle engine writes to lives here, together with the append-only audit
log that is committed in the same transaction as each mutation.

Design Decisions:
- Amounts stored as integer cents (Money type) so no float ever touches a
  balance; the Python side always sees Decimal
- AUTOINCREMENT on SQLite so identifiers are never reused
- Foreign keys enforced at the database level in addition to the explicit
  existence checks in the store
- Records convert to frozen domain objects through to_domain()
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, Date, DateTime, ForeignKey, Integer, String, Text, event
from sqlalchemy.engine import Dialect
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from dts.domain.models import (
    Allocation,
    AllocationStatus,
    AuditAction,
    AuditLogEntry,
    Campaign,
    Disbursement,
    Document,
    Donation,
    EntityType,
    Receiver,
)
from dts.domain.money import from_cents, to_cents

logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime read back from the database to aware UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Money(TypeDecorator):
    """Decimal amount persisted as integer cents."""

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value: Decimal | None, dialect: Dialect) -> int | None:
        if value is None:
            return None
        return to_cents(Decimal(value))

    def process_result_value(self, value: Any, dialect: Dialect) -> Decimal | None:
        if value is None:
            return None
        return from_cents(value)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class ActorRecord(Base):
    """
    Mirror of the authenticated identities the ledger has seen.

    Holds no credentials; it exists so listings can show usernames without
    copying them onto ledger rows.
    """
    __tablename__ = "actors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    username: Mapped[str] = mapped_column(String(128))
    role: Mapped[str] = mapped_column(String(16))


class CampaignRecord(Base):
    __tablename__ = "campaigns"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(256))
    description: Mapped[str] = mapped_column(Text)
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date] = mapped_column(Date)
    created_by: Mapped[int] = mapped_column(ForeignKey("actors.id"))

    # Cached derived value; see services.accountant for the recompute path
    balance: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"))

    def to_domain(self) -> Campaign:
        return Campaign(
            id=self.id,
            title=self.title,
            description=self.description,
            start_date=self.start_date,
            end_date=self.end_date,
            created_by=self.created_by,
            balance=self.balance,
        )


class ReceiverRecord(Base):
    __tablename__ = "receivers"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256))
    category: Mapped[str] = mapped_column(String(64))
    payment_destination: Mapped[str] = mapped_column(String(256))

    def to_domain(self) -> Receiver:
        return Receiver(
            id=self.id,
            name=self.name,
            category=self.category,
            payment_destination=self.payment_destination,
        )


class DonationRecord(Base):
    __tablename__ = "donations"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    donor_id: Mapped[int] = mapped_column(ForeignKey("actors.id"), index=True)
    campaign_id: Mapped[int] = mapped_column(ForeignKey("campaigns.id"), index=True)
    amount: Mapped[Decimal] = mapped_column(Money)
    donated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    verified: Mapped[bool] = mapped_column(Boolean, default=False)

    def to_domain(self) -> Donation:
        return Donation(
            id=self.id,
            donor_id=self.donor_id,
            campaign_id=self.campaign_id,
            amount=self.amount,
            donated_at=as_utc(self.donated_at),
            verified=self.verified,
        )


class AllocationRecord(Base):
    __tablename__ = "allocations"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    donation_id: Mapped[int] = mapped_column(ForeignKey("donations.id"), unique=True)
    campaign_id: Mapped[int] = mapped_column(ForeignKey("campaigns.id"), index=True)
    receiver_id: Mapped[int] = mapped_column(ForeignKey("receivers.id"), index=True)
    amount: Mapped[Decimal] = mapped_column(Money)
    status: Mapped[str] = mapped_column(String(16), index=True)  # pending, approved, rejected, disbursed

    def to_domain(self) -> Allocation:
        return Allocation(
            id=self.id,
            donation_id=self.donation_id,
            campaign_id=self.campaign_id,
            receiver_id=self.receiver_id,
            amount=self.amount,
            status=AllocationStatus(self.status),
        )


class DisbursementRecord(Base):
    __tablename__ = "disbursements"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    allocation_id: Mapped[int] = mapped_column(ForeignKey("allocations.id"), unique=True)
    amount: Mapped[Decimal] = mapped_column(Money)
    executed_by: Mapped[int] = mapped_column(ForeignKey("actors.id"))
    payment_ref: Mapped[str] = mapped_column(String(256))
    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def to_domain(self) -> Disbursement:
        return Disbursement(
            id=self.id,
            allocation_id=self.allocation_id,
            amount=self.amount,
            executed_by=self.executed_by,
            payment_ref=self.payment_ref,
            executed_at=as_utc(self.executed_at),
        )


class DocumentRecord(Base):
    """
    Reference to an evidentiary document.

    The file itself lives in external storage; only its locator and hash
    are kept here.
    """
    __tablename__ = "documents"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    disbursement_id: Mapped[int] = mapped_column(ForeignKey("disbursements.id"), index=True)
    locator: Mapped[str] = mapped_column(String(1024))
    content_hash: Mapped[str] = mapped_column(String(256))
    uploaded_by: Mapped[int] = mapped_column(ForeignKey("actors.id"))
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def to_domain(self) -> Document:
        return Document(
            id=self.id,
            disbursement_id=self.disbursement_id,
            locator=self.locator,
            content_hash=self.content_hash,
            uploaded_by=self.uploaded_by,
            uploaded_at=as_utc(self.uploaded_at),
        )


class AuditLogRecord(Base):
    """
    Append-only audit entry.

    Rows are inserted by the audit recorder and never updated or deleted.
    """
    __tablename__ = "audit_log"
    __table_args__ = {"sqlite_autoincrement": True}

    sequence: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    actor_id: Mapped[int] = mapped_column(ForeignKey("actors.id"), index=True)
    action: Mapped[str] = mapped_column(String(32))
    entity_type: Mapped[str] = mapped_column(String(32), index=True)
    entity_id: Mapped[int] = mapped_column(Integer, index=True)
    before: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    # Unique so two concurrent writers cannot fork the chain
    prev_hash: Mapped[str] = mapped_column(String(71), unique=True)
    entry_hash: Mapped[str] = mapped_column(String(71), unique=True)

    def to_domain(self) -> AuditLogEntry:
        return AuditLogEntry(
            sequence=self.sequence,
            timestamp=as_utc(self.timestamp),
            actor_id=self.actor_id,
            action=AuditAction(self.action),
            entity_type=EntityType(self.entity_type),
            entity_id=self.entity_id,
            before=self.before,
            after=self.after,
            details=self.details or {},
            prev_hash=self.prev_hash,
            entry_hash=self.entry_hash,
        )


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """
    Create the async engine for the ledger database.

    SQLite connections get foreign key enforcement switched on; other
    backends get a bounded connection pool.
    """
    if database_url.startswith("sqlite"):
        engine = create_async_engine(database_url, echo=echo)
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    else:
        engine = create_async_engine(
            database_url,
            echo=echo,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
        )
    logger.info(f"Database engine created for {engine.url.render_as_string(hide_password=True)}")
    return engine


async def create_schema(engine: AsyncEngine) -> None:
    """
    Initialize database tables.

    Call this on application startup to ensure tables exist.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")
