"""
Domain models for the donation lifecycle ledger.

These are the immutable values the rest of the system passes around: the
persistence layer converts its ORM records into these, the lifecycle engine
returns them, and the API serializes them.

Design Decisions:
- Frozen dataclasses so a returned entity can never be mutated behind the
  ledger's back
- Decimal for all monetary values
- snapshot() produces the JSON-safe dict recorded in audit entries; amounts
  are strings and dates ISO-8601 so snapshots compare exactly
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from .money import format_amount


class Role(str, Enum):
    """Roles an authenticated actor can hold."""
    DONOR = "Donor"
    OPERATOR = "Operator"
    ACCOUNTANT = "Accountant"
    AUDITOR = "Auditor"
    ADMIN = "Admin"


class AllocationStatus(str, Enum):
    """Lifecycle status of an allocation."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DISBURSED = "disbursed"


class EntityType(str, Enum):
    """Entity kinds that appear as audit targets."""
    CAMPAIGN = "Campaign"
    DONATION = "Donation"
    ALLOCATION = "Allocation"
    DISBURSEMENT = "Disbursement"
    RECEIVER = "Receiver"
    DOCUMENT = "Document"


class AuditAction(str, Enum):
    """Kinds of state-changing operations recorded in the audit log."""
    CREATE = "CREATE"
    VERIFY = "VERIFY"
    UPDATE_STATUS = "UPDATE_STATUS"
    DISBURSE = "DISBURSE"
    UPLOAD_DOC = "UPLOAD_DOC"


@dataclass(frozen=True)
class Actor:
    """
    An authenticated caller.

    Authentication happens outside the ledger; the core only trusts the id,
    username and role it is handed.
    """
    id: int
    username: str
    role: Role


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class Campaign:
    id: int
    title: str
    description: str
    start_date: date
    end_date: date
    created_by: int
    balance: Decimal

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "created_by": self.created_by,
            "balance": format_amount(self.balance),
        }

    def is_open_on(self, day: date) -> bool:
        """True from the start date through the end date, both inclusive."""
        return self.start_date <= day <= self.end_date


@dataclass(frozen=True)
class Receiver:
    id: int
    name: str
    category: str
    payment_destination: str

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "payment_destination": self.payment_destination,
        }


@dataclass(frozen=True)
class Donation:
    id: int
    donor_id: int
    campaign_id: int
    amount: Decimal
    donated_at: datetime
    verified: bool = False

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "donor_id": self.donor_id,
            "campaign_id": self.campaign_id,
            "amount": format_amount(self.amount),
            "donated_at": _iso(self.donated_at),
            "verified": self.verified,
        }


@dataclass(frozen=True)
class Allocation:
    id: int
    donation_id: int
    campaign_id: int
    receiver_id: int
    amount: Decimal
    status: AllocationStatus = AllocationStatus.PENDING

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "donation_id": self.donation_id,
            "campaign_id": self.campaign_id,
            "receiver_id": self.receiver_id,
            "amount": format_amount(self.amount),
            "status": self.status.value,
        }


@dataclass(frozen=True)
class Disbursement:
    id: int
    allocation_id: int
    amount: Decimal
    executed_by: int
    payment_ref: str
    executed_at: datetime

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "allocation_id": self.allocation_id,
            "amount": format_amount(self.amount),
            "executed_by": self.executed_by,
            "payment_ref": self.payment_ref,
            "executed_at": _iso(self.executed_at),
        }


@dataclass(frozen=True)
class Document:
    """Evidence attached to a disbursement. Has no balance effect."""
    id: int
    disbursement_id: int
    locator: str
    content_hash: str
    uploaded_by: int
    uploaded_at: datetime

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "disbursement_id": self.disbursement_id,
            "locator": self.locator,
            "content_hash": self.content_hash,
            "uploaded_by": self.uploaded_by,
            "uploaded_at": _iso(self.uploaded_at),
        }


@dataclass(frozen=True)
class AuditLogEntry:
    """
    One immutable record of a state-changing operation.

    ``sequence`` is the total order; ``entry_hash`` chains each entry to
    the one before it so later tampering is detectable.
    """
    sequence: int
    timestamp: datetime
    actor_id: int
    action: AuditAction
    entity_type: EntityType
    entity_id: int
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    details: dict[str, Any] = field(default_factory=dict)
    prev_hash: str | None = None
    entry_hash: str = ""


# =============================================================================
# Outcomes and read models
# =============================================================================

@dataclass(frozen=True)
class DonationReceipt:
    """Result of recording a donation: the donation and its paired allocation."""
    donation: Donation
    allocation: Allocation


@dataclass(frozen=True)
class VerificationOutcome:
    donation: Donation
    campaign_balance: Decimal


@dataclass(frozen=True)
class DisbursementOutcome:
    disbursement: Disbursement
    allocation: Allocation
    campaign_balance: Decimal


@dataclass(frozen=True)
class BalanceReport:
    """Cached balance alongside the value recomputed from full history."""
    campaign_id: int
    cached: Decimal
    recomputed: Decimal

    @property
    def consistent(self) -> bool:
        return self.cached == self.recomputed


@dataclass(frozen=True)
class ChainVerification:
    """Result of walking the audit hash chain."""
    entries_checked: int
    valid: bool
    first_broken_sequence: int | None = None


@dataclass(frozen=True)
class DonationView:
    donation: Donation
    campaign_title: str
    donor_name: str


@dataclass(frozen=True)
class AllocationView:
    allocation: Allocation
    campaign_title: str
    receiver_name: str
    donor_name: str
    donation_verified: bool


@dataclass(frozen=True)
class DisbursementView:
    disbursement: Disbursement
    campaign_title: str
    receiver_name: str
    recorded_by: str


@dataclass(frozen=True)
class AuditEntryView:
    entry: AuditLogEntry
    actor_name: str
