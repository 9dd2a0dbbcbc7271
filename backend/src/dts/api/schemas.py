"""
Pydantic schemas for API request/response validation.

These schemas define the contract between frontend and backend.
All monetary values leave the API as strings with exactly two decimals to
avoid floating point issues.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from dts.domain.models import (
    Allocation,
    AllocationView,
    AuditEntryView,
    BalanceReport,
    Campaign,
    ChainVerification,
    Disbursement,
    DisbursementView,
    Document,
    Donation,
    DonationView,
    Receiver,
)
from dts.domain.money import format_amount


# =============================================================================
# Request Schemas
# =============================================================================

class CreateCampaignRequest(BaseModel):
    """Request to open a campaign."""
    title: str = Field(..., description="Campaign title")
    description: str = Field(..., description="What the campaign funds")
    end_date: date = Field(..., description="Last day donations are accepted")
    start_date: date | None = Field(
        default=None,
        description="First day of the campaign (defaults to today)",
    )


class CreateReceiverRequest(BaseModel):
    """Request to register a receiver."""
    name: str
    category: str = Field(..., description="Receiver category, e.g. Hospital or Education")
    payment_destination: str = Field(..., description="Reference to the receiver's payment account")


class RecordDonationRequest(BaseModel):
    """Request to record a donation by the calling donor."""
    campaign_id: int
    amount: Decimal = Field(..., description="Positive amount with at most 2 decimals")


class SetAllocationStatusRequest(BaseModel):
    """Request to approve, reject or revert an allocation."""
    status: str = Field(..., description="approved, rejected or pending")


class RecordDisbursementRequest(BaseModel):
    """Request to record the payout of an approved allocation."""
    allocation_id: int
    amount: Decimal = Field(..., description="Must equal the allocation amount exactly")
    payment_ref: str = Field(..., description="Reference of the external payment event")


class AttachDocumentRequest(BaseModel):
    """Request to attach evidence to a disbursement."""
    disbursement_id: int
    locator: str = Field(..., description="Where the document is stored")
    content_hash: str | None = Field(default=None, description="Hash of the document content")


# =============================================================================
# Response Schemas
# =============================================================================

class CampaignResponse(BaseModel):
    id: int
    title: str
    description: str
    start_date: date
    end_date: date
    created_by: int
    balance: str

    @classmethod
    def from_domain(cls, campaign: Campaign) -> "CampaignResponse":
        return cls(
            id=campaign.id,
            title=campaign.title,
            description=campaign.description,
            start_date=campaign.start_date,
            end_date=campaign.end_date,
            created_by=campaign.created_by,
            balance=format_amount(campaign.balance),
        )


class ReceiverResponse(BaseModel):
    id: int
    name: str
    category: str
    payment_destination: str

    @classmethod
    def from_domain(cls, receiver: Receiver) -> "ReceiverResponse":
        return cls(
            id=receiver.id,
            name=receiver.name,
            category=receiver.category,
            payment_destination=receiver.payment_destination,
        )


class DonationResponse(BaseModel):
    id: int
    donor_id: int
    campaign_id: int
    amount: str
    donated_at: datetime
    verified: bool

    # Display fields, present on listings only
    campaign_title: str | None = None
    donor_name: str | None = None

    @classmethod
    def from_domain(cls, donation: Donation, **display: Any) -> "DonationResponse":
        return cls(
            id=donation.id,
            donor_id=donation.donor_id,
            campaign_id=donation.campaign_id,
            amount=format_amount(donation.amount),
            donated_at=donation.donated_at,
            verified=donation.verified,
            **display,
        )

    @classmethod
    def from_view(cls, view: DonationView) -> "DonationResponse":
        return cls.from_domain(
            view.donation,
            campaign_title=view.campaign_title,
            donor_name=view.donor_name,
        )


class AllocationResponse(BaseModel):
    id: int
    donation_id: int
    campaign_id: int
    receiver_id: int
    amount: str
    status: str

    campaign_title: str | None = None
    receiver_name: str | None = None
    donor_name: str | None = None
    donation_verified: bool | None = None

    @classmethod
    def from_domain(cls, allocation: Allocation, **display: Any) -> "AllocationResponse":
        return cls(
            id=allocation.id,
            donation_id=allocation.donation_id,
            campaign_id=allocation.campaign_id,
            receiver_id=allocation.receiver_id,
            amount=format_amount(allocation.amount),
            status=allocation.status.value,
            **display,
        )

    @classmethod
    def from_view(cls, view: AllocationView) -> "AllocationResponse":
        return cls.from_domain(
            view.allocation,
            campaign_title=view.campaign_title,
            receiver_name=view.receiver_name,
            donor_name=view.donor_name,
            donation_verified=view.donation_verified,
        )


class DisbursementResponse(BaseModel):
    id: int
    allocation_id: int
    amount: str
    executed_by: int
    payment_ref: str
    executed_at: datetime

    campaign_title: str | None = None
    receiver_name: str | None = None
    recorded_by: str | None = None

    @classmethod
    def from_domain(cls, disbursement: Disbursement, **display: Any) -> "DisbursementResponse":
        return cls(
            id=disbursement.id,
            allocation_id=disbursement.allocation_id,
            amount=format_amount(disbursement.amount),
            executed_by=disbursement.executed_by,
            payment_ref=disbursement.payment_ref,
            executed_at=disbursement.executed_at,
            **display,
        )

    @classmethod
    def from_view(cls, view: DisbursementView) -> "DisbursementResponse":
        return cls.from_domain(
            view.disbursement,
            campaign_title=view.campaign_title,
            receiver_name=view.receiver_name,
            recorded_by=view.recorded_by,
        )


class DocumentResponse(BaseModel):
    id: int
    disbursement_id: int
    locator: str
    content_hash: str
    uploaded_by: int
    uploaded_at: datetime

    @classmethod
    def from_domain(cls, document: Document) -> "DocumentResponse":
        return cls(
            id=document.id,
            disbursement_id=document.disbursement_id,
            locator=document.locator,
            content_hash=document.content_hash,
            uploaded_by=document.uploaded_by,
            uploaded_at=document.uploaded_at,
        )


class DonationReceiptResponse(BaseModel):
    """A recorded donation and the allocation created with it."""
    donation: DonationResponse
    allocation: AllocationResponse


class VerificationResponse(BaseModel):
    donation: DonationResponse
    campaign_balance: str


class DisbursementOutcomeResponse(BaseModel):
    disbursement: DisbursementResponse
    allocation: AllocationResponse
    new_balance: str


class BalanceResponse(BaseModel):
    """Cached campaign balance next to the value recomputed from history."""
    campaign_id: int
    balance: str
    recomputed_balance: str
    consistent: bool

    @classmethod
    def from_domain(cls, report: BalanceReport) -> "BalanceResponse":
        return cls(
            campaign_id=report.campaign_id,
            balance=format_amount(report.cached),
            recomputed_balance=format_amount(report.recomputed),
            consistent=report.consistent,
        )


class ReconciliationResponse(BaseModel):
    consistent: bool
    campaigns: list[BalanceResponse]


class AuditEntryResponse(BaseModel):
    sequence: int
    timestamp: datetime
    actor_id: int
    actor_name: str
    action: str
    entity_type: str
    entity_id: int
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    details: dict[str, Any] = {}
    prev_hash: str | None = None
    entry_hash: str

    @classmethod
    def from_view(cls, view: AuditEntryView) -> "AuditEntryResponse":
        entry = view.entry
        return cls(
            sequence=entry.sequence,
            timestamp=entry.timestamp,
            actor_id=entry.actor_id,
            actor_name=view.actor_name,
            action=entry.action.value,
            entity_type=entry.entity_type.value,
            entity_id=entry.entity_id,
            before=entry.before,
            after=entry.after,
            details=entry.details,
            prev_hash=entry.prev_hash,
            entry_hash=entry.entry_hash,
        )


class ChainVerificationResponse(BaseModel):
    entries_checked: int
    valid: bool
    first_broken_sequence: int | None = None

    @classmethod
    def from_domain(cls, result: ChainVerification) -> "ChainVerificationResponse":
        return cls(
            entries_checked=result.entries_checked,
            valid=result.valid,
            first_broken_sequence=result.first_broken_sequence,
        )


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str
    database: str = "connected"
    receiver_assignment: str


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: str | None = None
    retryable: bool = False
