"""Merchant onboarding records, statuses and decision payloads."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(UTC)


class OnboardingStatus(StrEnum):
    """Canonical onboarding states, in workflow order."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    VALIDATING = "validating"
    PENDING_BANK_APPROVAL = "pending_bank_approval"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (OnboardingStatus.APPROVED, OnboardingStatus.REJECTED)


class PersistedStatus(StrEnum):
    """Coarse status stored in the merchant_profiles table."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    VERIFIED = "verified"
    REJECTED = "rejected"


PERSISTED_STATUS: dict[OnboardingStatus, PersistedStatus] = {
    OnboardingStatus.DRAFT: PersistedStatus.PENDING,
    OnboardingStatus.SUBMITTED: PersistedStatus.IN_PROGRESS,
    OnboardingStatus.VALIDATING: PersistedStatus.IN_PROGRESS,
    OnboardingStatus.PENDING_BANK_APPROVAL: PersistedStatus.IN_PROGRESS,
    OnboardingStatus.APPROVED: PersistedStatus.VERIFIED,
    OnboardingStatus.REJECTED: PersistedStatus.REJECTED,
}


def to_persisted_status(status: OnboardingStatus) -> PersistedStatus:
    """Map a canonical status onto the persistence enumeration."""
    return PERSISTED_STATUS[status]


DocumentKind = Literal[
    "business_license", "tax_certificate", "id_proof", "bank_statement", "other"
]


class MerchantDocument(BaseModel):
    """A document uploaded with a merchant application."""

    type: DocumentKind | None = None
    url: str = ""
    filename: str = ""
    uploaded_at: datetime | None = None
    verified: bool = False


class MerchantSubmission(BaseModel):
    """Editable merchant profile data."""

    business_name: str = ""
    business_type: str = ""
    registration_number: str = ""
    tax_id: str = ""
    email: str = ""
    phone: str = ""
    website: str | None = None
    address_line1: str = ""
    address_line2: str | None = None
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""
    documents: list[MerchantDocument] = Field(default_factory=list)
    upi_vpa: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class BankResponse(BaseModel):
    """What the bank told us about an application."""

    success: bool
    application_id: str | None = None
    message: str | None = None
    estimated_processing_time: str | None = None
    additional_data: dict[str, Any] = Field(default_factory=dict)


class MerchantProfile(MerchantSubmission):
    """A merchant record with its onboarding lifecycle state."""

    id: str
    user_id: str
    onboarding_status: OnboardingStatus = OnboardingStatus.DRAFT
    bank_application_id: str | None = None
    bank_response: BankResponse | None = None
    rejection_reason: str | None = None
    submitted_at: datetime | None = None
    validated_at: datetime | None = None
    bank_submitted_at: datetime | None = None
    decision_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    @property
    def persisted_status(self) -> PersistedStatus:
        return to_persisted_status(self.onboarding_status)


class ManualApprove(BaseModel):
    """Admin override approving a merchant outside the normal flow."""

    reason: str
    actor: str


class BankDecision(BaseModel):
    """Decision delivered by the bank for a submitted application."""

    application_id: str
    approved: bool
    reason: str | None = None
    account_number: str | None = None
    merchant_code: str | None = None
    processed_at: datetime | None = None


class AuditEntry(BaseModel):
    """One recorded status transition."""

    merchant_id: str
    action: str
    previous_status: OnboardingStatus | None
    new_status: OnboardingStatus | None
    actor: str
    timestamp: datetime = Field(default_factory=utcnow)
    notes: str | None = None
    override: bool = False


class Coordinates(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class KYCRecord(BaseModel):
    """Video KYC and geolocation capture for one merchant."""

    merchant_id: str
    video_kyc_completed: bool = False
    location_captured: bool = False
    selfie_file_path: str | None = None
    coordinates: Coordinates | None = None
    captured_address: str | None = None
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_complete(self) -> bool:
        return self.video_kyc_completed and self.location_captured
