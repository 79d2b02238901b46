"""Pydantic request/response schemas for the FastAPI endpoints."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from kyc_onboarding.onboarding.models import (
    AuditEntry,
    KYCRecord,
    MerchantProfile,
    PersistedStatus,
)


class RequestedDocumentType(StrEnum):
    """Document type accepted by the extraction endpoint."""

    PAN_CARD = "pan_card"
    AADHAAR_CARD = "aadhaar_card"
    GST_CERTIFICATE = "gst_certificate"
    BUSINESS_PROOF = "business_proof"
    BANK_STATEMENT = "bank_statement"
    CANCELLED_CHEQUE = "cancelled_cheque"
    VIDEO_KYC = "video_kyc"
    SELFIE = "selfie"
    AUTO = "auto"


class ExtractionResponse(BaseModel):
    """Response schema for a document extraction request.

    Carries display-safe fields only; the raw transcript is not returned
    because it can contain unmasked identifiers.
    """

    success: bool
    document_id: str
    document_type: str | None
    fields: dict[str, str]
    confidence: float
    ocr_confidence: float
    extraction_confidence: float
    engine: str
    detections: dict[str, bool]
    validation_issues: list[str]
    review_status: str
    processing_time_ms: float


class ClassifyRequest(BaseModel):
    text: str


class ClassifyResponse(BaseModel):
    """Response schema for text classification."""

    document_type: str | None
    hits: dict[str, int]


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str
    tesseract_available: bool
    vision_configured: bool


class MerchantResponse(BaseModel):
    """A single merchant record with its persisted status."""

    success: bool = True
    merchant: MerchantProfile
    persisted_status: PersistedStatus

    @classmethod
    def of(cls, merchant: MerchantProfile) -> "MerchantResponse":
        return cls(merchant=merchant, persisted_status=merchant.persisted_status)


class MerchantListResponse(BaseModel):
    success: bool = True
    total: int
    merchants: list[MerchantProfile]


class AuditResponse(BaseModel):
    success: bool = True
    merchant_id: str
    entries: list[AuditEntry]


class ApproveRequest(BaseModel):
    notes: str | None = None


class ManualApproveRequest(BaseModel):
    reason: str


class RejectRequest(BaseModel):
    reason: str = ""


class LocationRequest(BaseModel):
    lat: float
    lng: float


class VideoKYCRequest(BaseModel):
    selfie_file_path: str


class KYCResponse(BaseModel):
    success: bool = True
    kyc: KYCRecord
    is_complete: bool

    @classmethod
    def of(cls, record: KYCRecord) -> "KYCResponse":
        return cls(kyc=record, is_complete=record.is_complete)


class BankWebhookDecision(BaseModel):
    """Decision block of a bank webhook, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    approved: bool
    reason: str | None = None
    conditions: list[str] = Field(default_factory=list)
    account_number: str | None = None
    merchant_code: str | None = None


class BankWebhookPayload(BaseModel):
    """Payload the bank posts when it decides an application."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    application_id: str
    merchant_id: str
    status: str
    decision: BankWebhookDecision
    processed_at: datetime | None = None
