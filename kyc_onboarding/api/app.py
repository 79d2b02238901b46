"""FastAPI application for the merchant KYC onboarding service.

Provides REST endpoints for identity document extraction, merchant
profile submission, the admin review workflow, the bank decision
webhook, and video KYC capture. Authentication is handled upstream; the
caller's identity arrives in the ``X-User-Id`` and ``X-Admin-Id`` headers.
Bank webhooks are authenticated by HMAC signature.

Handlers that reach OCR engines or partner APIs are plain functions so
FastAPI runs them in its threadpool.
"""

import time
import uuid
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kyc_onboarding import __version__
from kyc_onboarding.errors import OnboardingError
from kyc_onboarding.extraction.document_types import DocumentType
from kyc_onboarding.extraction.pipeline import DocumentPipeline
from kyc_onboarding.ocr.tesseract_engine import TesseractEngine
from kyc_onboarding.onboarding.bank_client import BankApplicationClient
from kyc_onboarding.onboarding.kyc import KYCService
from kyc_onboarding.onboarding.models import (
    BankDecision,
    ManualApprove,
    MerchantProfile,
    MerchantSubmission,
    OnboardingStatus,
)
from kyc_onboarding.onboarding.notifications import NotificationService
from kyc_onboarding.onboarding.state_machine import OnboardingStateMachine
from kyc_onboarding.onboarding.validation import ProfileValidator
from kyc_onboarding.onboarding.webhook_auth import verify_signature
from kyc_onboarding.utils.config import AppConfig, load_config
from kyc_onboarding.utils.logger import get_logger

from .schemas import (
    ApproveRequest,
    AuditResponse,
    BankWebhookPayload,
    ClassifyRequest,
    ClassifyResponse,
    ExtractionResponse,
    HealthResponse,
    KYCResponse,
    LocationRequest,
    ManualApproveRequest,
    MerchantListResponse,
    MerchantResponse,
    RejectRequest,
    RequestedDocumentType,
    VideoKYCRequest,
)

logger = get_logger(__name__)

app = FastAPI(
    title="Merchant KYC Onboarding API",
    description="Identity document extraction and merchant onboarding workflow",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_ALLOWED_CONTENT_TYPES = {
    "image/png",
    "image/jpeg",
    "image/tiff",
    "application/pdf",
    "application/octet-stream",
}


@lru_cache
def get_config() -> AppConfig:
    return load_config()


@lru_cache
def get_pipeline() -> DocumentPipeline:
    return DocumentPipeline(get_config())


@lru_cache
def get_state_machine() -> OnboardingStateMachine:
    """Build the shared onboarding state machine from configuration."""
    config = get_config()
    return OnboardingStateMachine(
        bank_client=BankApplicationClient(config.bank),
        notifier=NotificationService(admin_email=config.onboarding.admin_email),
        validator=ProfileValidator(config.onboarding),
    )


@lru_cache
def get_kyc_service() -> KYCService:
    return KYCService()


def require_user(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id


def require_admin(
    x_admin_id: Annotated[str | None, Header()] = None,
) -> str:
    if not x_admin_id:
        raise HTTPException(status_code=403, detail="Admin access required")
    return x_admin_id


async def verify_bank_webhook(
    request: Request,
    config: Annotated[AppConfig, Depends(get_config)],
    x_webhook_signature: Annotated[str | None, Header()] = None,
    x_webhook_timestamp: Annotated[str | None, Header()] = None,
) -> None:
    """Reject bank callbacks whose signature or timestamp does not verify."""
    verify_signature(
        config.bank.webhook_secret,
        x_webhook_signature,
        x_webhook_timestamp,
        await request.body(),
        config.bank.webhook_tolerance_seconds,
    )


Pipeline = Annotated[DocumentPipeline, Depends(get_pipeline)]
Machine = Annotated[OnboardingStateMachine, Depends(get_state_machine)]
KYC = Annotated[KYCService, Depends(get_kyc_service)]
UserId = Annotated[str, Depends(require_user)]
AdminId = Annotated[str, Depends(require_admin)]


def _owned_merchant(
    machine: OnboardingStateMachine, merchant_id: str, user_id: str
) -> MerchantProfile:
    merchant = machine.get(merchant_id)
    if merchant.user_id != user_id:
        raise HTTPException(status_code=403, detail="Merchant belongs to another user")
    return merchant


@app.exception_handler(OnboardingError)
async def onboarding_error_handler(request: Request, exc: OnboardingError) -> JSONResponse:
    """Render service errors as the standard error envelope."""
    logger.warning(
        "%s %s failed: %s %s", request.method, request.url.path, exc.code, exc.message
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Return system health status."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        tesseract_available=TesseractEngine.is_available(),
        vision_configured=bool(get_config().vision.api_key),
    )


@app.post("/extract", response_model=ExtractionResponse)
def extract_document(
    file: Annotated[UploadFile, File(...)],
    pipeline: Pipeline,
    document_type: Annotated[RequestedDocumentType, Query()] = RequestedDocumentType.AUTO,
) -> ExtractionResponse:
    """Extract identity fields from an uploaded document.

    Args:
        file: Uploaded document (PNG, JPEG, TIFF, or PDF).
        pipeline: Extraction pipeline.
        document_type: Declared document type, or ``auto`` to classify.

    Returns:
        Masked fields, combined confidence and review status.
    """
    start_time = time.time()

    if file.content_type and file.content_type not in _ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type: {file.content_type}",
        )

    declared = (
        None
        if document_type == RequestedDocumentType.AUTO
        else DocumentType(document_type.value)
    )

    try:
        content = file.file.read()
        result = pipeline.process(content, declared)
    except OnboardingError:
        raise
    except Exception as exc:
        logger.error("Extraction failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    processing_time = (time.time() - start_time) * 1000

    return ExtractionResponse(
        success=True,
        document_id=str(uuid.uuid4()),
        document_type=result.document_type.value if result.document_type else None,
        fields={k: v for k, v in result.fields.items() if v is not None},
        confidence=result.confidence,
        ocr_confidence=result.ocr_confidence,
        extraction_confidence=result.extraction_confidence,
        engine=result.engine,
        detections=result.detections,
        validation_issues=result.validation_issues,
        review_status=pipeline.review_status(result).value,
        processing_time_ms=processing_time,
    )


@app.post("/classify", response_model=ClassifyResponse)
async def classify_text(body: ClassifyRequest, pipeline: Pipeline) -> ClassifyResponse:
    """Classify already-recognized text into a document type."""
    classifier = pipeline.classifier
    document_type = classifier.classify(body.text)
    return ClassifyResponse(
        document_type=document_type.value if document_type else None,
        hits={
            spec.document_type.value: classifier.count_hits(body.text, spec)
            for spec in classifier.specs
        },
    )


@app.post("/merchants/profile", response_model=MerchantResponse)
def save_profile(
    submission: MerchantSubmission, machine: Machine, user_id: UserId
) -> MerchantResponse:
    """Create or update the caller's draft merchant profile."""
    return MerchantResponse.of(machine.save_profile(user_id, submission))


@app.post("/merchants/{merchant_id}/submit", response_model=MerchantResponse)
def submit_application(
    merchant_id: str, machine: Machine, user_id: UserId
) -> MerchantResponse:
    """Submit the caller's draft for review."""
    _owned_merchant(machine, merchant_id, user_id)
    return MerchantResponse.of(machine.submit(merchant_id, user_id))


@app.get("/merchants", response_model=MerchantListResponse)
def list_merchants(
    machine: Machine,
    admin_id: AdminId,
    status: Annotated[OnboardingStatus | None, Query()] = None,
) -> MerchantListResponse:
    """List merchants for the admin dashboard, optionally by status."""
    merchants = machine.list_merchants(status)
    return MerchantListResponse(total=len(merchants), merchants=merchants)


@app.get("/merchants/{merchant_id}", response_model=MerchantResponse)
def get_merchant(
    merchant_id: str,
    machine: Machine,
    x_user_id: Annotated[str | None, Header()] = None,
    x_admin_id: Annotated[str | None, Header()] = None,
) -> MerchantResponse:
    """Fetch a merchant record as its owner or as an admin."""
    if x_admin_id:
        return MerchantResponse.of(machine.get(merchant_id))
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return MerchantResponse.of(_owned_merchant(machine, merchant_id, x_user_id))


@app.post("/admin/merchants/{merchant_id}/validate", response_model=MerchantResponse)
def validate_merchant(
    merchant_id: str, machine: Machine, admin_id: AdminId
) -> MerchantResponse:
    return MerchantResponse.of(machine.validate(merchant_id, admin_id))


@app.post("/admin/merchants/{merchant_id}/submit-to-bank", response_model=MerchantResponse)
def submit_to_bank(
    merchant_id: str, machine: Machine, admin_id: AdminId
) -> MerchantResponse:
    return MerchantResponse.of(machine.submit_to_bank(merchant_id, admin_id))


@app.post("/admin/merchants/{merchant_id}/approve", response_model=MerchantResponse)
def approve_merchant(
    merchant_id: str, machine: Machine, admin_id: AdminId, body: ApproveRequest | None = None
) -> MerchantResponse:
    notes = body.notes if body else None
    return MerchantResponse.of(machine.approve(merchant_id, admin_id, notes))


@app.post("/admin/merchants/{merchant_id}/manual-approve", response_model=MerchantResponse)
def manual_approve_merchant(
    merchant_id: str, body: ManualApproveRequest, machine: Machine, admin_id: AdminId
) -> MerchantResponse:
    """Approve outside the normal flow; recorded as an override."""
    decision = ManualApprove(reason=body.reason, actor=admin_id)
    return MerchantResponse.of(machine.manual_approve(merchant_id, decision))


@app.post("/admin/merchants/{merchant_id}/reject", response_model=MerchantResponse)
def reject_merchant(
    merchant_id: str, body: RejectRequest, machine: Machine, admin_id: AdminId
) -> MerchantResponse:
    return MerchantResponse.of(machine.reject(merchant_id, admin_id, body.reason))


@app.post("/admin/merchants/{merchant_id}/delete", response_model=MerchantResponse)
def delete_merchant(
    merchant_id: str, machine: Machine, admin_id: AdminId
) -> MerchantResponse:
    return MerchantResponse.of(machine.delete(merchant_id, admin_id))


@app.get("/admin/merchants/{merchant_id}/audit", response_model=AuditResponse)
def merchant_audit(
    merchant_id: str, machine: Machine, admin_id: AdminId
) -> AuditResponse:
    return AuditResponse(merchant_id=merchant_id, entries=machine.history(merchant_id))


@app.post(
    "/webhooks/bank",
    response_model=MerchantResponse,
    dependencies=[Depends(verify_bank_webhook)],
)
def bank_webhook(payload: BankWebhookPayload, machine: Machine) -> MerchantResponse:
    """Apply a bank decision delivered by webhook."""
    logger.info(
        "Bank webhook: application=%s merchant=%s status=%s",
        payload.application_id,
        payload.merchant_id,
        payload.status,
    )
    decision = BankDecision(
        application_id=payload.application_id,
        approved=payload.decision.approved,
        reason=payload.decision.reason,
        account_number=payload.decision.account_number,
        merchant_code=payload.decision.merchant_code,
        processed_at=payload.processed_at,
    )
    return MerchantResponse.of(machine.record_bank_decision(payload.merchant_id, decision))


@app.get("/merchants/{merchant_id}/kyc", response_model=KYCResponse)
def get_kyc(
    merchant_id: str, machine: Machine, kyc: KYC, user_id: UserId
) -> KYCResponse:
    _owned_merchant(machine, merchant_id, user_id)
    return KYCResponse.of(kyc.get(merchant_id))


@app.post("/merchants/{merchant_id}/kyc/location", response_model=KYCResponse)
def capture_location(
    merchant_id: str, body: LocationRequest, machine: Machine, kyc: KYC, user_id: UserId
) -> KYCResponse:
    _owned_merchant(machine, merchant_id, user_id)
    return KYCResponse.of(kyc.capture_location(merchant_id, body.lat, body.lng))


@app.post("/merchants/{merchant_id}/kyc/video", response_model=KYCResponse)
def complete_video_kyc(
    merchant_id: str, body: VideoKYCRequest, machine: Machine, kyc: KYC, user_id: UserId
) -> KYCResponse:
    _owned_merchant(machine, merchant_id, user_id)
    return KYCResponse.of(kyc.complete_video_kyc(merchant_id, body.selfie_file_path))


@app.post("/merchants/{merchant_id}/kyc/reset", response_model=KYCResponse)
def reset_kyc(
    merchant_id: str, machine: Machine, kyc: KYC, user_id: UserId
) -> KYCResponse:
    _owned_merchant(machine, merchant_id, user_id)
    return KYCResponse.of(kyc.reset(merchant_id))
