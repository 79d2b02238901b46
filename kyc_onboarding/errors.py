"""Typed errors for document extraction and the onboarding workflow.

Every error carries a machine-readable ``code`` and the HTTP status the
API surfaces it with, and renders to the standard error envelope via
:meth:`OnboardingError.to_dict`.
"""

from dataclasses import asdict, dataclass
from typing import Any


@dataclass
class FieldError:
    """A single field-level validation failure."""

    field: str
    message: str
    code: str


class OnboardingError(Exception):
    """Base class for all service errors."""

    status_code: int = 400
    default_code: str = "BAD_REQUEST"

    def __init__(
        self, message: str, code: str | None = None, details: Any = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Render the error as the API error envelope."""
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        return {"success": False, "error": error}


class OCRUnavailable(OnboardingError):
    """Neither the remote nor the local OCR path produced text."""

    status_code = 503
    default_code = "OCR_UNAVAILABLE"

    def __init__(self, reason: str = "") -> None:
        super().__init__(
            "Could not read text from the document, please retry with a clearer image",
            details=reason or None,
        )


class UnsupportedDocumentType(OnboardingError):
    """No field-extraction table exists for the requested document type."""

    status_code = 422
    default_code = "UNSUPPORTED_DOCUMENT_TYPE"

    def __init__(self, document_type: str) -> None:
        super().__init__(f"No field extraction available for {document_type}")
        self.document_type = document_type


class LowConfidenceExtraction(OnboardingError):
    """Extraction confidence is below the automatic-acceptance floor."""

    status_code = 422
    default_code = "LOW_CONFIDENCE_EXTRACTION"

    def __init__(self, confidence: float, floor: float) -> None:
        super().__init__(
            f"Extraction confidence {confidence:.0f} is below {floor:.0f}, "
            "manual review required",
            details={"confidence": confidence, "floor": floor},
        )
        self.confidence = confidence
        self.floor = floor


class DocumentTypeMismatch(OnboardingError):
    """None of the required fields of the declared document type were found."""

    status_code = 422
    default_code = "DOCUMENT_TYPE_MISMATCH"

    def __init__(self, document_type: str, missing_fields: list[str]) -> None:
        super().__init__(
            f"Document does not look like a {document_type}",
            details={"missing_fields": missing_fields},
        )
        self.document_type = document_type
        self.missing_fields = missing_fields


class ValidationError(OnboardingError):
    """Itemized field validation failure."""

    status_code = 422
    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: list[FieldError]) -> None:
        super().__init__(message, details=[asdict(e) for e in errors])
        self.errors = errors

    @property
    def fields(self) -> list[str]:
        """Names of the failing fields, in report order."""
        return [e.field for e in self.errors]


class InvalidStatusTransition(OnboardingError):
    """A transition was requested from a state that does not allow it."""

    status_code = 409
    default_code = "INVALID_STATUS"

    def __init__(self, action: str, current_status: str, allowed: list[str]) -> None:
        super().__init__(
            f"Cannot {action} a merchant in '{current_status}' status "
            f"(allowed from: {', '.join(allowed) or 'none'})",
            details={"current_status": current_status, "action": action},
        )
        self.action = action
        self.current_status = current_status


class ExternalServiceFailure(OnboardingError):
    """An outbound call to a partner service failed; safe to retry."""

    status_code = 502
    default_code = "EXTERNAL_SERVICE_FAILURE"


class MerchantNotFound(OnboardingError):
    status_code = 404
    default_code = "MERCHANT_NOT_FOUND"

    def __init__(self, merchant_id: str) -> None:
        super().__init__(f"Merchant {merchant_id} not found")


class WebhookAuthenticationError(OnboardingError):
    """A partner callback failed signature or timestamp verification."""

    status_code = 401
    default_code = "WEBHOOK_AUTH_FAILED"


class ConcurrentModification(OnboardingError):
    """The stored record changed between read and write."""

    status_code = 409
    default_code = "CONCURRENT_MODIFICATION"
