"""Merchant profile validation run before submission and admin review.

Rules are data: each profile field maps to a list of rule dictionaries
whose ``type`` selects a validator method. Every failing check yields a
:class:`FieldError`; all failures are collected and raised together.
"""

import re
from typing import Any

from kyc_onboarding.errors import FieldError, ValidationError
from kyc_onboarding.utils.config import OnboardingConfig
from kyc_onboarding.utils.logger import get_logger

from .models import MerchantProfile, MerchantSubmission

logger = get_logger(__name__)

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
PHONE_PATTERN = r"^\+?[\d\s\-()]+$"

PROFILE_RULES: dict[str, list[dict[str, Any]]] = {
    "business_name": [
        {
            "type": "min_length",
            "min": 2,
            "message": "Business name must be at least 2 characters",
            "code": "INVALID_BUSINESS_NAME",
        }
    ],
    "business_type": [
        {"type": "required", "message": "Business type is required", "code": "MISSING_BUSINESS_TYPE"}
    ],
    "registration_number": [
        {
            "type": "required",
            "message": "Registration number is required",
            "code": "MISSING_REGISTRATION_NUMBER",
        }
    ],
    "tax_id": [{"type": "required", "message": "Tax ID is required", "code": "MISSING_TAX_ID"}],
    "email": [
        {
            "type": "regex",
            "pattern": EMAIL_PATTERN,
            "message": "Valid email address is required",
            "code": "INVALID_EMAIL",
        }
    ],
    "phone": [
        {
            "type": "regex",
            "pattern": PHONE_PATTERN,
            "message": "Valid phone number is required",
            "code": "INVALID_PHONE",
        }
    ],
    "address_line1": [
        {"type": "required", "message": "Address line 1 is required", "code": "MISSING_ADDRESS"}
    ],
    "city": [{"type": "required", "message": "City is required", "code": "MISSING_CITY"}],
    "state": [{"type": "required", "message": "State is required", "code": "MISSING_STATE"}],
    "postal_code": [
        {"type": "required", "message": "Postal code is required", "code": "MISSING_POSTAL_CODE"}
    ],
    "country": [{"type": "required", "message": "Country is required", "code": "MISSING_COUNTRY"}],
}


class ProfileValidator:
    """Validates merchant profiles against field rules and document policy.

    Args:
        config: Onboarding configuration (document count and types).
        rules: Field rules; defaults to :data:`PROFILE_RULES`.
    """

    def __init__(
        self,
        config: OnboardingConfig | None = None,
        rules: dict[str, list[dict[str, Any]]] | None = None,
    ) -> None:
        self.config = config or OnboardingConfig()
        self.rules = rules if rules is not None else PROFILE_RULES
        self._validators: dict[str, Any] = {
            "required": self._validate_required,
            "min_length": self._validate_min_length,
            "regex": self._validate_regex,
        }

    def check(self, profile: MerchantSubmission) -> list[FieldError]:
        """Collect every validation failure for a profile.

        Args:
            profile: Profile or submission to check.

        Returns:
            Field errors in rule order, then document errors.
        """
        errors: list[FieldError] = []

        for field_name, rules in self.rules.items():
            value = getattr(profile, field_name, None)
            for rule in rules:
                validator = self._validators.get(rule.get("type"))
                if validator is None:
                    logger.warning("Unknown rule type: %s", rule.get("type"))
                    continue
                error = validator(field_name, value, rule)
                if error is not None:
                    errors.append(error)

        errors.extend(self._validate_documents(profile))
        return errors

    def validate(self, profile: MerchantProfile) -> None:
        """Validate a merchant profile.

        Raises:
            ValidationError: If any check fails, listing every failure.
        """
        errors = self.check(profile)
        if errors:
            logger.warning(
                "Merchant %s validation failed: %d errors (%s)",
                profile.id,
                len(errors),
                ", ".join(e.field for e in errors),
            )
            raise ValidationError("Merchant validation failed", errors)

        logger.info("Merchant %s validation passed", profile.id)

    def _validate_required(
        self, field_name: str, value: Any, rule: dict
    ) -> FieldError | None:
        """Check that a field is present and non-blank."""
        if value is not None and str(value).strip():
            return None
        return FieldError(field_name, rule["message"], rule["code"])

    def _validate_min_length(
        self, field_name: str, value: Any, rule: dict
    ) -> FieldError | None:
        """Check that a stripped value has at least ``min`` characters."""
        if value is not None and len(str(value).strip()) >= rule.get("min", 1):
            return None
        return FieldError(field_name, rule["message"], rule["code"])

    def _validate_regex(
        self, field_name: str, value: Any, rule: dict
    ) -> FieldError | None:
        """Check a value against a pattern; empty values fail."""
        if value and re.match(rule["pattern"], str(value)):
            return None
        return FieldError(field_name, rule["message"], rule["code"])

    def _validate_documents(self, profile: MerchantSubmission) -> list[FieldError]:
        """Check document count, per-document metadata and required types."""
        errors: list[FieldError] = []
        documents = profile.documents

        if len(documents) < self.config.min_documents:
            errors.append(
                FieldError(
                    "documents",
                    f"At least {self.config.min_documents} documents are required",
                    "INSUFFICIENT_DOCUMENTS",
                )
            )

        for index, doc in enumerate(documents):
            if not doc.url.strip():
                errors.append(
                    FieldError(
                        f"documents[{index}].url",
                        "Document URL is required",
                        "MISSING_DOCUMENT_URL",
                    )
                )
            if not doc.filename.strip():
                errors.append(
                    FieldError(
                        f"documents[{index}].filename",
                        "Document filename is required",
                        "MISSING_DOCUMENT_FILENAME",
                    )
                )
            if not doc.type:
                errors.append(
                    FieldError(
                        f"documents[{index}].type",
                        "Document type is required",
                        "MISSING_DOCUMENT_TYPE",
                    )
                )

        provided = {doc.type for doc in documents}
        for required_type in self.config.required_document_types:
            if required_type not in provided:
                errors.append(
                    FieldError(
                        "documents",
                        f"{required_type} document is required",
                        f"MISSING_{required_type.upper()}",
                    )
                )

        return errors
