"""Structured field extraction and confidence scoring for KYC documents.

Applies each document type's regex ladders to OCR text, masks sensitive
identifiers, and scores the result: identity cards (PAN, Aadhaar) start
at full confidence and lose a fixed penalty per failed check, other
documents are scored by field coverage.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from kyc_onboarding.errors import UnsupportedDocumentType
from kyc_onboarding.utils.config import ConfidencePolicy
from kyc_onboarding.utils.logger import get_logger

from .document_types import DOCUMENT_SPECS, DocumentSpec, DocumentType, IdentityChecks

logger = get_logger(__name__)


def _redact(values: dict[str, str | None], secret: str, masked: str) -> None:
    """Replace grouped or bare occurrences of ``secret`` in every field."""
    groups = [re.escape(secret[i : i + 4]) for i in range(0, len(secret), 4)]
    pattern = re.compile(r"(?<!\d)" + r"[\s\-]*".join(groups) + r"(?!\d)")
    for name, value in values.items():
        if value and pattern.search(value):
            values[name] = pattern.sub(masked, value)


@dataclass
class FieldExtraction:
    """Fields and confidence extracted from one transcript."""

    document_type: DocumentType
    fields: dict[str, str | None]
    confidence: float
    issues: list[str] = field(default_factory=list)
    detections: dict[str, bool] = field(default_factory=dict)
    sensitive: dict[str, str] = field(default_factory=dict, repr=False)


class FieldExtractor:
    """Regex-ladder field extractor with heuristic confidence scoring.

    Args:
        policy: Penalty schedule for identity document checks.
        specs: Document specs keyed by type. Defaults to the built-in table.
    """

    def __init__(
        self,
        policy: ConfidencePolicy | None = None,
        specs: Mapping[DocumentType, DocumentSpec] | None = None,
    ) -> None:
        self.policy = policy or ConfidencePolicy()
        self.specs = dict(specs if specs is not None else DOCUMENT_SPECS)

    def supports(self, document_type: DocumentType | str) -> bool:
        """Return whether a field table exists for the document type."""
        return document_type in self.specs

    def extract_fields(
        self, text: str, document_type: DocumentType | str
    ) -> FieldExtraction:
        """Extract structured fields for a document type.

        Args:
            text: Raw OCR transcript.
            document_type: Type whose field table is applied.

        Returns:
            Extracted public fields, detections, masked-out sensitive
            values, confidence (0-100), and validation issues.

        Raises:
            UnsupportedDocumentType: If the type has no field table.
        """
        spec = next(
            (s for t, s in self.specs.items() if t == document_type), None
        )
        if spec is None:
            raise UnsupportedDocumentType(str(document_type))

        values: dict[str, str | None] = {rule.name: rule.apply(text) for rule in spec.rules}

        sensitive: dict[str, str] = {}
        for sensitive_name, (public_name, mask) in spec.masked_fields.items():
            full = values.pop(sensitive_name, None)
            values[public_name] = mask(full) if full else None
            if full:
                sensitive[sensitive_name] = full
                # Other captures (address) may span the number.
                _redact(values, full, mask(full))

        if spec.identity is not None:
            confidence, issues, detections = self._score_identity(
                text, spec.identity, values, sensitive
            )
        else:
            confidence, issues = self._score_coverage(values)
            detections = {}

        logger.info(
            "Extracted %d/%d fields for %s (confidence=%.0f, issues=%d)",
            sum(1 for v in values.values() if v),
            len(values),
            spec.document_type,
            confidence,
            len(issues),
        )
        return FieldExtraction(
            document_type=spec.document_type,
            fields=values,
            confidence=confidence,
            issues=issues,
            detections=detections,
            sensitive=sensitive,
        )

    def _score_identity(
        self,
        text: str,
        checks: IdentityChecks,
        values: dict[str, str | None],
        sensitive: dict[str, str],
    ) -> tuple[float, list[str], dict[str, bool]]:
        """Apply the identity card penalty schedule.

        Returns:
            Tuple of (confidence, issues, detections).
        """
        policy = self.policy
        confidence = policy.start
        issues: list[str] = []

        id_value = sensitive.get(checks.id_field) or values.get(checks.id_field)
        if not id_value:
            confidence -= policy.missing_id_penalty
            issues.append(f"{checks.id_label} not found")
        elif not checks.id_format.match(id_value):
            confidence -= policy.malformed_id_penalty
            issues.append(f"{checks.id_label} format is invalid")

        has_header = bool(checks.header.search(text))
        if not has_header:
            confidence -= policy.missing_header_penalty
            issues.append(f"'{checks.header_label}' header not found")

        name = values.get(checks.name_field)
        if not name or len(name) < policy.min_name_length:
            confidence -= policy.missing_name_penalty
            issues.append("Name not found or too short")

        detections = {
            checks.detected_flag: id_value is not None,
            checks.header_flag: has_header,
        }
        return max(0.0, confidence), issues, detections

    def _score_coverage(
        self, values: dict[str, str | None]
    ) -> tuple[float, list[str]]:
        """Score a non-identity document by the share of fields found."""
        if not values:
            return 0.0, []
        found = sum(1 for v in values.values() if v)
        issues = [f"{name} not found" for name, v in values.items() if not v]
        confidence = min(self.policy.coverage_cap, found / len(values) * 100.0)
        return confidence, issues
