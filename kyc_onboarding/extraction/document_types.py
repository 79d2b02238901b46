"""Document type definitions: detector patterns and field extraction rules.

Each supported document type is described by a :class:`DocumentSpec`.
Detector patterns drive classification; field rules are ordered regex
ladders evaluated first-match-wins. Adding a document type means adding
a spec to :data:`DOCUMENT_SPECS`, no control flow changes.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum


class DocumentType(StrEnum):
    """Document types known to the onboarding flow."""

    PAN_CARD = "pan_card"
    AADHAAR_CARD = "aadhaar_card"
    GST_CERTIFICATE = "gst_certificate"
    BUSINESS_PROOF = "business_proof"
    BANK_STATEMENT = "bank_statement"
    CANCELLED_CHEQUE = "cancelled_cheque"
    VIDEO_KYC = "video_kyc"
    SELFIE = "selfie"


def _strip(value: str) -> str | None:
    return value.strip() or None


def _collapse(value: str) -> str | None:
    return " ".join(value.split()) or None


def title_case(value: str) -> str | None:
    """Title-case every whitespace-separated word of a name."""
    words = value.split()
    if not words:
        return None
    return " ".join(w[:1].upper() + w[1:].lower() for w in words)


def _upper_compact(value: str) -> str | None:
    return re.sub(r"\s+", "", value).upper() or None


def _digits_12(value: str) -> str | None:
    digits = re.sub(r"[\s\-]", "", value)
    return digits if len(digits) == 12 else None


_GENDER_NAMES = {"male": "Male", "female": "Female", "पुरुष": "Male", "महिला": "Female"}


def _gender(value: str) -> str | None:
    return _GENDER_NAMES.get(value.strip().lower(), title_case(value))


def mask_aadhaar(number: str) -> str:
    """Mask a 12-digit Aadhaar number down to its last four digits."""
    return f"****-****-{number[-4:]}"


@dataclass(frozen=True)
class FieldRule:
    """An ordered list of patterns for one field.

    The first pattern that matches and whose transformed capture is
    non-empty supplies the value.
    """

    name: str
    patterns: tuple[re.Pattern[str], ...]
    transform: Callable[[str], str | None] = _strip

    def apply(self, text: str) -> str | None:
        """Evaluate the rule against text, returning the first usable value."""
        candidates = (
            self.transform(m.group(1) if m.groups() else m.group(0))
            for m in (p.search(text) for p in self.patterns)
            if m
        )
        return next((c for c in candidates if c), None)


@dataclass(frozen=True)
class IdentityChecks:
    """Validation checks for a government identity card."""

    id_field: str
    id_format: re.Pattern[str]
    header: re.Pattern[str]
    header_label: str
    detected_flag: str
    header_flag: str
    id_label: str = "ID number"
    name_field: str = "extracted_name"


@dataclass(frozen=True)
class DocumentSpec:
    """Everything the classifier and extractor know about a document type."""

    document_type: DocumentType
    detectors: tuple[re.Pattern[str], ...]
    rules: tuple[FieldRule, ...]
    required_fields: tuple[str, ...]
    identity: IdentityChecks | None = None
    # sensitive field -> (public field, masking function)
    masked_fields: dict[str, tuple[str, Callable[[str], str]]] = field(
        default_factory=dict
    )


_I = re.IGNORECASE

# A name: words of letters on a single line, initials may carry a dot.
_NAME = r"([A-Z]+(?:\.?[ \t]+[A-Z]+)*)"
_NAME_LABEL = r"(?<!['’]s )(?<!Father )(?:\bName|नाम)\s*[:\-]?\s*"
# One or more header lines (bilingual cards print both) and what follows them.
_AADHAAR_HEADERS = r"(?:(?:Government\s+of\s+India|भारत\s*सरकार)[^A-Z]*)+"

PAN_FORMAT = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")
AADHAAR_FORMAT = re.compile(r"^[2-9]\d{11}$")

PAN_SPEC = DocumentSpec(
    document_type=DocumentType.PAN_CARD,
    detectors=(
        re.compile(r"INCOME\s*TAX\s*DEPARTMENT", _I),
        re.compile(r"PERMANENT\s*ACCOUNT\s*NUMBER", _I),
        re.compile(r"[A-Z]{5}[0-9]{4}[A-Z]"),
    ),
    rules=(
        FieldRule(
            "pan_number",
            (
                re.compile(r"[A-Z]{5}[0-9]{4}[A-Z]"),
                re.compile(r"Permanent\s*Account\s*Number[^A-Z0-9]*([A-Z0-9]{10})\b", _I),
            ),
            _upper_compact,
        ),
        FieldRule(
            "extracted_name",
            (
                re.compile(_NAME_LABEL + _NAME, _I),
                re.compile(r"PERMANENT\s*ACCOUNT\s*NUMBER\s*CARD[^A-Z]*" + _NAME, _I),
                re.compile(_NAME + r"\s+(?:S/O|D/O|W/O|Father|पिता)", _I),
            ),
            title_case,
        ),
        FieldRule(
            "father_name",
            (re.compile(r"Father['’]?s?\s*Name\s*[:\-]?\s*" + _NAME, _I),),
            title_case,
        ),
    ),
    required_fields=("pan_number", "extracted_name"),
    identity=IdentityChecks(
        id_field="pan_number",
        id_format=PAN_FORMAT,
        header=re.compile(r"INCOME\s*TAX\s*DEPARTMENT", _I),
        header_label="INCOME TAX DEPARTMENT",
        detected_flag="is_pan_detected",
        header_flag="has_income_tax_header",
        id_label="PAN number",
    ),
)

AADHAAR_SPEC = DocumentSpec(
    document_type=DocumentType.AADHAAR_CARD,
    detectors=(
        re.compile(r"UNIQUE\s*IDENTIFICATION\s*AUTHORITY", _I),
        re.compile(r"GOVERNMENT\s*OF\s*INDIA", _I),
        re.compile(r"(?<!\d)[2-9]\d{3}[\s\-]?\d{4}[\s\-]?\d{4}(?!\d)"),
    ),
    rules=(
        FieldRule(
            "aadhaar_number_full",
            (
                re.compile(r"(?<!\d)\d{4}\s+\d{4}\s+\d{4}(?!\d)"),
                re.compile(r"(?<!\d)\d{4}-\d{4}-\d{4}(?!\d)"),
                re.compile(r"(?<!\d)\d{12}(?!\d)"),
            ),
            _digits_12,
        ),
        FieldRule(
            "extracted_name",
            (
                re.compile(_NAME_LABEL + _NAME, _I),
                re.compile(
                    _AADHAAR_HEADERS + r"(?!Government\s+of\s+India)" + _NAME, _I
                ),
                re.compile(r"\d{4}\s*\d{4}\s*\d{4}[^A-Z]*" + _NAME, _I),
            ),
            title_case,
        ),
        FieldRule(
            "date_of_birth",
            (
                re.compile(
                    r"(?:DOB|Date\s+of\s+Birth|जन्म)[:\s]*(\d{1,2}[/\-]\d{1,2}[/\-]\d{4})",
                    _I,
                ),
                re.compile(r"(?:YOB|Year\s+of\s+Birth)[:\s]*(\d{4})", _I),
            ),
        ),
        FieldRule(
            "gender",
            (re.compile(r"(?<![A-Za-z])(Male|Female|पुरुष|महिला)(?![A-Za-z])", _I),),
            _gender,
        ),
        FieldRule(
            "address",
            (
                re.compile(r"Address\s*[:\-]?\s*(.+?\b\d{6}\b)", _I | re.DOTALL),
                re.compile(r"(C/O.*?\b\d{6}\b)", _I | re.DOTALL),
            ),
            _collapse,
        ),
    ),
    required_fields=("aadhaar_number", "extracted_name"),
    identity=IdentityChecks(
        id_field="aadhaar_number_full",
        id_format=AADHAAR_FORMAT,
        header=re.compile(r"GOVERNMENT\s+OF\s+INDIA|भारत\s*सरकार", _I),
        header_label="GOVERNMENT OF INDIA",
        detected_flag="is_aadhaar_detected",
        header_flag="has_government_header",
        id_label="Aadhaar number",
    ),
    masked_fields={"aadhaar_number_full": ("aadhaar_number", mask_aadhaar)},
)

GST_SPEC = DocumentSpec(
    document_type=DocumentType.GST_CERTIFICATE,
    detectors=(
        re.compile(r"GOODS\s*AND\s*SERVICES\s*TAX", _I),
        re.compile(r"GSTIN", _I),
        re.compile(r"[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]"),
    ),
    rules=(
        FieldRule(
            "gst_number",
            (re.compile(r"[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]"),),
        ),
        FieldRule(
            "business_name",
            (
                re.compile(
                    r"Legal\s*Name(?:\s*of\s*Business)?\s*[:\-]?\s*([A-Za-z0-9 &.\-]+)", _I
                ),
                re.compile(r"Trade\s*Name\s*[:\-]?\s*([A-Za-z0-9 &.\-]+)", _I),
            ),
        ),
        FieldRule(
            "address",
            (
                re.compile(
                    r"Address(?:\s*of\s*Principal\s*Place\s*of\s*Business)?"
                    r"\s*[:\-]?\s*([A-Za-z0-9 ,./\-]+)",
                    _I,
                ),
            ),
        ),
    ),
    required_fields=("gst_number", "business_name"),
)

# Declaration order is classification priority.
DOCUMENT_SPECS: dict[DocumentType, DocumentSpec] = {
    spec.document_type: spec for spec in (PAN_SPEC, AADHAAR_SPEC, GST_SPEC)
}
