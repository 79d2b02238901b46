"""End-to-end document extraction: OCR, classification, fields, review.

The combined confidence of a result is the lower of the extraction and
OCR confidences. Results are never auto-approved; :meth:`DocumentPipeline.assess`
tells the caller whether a human has to look at the document.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from kyc_onboarding.errors import (
    DocumentTypeMismatch,
    LowConfidenceExtraction,
    UnsupportedDocumentType,
)
from kyc_onboarding.ocr.adapter import OCRAdapter
from kyc_onboarding.utils.config import AppConfig
from kyc_onboarding.utils.logger import get_logger

from .classifier import DocumentClassifier
from .document_types import DocumentType
from .field_extractor import FieldExtractor

logger = get_logger(__name__)

UNCLASSIFIED_ISSUE = "Document type could not be determined"


class ReviewStatus(StrEnum):
    """Outcome of assessing an extraction result for automatic use."""

    ACCEPTED = "accepted"
    LOW_CONFIDENCE = "low_confidence"
    DOCUMENT_TYPE_MISMATCH = "document_type_mismatch"
    UNCLASSIFIED = "unclassified"


@dataclass
class ExtractionResult:
    """Structured result for one uploaded document.

    ``fields`` only ever holds display-safe values (masked identifiers);
    full identifiers live in ``sensitive``, which is kept out of
    ``repr`` and :meth:`persistable`. The transcript may contain
    unmasked identifiers and is likewise left out of both.
    """

    raw_text: str = field(repr=False)
    confidence: float = 0.0
    document_type: DocumentType | None = None
    fields: dict[str, str | None] = field(default_factory=dict)
    validation_issues: list[str] = field(default_factory=list)
    detections: dict[str, bool] = field(default_factory=dict)
    ocr_confidence: float = 0.0
    extraction_confidence: float = 0.0
    engine: str = "text"
    sensitive: dict[str, str] = field(default_factory=dict, repr=False)

    def persistable(self) -> dict[str, Any]:
        """Fields safe to store against a merchant record or show in the UI."""
        return {
            "document_type": self.document_type.value if self.document_type else None,
            "confidence": self.confidence,
            "fields": {k: v for k, v in self.fields.items() if v is not None},
            "validation_issues": list(self.validation_issues),
        }


class DocumentPipeline:
    """Runs OCR, classification and field extraction for an upload.

    Args:
        config: Application configuration.
        ocr_adapter: OCR adapter; built from config when omitted.
        classifier: Document classifier; built from config when omitted.
        extractor: Field extractor; built from config when omitted.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        ocr_adapter: OCRAdapter | None = None,
        classifier: DocumentClassifier | None = None,
        extractor: FieldExtractor | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self._ocr_adapter = ocr_adapter
        self.classifier = classifier or DocumentClassifier(
            threshold=self.config.extraction.classification_threshold
        )
        self.extractor = extractor or FieldExtractor(self.config.extraction.policy)
        self.review_floor = self.config.extraction.review_floor

    @property
    def ocr_adapter(self) -> OCRAdapter:
        if self._ocr_adapter is None:
            self._ocr_adapter = OCRAdapter(self.config)
        return self._ocr_adapter

    def process(
        self, image_bytes: bytes, document_type: DocumentType | None = None
    ) -> ExtractionResult:
        """Extract a structured result from an uploaded document.

        Args:
            image_bytes: Raw file bytes.
            document_type: Declared type; inferred from the text when ``None``.

        Raises:
            OCRUnavailable: If no OCR path produced text.
            UnsupportedDocumentType: If the declared type has no field table.
        """
        if document_type is not None and not self.extractor.supports(document_type):
            raise UnsupportedDocumentType(document_type.value)
        ocr = self.ocr_adapter.extract(image_bytes, document_type)
        result = self.process_text(ocr.text, ocr.confidence, document_type)
        result.engine = ocr.engine
        return result

    def process_text(
        self,
        raw_text: str,
        ocr_confidence: float = 100.0,
        document_type: DocumentType | None = None,
    ) -> ExtractionResult:
        """Classify and extract fields from already-recognized text.

        Args:
            raw_text: OCR transcript.
            ocr_confidence: Confidence of the transcript (0-100).
            document_type: Declared type; inferred when ``None``.

        Returns:
            Result with combined confidence ``min(extraction, ocr)``.
        """
        doc_type = document_type or self.classifier.classify(raw_text)
        if doc_type is None:
            return ExtractionResult(
                raw_text=raw_text,
                confidence=0.0,
                document_type=None,
                validation_issues=[UNCLASSIFIED_ISSUE],
                ocr_confidence=ocr_confidence,
            )

        extraction = self.extractor.extract_fields(raw_text, doc_type)
        result = ExtractionResult(
            raw_text=raw_text,
            confidence=min(extraction.confidence, ocr_confidence),
            document_type=extraction.document_type,
            fields=extraction.fields,
            validation_issues=extraction.issues,
            detections=extraction.detections,
            ocr_confidence=ocr_confidence,
            extraction_confidence=extraction.confidence,
            sensitive=extraction.sensitive,
        )
        logger.info(
            "Document %s processed: confidence=%.0f (ocr=%.0f, extraction=%.0f)",
            result.document_type,
            result.confidence,
            ocr_confidence,
            extraction.confidence,
        )
        return result

    def assess(self, result: ExtractionResult) -> None:
        """Refuse automatic use of a result that needs human review.

        Raises:
            DocumentTypeMismatch: If every required field of the type is absent.
            LowConfidenceExtraction: If confidence is below the review floor.
        """
        if result.document_type is not None:
            required = self.extractor.specs[result.document_type].required_fields
            if not any(result.fields.get(name) for name in required):
                raise DocumentTypeMismatch(result.document_type.value, list(required))
        if result.confidence < self.review_floor:
            raise LowConfidenceExtraction(result.confidence, self.review_floor)

    def review_status(self, result: ExtractionResult) -> ReviewStatus:
        """Non-raising form of :meth:`assess` for display surfaces."""
        if result.document_type is None:
            return ReviewStatus.UNCLASSIFIED
        try:
            self.assess(result)
        except DocumentTypeMismatch:
            return ReviewStatus.DOCUMENT_TYPE_MISMATCH
        except LowConfidenceExtraction:
            return ReviewStatus.LOW_CONFIDENCE
        return ReviewStatus.ACCEPTED
