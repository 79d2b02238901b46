"""Document type classification from raw OCR text.

Counts detector pattern hits per known document type, scanning types
in declaration order.
"""

from collections.abc import Iterable

from kyc_onboarding.utils.logger import get_logger

from .document_types import DOCUMENT_SPECS, DocumentSpec, DocumentType

logger = get_logger(__name__)


class DocumentClassifier:
    """Decides which known document type a transcript belongs to.

    A type is selected once at least ``threshold`` of its detector
    patterns match. The first type to reach the threshold wins; this is
    a scan, not a ranked vote.

    Args:
        threshold: Minimum number of detector hits for a match.
        specs: Document specs to scan, in priority order.
    """

    def __init__(
        self,
        threshold: int = 2,
        specs: Iterable[DocumentSpec] | None = None,
    ) -> None:
        self.threshold = threshold
        self.specs = list(specs if specs is not None else DOCUMENT_SPECS.values())

    def count_hits(self, text: str, spec: DocumentSpec) -> int:
        """Count how many of a spec's detector patterns match the text."""
        return sum(1 for pattern in spec.detectors if pattern.search(text))

    def classify(self, text: str) -> DocumentType | None:
        """Classify OCR text into a document type.

        Args:
            text: Raw OCR transcript.

        Returns:
            The first document type reaching the hit threshold, or
            ``None`` when no type does.
        """
        if not text:
            return None

        for spec in self.specs:
            hits = self.count_hits(text, spec)
            if hits >= self.threshold:
                logger.info(
                    "Classified document as %s (%d/%d detector hits)",
                    spec.document_type,
                    hits,
                    len(spec.detectors),
                )
                return spec.document_type

        logger.info("Document type could not be determined")
        return None
