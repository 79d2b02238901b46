"""Common result shape shared by every OCR engine."""

from dataclasses import dataclass


@dataclass
class OCRResult:
    """Text recognized from one document image.

    ``confidence`` is always on a 0-100 scale, whichever engine produced
    the text.
    """

    text: str
    confidence: float
    engine: str
    word_count: int = 0
