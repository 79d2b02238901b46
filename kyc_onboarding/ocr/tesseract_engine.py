"""Tesseract OCR engine wrapper, the local fallback path.

Recognizes text from a preprocessed card image and reports the mean
word confidence on a 0-100 scale.
"""

import numpy as np
import pytesseract
from PIL import Image

from kyc_onboarding.utils.logger import get_logger

from .models import OCRResult

logger = get_logger(__name__)

ENGINE_NAME = "tesseract"


class TesseractEngine:
    """Wrapper around Tesseract OCR for card text extraction.

    Args:
        tesseract_cmd: Path to the Tesseract executable.
            If ``None``, uses the system default.
        default_lang: Default OCR language code.
        psm: Default Tesseract page segmentation mode.
    """

    def __init__(
        self,
        tesseract_cmd: str | None = None,
        default_lang: str = "eng",
        psm: int = 3,
    ) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.default_lang = default_lang
        self.psm = psm

    @staticmethod
    def is_available() -> bool:
        """Return whether a Tesseract binary can be invoked."""
        try:
            pytesseract.get_tesseract_version()
        except pytesseract.TesseractNotFoundError:
            return False
        return True

    def extract_text(
        self,
        image: np.ndarray,
        lang: str | None = None,
        psm: int | None = None,
    ) -> OCRResult:
        """Extract text and mean word confidence from an image.

        Args:
            image: Input image as a numpy array.
            lang: OCR language code. Defaults to the engine default.
            psm: Page segmentation mode. Defaults to the engine default.

        Returns:
            OCRResult with the full text and 0-100 confidence.
        """
        lang = lang or self.default_lang
        config = f"--psm {psm if psm is not None else self.psm}"

        pil_image = Image.fromarray(image)
        text = pytesseract.image_to_string(pil_image, lang=lang, config=config)
        data = pytesseract.image_to_data(
            pil_image,
            lang=lang,
            config=config,
            output_type=pytesseract.Output.DICT,
        )

        confidences = [
            float(conf)
            for conf, word in zip(data["conf"], data["text"])
            if float(conf) > 0 and str(word).strip()
        ]
        avg_conf = sum(confidences) / len(confidences) if confidences else 0.0

        logger.info(
            "Tesseract extracted %d words with average confidence %.1f",
            len(confidences),
            avg_conf,
        )
        return OCRResult(
            text=text,
            confidence=round(avg_conf, 2),
            engine=ENGINE_NAME,
            word_count=len(confidences),
        )
