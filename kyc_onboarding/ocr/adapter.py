"""OCR adapter: Google Vision first, local Tesseract as fallback.

Both engines are normalized into :class:`OCRResult`. A primary failure is
logged and swallowed whenever the fallback produces text; only when
neither path yields text is :class:`OCRUnavailable` raised.
"""

import threading

import pytesseract

from kyc_onboarding.errors import OCRUnavailable
from kyc_onboarding.preprocessing.pipeline import PreprocessingPipeline
from kyc_onboarding.utils.config import AppConfig
from kyc_onboarding.utils.logger import get_logger

from .image_loader import ImageDecodeError, is_pdf, load_image, to_png_bytes
from .models import OCRResult
from .tesseract_engine import TesseractEngine
from .vision_client import VisionAPIError, VisionClient

logger = get_logger(__name__)


class OCRAdapter:
    """Two-path OCR with a single remote attempt and a local fallback.

    The Tesseract engine is built on first fallback and reused until
    :meth:`close`. The adapter is safe to share across concurrent
    requests; it holds no per-call state.

    Args:
        config: Application configuration.
        vision_client: Optional Vision client (built from config if omitted).
        tesseract_engine: Optional prebuilt fallback engine.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        vision_client: VisionClient | None = None,
        tesseract_engine: TesseractEngine | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.vision = vision_client or VisionClient(self.config.vision)
        self.preprocessing = PreprocessingPipeline(self.config.preprocessing)
        self._tesseract = tesseract_engine
        self._tesseract_lock = threading.Lock()

    def __enter__(self) -> "OCRAdapter":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _get_tesseract(self) -> TesseractEngine | None:
        """Lazily initialize the fallback engine on first use.

        Returns:
            The engine, or ``None`` when no Tesseract binary is installed.
        """
        with self._tesseract_lock:
            if self._tesseract is None:
                if not TesseractEngine.is_available():
                    logger.warning("Tesseract is not installed, fallback unavailable")
                    return None
                self._tesseract = TesseractEngine(
                    tesseract_cmd=self.config.ocr.tesseract_cmd,
                    default_lang=self.config.ocr.default_lang,
                    psm=self.config.ocr.psm,
                )
            return self._tesseract

    def extract(
        self, image_bytes: bytes, hint_document_type: str | None = None
    ) -> OCRResult:
        """Recognize text in a document image.

        Args:
            image_bytes: Raw uploaded file bytes (image or PDF).
            hint_document_type: Declared document type, if known.

        Returns:
            OCRResult from whichever engine succeeded.

        Raises:
            OCRUnavailable: If both paths fail or neither is configured.
        """
        failures: list[str] = []

        if self.vision.configured:
            try:
                return self.vision.detect_text(
                    self._vision_payload(image_bytes), hint_document_type
                )
            except (VisionAPIError, ImageDecodeError) as exc:
                logger.warning("Google Vision failed, falling back to Tesseract: %s", exc)
                failures.append(f"vision: {exc}")
        else:
            failures.append("vision: not configured")

        try:
            result = self._run_tesseract(image_bytes)
        except (ImageDecodeError, pytesseract.TesseractError) as exc:
            failures.append(f"tesseract: {exc}")
        else:
            if result is None:
                failures.append("tesseract: not installed")
            elif not result.text.strip():
                failures.append("tesseract: no text detected")
            else:
                return result

        logger.error("OCR unavailable: %s", "; ".join(failures))
        raise OCRUnavailable("; ".join(failures))

    def _vision_payload(self, image_bytes: bytes) -> bytes:
        """Vision reads images only; PDFs are rendered to a PNG first page."""
        if is_pdf(image_bytes):
            return to_png_bytes(load_image(image_bytes, dpi=self.config.ocr.pdf_dpi))
        return image_bytes

    def _run_tesseract(self, image_bytes: bytes) -> OCRResult | None:
        engine = self._get_tesseract()
        if engine is None:
            return None
        image = load_image(image_bytes, dpi=self.config.ocr.pdf_dpi)
        return engine.extract_text(self.preprocessing.process(image))

    def close(self) -> None:
        """Release the fallback engine and the HTTP client."""
        with self._tesseract_lock:
            self._tesseract = None
        self.vision.close()
