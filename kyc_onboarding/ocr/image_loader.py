"""Decoding of uploaded document files into images.

Card uploads arrive as PNG/JPEG/TIFF bytes or as PDF scans; PDFs are
rendered and only their first page is used.
"""

import io

import numpy as np
from pdf2image import convert_from_bytes
from PIL import Image, UnidentifiedImageError

from kyc_onboarding.utils.logger import get_logger

logger = get_logger(__name__)


class ImageDecodeError(ValueError):
    """Uploaded bytes could not be decoded as an image or PDF."""


def is_pdf(data: bytes) -> bool:
    """Return whether the bytes look like a PDF document."""
    return data[:4] == b"%PDF"


def load_image(data: bytes, dpi: int = 300) -> np.ndarray:
    """Decode document bytes into an RGB image array.

    Args:
        data: Raw file bytes (image or PDF).
        dpi: Rendering resolution for PDF input.

    Returns:
        RGB image as a numpy array.

    Raises:
        ImageDecodeError: If the bytes cannot be decoded.
    """
    if not data:
        raise ImageDecodeError("Empty document")

    if is_pdf(data):
        try:
            pages = convert_from_bytes(data, dpi=dpi, first_page=1, last_page=1)
        except Exception as exc:
            raise ImageDecodeError(f"PDF conversion failed: {exc}") from exc
        if not pages:
            raise ImageDecodeError("PDF conversion returned no pages")
        logger.debug("Rendered first PDF page at %d DPI", dpi)
        return np.array(pages[0].convert("RGB"))

    try:
        img = Image.open(io.BytesIO(data))
        return np.array(img.convert("RGB"))
    except (UnidentifiedImageError, OSError) as exc:
        raise ImageDecodeError(f"Unsupported image data: {exc}") from exc


def to_png_bytes(image: np.ndarray) -> bytes:
    """Encode an image array as PNG bytes."""
    buf = io.BytesIO()
    Image.fromarray(image).save(buf, format="PNG")
    return buf.getvalue()
