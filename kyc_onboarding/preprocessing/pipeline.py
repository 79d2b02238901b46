"""Card image preprocessing ahead of local Tesseract OCR.

Identity cards are small, colourful and often photographed rather than
scanned; the steps here bring them closer to the clean black-on-white
input Tesseract reads best.
"""

import cv2
import numpy as np

from kyc_onboarding.utils.config import PreprocessingConfig
from kyc_onboarding.utils.logger import get_logger

logger = get_logger(__name__)


def to_gray(image: np.ndarray) -> np.ndarray:
    """Convert an RGB image to grayscale; grayscale input passes through."""
    if len(image.shape) == 3:
        return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
    return image


def upscale(image: np.ndarray, min_width: int) -> np.ndarray:
    """Enlarge an image so its width is at least ``min_width`` pixels.

    Args:
        image: Input image.
        min_width: Target minimum width.

    Returns:
        The resized image, or the input when already wide enough.
    """
    height, width = image.shape[:2]
    if width == 0 or width >= min_width:
        return image
    scale = min_width / width
    result = cv2.resize(
        image,
        (min_width, int(round(height * scale))),
        interpolation=cv2.INTER_CUBIC,
    )
    logger.debug("Upscaled image %dx%d by %.2f", width, height, scale)
    return result


def apply_clahe(
    image: np.ndarray, clip_limit: float = 2.0, tile_size: int = 8
) -> np.ndarray:
    """Enhance local contrast with CLAHE on a grayscale image."""
    clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=(tile_size, tile_size))
    return clahe.apply(image)


def binarize_adaptive(
    image: np.ndarray, block_size: int = 31, c: int = 10
) -> np.ndarray:
    """Binarize a grayscale image with adaptive Gaussian thresholding.

    The larger block size copes with the printed backgrounds on PAN and
    Aadhaar cards.
    """
    return cv2.adaptiveThreshold(
        image,
        255,
        cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
        cv2.THRESH_BINARY,
        block_size,
        c,
    )


class PreprocessingPipeline:
    """Configurable grayscale/upscale/denoise/contrast/binarize chain.

    Args:
        config: Preprocessing configuration controlling which steps run.
    """

    def __init__(self, config: PreprocessingConfig | None = None) -> None:
        self.config = config or PreprocessingConfig()

    def process(self, image: np.ndarray) -> np.ndarray:
        """Run the enabled preprocessing steps on an image.

        Args:
            image: RGB or grayscale card image.

        Returns:
            Processed grayscale image (binary when binarization is on).
        """
        if not self.config.enabled:
            return image

        result = to_gray(image)
        result = upscale(result, self.config.upscale_min_width)

        if self.config.denoise_enabled:
            result = cv2.bilateralFilter(result, 9, 75, 75)

        if self.config.contrast_enabled:
            result = apply_clahe(
                result,
                clip_limit=self.config.clahe_clip_limit,
                tile_size=self.config.clahe_tile_size,
            )

        if self.config.binarize_enabled:
            result = binarize_adaptive(result)

        logger.debug("Preprocessed image to %dx%d", result.shape[1], result.shape[0])
        return result
