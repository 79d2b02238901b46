"""Google Cloud Vision text detection client, the primary OCR path.

Sends one ``DOCUMENT_TEXT_DETECTION`` request per image with
document-type-aware language hints. Every failure is raised as
:class:`VisionAPIError` so the caller can fall back; there are no
automatic retries.
"""

import base64
from typing import Any

import httpx

from kyc_onboarding.utils.config import VisionConfig
from kyc_onboarding.utils.logger import get_logger

from .models import OCRResult

logger = get_logger(__name__)

ENGINE_NAME = "google_vision"
UNEXPECTED_SHAPE = "Unexpected Vision API response shape"


class VisionAPIError(Exception):
    """The Vision call failed or returned no usable text."""


class VisionClient:
    """Thin client for the Vision ``images:annotate`` endpoint.

    Args:
        config: Vision configuration (API key, endpoint, timeout, hints).
        client: Optional preconfigured ``httpx.Client``; created lazily
            when omitted.
    """

    def __init__(
        self, config: VisionConfig, client: httpx.Client | None = None
    ) -> None:
        self.config = config
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.config.api_key)

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.config.timeout_seconds)
        return self._client

    def build_request(
        self, image_bytes: bytes, document_type: str | None = None
    ) -> dict[str, Any]:
        """Build the annotate request body for one image.

        Args:
            image_bytes: Encoded image bytes.
            document_type: Optional document type used to pick language hints.

        Returns:
            JSON-serializable request body.
        """
        return {
            "requests": [
                {
                    "image": {"content": base64.b64encode(image_bytes).decode("ascii")},
                    "features": [
                        {
                            "type": "DOCUMENT_TEXT_DETECTION",
                            "maxResults": self.config.max_results,
                        }
                    ],
                    "imageContext": {
                        "languageHints": self.config.hints_for(document_type)
                    },
                }
            ]
        }

    def detect_text(
        self, image_bytes: bytes, document_type: str | None = None
    ) -> OCRResult:
        """Run text detection on an image.

        Args:
            image_bytes: Encoded image bytes (PNG/JPEG/TIFF).
            document_type: Optional document type hint.

        Returns:
            OCRResult with text and 0-100 confidence.

        Raises:
            VisionAPIError: On missing credentials, transport errors,
                timeouts, non-2xx responses, embedded error payloads, or
                an empty transcript.
        """
        if not self.configured:
            raise VisionAPIError("Google Vision API key not configured")

        body = self.build_request(image_bytes, document_type)
        logger.info(
            "Vision API request: document_type=%s languages=%s",
            document_type or "general",
            body["requests"][0]["imageContext"]["languageHints"],
        )

        try:
            response = self._get_client().post(
                self.config.endpoint,
                params={"key": self.config.api_key},
                json=body,
                timeout=self.config.timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise VisionAPIError(f"Vision API timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise VisionAPIError(f"Vision API request failed: {exc}") from exc

        if response.is_error:
            raise VisionAPIError(
                f"Vision API error: {response.status_code} {response.reason_phrase}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise VisionAPIError("Vision API returned invalid JSON") from exc

        return self.parse_response(payload)

    def parse_response(self, payload: Any) -> OCRResult:
        """Turn an annotate response into an OCRResult.

        Confidence is the mean of the per-token scores, skipping the
        first whole-block annotation; it defaults to the configured
        value when no token carries a score.
        """
        if not isinstance(payload, dict):
            raise VisionAPIError(UNEXPECTED_SHAPE)
        responses = payload.get("responses") or [{}]
        if not isinstance(responses, list) or not isinstance(responses[0] or {}, dict):
            raise VisionAPIError(UNEXPECTED_SHAPE)
        first = responses[0] or {}

        error = first.get("error")
        if error:
            message = error.get("message", error) if isinstance(error, dict) else error
            raise VisionAPIError(f"Vision API error: {message}")

        annotations = first.get("textAnnotations") or []
        full = first.get("fullTextAnnotation") or {}
        if (
            not isinstance(annotations, list)
            or not all(isinstance(a, dict) for a in annotations)
            or not isinstance(full, dict)
        ):
            raise VisionAPIError(UNEXPECTED_SHAPE)
        text = full.get("text") or (
            annotations[0].get("description", "") if annotations else ""
        )
        if not isinstance(text, str) or not text.strip():
            raise VisionAPIError("No text detected in image")

        scores = [
            a["confidence"] for a in annotations[1:] if a.get("confidence") is not None
        ]
        if scores:
            confidence = float(round(sum(scores) / len(scores) * 100))
        else:
            confidence = self.config.default_confidence

        logger.info(
            "Vision API extracted %d tokens with confidence %.0f",
            max(len(annotations) - 1, 0),
            confidence,
        )
        return OCRResult(
            text=text,
            confidence=confidence,
            engine=ENGINE_NAME,
            word_count=max(len(annotations) - 1, 0),
        )

    def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None
