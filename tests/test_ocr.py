"""Tests for the Vision client, the Tesseract engine and the OCR adapter."""

import io
import json
from unittest.mock import MagicMock, patch

import httpx
import numpy as np
import pytesseract
import pytest
from PIL import Image

from kyc_onboarding.errors import OCRUnavailable
from kyc_onboarding.ocr.adapter import OCRAdapter
from kyc_onboarding.ocr.models import OCRResult
from kyc_onboarding.ocr.tesseract_engine import TesseractEngine
from kyc_onboarding.ocr.vision_client import VisionAPIError, VisionClient
from kyc_onboarding.utils.config import AppConfig, VisionConfig


def _make_png_bytes() -> bytes:
    """Create a minimal PNG image as bytes."""
    img = Image.fromarray(np.full((100, 200, 3), 255, dtype=np.uint8))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _vision_payload(
    text: str = "INCOME TAX DEPARTMENT\nABCDE1234F",
    confidences: list[float | None] | None = None,
) -> dict:
    """Create a Vision annotate response body."""
    tokens = [{"description": text}]
    for i, conf in enumerate(confidences if confidences is not None else [0.9, 0.8]):
        token: dict = {"description": f"w{i}"}
        if conf is not None:
            token["confidence"] = conf
        tokens.append(token)
    return {
        "responses": [
            {"textAnnotations": tokens, "fullTextAnnotation": {"text": text}}
        ]
    }


def _vision_client(handler, api_key: str | None = "test-key") -> VisionClient:
    """Create a VisionClient backed by an httpx mock transport."""
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return VisionClient(VisionConfig(api_key=api_key), client=client)


def _mock_tesseract_data() -> dict:
    """Create mock pytesseract output data."""
    return {
        "text": ["", "Hello", "World", "", "Test"],
        "conf": [-1, 95, 88, -1, 72],
    }


class TestVisionClient:
    """Tests for the Google Vision text detection client."""

    def test_request_shape(self) -> None:
        captured: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["key"] = request.url.params["key"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json=_vision_payload())

        _vision_client(handler).detect_text(b"img", "aadhaar_card")

        assert captured["key"] == "test-key"
        req = captured["body"]["requests"][0]
        assert req["features"] == [{"type": "DOCUMENT_TEXT_DETECTION", "maxResults": 50}]
        assert req["imageContext"]["languageHints"] == ["en", "hi"]
        assert req["image"]["content"] == "aW1n"

    def test_text_and_confidence(self) -> None:
        client = _vision_client(
            lambda request: httpx.Response(200, json=_vision_payload(confidences=[0.9, 0.8]))
        )
        result = client.detect_text(b"img")
        assert result.text.startswith("INCOME TAX DEPARTMENT")
        assert result.confidence == 85.0
        assert result.engine == "google_vision"
        assert result.word_count == 2

    def test_missing_token_confidences_default_to_75(self) -> None:
        client = _vision_client(
            lambda request: httpx.Response(200, json=_vision_payload(confidences=[None]))
        )
        assert client.detect_text(b"img").confidence == 75.0

    def test_falls_back_to_first_annotation_text(self) -> None:
        payload = {"responses": [{"textAnnotations": [{"description": "GSTIN"}]}]}
        client = _vision_client(lambda request: httpx.Response(200, json=payload))
        assert client.detect_text(b"img").text == "GSTIN"

    def test_not_configured(self) -> None:
        client = _vision_client(lambda request: httpx.Response(200), api_key=None)
        assert client.configured is False
        with pytest.raises(VisionAPIError):
            client.detect_text(b"img")

    def test_http_error(self) -> None:
        client = _vision_client(lambda request: httpx.Response(403, json={}))
        with pytest.raises(VisionAPIError, match="403"):
            client.detect_text(b"img")

    def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(VisionAPIError, match="timed out"):
            _vision_client(handler).detect_text(b"img")

    def test_embedded_error(self) -> None:
        payload = {"responses": [{"error": {"code": 3, "message": "Bad image data"}}]}
        client = _vision_client(lambda request: httpx.Response(200, json=payload))
        with pytest.raises(VisionAPIError, match="Bad image data"):
            client.detect_text(b"img")

    def test_empty_text(self) -> None:
        client = _vision_client(
            lambda request: httpx.Response(200, json={"responses": [{}]})
        )
        with pytest.raises(VisionAPIError, match="No text"):
            client.detect_text(b"img")

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            {"responses": "nope"},
            {"responses": ["text"]},
            {"responses": [{"textAnnotations": "INCOME TAX"}]},
            {"responses": [{"fullTextAnnotation": "INCOME TAX"}]},
        ],
    )
    def test_unexpected_shape(self, payload: object) -> None:
        client = _vision_client(lambda request: httpx.Response(200, json=payload))
        with pytest.raises(VisionAPIError, match="Unexpected Vision API response"):
            client.detect_text(b"img")

    def test_string_error(self) -> None:
        payload = {"responses": [{"error": "quota exceeded"}]}
        client = _vision_client(lambda request: httpx.Response(200, json=payload))
        with pytest.raises(VisionAPIError, match="quota exceeded"):
            client.detect_text(b"img")

    def test_invalid_json(self) -> None:
        client = _vision_client(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(VisionAPIError, match="invalid JSON"):
            client.detect_text(b"img")


class TestTesseractEngine:
    """Tests for the TesseractEngine wrapper."""

    @patch("kyc_onboarding.ocr.tesseract_engine.pytesseract")
    def test_extract_text(self, mock_tess: MagicMock, sample_image: np.ndarray) -> None:
        mock_tess.image_to_string.return_value = "Hello World\nTest"
        mock_tess.image_to_data.return_value = _mock_tesseract_data()

        result = TesseractEngine().extract_text(sample_image)

        assert isinstance(result, OCRResult)
        assert result.text == "Hello World\nTest"
        assert result.confidence == 85.0
        assert result.word_count == 3
        assert result.engine == "tesseract"

    @patch("kyc_onboarding.ocr.tesseract_engine.pytesseract")
    def test_custom_lang_and_psm(
        self, mock_tess: MagicMock, sample_image: np.ndarray
    ) -> None:
        mock_tess.image_to_string.return_value = ""
        mock_tess.image_to_data.return_value = {"text": [], "conf": []}

        result = TesseractEngine().extract_text(sample_image, lang="hin", psm=6)

        kwargs = mock_tess.image_to_string.call_args.kwargs
        assert kwargs["lang"] == "hin"
        assert kwargs["config"] == "--psm 6"
        assert result.confidence == 0.0

    def test_is_available_false_without_binary(self) -> None:
        with patch.object(
            pytesseract,
            "get_tesseract_version",
            side_effect=pytesseract.TesseractNotFoundError(),
        ):
            assert TesseractEngine.is_available() is False

    def test_is_available_true(self) -> None:
        with patch.object(pytesseract, "get_tesseract_version", return_value="5.3.0"):
            assert TesseractEngine.is_available() is True


class TestOCRAdapter:
    """Tests for Vision-first OCR with Tesseract fallback."""

    def setup_method(self) -> None:
        self.vision = MagicMock()
        self.vision.configured = True
        self.tesseract = MagicMock()
        self.adapter = OCRAdapter(
            AppConfig(), vision_client=self.vision, tesseract_engine=self.tesseract
        )

    def test_vision_success_skips_fallback(self) -> None:
        expected = OCRResult(text="text", confidence=90.0, engine="google_vision")
        self.vision.detect_text.return_value = expected

        result = self.adapter.extract(b"png-bytes", "pan_card")

        assert result is expected
        self.vision.detect_text.assert_called_once_with(b"png-bytes", "pan_card")
        self.tesseract.extract_text.assert_not_called()

    def test_vision_failure_falls_back_to_tesseract(self) -> None:
        self.vision.detect_text.side_effect = VisionAPIError("quota exceeded")
        self.tesseract.extract_text.return_value = OCRResult(
            text="ABCDE1234F", confidence=80.0, engine="tesseract"
        )

        result = self.adapter.extract(_make_png_bytes())

        assert result.engine == "tesseract"
        assert result.text == "ABCDE1234F"
        processed = self.tesseract.extract_text.call_args.args[0]
        assert processed.ndim == 2
        assert processed.shape[1] == 1200

    def test_malformed_vision_body_falls_back_to_tesseract(self) -> None:
        vision = _vision_client(lambda request: httpx.Response(200, json=[]))
        adapter = OCRAdapter(
            AppConfig(), vision_client=vision, tesseract_engine=self.tesseract
        )
        self.tesseract.extract_text.return_value = OCRResult(
            text="ABCDE1234F", confidence=80.0, engine="tesseract"
        )

        result = adapter.extract(_make_png_bytes())

        assert result.engine == "tesseract"

    def test_unconfigured_vision_goes_straight_to_tesseract(self) -> None:
        self.vision.configured = False
        self.tesseract.extract_text.return_value = OCRResult(
            text="text", confidence=70.0, engine="tesseract"
        )

        self.adapter.extract(_make_png_bytes())

        self.vision.detect_text.assert_not_called()

    def test_both_paths_failing_raises(self) -> None:
        self.vision.detect_text.side_effect = VisionAPIError("timeout")
        self.tesseract.extract_text.return_value = OCRResult(
            text="   ", confidence=0.0, engine="tesseract"
        )

        with pytest.raises(OCRUnavailable) as exc_info:
            self.adapter.extract(_make_png_bytes())

        assert exc_info.value.status_code == 503
        assert "vision: timeout" in exc_info.value.details
        assert "tesseract: no text detected" in exc_info.value.details

    def test_undecodable_upload_raises(self) -> None:
        self.vision.configured = False
        with pytest.raises(OCRUnavailable) as exc_info:
            self.adapter.extract(b"not an image")
        assert "tesseract" in exc_info.value.details

    def test_missing_tesseract_binary(self) -> None:
        self.vision.configured = False
        adapter = OCRAdapter(AppConfig(), vision_client=self.vision)
        with patch.object(TesseractEngine, "is_available", return_value=False):
            with pytest.raises(OCRUnavailable) as exc_info:
                adapter.extract(_make_png_bytes())
        assert "tesseract: not installed" in exc_info.value.details

    @patch("kyc_onboarding.ocr.adapter.load_image")
    def test_pdf_rendered_before_vision(self, mock_load: MagicMock) -> None:
        mock_load.return_value = np.zeros((50, 80, 3), dtype=np.uint8)
        self.vision.detect_text.return_value = OCRResult(
            text="text", confidence=90.0, engine="google_vision"
        )

        self.adapter.extract(b"%PDF-1.4 fake")

        sent = self.vision.detect_text.call_args.args[0]
        assert sent.startswith(b"\x89PNG")

    def test_close_releases_resources(self) -> None:
        with self.adapter as adapter:
            assert adapter is self.adapter
        self.vision.close.assert_called_once()
        assert self.adapter._tesseract is None
