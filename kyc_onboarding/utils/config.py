"""Configuration management for the KYC onboarding service.

Loads and validates YAML configuration with sensible defaults for OCR,
preprocessing, extraction scoring, onboarding rules, and the bank API.
Secrets and endpoints can be supplied through environment variables.
"""

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class VisionConfig(BaseModel):
    """Configuration for the Google Cloud Vision text detection call."""

    api_key: str | None = None
    endpoint: str = "https://vision.googleapis.com/v1/images:annotate"
    timeout_seconds: float = 15.0
    max_results: int = 50
    default_confidence: float = 75.0
    language_hints: dict[str, list[str]] = Field(
        default_factory=lambda: {"aadhaar_card": ["en", "hi"]}
    )
    default_language_hints: list[str] = Field(default_factory=lambda: ["en"])

    def hints_for(self, document_type: str | None) -> list[str]:
        """Return the language hints to send for a document type."""
        if document_type and document_type in self.language_hints:
            return self.language_hints[document_type]
        return self.default_language_hints


class OCRConfig(BaseModel):
    """Configuration for the local Tesseract fallback engine."""

    tesseract_cmd: str | None = None
    default_lang: str = "eng"
    psm: int = 3
    pdf_dpi: int = 300


class PreprocessingConfig(BaseModel):
    """Configuration for card image preprocessing before Tesseract."""

    enabled: bool = True
    upscale_min_width: int = 1200
    denoise_enabled: bool = True
    contrast_enabled: bool = True
    clahe_clip_limit: float = 2.0
    clahe_tile_size: int = 8
    binarize_enabled: bool = True


class ConfidencePolicy(BaseModel):
    """Penalty schedule for identity document extraction.

    The numbers are tunable policy carried over from the production
    heuristics, not derived constants.
    """

    start: float = 100.0
    missing_id_penalty: float = 30.0
    malformed_id_penalty: float = 20.0
    missing_header_penalty: float = 10.0
    missing_name_penalty: float = 15.0
    min_name_length: int = 2
    coverage_cap: float = 95.0


class ExtractionConfig(BaseModel):
    """Configuration for classification, field extraction and review."""

    classification_threshold: int = 2
    review_floor: float = 60.0
    policy: ConfidencePolicy = Field(default_factory=ConfidencePolicy)


class OnboardingConfig(BaseModel):
    """Configuration for merchant profile validation and notifications."""

    min_documents: int = 3
    required_document_types: list[str] = Field(default_factory=list)
    admin_email: str = "admin@sabbpe.com"


class BankConfig(BaseModel):
    """Configuration for the bank merchant-application API."""

    api_url: str = "https://bank-api.example.com"
    api_key: str = "test-key"
    timeout_seconds: float = 30.0
    callback_base_url: str = "http://localhost:8000"
    webhook_secret: str | None = None
    webhook_tolerance_seconds: int = 300


class AppConfig(BaseModel):
    """Top-level application configuration."""

    vision: VisionConfig = Field(default_factory=VisionConfig)
    ocr: OCRConfig = Field(default_factory=OCRConfig)
    preprocessing: PreprocessingConfig = Field(default_factory=PreprocessingConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    onboarding: OnboardingConfig = Field(default_factory=OnboardingConfig)
    bank: BankConfig = Field(default_factory=BankConfig)
    log_level: str = "INFO"


# Environment variable -> (section, key)
_ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "GOOGLE_VISION_API_KEY": ("vision", "api_key"),
    "BANK_API_URL": ("bank", "api_url"),
    "BANK_API_KEY": ("bank", "api_key"),
    "API_BASE_URL": ("bank", "callback_base_url"),
    "WEBHOOK_SECRET": ("bank", "webhook_secret"),
    "ADMIN_EMAIL": ("onboarding", "admin_email"),
    "LOG_LEVEL": (None, "log_level"),
}


def _apply_env_overrides(raw: dict) -> dict:
    """Overlay environment variables onto raw configuration data.

    Args:
        raw: Parsed YAML configuration.

    Returns:
        Configuration dictionary with environment values applied.
    """
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if not value:
            continue
        if section is None:
            raw[key] = value
        else:
            raw.setdefault(section, {})[key] = value
        logger.debug("Applied %s from environment", env_name)
    return raw


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a YAML file and the environment.

    Args:
        path: Path to the YAML configuration file.
            Defaults to configs/config.yaml.

    Returns:
        Validated application configuration.
    """
    if path is None:
        path = Path("configs/config.yaml")

    raw: dict = {}
    if path.exists():
        logger.info("Loading configuration from %s", path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    else:
        logger.info("No config file found at %s, using defaults", path)

    return AppConfig(**_apply_env_overrides(raw))
