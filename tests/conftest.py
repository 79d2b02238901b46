"""Shared test fixtures for the KYC onboarding test suite."""

from pathlib import Path
from unittest.mock import MagicMock

import numpy as np
import pytest

from kyc_onboarding.extraction.pipeline import DocumentPipeline
from kyc_onboarding.ocr.models import OCRResult
from kyc_onboarding.onboarding.audit import AuditLog
from kyc_onboarding.onboarding.bank_client import BankApplicationResponse
from kyc_onboarding.onboarding.models import MerchantDocument, MerchantSubmission
from kyc_onboarding.onboarding.notifications import Notification, NotificationService
from kyc_onboarding.onboarding.state_machine import OnboardingStateMachine

PAN_TEXT = (
    "INCOME TAX DEPARTMENT\n"
    "GOVT. OF INDIA\n"
    "Permanent Account Number Card\n"
    "ABCDE1234F\n"
    "Name: RAHUL KUMAR\n"
    "Father's Name: SURESH KUMAR\n"
    "Date of Birth 01/01/1990\n"
)

AADHAAR_TEXT = (
    "GOVERNMENT OF INDIA\n"
    "Name: PRIYA SHARMA\n"
    "DOB: 15/08/1992\n"
    "Female\n"
    "2345 6789 0123\n"
    "Unique Identification Authority of India\n"
)

GST_TEXT = (
    "Government of India\n"
    "Form GST REG-06\n"
    "Goods and Services Tax Registration Certificate\n"
    "GSTIN: 27ABCDE1234F1Z5\n"
    "Legal Name: SHARMA TRADERS\n"
    "Address: 12 MG Road, Pune 411001\n"
)


@pytest.fixture
def sample_image() -> np.ndarray:
    """Create a simple synthetic grayscale test image."""
    image = np.zeros((200, 300), dtype=np.uint8)
    image[50:150, 50:250] = 255
    return image


@pytest.fixture
def sample_color_image() -> np.ndarray:
    """Create a simple synthetic RGB test image."""
    image = np.zeros((200, 300, 3), dtype=np.uint8)
    image[50:150, 50:250] = (255, 255, 255)
    return image


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def config_dir(project_root: Path) -> Path:
    """Return the configs directory path."""
    return project_root / "configs"


def make_submission(document_count: int = 3, **overrides: object) -> MerchantSubmission:
    """Build a complete merchant submission with ``document_count`` documents."""
    kinds = ["business_license", "tax_certificate", "id_proof", "bank_statement"]
    data: dict[str, object] = {
        "business_name": "Sharma Traders",
        "business_type": "retail",
        "registration_number": "REG-001",
        "tax_id": "27ABCDE1234F1Z5",
        "email": "owner@sharmatraders.in",
        "phone": "+91 98765 43210",
        "address_line1": "12 MG Road",
        "city": "Pune",
        "state": "Maharashtra",
        "postal_code": "411001",
        "country": "IN",
        "upi_vpa": "sharmatraders@upi",
        "documents": [
            MerchantDocument(
                type=kinds[i % len(kinds)],
                url=f"https://files.example.com/doc{i}.pdf",
                filename=f"doc{i}.pdf",
            )
            for i in range(document_count)
        ],
    }
    data.update(overrides)
    return MerchantSubmission(**data)


@pytest.fixture
def sent_notifications() -> list[Notification]:
    return []


@pytest.fixture
def bank_client() -> MagicMock:
    """Bank client stub that accepts every application."""
    client = MagicMock()
    client.submit_application.return_value = BankApplicationResponse(
        success=True,
        application_id="APP-1",
        message="Application received",
        estimated_processing_time="2-3 business days",
    )
    return client


@pytest.fixture
def machine(
    bank_client: MagicMock, sent_notifications: list[Notification]
) -> OnboardingStateMachine:
    """State machine with in-memory storage and a recording notifier."""
    return OnboardingStateMachine(
        bank_client=bank_client,
        notifier=NotificationService(sender=sent_notifications.append),
        audit_log=AuditLog(),
    )


@pytest.fixture
def ocr_adapter() -> MagicMock:
    """OCR adapter stub returning the PAN transcript."""
    adapter = MagicMock()
    adapter.extract.return_value = OCRResult(
        text=PAN_TEXT, confidence=92.0, engine="google_vision", word_count=14
    )
    return adapter


@pytest.fixture
def pipeline(ocr_adapter: MagicMock) -> DocumentPipeline:
    return DocumentPipeline(ocr_adapter=ocr_adapter)
