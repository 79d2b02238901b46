"""HTTP client for the partner bank's merchant-application API.

One attempt per call; every failure becomes :class:`ExternalServiceFailure`
carrying a code the admin surface can show (``BANK_API_TIMEOUT``,
``BANK_API_UNAVAILABLE``, the bank's own error code, or ``BANK_API_ERROR``).
"""

import time
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from kyc_onboarding.errors import ExternalServiceFailure
from kyc_onboarding.utils.config import BankConfig
from kyc_onboarding.utils.logger import get_logger

from .models import BankResponse, MerchantProfile

logger = get_logger(__name__)


class BankApplicationResponse(BaseModel):
    """Bank reply to an application submission or status poll."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    success: bool
    application_id: str | None = None
    message: str | None = None
    estimated_processing_time: str | None = None
    status: str | None = None

    def to_bank_response(self) -> BankResponse:
        extra = dict(self.model_extra or {})
        if self.status is not None:
            extra["status"] = self.status
        return BankResponse(
            success=self.success,
            application_id=self.application_id,
            message=self.message,
            estimated_processing_time=self.estimated_processing_time,
            additional_data=extra,
        )


class BankApplicationClient:
    """Submits merchant applications to the bank and polls their status.

    Args:
        config: Bank API configuration.
        client: Optional preconfigured ``httpx.Client``.
    """

    def __init__(
        self, config: BankConfig | None = None, client: httpx.Client | None = None
    ) -> None:
        self.config = config or BankConfig()
        self._client = client

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.config.timeout_seconds)
        return self._client

    @property
    def callback_url(self) -> str:
        return f"{self.config.callback_base_url.rstrip('/')}/api/webhooks/bank"

    def build_payload(self, merchant: MerchantProfile) -> dict[str, Any]:
        """Build the application request body from a merchant profile."""
        return {
            "merchantId": merchant.id,
            "businessName": merchant.business_name,
            "businessType": merchant.business_type,
            "registrationNumber": merchant.registration_number,
            "taxId": merchant.tax_id,
            "email": merchant.email,
            "phone": merchant.phone,
            "upiVpa": merchant.upi_vpa,
            "address": {
                "line1": merchant.address_line1,
                "line2": merchant.address_line2,
                "city": merchant.city,
                "state": merchant.state,
                "postalCode": merchant.postal_code,
                "country": merchant.country,
            },
            "documents": [
                {"type": doc.type, "url": doc.url} for doc in merchant.documents
            ],
            "callbackUrl": self.callback_url,
        }

    def submit_application(self, merchant: MerchantProfile) -> BankApplicationResponse:
        """Submit a merchant application.

        Returns:
            The bank's acknowledgement, always with ``success`` true.

        Raises:
            ExternalServiceFailure: On timeouts, connection failures, error
                responses, or an acknowledgement with ``success`` false.
        """
        url = f"{self.config.api_url.rstrip('/')}/merchant-applications"
        logger.info(
            "Submitting merchant %s to bank API at %s", merchant.id, self.config.api_url
        )
        start = time.perf_counter()
        response = self._send(
            "POST",
            url,
            json=self.build_payload(merchant),
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "X-Request-ID": merchant.id,
            },
        )
        result = BankApplicationResponse.model_validate(response.json())
        elapsed = time.perf_counter() - start

        if not result.success:
            logger.warning(
                "Bank declined application for merchant %s: %s",
                merchant.id,
                result.message,
            )
            raise ExternalServiceFailure(
                result.message or "Bank API rejected the application",
                code="BANK_API_ERROR",
            )

        logger.info(
            "Bank accepted merchant %s: application=%s (%.2fs)",
            merchant.id,
            result.application_id,
            elapsed,
        )
        return result

    def get_application_status(self, application_id: str) -> BankApplicationResponse:
        """Poll the bank for an application's current status."""
        url = f"{self.config.api_url.rstrip('/')}/merchant-applications/{application_id}"
        logger.debug("Fetching application status for %s", application_id)
        response = self._send(
            "GET", url, headers={"Authorization": f"Bearer {self.config.api_key}"}
        )
        return BankApplicationResponse.model_validate(response.json())

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._get_client().request(
                method, url, timeout=self.config.timeout_seconds, **kwargs
            )
        except httpx.TimeoutException as exc:
            logger.error("Bank API request timed out: %s %s", method, url)
            raise ExternalServiceFailure(
                "Bank API request timeout", code="BANK_API_TIMEOUT"
            ) from exc
        except httpx.ConnectError as exc:
            logger.error("Cannot connect to bank API: %s", exc)
            raise ExternalServiceFailure(
                "Cannot connect to bank API", code="BANK_API_UNAVAILABLE"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("Bank API request failed: %s", exc)
            raise ExternalServiceFailure(
                "Failed to communicate with bank API", code="BANK_API_ERROR"
            ) from exc

        if response.is_error:
            raise self._error_from_response(response)

        try:
            response.json()
        except ValueError as exc:
            raise ExternalServiceFailure(
                "Bank API returned invalid JSON", code="BANK_API_ERROR"
            ) from exc
        return response

    @staticmethod
    def _error_from_response(response: httpx.Response) -> ExternalServiceFailure:
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}
        logger.error(
            "Bank API error %d: %s", response.status_code, body.get("message")
        )
        return ExternalServiceFailure(
            body.get("message") or "Bank API request failed",
            code=body.get("code") or "BANK_API_ERROR",
            details={"status_code": response.status_code, "details": body.get("details")},
        )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
