"""Signature verification for bank webhook callbacks.

The bank signs ``"{timestamp}.{body}"`` with HMAC-SHA256 using the shared
webhook secret and sends the hex digest in ``X-Webhook-Signature`` and
the epoch-millisecond timestamp in ``X-Webhook-Timestamp``.
"""

import hashlib
import hmac
import time

from kyc_onboarding.errors import WebhookAuthenticationError
from kyc_onboarding.utils.logger import get_logger

logger = get_logger(__name__)


def sign_payload(secret: str, timestamp: str, body: bytes) -> str:
    """Compute the hex signature for a webhook body."""
    message = timestamp.encode() + b"." + body
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(
    secret: str | None,
    signature: str | None,
    timestamp: str | None,
    body: bytes,
    tolerance_seconds: int = 300,
    now_ms: int | None = None,
) -> None:
    """Check a webhook's signature and freshness.

    Raises:
        WebhookAuthenticationError: If the secret is not configured, a
            header is missing, the timestamp is stale or unparseable, or
            the signature does not match.
    """
    if not secret:
        logger.error("Webhook received but no webhook secret is configured")
        raise WebhookAuthenticationError(
            "Webhook verification is not configured", code="WEBHOOK_AUTH_UNCONFIGURED"
        )
    if not signature or not timestamp:
        logger.warning(
            "Webhook missing signature or timestamp (signature=%s, timestamp=%s)",
            bool(signature),
            bool(timestamp),
        )
        raise WebhookAuthenticationError(
            "Webhook signature or timestamp missing", code="MISSING_WEBHOOK_AUTH"
        )

    try:
        sent_ms = int(timestamp)
    except ValueError as exc:
        raise WebhookAuthenticationError(
            "Webhook timestamp is invalid", code="WEBHOOK_TIMESTAMP_EXPIRED"
        ) from exc

    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    if abs(now_ms - sent_ms) > tolerance_seconds * 1000:
        logger.warning("Webhook timestamp expired: sent=%d now=%d", sent_ms, now_ms)
        raise WebhookAuthenticationError(
            "Webhook timestamp expired", code="WEBHOOK_TIMESTAMP_EXPIRED"
        )

    expected = sign_payload(secret, timestamp, body)
    if not hmac.compare_digest(expected, signature):
        logger.warning("Invalid webhook signature")
        raise WebhookAuthenticationError(
            "Invalid webhook signature", code="INVALID_WEBHOOK_SIGNATURE"
        )
    logger.debug("Webhook signature verified (timestamp=%d)", sent_ms)
