"""Merchant and admin notifications for onboarding status changes.

Messages are built here and handed to a sender callable; the default
sender only logs the delivery so the service runs without a mail
provider.
"""

from collections.abc import Callable
from dataclasses import dataclass

from kyc_onboarding.utils.logger import get_logger

from .models import MerchantProfile, OnboardingStatus

logger = get_logger(__name__)

SUBJECTS: dict[OnboardingStatus, str] = {
    OnboardingStatus.DRAFT: "Your application is saved",
    OnboardingStatus.SUBMITTED: "Application submitted successfully",
    OnboardingStatus.VALIDATING: "Application under review",
    OnboardingStatus.PENDING_BANK_APPROVAL: "Application sent to bank for approval",
    OnboardingStatus.APPROVED: "Congratulations! Your application is approved",
    OnboardingStatus.REJECTED: "Application not approved",
}

BODIES: dict[OnboardingStatus, str] = {
    OnboardingStatus.DRAFT: (
        "Hi {name},\n\nYour merchant application has been saved as draft. "
        "You can continue editing and submit when ready."
    ),
    OnboardingStatus.SUBMITTED: (
        "Hi {name},\n\nYour merchant application has been submitted successfully. "
        "Our team will review it shortly."
    ),
    OnboardingStatus.VALIDATING: (
        "Hi {name},\n\nYour application is currently under review by our team. "
        "We'll notify you once the review is complete."
    ),
    OnboardingStatus.PENDING_BANK_APPROVAL: (
        "Hi {name},\n\nYour application has been submitted to the bank for final "
        "approval. This typically takes 2-3 business days."
    ),
    OnboardingStatus.APPROVED: (
        "Hi {name},\n\nCongratulations! Your merchant application has been approved. "
        "You can now start using our platform.\n\nWelcome aboard!"
    ),
    OnboardingStatus.REJECTED: (
        "Hi {name},\n\nYour merchant application could not be approved. "
        "Reason: {reason}\n\nPlease contact support if you have any questions."
    ),
}


@dataclass
class Notification:
    """An outbound message."""

    to: str
    subject: str
    body: str
    channel: str = "email"


def log_sender(notification: Notification) -> None:
    logger.info("Email sent to %s: %s", notification.to, notification.subject)


class NotificationService:
    """Builds and sends onboarding notifications.

    Args:
        admin_email: Recipient of new-submission alerts.
        sender: Callable that delivers a :class:`Notification`.
    """

    def __init__(
        self,
        admin_email: str = "admin@sabbpe.com",
        sender: Callable[[Notification], None] | None = None,
    ) -> None:
        self.admin_email = admin_email
        self.sender = sender or log_sender

    def build_status_notification(
        self, merchant: MerchantProfile, status: OnboardingStatus
    ) -> Notification:
        body = BODIES[status].format(
            name=merchant.business_name,
            reason=merchant.rejection_reason or "No reason was provided.",
        )
        return Notification(to=merchant.email, subject=SUBJECTS[status], body=body)

    def notify_status_change(
        self,
        merchant: MerchantProfile,
        old_status: OnboardingStatus | None,
        new_status: OnboardingStatus,
    ) -> Notification:
        """Tell the merchant their application moved to ``new_status``."""
        notification = self.build_status_notification(merchant, new_status)
        self.sender(notification)
        logger.info(
            "Status change notification sent: merchant=%s %s -> %s",
            merchant.id,
            old_status,
            new_status,
        )
        return notification

    def notify_admin_new_submission(self, merchant: MerchantProfile) -> Notification:
        """Alert the admin mailbox that a merchant submitted an application."""
        notification = Notification(
            to=self.admin_email,
            subject="New merchant application submitted",
            body=(
                "A new merchant application has been submitted:\n\n"
                f"Business: {merchant.business_name}\n"
                f"Email: {merchant.email}\n"
                f"Submitted: {merchant.submitted_at}"
            ),
        )
        self.sender(notification)
        logger.info("Admin notification sent: merchant=%s", merchant.id)
        return notification
