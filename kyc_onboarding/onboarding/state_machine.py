"""Merchant onboarding status machine.

Every operation loads the merchant under a per-merchant lock, checks the
current status against the operation's allowed sources, writes the new
record with an optimistic version check, records an audit entry and
notifies the merchant. Errors surface to the caller as typed exceptions
and nothing is retried.

The normal flow is draft, submitted, validating, pending_bank_approval,
approved. Any state under review may move to rejected instead.
``manual_approve`` is the only way to reach ``approved`` from any other
non-terminal state, and its audit entry is flagged as an override.
"""

import threading
import uuid
import weakref
from typing import Any

from kyc_onboarding.errors import (
    ConcurrentModification,
    FieldError,
    InvalidStatusTransition,
    MerchantNotFound,
    ValidationError,
)
from kyc_onboarding.utils.logger import get_logger

from .audit import AuditLog
from .bank_client import BankApplicationClient
from .models import (
    AuditEntry,
    BankDecision,
    ManualApprove,
    MerchantProfile,
    MerchantSubmission,
    OnboardingStatus,
    utcnow,
)
from .notifications import NotificationService
from .repository import InMemoryRepository, Repository
from .validation import ProfileValidator

logger = get_logger(__name__)

S = OnboardingStatus

NON_TERMINAL = [s for s in OnboardingStatus if not s.is_terminal]
REJECTABLE = [S.SUBMITTED, S.VALIDATING, S.PENDING_BANK_APPROVAL]
DELETABLE = [S.DRAFT, S.REJECTED]

DEFAULT_BANK_REJECTION = "Rejected by bank"


class OnboardingStateMachine:
    """Drives merchant records through the onboarding workflow.

    Args:
        repository: Merchant storage keyed by merchant id.
        bank_client: Client for the bank application API.
        notifier: Merchant and admin notification service.
        audit_log: Append-only transition log.
        validator: Profile validator used on submit and admin validation.
    """

    def __init__(
        self,
        repository: Repository[MerchantProfile] | None = None,
        bank_client: BankApplicationClient | None = None,
        notifier: NotificationService | None = None,
        audit_log: AuditLog | None = None,
        validator: ProfileValidator | None = None,
    ) -> None:
        self.repository = repository if repository is not None else InMemoryRepository()
        self.bank_client = bank_client or BankApplicationClient()
        self.notifier = notifier or NotificationService()
        self.audit_log = audit_log or AuditLog()
        self.validator = validator or ProfileValidator()
        # Entries vanish once no caller holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def get(self, merchant_id: str) -> MerchantProfile:
        """Return a merchant record.

        Raises:
            MerchantNotFound: If no record has this id.
        """
        merchant = self.repository.get(merchant_id)
        if merchant is None:
            raise MerchantNotFound(merchant_id)
        return merchant

    def get_by_user(self, user_id: str) -> MerchantProfile | None:
        return next(
            (m for m in self.repository.values() if m.user_id == user_id), None
        )

    def list_merchants(
        self, status: OnboardingStatus | None = None
    ) -> list[MerchantProfile]:
        """List merchants, optionally filtered by status, oldest first."""
        merchants = self.repository.values()
        if status is not None:
            merchants = [m for m in merchants if m.onboarding_status == status]
        return sorted(merchants, key=lambda m: m.created_at)

    def history(self, merchant_id: str) -> list[AuditEntry]:
        """Audit entries for a merchant, oldest first."""
        return self.audit_log.for_merchant(merchant_id)

    def save_profile(
        self, user_id: str, submission: MerchantSubmission
    ) -> MerchantProfile:
        """Create the user's draft profile or update the existing draft.

        Raises:
            InvalidStatusTransition: If the user's record is past draft.
        """
        with self._lock_for(f"user:{user_id}"):
            existing = self.get_by_user(user_id)
            if existing is None:
                merchant = MerchantProfile(
                    **submission.model_dump(), id=str(uuid.uuid4()), user_id=user_id
                )
                with self._lock_for(merchant.id):
                    saved = self._write(merchant, expected_version=None)
                    self._audit(saved, "create", None, S.DRAFT, user_id)
                logger.info(
                    "Merchant profile created: merchant=%s user=%s business=%s",
                    saved.id,
                    user_id,
                    saved.business_name,
                )
                return saved

            with self._lock_for(existing.id):
                current = self.get(existing.id)
                self._require(current, "update", [S.DRAFT])
                updated = MerchantProfile.model_validate(
                    {**current.model_dump(), **submission.model_dump()}
                )
                saved = self._write(updated, expected_version=current.version)
                self._audit(saved, "update", S.DRAFT, S.DRAFT, user_id)
            logger.info("Merchant profile updated: merchant=%s user=%s", saved.id, user_id)
            return saved

    def submit(self, merchant_id: str, actor: str) -> MerchantProfile:
        """Submit a draft for review after validating the profile.

        Raises:
            ValidationError: If the profile is incomplete.
        """
        with self._lock_for(merchant_id):
            merchant = self.get(merchant_id)
            self._require(merchant, "submit", [S.DRAFT])
            self.validator.validate(merchant)
            updated = self._transition(
                merchant, S.SUBMITTED, actor, "submit", submitted_at=utcnow()
            )
        self.notifier.notify_status_change(updated, S.DRAFT, S.SUBMITTED)
        self.notifier.notify_admin_new_submission(updated)
        return updated

    def validate(self, merchant_id: str, actor: str) -> MerchantProfile:
        """Start admin review of a submitted application."""
        with self._lock_for(merchant_id):
            merchant = self.get(merchant_id)
            self._require(merchant, "validate", [S.SUBMITTED])
            self.validator.validate(merchant)
            updated = self._transition(
                merchant, S.VALIDATING, actor, "validate", validated_at=utcnow()
            )
        self.notifier.notify_status_change(updated, S.SUBMITTED, S.VALIDATING)
        return updated

    def submit_to_bank(self, merchant_id: str, actor: str) -> MerchantProfile:
        """Send a validated application to the bank.

        Raises:
            ExternalServiceFailure: If the bank call fails; the status is
                left unchanged.
        """
        with self._lock_for(merchant_id):
            merchant = self.get(merchant_id)
            self._require(merchant, "submit to bank", [S.VALIDATING])
            response = self.bank_client.submit_application(merchant)
            updated = self._transition(
                merchant,
                S.PENDING_BANK_APPROVAL,
                actor,
                "submit_to_bank",
                notes=f"Bank application {response.application_id}",
                bank_application_id=response.application_id,
                bank_response=response.to_bank_response(),
                bank_submitted_at=utcnow(),
            )
        self.notifier.notify_status_change(
            updated, S.VALIDATING, S.PENDING_BANK_APPROVAL
        )
        return updated

    def approve(
        self, merchant_id: str, actor: str, notes: str | None = None
    ) -> MerchantProfile:
        """Approve an application that is awaiting the bank decision."""
        with self._lock_for(merchant_id):
            merchant = self.get(merchant_id)
            self._require(merchant, "approve", [S.PENDING_BANK_APPROVAL])
            updated = self._transition(
                merchant, S.APPROVED, actor, "approve", notes=notes, decision_at=utcnow()
            )
        self.notifier.notify_status_change(updated, S.PENDING_BANK_APPROVAL, S.APPROVED)
        return updated

    def manual_approve(self, merchant_id: str, decision: ManualApprove) -> MerchantProfile:
        """Approve from any non-terminal state as an audited override.

        Raises:
            ValidationError: If no reason is given.
        """
        if not decision.reason.strip():
            raise ValidationError(
                "A reason is required for manual approval",
                [FieldError("reason", "Reason is required", "MISSING_REASON")],
            )
        with self._lock_for(merchant_id):
            merchant = self.get(merchant_id)
            previous = merchant.onboarding_status
            self._require(merchant, "manually approve", NON_TERMINAL)
            updated = self._transition(
                merchant,
                S.APPROVED,
                decision.actor,
                "manual_approve",
                notes=decision.reason,
                override=True,
                decision_at=utcnow(),
            )
        logger.warning(
            "Manual approval override: merchant=%s from=%s by=%s",
            merchant_id,
            previous,
            decision.actor,
        )
        self.notifier.notify_status_change(updated, previous, S.APPROVED)
        return updated

    def reject(self, merchant_id: str, actor: str, reason: str) -> MerchantProfile:
        """Reject an application under review. Rejection is terminal.

        Raises:
            ValidationError: If ``reason`` is empty.
        """
        if not reason or not reason.strip():
            raise ValidationError(
                "Rejection reason is required",
                [FieldError("reason", "Rejection reason is required", "MISSING_REASON")],
            )
        with self._lock_for(merchant_id):
            merchant = self.get(merchant_id)
            previous = merchant.onboarding_status
            self._require(merchant, "reject", REJECTABLE)
            updated = self._transition(
                merchant,
                S.REJECTED,
                actor,
                "reject",
                notes=reason,
                rejection_reason=reason,
                decision_at=utcnow(),
            )
        self.notifier.notify_status_change(updated, previous, S.REJECTED)
        return updated

    def record_bank_decision(
        self, merchant_id: str, decision: BankDecision
    ) -> MerchantProfile:
        """Apply the bank's approval or rejection delivered by webhook.

        Raises:
            ValidationError: If the application id does not match the one
                stored for the merchant.
        """
        with self._lock_for(merchant_id):
            merchant = self.get(merchant_id)
            self._require(merchant, "record a bank decision for", [S.PENDING_BANK_APPROVAL])
            if decision.application_id != merchant.bank_application_id:
                raise ValidationError(
                    "Bank application id does not match",
                    [
                        FieldError(
                            "application_id",
                            f"Expected {merchant.bank_application_id}",
                            "APPLICATION_ID_MISMATCH",
                        )
                    ],
                )

            bank_response = merchant.bank_response
            if bank_response is not None:
                extra = {
                    "account_number": decision.account_number,
                    "merchant_code": decision.merchant_code,
                }
                bank_response = bank_response.model_copy(deep=True)
                bank_response.additional_data.update(
                    {k: v for k, v in extra.items() if v is not None}
                )

            changes: dict[str, Any] = {
                "decision_at": decision.processed_at or utcnow(),
                "bank_response": bank_response,
            }
            if decision.approved:
                target = S.APPROVED
                notes = decision.reason
            else:
                target = S.REJECTED
                notes = decision.reason or DEFAULT_BANK_REJECTION
                changes["rejection_reason"] = notes
            updated = self._transition(
                merchant, target, "bank", "bank_decision", notes=notes, **changes
            )
        self.notifier.notify_status_change(updated, S.PENDING_BANK_APPROVAL, target)
        return updated

    def delete(self, merchant_id: str, actor: str) -> MerchantProfile:
        """Delete a draft or rejected merchant record.

        Returns:
            The record as it was before deletion.
        """
        with self._lock_for(merchant_id):
            merchant = self.get(merchant_id)
            self._require(merchant, "delete", DELETABLE)
            self.repository.delete(merchant_id)
            self._audit(merchant, "delete", merchant.onboarding_status, None, actor)
        logger.info("Merchant %s deleted by %s", merchant_id, actor)
        return merchant

    @staticmethod
    def _require(
        merchant: MerchantProfile, action: str, allowed: list[OnboardingStatus]
    ) -> None:
        if merchant.onboarding_status not in allowed:
            raise InvalidStatusTransition(
                action, merchant.onboarding_status.value, [s.value for s in allowed]
            )

    def _transition(
        self,
        merchant: MerchantProfile,
        target: OnboardingStatus,
        actor: str,
        action: str,
        notes: str | None = None,
        override: bool = False,
        **changes: Any,
    ) -> MerchantProfile:
        previous = merchant.onboarding_status
        updated = merchant.model_copy(update={**changes, "onboarding_status": target})
        saved = self._write(updated, expected_version=merchant.version)
        self._audit(saved, action, previous, target, actor, notes, override)
        logger.info(
            "Merchant %s: %s -> %s (%s by %s)",
            merchant.id,
            previous,
            target,
            action,
            actor,
        )
        return saved

    def _write(
        self, merchant: MerchantProfile, expected_version: int | None
    ) -> MerchantProfile:
        stored = self.repository.get(merchant.id)
        stored_version = stored.version if stored is not None else None
        if stored_version != expected_version:
            raise ConcurrentModification(
                f"Merchant {merchant.id} was modified concurrently",
                details={"expected": expected_version, "found": stored_version},
            )
        saved = merchant.model_copy(
            update={"version": (expected_version or 0) + 1, "updated_at": utcnow()}
        )
        self.repository.set(saved.id, saved)
        return saved

    def _audit(
        self,
        merchant: MerchantProfile,
        action: str,
        previous: OnboardingStatus | None,
        new: OnboardingStatus | None,
        actor: str,
        notes: str | None = None,
        override: bool = False,
    ) -> None:
        self.audit_log.record(
            AuditEntry(
                merchant_id=merchant.id,
                action=action,
                previous_status=previous,
                new_status=new,
                actor=actor,
                notes=notes,
                override=override,
            )
        )
