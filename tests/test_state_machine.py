"""Tests for the merchant onboarding status machine."""

import threading
from unittest.mock import MagicMock

import pytest

from conftest import make_submission
from kyc_onboarding.errors import (
    ConcurrentModification,
    ExternalServiceFailure,
    InvalidStatusTransition,
    MerchantNotFound,
    ValidationError,
)
from kyc_onboarding.onboarding.models import (
    BankDecision,
    ManualApprove,
    MerchantProfile,
    OnboardingStatus,
    PersistedStatus,
    to_persisted_status,
)
from kyc_onboarding.onboarding.notifications import Notification
from kyc_onboarding.onboarding.repository import InMemoryRepository
from kyc_onboarding.onboarding.state_machine import OnboardingStateMachine


def _advance(
    machine: OnboardingStateMachine, target: OnboardingStatus, user_id: str = "user-1"
) -> MerchantProfile:
    """Create a merchant and walk it through the normal flow up to ``target``."""
    merchant = machine.save_profile(user_id, make_submission())
    steps = [
        (OnboardingStatus.SUBMITTED, lambda m: machine.submit(m.id, user_id)),
        (OnboardingStatus.VALIDATING, lambda m: machine.validate(m.id, "admin-1")),
        (
            OnboardingStatus.PENDING_BANK_APPROVAL,
            lambda m: machine.submit_to_bank(m.id, "admin-1"),
        ),
    ]
    for status, step in steps:
        if merchant.onboarding_status == target:
            break
        merchant = step(merchant)
        assert merchant.onboarding_status == status
    return merchant


class TestPersistedStatus:
    """Tests for the canonical-to-persisted status mapping."""

    def test_mapping_is_total(self) -> None:
        assert {s: to_persisted_status(s) for s in OnboardingStatus} == {
            OnboardingStatus.DRAFT: PersistedStatus.PENDING,
            OnboardingStatus.SUBMITTED: PersistedStatus.IN_PROGRESS,
            OnboardingStatus.VALIDATING: PersistedStatus.IN_PROGRESS,
            OnboardingStatus.PENDING_BANK_APPROVAL: PersistedStatus.IN_PROGRESS,
            OnboardingStatus.APPROVED: PersistedStatus.VERIFIED,
            OnboardingStatus.REJECTED: PersistedStatus.REJECTED,
        }


class TestSaveProfile:
    """Tests for creating and editing draft profiles."""

    def test_creates_draft(self, machine: OnboardingStateMachine) -> None:
        merchant = machine.save_profile("user-1", make_submission())
        assert merchant.onboarding_status == OnboardingStatus.DRAFT
        assert merchant.user_id == "user-1"
        assert merchant.version == 1
        assert machine.get(merchant.id) == merchant

    def test_updates_existing_draft(self, machine: OnboardingStateMachine) -> None:
        first = machine.save_profile("user-1", make_submission())
        second = machine.save_profile(
            "user-1", make_submission(business_name="Sharma & Sons")
        )
        assert second.id == first.id
        assert second.business_name == "Sharma & Sons"
        assert second.version == 2
        assert len(machine.list_merchants()) == 1

    def test_cannot_edit_after_submit(self, machine: OnboardingStateMachine) -> None:
        _advance(machine, OnboardingStatus.SUBMITTED)
        with pytest.raises(InvalidStatusTransition) as exc_info:
            machine.save_profile("user-1", make_submission())
        assert exc_info.value.current_status == "submitted"


class TestSubmit:
    """Tests for submitting a draft."""

    def test_submit_with_three_documents(
        self, machine: OnboardingStateMachine, sent_notifications: list[Notification]
    ) -> None:
        merchant = machine.save_profile("user-1", make_submission(document_count=3))
        submitted = machine.submit(merchant.id, "user-1")

        assert submitted.onboarding_status == OnboardingStatus.SUBMITTED
        assert submitted.submitted_at is not None
        assert submitted.persisted_status == PersistedStatus.IN_PROGRESS
        assert [n.subject for n in sent_notifications] == [
            "Application submitted successfully",
            "New merchant application submitted",
        ]
        assert sent_notifications[1].to == "admin@sabbpe.com"

    def test_submit_with_two_documents_fails(
        self, machine: OnboardingStateMachine, sent_notifications: list[Notification]
    ) -> None:
        merchant = machine.save_profile("user-1", make_submission(document_count=2))
        with pytest.raises(ValidationError) as exc_info:
            machine.submit(merchant.id, "user-1")

        assert "documents" in exc_info.value.fields
        assert machine.get(merchant.id).onboarding_status == OnboardingStatus.DRAFT
        assert sent_notifications == []

    def test_submit_twice_fails(self, machine: OnboardingStateMachine) -> None:
        merchant = _advance(machine, OnboardingStatus.SUBMITTED)
        with pytest.raises(InvalidStatusTransition):
            machine.submit(merchant.id, "user-1")

    def test_unknown_merchant(self, machine: OnboardingStateMachine) -> None:
        with pytest.raises(MerchantNotFound):
            machine.submit("missing", "user-1")


class TestBankSubmission:
    """Tests for submitting applications to the bank."""

    def test_stores_bank_reference(
        self, machine: OnboardingStateMachine, bank_client: MagicMock
    ) -> None:
        merchant = _advance(machine, OnboardingStatus.PENDING_BANK_APPROVAL)

        assert merchant.bank_application_id == "APP-1"
        assert merchant.bank_response is not None
        assert merchant.bank_response.estimated_processing_time == "2-3 business days"
        assert merchant.bank_submitted_at is not None
        bank_client.submit_application.assert_called_once()

    def test_requires_validating(
        self, machine: OnboardingStateMachine, bank_client: MagicMock
    ) -> None:
        merchant = _advance(machine, OnboardingStatus.SUBMITTED)

        with pytest.raises(InvalidStatusTransition) as exc_info:
            machine.submit_to_bank(merchant.id, "admin-1")

        assert exc_info.value.current_status == "submitted"
        assert "submitted" in exc_info.value.message
        assert machine.get(merchant.id).onboarding_status == OnboardingStatus.SUBMITTED
        bank_client.submit_application.assert_not_called()

    def test_bank_failure_leaves_status(
        self, machine: OnboardingStateMachine, bank_client: MagicMock
    ) -> None:
        merchant = _advance(machine, OnboardingStatus.VALIDATING)
        bank_client.submit_application.side_effect = ExternalServiceFailure(
            "Bank API request timeout", code="BANK_API_TIMEOUT"
        )

        with pytest.raises(ExternalServiceFailure):
            machine.submit_to_bank(merchant.id, "admin-1")

        stored = machine.get(merchant.id)
        assert stored.onboarding_status == OnboardingStatus.VALIDATING
        assert stored.bank_application_id is None


class TestDecisions:
    """Tests for approval, rejection and bank decisions."""

    def test_approve_from_pending_bank(self, machine: OnboardingStateMachine) -> None:
        merchant = _advance(machine, OnboardingStatus.PENDING_BANK_APPROVAL)
        approved = machine.approve(merchant.id, "admin-1", notes="docs verified")
        assert approved.onboarding_status == OnboardingStatus.APPROVED
        assert approved.persisted_status == PersistedStatus.VERIFIED
        assert approved.decision_at is not None

    def test_approve_requires_pending_bank(self, machine: OnboardingStateMachine) -> None:
        merchant = machine.save_profile("user-1", make_submission())
        with pytest.raises(InvalidStatusTransition):
            machine.approve(merchant.id, "admin-1")

    def test_manual_approve_from_draft_is_audited(
        self, machine: OnboardingStateMachine
    ) -> None:
        merchant = machine.save_profile("user-1", make_submission(document_count=0))
        approved = machine.manual_approve(
            merchant.id, ManualApprove(reason="Verified in branch", actor="admin-9")
        )

        assert approved.onboarding_status == OnboardingStatus.APPROVED
        entry = machine.history(merchant.id)[-1]
        assert entry.action == "manual_approve"
        assert entry.override is True
        assert entry.actor == "admin-9"
        assert entry.previous_status == OnboardingStatus.DRAFT
        assert entry.notes == "Verified in branch"

    def test_manual_approve_requires_reason(
        self, machine: OnboardingStateMachine
    ) -> None:
        merchant = machine.save_profile("user-1", make_submission())
        with pytest.raises(ValidationError) as exc_info:
            machine.manual_approve(merchant.id, ManualApprove(reason=" ", actor="admin-1"))
        assert exc_info.value.fields == ["reason"]

    def test_manual_approve_not_from_terminal(
        self, machine: OnboardingStateMachine
    ) -> None:
        merchant = _advance(machine, OnboardingStatus.SUBMITTED)
        machine.reject(merchant.id, "admin-1", "Blurry documents")
        with pytest.raises(InvalidStatusTransition):
            machine.manual_approve(merchant.id, ManualApprove(reason="ok", actor="admin-1"))

    def test_reject_requires_reason(self, machine: OnboardingStateMachine) -> None:
        merchant = _advance(machine, OnboardingStatus.PENDING_BANK_APPROVAL)
        with pytest.raises(ValidationError) as exc_info:
            machine.reject(merchant.id, "admin-1", "")
        assert exc_info.value.fields == ["reason"]

    def test_reject_from_pending_bank_is_terminal(
        self, machine: OnboardingStateMachine, sent_notifications: list[Notification]
    ) -> None:
        merchant = _advance(machine, OnboardingStatus.PENDING_BANK_APPROVAL)
        rejected = machine.reject(merchant.id, "admin-1", "Address mismatch")

        assert rejected.onboarding_status == OnboardingStatus.REJECTED
        assert rejected.rejection_reason == "Address mismatch"
        assert "Reason: Address mismatch" in sent_notifications[-1].body

        for operation in (
            lambda: machine.reject(merchant.id, "admin-1", "again"),
            lambda: machine.approve(merchant.id, "admin-1"),
            lambda: machine.submit(merchant.id, "user-1"),
            lambda: machine.validate(merchant.id, "admin-1"),
        ):
            with pytest.raises(InvalidStatusTransition):
                operation()

    def test_reject_not_allowed_from_draft(self, machine: OnboardingStateMachine) -> None:
        merchant = machine.save_profile("user-1", make_submission())
        with pytest.raises(InvalidStatusTransition):
            machine.reject(merchant.id, "admin-1", "incomplete")

    def test_bank_approval(self, machine: OnboardingStateMachine) -> None:
        merchant = _advance(machine, OnboardingStatus.PENDING_BANK_APPROVAL)
        approved = machine.record_bank_decision(
            merchant.id,
            BankDecision(application_id="APP-1", approved=True, merchant_code="MC-77"),
        )
        assert approved.onboarding_status == OnboardingStatus.APPROVED
        assert approved.bank_response is not None
        assert approved.bank_response.additional_data["merchant_code"] == "MC-77"
        assert machine.history(merchant.id)[-1].actor == "bank"

    def test_bank_rejection_default_reason(self, machine: OnboardingStateMachine) -> None:
        merchant = _advance(machine, OnboardingStatus.PENDING_BANK_APPROVAL)
        rejected = machine.record_bank_decision(
            merchant.id, BankDecision(application_id="APP-1", approved=False)
        )
        assert rejected.onboarding_status == OnboardingStatus.REJECTED
        assert rejected.rejection_reason == "Rejected by bank"

    def test_bank_decision_application_mismatch(
        self, machine: OnboardingStateMachine
    ) -> None:
        merchant = _advance(machine, OnboardingStatus.PENDING_BANK_APPROVAL)
        with pytest.raises(ValidationError) as exc_info:
            machine.record_bank_decision(
                merchant.id, BankDecision(application_id="APP-2", approved=True)
            )
        assert exc_info.value.fields == ["application_id"]
        assert (
            machine.get(merchant.id).onboarding_status
            == OnboardingStatus.PENDING_BANK_APPROVAL
        )

    def test_bank_decision_requires_pending(self, machine: OnboardingStateMachine) -> None:
        merchant = _advance(machine, OnboardingStatus.VALIDATING)
        with pytest.raises(InvalidStatusTransition):
            machine.record_bank_decision(
                merchant.id, BankDecision(application_id="APP-1", approved=True)
            )


class TestDelete:
    """Tests for deleting merchant records."""

    def test_delete_draft(self, machine: OnboardingStateMachine) -> None:
        merchant = machine.save_profile("user-1", make_submission())
        machine.delete(merchant.id, "admin-1")
        with pytest.raises(MerchantNotFound):
            machine.get(merchant.id)
        assert machine.history(merchant.id)[-1].action == "delete"

    def test_delete_rejected(self, machine: OnboardingStateMachine) -> None:
        merchant = _advance(machine, OnboardingStatus.SUBMITTED)
        machine.reject(merchant.id, "admin-1", "duplicate")
        machine.delete(merchant.id, "admin-1")
        assert machine.list_merchants() == []

    def test_delete_in_review_refused(self, machine: OnboardingStateMachine) -> None:
        merchant = _advance(machine, OnboardingStatus.VALIDATING)
        with pytest.raises(InvalidStatusTransition):
            machine.delete(merchant.id, "admin-1")

    def test_deleted_merchants_leave_no_locks(
        self, machine: OnboardingStateMachine
    ) -> None:
        for n in range(5):
            merchant = machine.save_profile(f"user-{n}", make_submission())
            machine.delete(merchant.id, "admin-1")
        assert len(machine._locks) == 0


class TestQueriesAndAudit:
    """Tests for listing, history and version tracking."""

    def test_list_by_status(self, machine: OnboardingStateMachine) -> None:
        _advance(machine, OnboardingStatus.SUBMITTED, user_id="user-1")
        machine.save_profile("user-2", make_submission())

        submitted = machine.list_merchants(OnboardingStatus.SUBMITTED)
        drafts = machine.list_merchants(OnboardingStatus.DRAFT)
        assert [m.user_id for m in submitted] == ["user-1"]
        assert [m.user_id for m in drafts] == ["user-2"]

    def test_history_records_every_transition(
        self, machine: OnboardingStateMachine
    ) -> None:
        merchant = _advance(machine, OnboardingStatus.PENDING_BANK_APPROVAL)
        machine.approve(merchant.id, "admin-1")

        history = machine.history(merchant.id)
        assert [e.action for e in history] == [
            "create",
            "submit",
            "validate",
            "submit_to_bank",
            "approve",
        ]
        assert [e.new_status for e in history][-1] == OnboardingStatus.APPROVED
        assert all(e.override is False for e in history)

    def test_version_increments_on_each_write(
        self, machine: OnboardingStateMachine
    ) -> None:
        merchant = _advance(machine, OnboardingStatus.VALIDATING)
        assert merchant.version == 3

    def test_stale_write_detected(self) -> None:
        repository: InMemoryRepository[MerchantProfile] = InMemoryRepository()
        machine = OnboardingStateMachine(
            repository=repository, bank_client=MagicMock(), notifier=MagicMock()
        )
        merchant = machine.save_profile("user-1", make_submission())
        # Another process bumps the stored record behind our back.
        repository.set(merchant.id, merchant.model_copy(update={"version": 7}))

        with pytest.raises(ConcurrentModification):
            machine._transition(
                merchant, OnboardingStatus.SUBMITTED, "user-1", "submit"
            )

    def test_concurrent_submits_apply_once(self) -> None:
        machine = OnboardingStateMachine(bank_client=MagicMock(), notifier=MagicMock())
        merchant = machine.save_profile("user-1", make_submission())
        outcomes: list[str] = []

        def submit() -> None:
            try:
                machine.submit(merchant.id, "user-1")
                outcomes.append("ok")
            except InvalidStatusTransition:
                outcomes.append("refused")

        threads = [threading.Thread(target=submit) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["ok"] + ["refused"] * 7
        assert machine.get(merchant.id).version == 2
