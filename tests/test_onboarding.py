"""
Tests for supplier onboarding, identity verification and booking eligibility.
"""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from standing.engine.onboarding import (
    IdentityVerificationStatus,
    SupplierAccountStatus,
    SuspendedBy,
    booking_eligibility,
    is_booking_eligible,
)
from standing.errors import ConflictError, NotFoundError, PolicyViolationError, ValidationError
from standing.services import build_services
from standing.services.users import register_user

Account = SupplierAccountStatus
Identity = IdentityVerificationStatus


class TestEligibility:

    def test_every_state_pair(self):
        """Only an active account with verified identity can take bookings."""
        for account in Account:
            for identity in Identity:
                expected = account == Account.ACTIVE and identity == Identity.VERIFIED
                assert is_booking_eligible(account, identity) is expected
                assert booking_eligibility(account, identity).eligible is expected

    def test_blocked_supplier_gets_reason_codes(self):
        result = booking_eligibility(Account.PENDING_REVIEW, Identity.REJECTED)
        assert result.reasons == ("onboarding-pending", "identity-verification-rejected")

    def test_eligible_supplier_has_no_reasons(self):
        assert booking_eligibility(Account.ACTIVE, Identity.VERIFIED).reasons == ()


class TestAccountTransitions:

    def test_new_supplier_starts_pending(self, services):
        record = services.onboarding.register_supplier("supplier-1", category="cleaning")
        assert record.account_status == Account.PENDING_REVIEW
        assert record.identity_verification_status == Identity.PENDING
        assert not services.onboarding.eligibility("supplier-1").eligible

    def test_unknown_user_cannot_register(self, services):
        with pytest.raises(NotFoundError):
            services.onboarding.register_supplier("ghost")

    def test_duplicate_registration(self, services):
        services.onboarding.register_supplier("supplier-1")
        with pytest.raises(ConflictError):
            services.onboarding.register_supplier("supplier-1")

    def test_approve_and_verify_makes_eligible(self, services, active_supplier):
        record = services.onboarding.get(active_supplier)
        assert record.account_status == Account.ACTIVE
        assert record.reviewed_by == "admin-1"
        assert services.onboarding.eligibility(active_supplier).eligible

    def test_request_changes_then_resubmit(self, services):
        services.onboarding.register_supplier("supplier-1")
        record = services.onboarding.request_changes("supplier-1", "admin-1", "Add a license photo")
        assert record.account_status == Account.NEEDS_CLARIFICATION
        assert record.rejection_reason == "Add a license photo"

        record = services.onboarding.resubmit("supplier-1")
        assert record.account_status == Account.PENDING_REVIEW
        assert record.rejection_reason is None

    def test_reasons_are_required(self, services):
        services.onboarding.register_supplier("supplier-1")
        with pytest.raises(ValidationError):
            services.onboarding.reject("supplier-1", "admin-1", "  ")
        with pytest.raises(ValidationError):
            services.onboarding.request_changes("supplier-1", "admin-1", "")

    def test_rejected_only_moves_by_reopen(self, services):
        services.onboarding.register_supplier("supplier-1")
        services.onboarding.reject("supplier-1", "admin-1", "Fake documents")
        with pytest.raises(PolicyViolationError):
            services.onboarding.approve("supplier-1", "admin-1")

        record = services.onboarding.reopen("supplier-1", "admin-1", "Documents re-checked")
        assert record.account_status == Account.PENDING_REVIEW

    def test_reopen_only_from_rejected(self, services, active_supplier):
        with pytest.raises(PolicyViolationError):
            services.onboarding.reopen(active_supplier, "admin-1", "no reason")

    def test_suspend_and_reactivate(self, services, active_supplier):
        record = services.onboarding.suspend(active_supplier, "admin-1", "Chargebacks")
        assert record.suspended_by == SuspendedBy.ADMIN
        assert services.onboarding.get(active_supplier).suspended_by == SuspendedBy.ADMIN
        assert not services.onboarding.eligibility(active_supplier).eligible

        record = services.onboarding.reactivate(active_supplier, "admin-1")
        assert record.suspended_by is None
        assert services.onboarding.eligibility(active_supplier).eligible

    def test_standing_reinstatement_leaves_admin_suspension(self, services, active_supplier):
        services.onboarding.suspend(active_supplier, "admin-1", "Forged business licence")
        assert services.onboarding.reinstate_for_standing(active_supplier) is None
        assert services.onboarding.get(active_supplier).account_status == Account.SUSPENDED

    def test_pending_cannot_be_suspended(self, services):
        services.onboarding.register_supplier("supplier-1")
        with pytest.raises(PolicyViolationError):
            services.onboarding.suspend("supplier-1", "admin-1", "x")

    def test_standing_sync_is_noop_for_inactive_accounts(self, services):
        services.onboarding.register_supplier("supplier-1")
        assert services.onboarding.suspend_for_standing("supplier-1") is None
        assert services.onboarding.reinstate_for_standing("supplier-1") is None


class TestIdentityTransitions:

    def test_cannot_verify_twice(self, services, active_supplier):
        with pytest.raises(PolicyViolationError):
            services.onboarding.verify_identity(active_supplier, "admin-1")

    def test_revoke_blocks_bookings(self, services, active_supplier):
        record = services.onboarding.reject_identity(active_supplier, "admin-1", "Document expired")
        assert record.identity_verification_status == Identity.REJECTED
        assert record.identity_rejection_reason == "Document expired"
        assert not services.onboarding.eligibility(active_supplier).eligible

    def test_resubmit_only_after_rejection(self, services):
        services.onboarding.register_supplier("supplier-1")
        with pytest.raises(PolicyViolationError):
            services.onboarding.resubmit_identity("supplier-1")

        services.onboarding.reject_identity("supplier-1", "admin-1", "Blurry photo")
        record = services.onboarding.resubmit_identity("supplier-1")
        assert record.identity_verification_status == Identity.PENDING
        assert record.identity_rejection_reason is None

    def test_reset_returns_to_pending(self, services, active_supplier):
        record = services.onboarding.reset_identity(active_supplier, "admin-1")
        assert record.identity_verification_status == Identity.PENDING

    def test_verified_badge_follows_identity(self, services, active_supplier):
        """The verified badge appears after verification and drops after reset."""
        snapshot = services.standing.recompute(active_supplier)
        assert "verified" in {b.type.value for b in snapshot.badges}

        services.onboarding.reset_identity(active_supplier, "admin-1")
        snapshot = services.standing.recompute(active_supplier)
        assert "verified" not in {b.type.value for b in snapshot.badges}

    def test_history_records_each_axis(self, store, clock):
        history = MagicMock()
        svc = build_services(store, history=history, clock=clock)
        register_user(store, "supplier-9", "supplier")
        svc.onboarding.register_supplier("supplier-9")
        svc.onboarding.approve("supplier-9", "admin-1")
        svc.onboarding.verify_identity("supplier-9", "admin-1")

        kinds = [c.kwargs["kind"] for c in history.record_transition.call_args_list]
        assert kinds == ["account_status", "identity_verification"]


class TestStatsAndDocuments:

    def test_stats_counts_each_status(self, services, active_supplier):
        services.onboarding.register_supplier("supplier-2")
        stats = services.onboarding.stats()
        assert stats["active"] == 1
        assert stats["pendingReview"] == 1
        assert stats["rejected"] == 0
        assert stats["total"] == 2

    def test_upload_and_review(self, services, active_supplier):
        document = services.onboarding.upload_document(
            active_supplier, "businessLicense", "https://files/license.pdf",
            "license.pdf", "application/pdf", 2048,
        )
        assert document.status.value == "pending"

        reviewed = services.onboarding.review_document(document.document_id, True, "admin-1")
        assert reviewed.status.value == "approved"
        with pytest.raises(PolicyViolationError):
            services.onboarding.review_document(document.document_id, False, "admin-1", "late")

    def test_rejecting_a_document_needs_a_reason(self, services, active_supplier):
        document = services.onboarding.upload_document(
            active_supplier, "insurance", "https://files/ins.png", "ins.png", "image/png", 10,
        )
        with pytest.raises(ValidationError):
            services.onboarding.review_document(document.document_id, False, "admin-1")

    def test_upload_validation(self, services, active_supplier):
        with pytest.raises(ValidationError):
            services.onboarding.upload_document(
                active_supplier, "passport", "https://f", "p.pdf", "application/pdf", 10)
        with pytest.raises(ValidationError):
            services.onboarding.upload_document(
                active_supplier, "other", "https://f", "p.exe", "application/octet-stream", 10)
        with pytest.raises(ValidationError):
            services.onboarding.upload_document(
                active_supplier, "other", "https://f", "p.pdf", "application/pdf", 11 * 1024 * 1024)

    def test_expired_document_reported_on_read(self, services, active_supplier, clock):
        services.onboarding.upload_document(
            active_supplier, "insurance", "https://files/ins.pdf", "ins.pdf", "application/pdf", 500,
            expires_at=clock.now + timedelta(days=30),
        )
        assert services.onboarding.list_documents(active_supplier)[0]["status"] == "pending"
        clock.advance(days=31)
        assert services.onboarding.list_documents(active_supplier)[0]["status"] == "expired"
