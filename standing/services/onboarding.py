"""
Standing Engine — Onboarding & Identity Verification service

Drives SupplierRecord through its two state machines on admin decisions.
Every transition is logged and appended to history. Writes are
compare-and-set on the record's version; a lost race surfaces as a
ConflictError for the admin tool to retry.
"""
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog

from standing.engine.common import require_text, utcnow
from standing.engine.onboarding import (
    Eligibility,
    IdentityVerificationStatus,
    SupplierAccountStatus,
    SupplierRecord,
    SuspendedBy,
    VerificationDocument,
    DocumentStatus,
    account_status_counts,
)
from standing.errors import NotFoundError, PolicyViolationError
from standing.services.users import DOCUMENTS, SUPPLIERS, get_user
from standing.store.documents import DocumentStore
from standing.store.history import StandingHistory

logger = structlog.get_logger()

Account = SupplierAccountStatus
Identity = IdentityVerificationStatus


class OnboardingService:

    def __init__(
        self,
        store: DocumentStore,
        history: Optional[StandingHistory] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._history = history
        self._clock = clock

    # =============================================
    # RECORDS
    # =============================================

    def register_supplier(self, supplier_id: str, category: Optional[str] = None,
                          service_count: int = 0) -> SupplierRecord:
        get_user(self._store, supplier_id)
        now = self._clock()
        record = SupplierRecord(
            supplier_id=supplier_id,
            account_status=Account.PENDING_REVIEW,
            identity_verification_status=Identity.PENDING,
            created_at=now,
            updated_at=now,
            category=category,
            service_count=service_count,
        )
        self._store.create(SUPPLIERS, supplier_id, record.to_dict())
        logger.info("supplier_registered", supplier_id=supplier_id, category=category)
        return record

    def find(self, supplier_id: str) -> Optional[SupplierRecord]:
        doc = self._store.get(SUPPLIERS, supplier_id)
        return SupplierRecord.from_dict(doc) if doc else None

    def get(self, supplier_id: str) -> SupplierRecord:
        record = self.find(supplier_id)
        if record is None:
            raise NotFoundError("supplier", supplier_id)
        return record

    def _update(
        self,
        supplier_id: str,
        change: Callable[[SupplierRecord, datetime], SupplierRecord],
        actor: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> SupplierRecord:
        doc = self._store.get(SUPPLIERS, supplier_id)
        if doc is None:
            raise NotFoundError("supplier", supplier_id)
        before = SupplierRecord.from_dict(doc)
        after = change(before, self._clock())
        self._store.put(SUPPLIERS, supplier_id, after.to_dict(), expected_version=doc.get("_version", 0))
        self._log_transition(before, after, actor, reason)
        return after

    def _log_transition(self, before: SupplierRecord, after: SupplierRecord,
                        actor: Optional[str], reason: Optional[str]) -> None:
        changes = []
        if before.account_status != after.account_status:
            changes.append(("account_status", before.account_status.value, after.account_status.value))
        if before.identity_verification_status != after.identity_verification_status:
            changes.append((
                "identity_verification",
                before.identity_verification_status.value,
                after.identity_verification_status.value,
            ))
        for kind, old, new in changes:
            logger.info("supplier_transition", supplier_id=after.supplier_id, kind=kind,
                        from_state=old, to_state=new, actor=actor, reason=reason)
            if self._history is not None:
                self._history.record_transition(
                    user_id=after.supplier_id, kind=kind, from_state=old, to_state=new,
                    actor=actor, reason=reason, occurred_at=after.updated_at,
                )

    def update_profile(self, supplier_id: str, category: Optional[str] = None,
                       service_count: Optional[int] = None) -> SupplierRecord:
        def change(r: SupplierRecord, now: datetime) -> SupplierRecord:
            return replace(
                r,
                category=category if category is not None else r.category,
                service_count=service_count if service_count is not None else r.service_count,
                updated_at=now,
            )
        return self._update(supplier_id, change)

    def set_tier(self, supplier_id: str, tier: str) -> SupplierRecord:
        return self._update(supplier_id, lambda r, now: replace(r, current_tier=tier, updated_at=now))

    # =============================================
    # ACCOUNT STATUS
    # =============================================

    def approve(self, supplier_id: str, admin_id: str) -> SupplierRecord:
        return self._update(
            supplier_id,
            lambda r, now: r.move_account(Account.ACTIVE, now, admin_id, rejection_reason=None),
            actor=admin_id,
        )

    def request_changes(self, supplier_id: str, admin_id: str, reason: str) -> SupplierRecord:
        reason = require_text("reason", reason)
        return self._update(
            supplier_id,
            lambda r, now: r.move_account(Account.NEEDS_CLARIFICATION, now, admin_id,
                                          rejection_reason=reason),
            actor=admin_id, reason=reason,
        )

    def reject(self, supplier_id: str, admin_id: str, reason: str) -> SupplierRecord:
        reason = require_text("reason", reason)
        return self._update(
            supplier_id,
            lambda r, now: r.move_account(Account.REJECTED, now, admin_id, rejection_reason=reason),
            actor=admin_id, reason=reason,
        )

    def resubmit(self, supplier_id: str) -> SupplierRecord:
        """Supplier answers a request for changes."""
        return self._update(
            supplier_id,
            lambda r, now: r.move_account(Account.PENDING_REVIEW, now, rejection_reason=None),
            actor=supplier_id,
        )

    def suspend(self, supplier_id: str, admin_id: str, reason: str) -> SupplierRecord:
        """Admin account suspension. Only an admin reactivation lifts it."""
        reason = require_text("reason", reason)

        def change(r: SupplierRecord, now: datetime) -> SupplierRecord:
            if r.account_status == Account.SUSPENDED and r.suspended_by == SuspendedBy.SAFETY_ENGINE:
                # Take over a suspension that followed the safety standing
                logger.info("supplier_suspension_taken_over", supplier_id=supplier_id, admin_id=admin_id)
                return replace(r, suspended_by=SuspendedBy.ADMIN, reviewed_by=admin_id, updated_at=now)
            return r.move_account(Account.SUSPENDED, now, admin_id, suspended_by=SuspendedBy.ADMIN)

        return self._update(supplier_id, change, actor=admin_id, reason=reason)

    def reactivate(self, supplier_id: str, admin_id: str) -> SupplierRecord:
        return self._update(
            supplier_id,
            lambda r, now: r.move_account(Account.ACTIVE, now, admin_id),
            actor=admin_id,
        )

    def reopen(self, supplier_id: str, admin_id: str, reason: str) -> SupplierRecord:
        """Administrative override: a rejected application goes back to review."""
        reason = require_text("reason", reason)

        def change(r: SupplierRecord, now: datetime) -> SupplierRecord:
            if r.account_status != Account.REJECTED:
                raise PolicyViolationError(
                    "Only rejected applications can be reopened",
                    current=r.account_status.value, target=Account.PENDING_REVIEW.value,
                )
            return replace(r, account_status=Account.PENDING_REVIEW, rejection_reason=None,
                           reviewed_by=admin_id, updated_at=now)

        logger.warning("supplier_reopened", supplier_id=supplier_id, admin_id=admin_id)
        return self._update(supplier_id, change, actor=admin_id, reason=reason)

    def suspend_for_standing(self, supplier_id: str) -> Optional[SupplierRecord]:
        """Follow a safety suspension. No-op unless the account is active."""
        record = self.find(supplier_id)
        if record is None or record.account_status != Account.ACTIVE:
            return None
        return self._update(
            supplier_id,
            lambda r, now: r.move_account(Account.SUSPENDED, now, suspended_by=SuspendedBy.SAFETY_ENGINE),
            actor="safety_engine", reason="standing suspended",
        )

    def reinstate_for_standing(self, supplier_id: str) -> Optional[SupplierRecord]:
        """Undo suspend_for_standing. Accounts an admin suspended stay suspended."""
        record = self.find(supplier_id)
        if record is None or record.account_status != Account.SUSPENDED:
            return None
        if record.suspended_by != SuspendedBy.SAFETY_ENGINE:
            logger.info("supplier_account_kept_suspended", supplier_id=supplier_id,
                        suspended_by=record.suspended_by.value if record.suspended_by else None)
            return None
        return self._update(
            supplier_id,
            lambda r, now: r.move_account(Account.ACTIVE, now),
            actor="safety_engine", reason="standing reinstated",
        )

    # =============================================
    # IDENTITY VERIFICATION
    # =============================================

    def verify_identity(self, supplier_id: str, admin_id: str) -> SupplierRecord:
        return self._update(
            supplier_id,
            lambda r, now: r.move_identity(Identity.VERIFIED, now, admin_id,
                                           identity_rejection_reason=None),
            actor=admin_id,
        )

    def reject_identity(self, supplier_id: str, admin_id: str, reason: str) -> SupplierRecord:
        reason = require_text("reason", reason)
        return self._update(
            supplier_id,
            lambda r, now: r.move_identity(Identity.REJECTED, now, admin_id,
                                           identity_rejection_reason=reason),
            actor=admin_id, reason=reason,
        )

    def resubmit_identity(self, supplier_id: str) -> SupplierRecord:
        def change(r: SupplierRecord, now: datetime) -> SupplierRecord:
            if r.identity_verification_status != Identity.REJECTED:
                raise PolicyViolationError(
                    "Only rejected verifications can be resubmitted",
                    current=r.identity_verification_status.value, target=Identity.PENDING.value,
                )
            return r.move_identity(Identity.PENDING, now, identity_rejection_reason=None)
        return self._update(supplier_id, change, actor=supplier_id)

    def reset_identity(self, supplier_id: str, admin_id: str) -> SupplierRecord:
        return self._update(
            supplier_id,
            lambda r, now: r.move_identity(Identity.PENDING, now, admin_id,
                                           identity_rejection_reason=None),
            actor=admin_id,
        )

    # =============================================
    # ELIGIBILITY & STATS
    # =============================================

    def eligibility(self, supplier_id: str) -> Eligibility:
        return self.get(supplier_id).eligibility

    def stats(self) -> Dict[str, int]:
        records = [SupplierRecord.from_dict(d) for d in self._store.query(SUPPLIERS)]
        return account_status_counts(records)

    # =============================================
    # VERIFICATION DOCUMENTS
    # =============================================

    def upload_document(
        self,
        supplier_id: str,
        document_type: str,
        file_url: str,
        file_name: str,
        mime_type: str,
        file_size: int,
        expires_at: Optional[datetime] = None,
    ) -> VerificationDocument:
        self.get(supplier_id)
        doc_type = VerificationDocument.validate_upload(
            document_type, file_url, file_name, mime_type, file_size,
        )
        document = VerificationDocument(
            document_id=f"doc_{uuid.uuid4().hex[:16]}",
            supplier_id=supplier_id,
            document_type=doc_type,
            file_url=file_url,
            file_name=file_name,
            mime_type=mime_type,
            file_size=file_size,
            status=DocumentStatus.PENDING,
            uploaded_at=self._clock(),
            expires_at=expires_at,
        )
        self._store.create(DOCUMENTS, document.document_id, document.to_dict())
        logger.info("verification_document_uploaded", supplier_id=supplier_id,
                    document_id=document.document_id, document_type=doc_type.value)
        return document

    def review_document(self, document_id: str, approve: bool, admin_id: str,
                        reason: Optional[str] = None) -> VerificationDocument:
        doc = self._store.get(DOCUMENTS, document_id)
        if doc is None:
            raise NotFoundError("verification document", document_id)
        document = VerificationDocument.from_dict(doc)
        reviewed = document.review(approve, admin_id, self._clock(), reason)
        self._store.put(DOCUMENTS, document_id, reviewed.to_dict(), expected_version=doc["_version"])
        logger.info("verification_document_reviewed", document_id=document_id,
                    status=reviewed.status.value, admin_id=admin_id)
        return reviewed

    def list_documents(self, supplier_id: str) -> List[Dict[str, Any]]:
        now = self._clock()
        out = []
        for d in self._store.query(DOCUMENTS, supplier_id=supplier_id):
            document = VerificationDocument.from_dict(d)
            row = document.to_dict()
            row["status"] = document.effective_status(now).value
            out.append(row)
        return sorted(out, key=lambda d: d["uploaded_at"])
