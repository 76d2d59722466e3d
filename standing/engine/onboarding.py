"""
Standing Engine — Supplier Onboarding & Identity Verification

Two independent axes, each driven by admin decisions:

    account:   pendingReview ──→ active ⇄ suspended
                    │  ↑    └──→ rejected ──(admin reopen)──→ pendingReview
                    ↓  │
               needsClarification ──→ rejected

    identity:  pending ──→ verified ──(revoke / reset)──→ rejected | pending
                  ↑  └──→ rejected
                  └──────────┘ (resubmission)

A supplier can take bookings only when account is active AND identity is
verified. Eligibility is computed on read; no eligibility flag is stored.
"""
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from standing.engine.common import parse_iso, require_text, to_iso
from standing.errors import PolicyViolationError, ValidationError


class SupplierAccountStatus(str, Enum):
    PENDING_REVIEW = "pendingReview"
    ACTIVE = "active"
    NEEDS_CLARIFICATION = "needsClarification"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class IdentityVerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class SuspendedBy(str, Enum):
    """Who put a supplier account into `suspended`."""
    SAFETY_ENGINE = "safety_engine"
    ADMIN = "admin"


# =============================================
# STATE CONFIGURATION
# =============================================

ACCOUNT_STATE_CONFIG = {
    SupplierAccountStatus.PENDING_REVIEW: {
        "description": "Submitted, waiting for admin review",
        "allowed_transitions": [
            SupplierAccountStatus.ACTIVE,
            SupplierAccountStatus.NEEDS_CLARIFICATION,
            SupplierAccountStatus.REJECTED,
        ],
        "reason_code": "onboarding-pending",
    },
    SupplierAccountStatus.NEEDS_CLARIFICATION: {
        "description": "Admin asked for changes before approval",
        "allowed_transitions": [
            SupplierAccountStatus.PENDING_REVIEW,
            SupplierAccountStatus.REJECTED,
        ],
        "reason_code": "onboarding-needs-clarification",
    },
    SupplierAccountStatus.ACTIVE: {
        "description": "Approved and live",
        "allowed_transitions": [SupplierAccountStatus.SUSPENDED],
        "reason_code": None,
    },
    SupplierAccountStatus.SUSPENDED: {
        "description": "Suspended by the safety engine or an admin",
        "allowed_transitions": [SupplierAccountStatus.ACTIVE],
        "reason_code": "account-suspended",
    },
    SupplierAccountStatus.REJECTED: {
        "description": "Rejected; only an explicit admin reopen moves it",
        "allowed_transitions": [],
        "reason_code": "onboarding-rejected",
    },
}

IDENTITY_STATE_CONFIG = {
    IdentityVerificationStatus.PENDING: {
        "description": "Documents submitted, not yet reviewed",
        "allowed_transitions": [
            IdentityVerificationStatus.VERIFIED,
            IdentityVerificationStatus.REJECTED,
        ],
        "reason_code": "identity-verification-pending",
    },
    IdentityVerificationStatus.VERIFIED: {
        "description": "Identity confirmed",
        "allowed_transitions": [
            IdentityVerificationStatus.REJECTED,
            IdentityVerificationStatus.PENDING,
        ],
        "reason_code": None,
    },
    IdentityVerificationStatus.REJECTED: {
        "description": "Documents rejected; supplier may resubmit",
        "allowed_transitions": [IdentityVerificationStatus.PENDING],
        "reason_code": "identity-verification-rejected",
    },
}


def can_transition_account(current: SupplierAccountStatus,
                           target: SupplierAccountStatus) -> Tuple[bool, str]:
    allowed = ACCOUNT_STATE_CONFIG[current]["allowed_transitions"]
    if target in allowed:
        return True, "Transition allowed"
    return False, f"Cannot move account from {current.value} to {target.value}"


def can_transition_identity(current: IdentityVerificationStatus,
                            target: IdentityVerificationStatus) -> Tuple[bool, str]:
    allowed = IDENTITY_STATE_CONFIG[current]["allowed_transitions"]
    if target in allowed:
        return True, "Transition allowed"
    return False, f"Cannot move identity verification from {current.value} to {target.value}"


# =============================================
# ELIGIBILITY
# =============================================

def is_booking_eligible(account_status: SupplierAccountStatus,
                        identity_status: IdentityVerificationStatus) -> bool:
    return (
        account_status == SupplierAccountStatus.ACTIVE
        and identity_status == IdentityVerificationStatus.VERIFIED
    )


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    reasons: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {"eligible": self.eligible, "reasons": list(self.reasons)}


def booking_eligibility(account_status: SupplierAccountStatus,
                        identity_status: IdentityVerificationStatus) -> Eligibility:
    """Eligibility plus the reason codes a client app shows when blocked."""
    reasons = []
    account_reason = ACCOUNT_STATE_CONFIG[account_status]["reason_code"]
    if account_reason:
        reasons.append(account_reason)
    identity_reason = IDENTITY_STATE_CONFIG[identity_status]["reason_code"]
    if identity_reason:
        reasons.append(identity_reason)
    return Eligibility(
        eligible=is_booking_eligible(account_status, identity_status),
        reasons=tuple(reasons),
    )


# =============================================
# SUPPLIER RECORD
# =============================================

@dataclass(frozen=True)
class SupplierRecord:
    supplier_id: str
    account_status: SupplierAccountStatus
    identity_verification_status: IdentityVerificationStatus
    created_at: datetime
    updated_at: datetime
    category: Optional[str] = None
    service_count: int = 0
    rejection_reason: Optional[str] = None
    identity_rejection_reason: Optional[str] = None
    reviewed_by: Optional[str] = None
    current_tier: str = "basic"
    suspended_by: Optional[SuspendedBy] = None

    @property
    def eligibility(self) -> Eligibility:
        return booking_eligibility(self.account_status, self.identity_verification_status)

    def account_days(self, now: datetime) -> int:
        return max((now - self.created_at).days, 0)

    def move_account(self, target: SupplierAccountStatus, now: datetime,
                     admin_id: Optional[str] = None, **changes) -> "SupplierRecord":
        ok, reason = can_transition_account(self.account_status, target)
        if not ok:
            raise PolicyViolationError(reason, current=self.account_status.value, target=target.value)
        if target != SupplierAccountStatus.SUSPENDED:
            changes["suspended_by"] = None
        return replace(self, account_status=target, updated_at=now,
                       reviewed_by=admin_id or self.reviewed_by, **changes)

    def move_identity(self, target: IdentityVerificationStatus, now: datetime,
                      admin_id: Optional[str] = None, **changes) -> "SupplierRecord":
        ok, reason = can_transition_identity(self.identity_verification_status, target)
        if not ok:
            raise PolicyViolationError(
                reason, current=self.identity_verification_status.value, target=target.value,
            )
        return replace(self, identity_verification_status=target, updated_at=now,
                       reviewed_by=admin_id or self.reviewed_by, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "supplier_id": self.supplier_id,
            "account_status": self.account_status.value,
            "identity_verification_status": self.identity_verification_status.value,
            "category": self.category,
            "service_count": self.service_count,
            "rejection_reason": self.rejection_reason,
            "identity_rejection_reason": self.identity_rejection_reason,
            "reviewed_by": self.reviewed_by,
            "current_tier": self.current_tier,
            "suspended_by": self.suspended_by.value if self.suspended_by else None,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "SupplierRecord":
        return SupplierRecord(
            supplier_id=data["supplier_id"],
            account_status=SupplierAccountStatus(data["account_status"]),
            identity_verification_status=IdentityVerificationStatus(
                data["identity_verification_status"]
            ),
            category=data.get("category"),
            service_count=int(data.get("service_count", 0)),
            rejection_reason=data.get("rejection_reason"),
            identity_rejection_reason=data.get("identity_rejection_reason"),
            reviewed_by=data.get("reviewed_by"),
            current_tier=data.get("current_tier", "basic"),
            suspended_by=SuspendedBy(data["suspended_by"]) if data.get("suspended_by") else None,
            created_at=parse_iso(data["created_at"]),
            updated_at=parse_iso(data.get("updated_at") or data["created_at"]),
        )


# =============================================
# VERIFICATION DOCUMENTS
# =============================================

class DocumentType(str, Enum):
    BUSINESS_LICENSE = "businessLicense"
    IDENTITY_DOCUMENT = "identityDocument"
    PORTFOLIO = "portfolio"
    INSURANCE = "insurance"
    BANK_ACCOUNT = "bankAccount"
    OTHER = "other"


class DocumentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


MAX_DOCUMENT_BYTES = 10 * 1024 * 1024
ALLOWED_MIME_TYPES = frozenset({"image/jpeg", "image/png", "image/webp", "application/pdf"})


@dataclass(frozen=True)
class VerificationDocument:
    document_id: str
    supplier_id: str
    document_type: DocumentType
    file_url: str
    file_name: str
    mime_type: str
    file_size: int
    status: DocumentStatus
    uploaded_at: datetime
    rejection_reason: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @staticmethod
    def validate_upload(document_type: Any, file_url: str, file_name: str,
                        mime_type: str, file_size: int) -> DocumentType:
        try:
            doc_type = DocumentType(document_type)
        except ValueError as e:
            raise ValidationError(f"Unknown document type: {document_type!r}") from e
        require_text("file_url", file_url)
        require_text("file_name", file_name)
        if mime_type not in ALLOWED_MIME_TYPES:
            raise ValidationError(f"Unsupported file type: {mime_type}")
        if file_size <= 0 or file_size > MAX_DOCUMENT_BYTES:
            raise ValidationError("File must be between 1 byte and 10 MB")
        return doc_type

    def effective_status(self, now: datetime) -> DocumentStatus:
        if self.expires_at is not None and now >= self.expires_at:
            return DocumentStatus.EXPIRED
        return self.status

    def review(self, approve: bool, admin_id: str, now: datetime,
               reason: Optional[str] = None) -> "VerificationDocument":
        if self.status != DocumentStatus.PENDING:
            raise PolicyViolationError("Document has already been reviewed", current=self.status.value)
        if approve:
            return replace(self, status=DocumentStatus.APPROVED, reviewed_by=admin_id, reviewed_at=now)
        return replace(
            self,
            status=DocumentStatus.REJECTED,
            rejection_reason=require_text("reason", reason),
            reviewed_by=admin_id,
            reviewed_at=now,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "supplier_id": self.supplier_id,
            "document_type": self.document_type.value,
            "file_url": self.file_url,
            "file_name": self.file_name,
            "mime_type": self.mime_type,
            "file_size": self.file_size,
            "status": self.status.value,
            "rejection_reason": self.rejection_reason,
            "reviewed_by": self.reviewed_by,
            "uploaded_at": to_iso(self.uploaded_at),
            "reviewed_at": to_iso(self.reviewed_at),
            "expires_at": to_iso(self.expires_at),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "VerificationDocument":
        return VerificationDocument(
            document_id=data["document_id"],
            supplier_id=data["supplier_id"],
            document_type=DocumentType(data["document_type"]),
            file_url=data["file_url"],
            file_name=data["file_name"],
            mime_type=data["mime_type"],
            file_size=int(data["file_size"]),
            status=DocumentStatus(data["status"]),
            rejection_reason=data.get("rejection_reason"),
            reviewed_by=data.get("reviewed_by"),
            uploaded_at=parse_iso(data["uploaded_at"]),
            reviewed_at=parse_iso(data.get("reviewed_at")),
            expires_at=parse_iso(data.get("expires_at")),
        )


def account_status_counts(records: List[SupplierRecord]) -> Dict[str, int]:
    counts = {s.value: 0 for s in SupplierAccountStatus}
    for r in records:
        counts[r.account_status.value] += 1
    counts["total"] = len(records)
    return counts
