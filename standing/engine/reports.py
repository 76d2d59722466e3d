"""
Standing Engine — Reports & Violations

A report is one complaint filed against a user. Reports are append-only: they
move forward through their lifecycle and are never deleted, even when the
reported user's account goes away.

Lifecycle:
    pending ──→ investigating ──→ resolved
       │             │    └─────→ escalated ──→ resolved
       │             │                  └─────→ dismissed
       └──→ dismissed └──→ dismissed

    resolved and dismissed are terminal.

Severity is a fixed lookup on category (`suggested_severity`). Admins may set
`effective_severity`; the suggested value is kept alongside it for audit.
"""
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from standing.engine.common import parse_iso, require_text, to_iso
from standing.errors import PolicyViolationError, ValidationError


# =============================================
# ENUMS
# =============================================

class ReportCategory(str, Enum):
    # Behavior
    HARASSMENT = "harassment"
    DISCRIMINATION = "discrimination"
    UNPROFESSIONAL = "unprofessional"
    THREATENING = "threatening"
    # Service
    NO_SHOW = "noShow"
    POOR_QUALITY = "poorQuality"
    OVERCHARGING = "overcharging"
    UNDERDELIVERY = "underdelivery"
    # Platform abuse
    SPAM = "spam"
    FRAUD = "fraud"
    FAKE_PROFILE = "fakeProfile"
    SCAM = "scam"
    # Safety
    SAFETY_THREAT = "safetyThreat"
    VIOLENCE = "violence"
    INAPPROPRIATE = "inappropriate"
    OTHER = "other"


class ReportSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ReportStatus(str, Enum):
    PENDING = "pending"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"
    ESCALATED = "escalated"


class ReporterRole(str, Enum):
    CLIENT = "client"
    SUPPLIER = "supplier"
    SYSTEM = "system"


class ViolationType(str, Enum):
    """Automated detections, filed as reports by the system reporter."""
    CONTACT_SHARING = "contactSharing"
    SPAM = "spam"
    INAPPROPRIATE = "inappropriate"
    NO_SHOW = "noShow"


# =============================================
# LOOKUP TABLES
# =============================================

SEVERITY_BY_CATEGORY: Dict[ReportCategory, ReportSeverity] = {
    ReportCategory.VIOLENCE: ReportSeverity.CRITICAL,
    ReportCategory.SAFETY_THREAT: ReportSeverity.CRITICAL,
    ReportCategory.THREATENING: ReportSeverity.CRITICAL,

    ReportCategory.HARASSMENT: ReportSeverity.HIGH,
    ReportCategory.DISCRIMINATION: ReportSeverity.HIGH,
    ReportCategory.FRAUD: ReportSeverity.HIGH,
    ReportCategory.SCAM: ReportSeverity.HIGH,

    ReportCategory.UNPROFESSIONAL: ReportSeverity.MEDIUM,
    ReportCategory.NO_SHOW: ReportSeverity.MEDIUM,
    ReportCategory.POOR_QUALITY: ReportSeverity.MEDIUM,
    ReportCategory.OVERCHARGING: ReportSeverity.MEDIUM,
    ReportCategory.UNDERDELIVERY: ReportSeverity.MEDIUM,
    ReportCategory.FAKE_PROFILE: ReportSeverity.MEDIUM,
    ReportCategory.INAPPROPRIATE: ReportSeverity.MEDIUM,

    ReportCategory.SPAM: ReportSeverity.LOW,
    ReportCategory.OTHER: ReportSeverity.LOW,
}

CATEGORY_INFO: Dict[ReportCategory, Dict[str, str]] = {
    ReportCategory.HARASSMENT: {"label": "Harassment", "group": "behavior"},
    ReportCategory.DISCRIMINATION: {"label": "Discrimination", "group": "behavior"},
    ReportCategory.UNPROFESSIONAL: {"label": "Unprofessional conduct", "group": "behavior"},
    ReportCategory.THREATENING: {"label": "Threatening behavior", "group": "behavior"},
    ReportCategory.NO_SHOW: {"label": "No-show", "group": "service"},
    ReportCategory.POOR_QUALITY: {"label": "Poor quality service", "group": "service"},
    ReportCategory.OVERCHARGING: {"label": "Overcharging", "group": "service"},
    ReportCategory.UNDERDELIVERY: {"label": "Did not deliver as promised", "group": "service"},
    ReportCategory.SPAM: {"label": "Spam", "group": "platform"},
    ReportCategory.FRAUD: {"label": "Fraud", "group": "platform"},
    ReportCategory.FAKE_PROFILE: {"label": "Fake profile", "group": "platform"},
    ReportCategory.SCAM: {"label": "Scam", "group": "platform"},
    ReportCategory.SAFETY_THREAT: {"label": "Safety threat", "group": "safety"},
    ReportCategory.VIOLENCE: {"label": "Violence", "group": "safety"},
    ReportCategory.INAPPROPRIATE: {"label": "Inappropriate content", "group": "safety"},
    ReportCategory.OTHER: {"label": "Other", "group": "other"},
}

BEHAVIOR_CATEGORIES: FrozenSet[ReportCategory] = frozenset(
    c for c, info in CATEGORY_INFO.items() if info["group"] == "behavior"
)

VIOLATION_CATEGORY: Dict[ViolationType, ReportCategory] = {
    ViolationType.CONTACT_SHARING: ReportCategory.INAPPROPRIATE,
    ViolationType.SPAM: ReportCategory.SPAM,
    ViolationType.INAPPROPRIATE: ReportCategory.INAPPROPRIATE,
    ViolationType.NO_SHOW: ReportCategory.NO_SHOW,
}

REPORT_TRANSITIONS: Dict[ReportStatus, FrozenSet[ReportStatus]] = {
    ReportStatus.PENDING: frozenset({ReportStatus.INVESTIGATING, ReportStatus.DISMISSED}),
    ReportStatus.INVESTIGATING: frozenset({
        ReportStatus.RESOLVED, ReportStatus.ESCALATED, ReportStatus.DISMISSED,
    }),
    ReportStatus.ESCALATED: frozenset({ReportStatus.RESOLVED, ReportStatus.DISMISSED}),
    ReportStatus.RESOLVED: frozenset(),
    ReportStatus.DISMISSED: frozenset(),
}

OPEN_STATUSES = frozenset({ReportStatus.PENDING, ReportStatus.INVESTIGATING, ReportStatus.ESCALATED})
RESOLUTION_OUTCOMES = frozenset({ReportStatus.RESOLVED, ReportStatus.DISMISSED, ReportStatus.ESCALATED})


def suggested_severity(category: ReportCategory) -> ReportSeverity:
    return SEVERITY_BY_CATEGORY[ReportCategory(category)]


def parse_category(value: Any) -> ReportCategory:
    try:
        return ReportCategory(value)
    except ValueError as e:
        raise ValidationError(f"Unknown report category: {value!r}") from e


def parse_severity(value: Any) -> ReportSeverity:
    try:
        return ReportSeverity(value)
    except ValueError as e:
        raise ValidationError(f"Unknown severity: {value!r}") from e


def parse_role(value: Any) -> ReporterRole:
    try:
        return ReporterRole(value)
    except ValueError as e:
        raise ValidationError(f"Unknown role: {value!r}") from e


# =============================================
# REPORT RECORD
# =============================================

@dataclass(frozen=True)
class Report:
    report_id: str
    reporter_id: str
    reporter_role: ReporterRole
    reported_id: str
    reported_role: ReporterRole
    category: ReportCategory
    reason: str
    suggested_severity: ReportSeverity
    effective_severity: ReportSeverity
    status: ReportStatus
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    evidence: Tuple[str, ...] = ()
    booking_id: Optional[str] = None
    review_id: Optional[str] = None
    chat_id: Optional[str] = None
    assigned_to: Optional[str] = None
    resolution: Optional[str] = None
    actions_taken: Tuple[str, ...] = ()
    resolved_at: Optional[datetime] = None
    severity_overridden_by: Optional[str] = None

    @staticmethod
    def new(
        reporter_id: str,
        reporter_role: Any,
        reported_id: str,
        reported_role: Any,
        category: Any,
        reason: str,
        now: datetime,
        evidence: Optional[List[str]] = None,
        description: Optional[str] = None,
        booking_id: Optional[str] = None,
        review_id: Optional[str] = None,
        chat_id: Optional[str] = None,
    ) -> "Report":
        """Validate and build a pending report. Raises ValidationError."""
        reporter_id = require_text("reporter_id", reporter_id)
        reported_id = require_text("reported_id", reported_id)
        if reporter_id == reported_id:
            raise ValidationError("Users cannot report themselves")
        cat = parse_category(category)
        evidence = list(evidence or [])
        if any(not isinstance(e, str) or not e.strip() for e in evidence):
            raise ValidationError("Evidence entries must be non-empty strings")
        severity = suggested_severity(cat)
        return Report(
            report_id=f"rpt_{uuid.uuid4().hex[:16]}",
            reporter_id=reporter_id,
            reporter_role=parse_role(reporter_role),
            reported_id=reported_id,
            reported_role=parse_role(reported_role),
            category=cat,
            reason=require_text("reason", reason),
            suggested_severity=severity,
            effective_severity=severity,
            status=ReportStatus.PENDING,
            created_at=now,
            updated_at=now,
            description=description,
            evidence=tuple(evidence),
            booking_id=booking_id,
            review_id=review_id,
            chat_id=chat_id,
        )

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_behavior_report(self) -> bool:
        return self.category in BEHAVIOR_CATEGORIES

    def transition(self, target: ReportStatus, now: datetime, **changes) -> "Report":
        """Return the report moved to `target`. Raises PolicyViolationError."""
        target = ReportStatus(target)
        if target not in REPORT_TRANSITIONS[self.status]:
            raise PolicyViolationError(
                f"Report cannot move from {self.status.value} to {target.value}",
                current=self.status.value,
                target=target.value,
            )
        if target in (ReportStatus.RESOLVED, ReportStatus.DISMISSED):
            changes.setdefault("resolved_at", now)
        return replace(self, status=target, updated_at=now, **changes)

    def with_severity(self, severity: Any, admin_id: str, now: datetime) -> "Report":
        if not self.is_open:
            raise PolicyViolationError(
                "Severity can only be changed on open reports", current=self.status.value,
            )
        return replace(
            self,
            effective_severity=parse_severity(severity),
            severity_overridden_by=admin_id,
            updated_at=now,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "report_id": self.report_id,
            "reporter_id": self.reporter_id,
            "reporter_role": self.reporter_role.value,
            "reported_id": self.reported_id,
            "reported_role": self.reported_role.value,
            "category": self.category.value,
            "reason": self.reason,
            "description": self.description,
            "evidence": list(self.evidence),
            "booking_id": self.booking_id,
            "review_id": self.review_id,
            "chat_id": self.chat_id,
            "suggested_severity": self.suggested_severity.value,
            "effective_severity": self.effective_severity.value,
            "status": self.status.value,
            "assigned_to": self.assigned_to,
            "resolution": self.resolution,
            "actions_taken": list(self.actions_taken),
            "severity_overridden_by": self.severity_overridden_by,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "resolved_at": to_iso(self.resolved_at),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Report":
        return Report(
            report_id=data["report_id"],
            reporter_id=data["reporter_id"],
            reporter_role=ReporterRole(data["reporter_role"]),
            reported_id=data["reported_id"],
            reported_role=ReporterRole(data["reported_role"]),
            category=ReportCategory(data["category"]),
            reason=data["reason"],
            description=data.get("description"),
            evidence=tuple(data.get("evidence") or ()),
            booking_id=data.get("booking_id"),
            review_id=data.get("review_id"),
            chat_id=data.get("chat_id"),
            suggested_severity=ReportSeverity(data["suggested_severity"]),
            effective_severity=ReportSeverity(
                data.get("effective_severity") or data["suggested_severity"]
            ),
            status=ReportStatus(data["status"]),
            assigned_to=data.get("assigned_to"),
            resolution=data.get("resolution"),
            actions_taken=tuple(data.get("actions_taken") or ()),
            severity_overridden_by=data.get("severity_overridden_by"),
            created_at=parse_iso(data["created_at"]),
            updated_at=parse_iso(data.get("updated_at") or data["created_at"]),
            resolved_at=parse_iso(data.get("resolved_at")),
        )


# =============================================
# LEDGER AGGREGATES
# =============================================

@dataclass(frozen=True)
class ReportAggregates:
    """
    Counts derived from the report documents of one user.

    Severity counts use effective severity and skip dismissed reports, since a
    dismissed report found no violation.
    """
    total_reports: int = 0
    critical_reports: int = 0
    high_reports: int = 0
    resolved_reports: int = 0
    dismissed_reports: int = 0
    open_critical_reports: int = 0
    behavior_reports: int = 0

    @property
    def active_reports_count(self) -> int:
        return self.total_reports - self.resolved_reports - self.dismissed_reports


def aggregate_reports(reports: List[Report]) -> ReportAggregates:
    total = critical = high = resolved = dismissed = open_critical = behavior = 0
    for r in reports:
        total += 1
        if r.status == ReportStatus.RESOLVED:
            resolved += 1
        if r.status == ReportStatus.DISMISSED:
            dismissed += 1
            continue
        if r.effective_severity == ReportSeverity.CRITICAL:
            critical += 1
            if r.is_open:
                open_critical += 1
        elif r.effective_severity == ReportSeverity.HIGH:
            high += 1
        if r.is_behavior_report:
            behavior += 1
    return ReportAggregates(
        total_reports=total,
        critical_reports=critical,
        high_reports=high,
        resolved_reports=resolved,
        dismissed_reports=dismissed,
        open_critical_reports=open_critical,
        behavior_reports=behavior,
    )
