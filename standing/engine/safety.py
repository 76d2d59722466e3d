"""
Standing Engine — Safety Score & Status

Score = 100 minus capped penalties, clamped to [0, 100]:

    rating        (5 - rating) x 6            once a user has 5+ reviews
    reports       critical x 20 + high x 10   capped at 40
    cancellation  (rate - 0.10) x 100         capped at 15, 5+ bookings
    completion    (0.90 - rate) x 100         capped at 15, 5+ bookings
    response      (0.80 - rate) x 50          capped at 10, 5+ bookings
    on-time       (0.85 - rate) x 50          capped at 10, 5+ bookings

Every penalty is non-decreasing in reports and cancellations and
non-increasing in completion, response and on-time rates, so the score is
monotonic in each of them.

Status ladder (most severe rule wins):

    suspended   score < 50, 10+ active reports, admin action,
                or a suspension that has not been lifted yet
    probation   score < 65, 5+ active reports, or a warning for a user
                who already has 3+ warnings
    warning     score < 80, 3+ active reports, or an open critical report
    safe        otherwise

Suspension is sticky. Recomputation never lifts it; only an admin
reinstatement, an approved appeal or a passed suspension_end_date does.
"""
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from standing.config import SafetyPolicy
from standing.engine.badges import Badge
from standing.engine.common import parse_iso, to_iso
from standing.engine.metrics import StandingMetrics


# =============================================
# ENUMS
# =============================================

class SafetyStatus(str, Enum):
    SAFE = "safe"
    WARNING = "warning"
    PROBATION = "probation"
    SUSPENDED = "suspended"


STATUS_RANK = {
    SafetyStatus.SAFE: 0,
    SafetyStatus.WARNING: 1,
    SafetyStatus.PROBATION: 2,
    SafetyStatus.SUSPENDED: 3,
}


class WarningLevel(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class UserType(str, Enum):
    CLIENT = "client"
    SUPPLIER = "supplier"


class SuspensionSource(str, Enum):
    AUTOMATIC = "automatic"
    ADMIN = "admin"


class StatusReason(str, Enum):
    """User-facing reason categories. Never carries the raw score."""
    LOW_SCORE = "low_score"
    CRITICAL_REPORTS = "critical_reports"
    REPORT_VOLUME = "report_volume"
    REPEATED_WARNINGS = "repeated_warnings"
    ADMIN_ACTION = "admin_action"


# =============================================
# SCORE
# =============================================

def compute_safety_score(metrics: StandingMetrics, policy: Optional[SafetyPolicy] = None) -> float:
    policy = policy or SafetyPolicy()
    score = 100.0

    if metrics.total_reviews >= policy.min_reviews_for_rating:
        score -= (5.0 - metrics.overall_rating) * policy.rating_penalty_per_star

    report_penalty = (
        metrics.critical_reports * policy.critical_report_penalty
        + metrics.high_reports * policy.high_report_penalty
    )
    score -= min(report_penalty, policy.max_report_penalty)

    if metrics.total_bookings >= policy.min_bookings_for_rates:
        if metrics.cancellation_rate > policy.cancellation_baseline:
            score -= min(
                (metrics.cancellation_rate - policy.cancellation_baseline) * 100,
                policy.max_cancellation_penalty,
            )
        if metrics.completion_rate < policy.completion_baseline:
            score -= min(
                (policy.completion_baseline - metrics.completion_rate) * 100,
                policy.max_completion_penalty,
            )
        if metrics.response_rate < policy.response_baseline:
            score -= min(
                (policy.response_baseline - metrics.response_rate) * policy.response_penalty_factor,
                policy.max_response_penalty,
            )
        if metrics.on_time_rate < policy.on_time_baseline:
            score -= min(
                (policy.on_time_baseline - metrics.on_time_rate) * policy.on_time_penalty_factor,
                policy.max_on_time_penalty,
            )

    return round(max(0.0, min(100.0, score)), 2)


def status_from_metrics(
    metrics: StandingMetrics,
    score: float,
    warning_count: int = 0,
    policy: Optional[SafetyPolicy] = None,
) -> Tuple[SafetyStatus, Tuple[StatusReason, ...]]:
    """Status implied by the numbers alone, ignoring any existing suspension."""
    policy = policy or SafetyPolicy()
    active = metrics.active_reports_count

    def reasons(low_score: bool, volume: bool, critical: bool = False):
        out = []
        if low_score:
            out.append(StatusReason.LOW_SCORE)
        if critical or (low_score and metrics.critical_reports > 0):
            out.append(StatusReason.CRITICAL_REPORTS)
        if volume:
            out.append(StatusReason.REPORT_VOLUME)
        return tuple(out)

    low = score < policy.suspension_floor
    volume = active >= policy.suspension_report_count
    if low or volume:
        return SafetyStatus.SUSPENDED, reasons(low, volume)

    low = score < policy.probation_threshold
    volume = active >= policy.probation_report_count
    if low or volume:
        return SafetyStatus.PROBATION, reasons(low, volume)

    low = score < policy.warning_threshold
    volume = active >= policy.warning_report_count
    critical = metrics.open_critical_reports > 0
    if low or volume or critical:
        found = reasons(low, volume, critical)
        if warning_count >= policy.probation_after_warnings:
            return SafetyStatus.PROBATION, found + (StatusReason.REPEATED_WARNINGS,)
        return SafetyStatus.WARNING, found

    return SafetyStatus.SAFE, ()


# =============================================
# SNAPSHOT
# =============================================

@dataclass(frozen=True)
class StandingSnapshot:
    """
    One user's standing. Immutable: every change builds a new snapshot.

    Equality ignores calculated_at and version, so two snapshots compare equal
    when they describe the same standing.
    """
    user_id: str
    user_type: UserType
    safety_score: float
    safety_status: SafetyStatus
    metrics: StandingMetrics
    warning_count: int = 0
    last_warning_date: Optional[datetime] = None
    probation_start_date: Optional[datetime] = None
    suspension_start_date: Optional[datetime] = None
    suspension_end_date: Optional[datetime] = None
    suspension_episode_id: Optional[str] = None
    suspension_source: Optional[SuspensionSource] = None
    status_reasons: Tuple[StatusReason, ...] = ()
    reinstated_at: Optional[datetime] = None
    reports_at_reinstatement: Optional[int] = None
    badges: Tuple[Badge, ...] = ()
    calculated_at: Optional[datetime] = field(default=None, compare=False)
    version: int = field(default=0, compare=False)

    def is_suspended(self, now: datetime) -> bool:
        if self.safety_status != SafetyStatus.SUSPENDED:
            return False
        return self.suspension_end_date is None or now < self.suspension_end_date

    @property
    def warning_level(self) -> WarningLevel:
        return warning_level(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "user_type": self.user_type.value,
            "safety_score": self.safety_score,
            "safety_status": self.safety_status.value,
            "warning_level": self.warning_level.value,
            "warning_count": self.warning_count,
            "last_warning_date": to_iso(self.last_warning_date),
            "probation_start_date": to_iso(self.probation_start_date),
            "suspension_start_date": to_iso(self.suspension_start_date),
            "suspension_end_date": to_iso(self.suspension_end_date),
            "suspension_episode_id": self.suspension_episode_id,
            "suspension_source": self.suspension_source.value if self.suspension_source else None,
            "status_reasons": [r.value for r in self.status_reasons],
            "reinstated_at": to_iso(self.reinstated_at),
            "reports_at_reinstatement": self.reports_at_reinstatement,
            "badges": [b.to_dict() for b in self.badges],
            "metrics": self.metrics.to_dict(),
            "active_reports_count": self.metrics.active_reports_count,
            "calculated_at": to_iso(self.calculated_at),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "StandingSnapshot":
        source = data.get("suspension_source")
        return StandingSnapshot(
            user_id=data["user_id"],
            user_type=UserType(data["user_type"]),
            safety_score=float(data["safety_score"]),
            safety_status=SafetyStatus(data["safety_status"]),
            metrics=StandingMetrics.from_dict(data.get("metrics")),
            warning_count=int(data.get("warning_count", 0)),
            last_warning_date=parse_iso(data.get("last_warning_date")),
            probation_start_date=parse_iso(data.get("probation_start_date")),
            suspension_start_date=parse_iso(data.get("suspension_start_date")),
            suspension_end_date=parse_iso(data.get("suspension_end_date")),
            suspension_episode_id=data.get("suspension_episode_id"),
            suspension_source=SuspensionSource(source) if source else None,
            status_reasons=tuple(StatusReason(r) for r in data.get("status_reasons") or ()),
            reinstated_at=parse_iso(data.get("reinstated_at")),
            reports_at_reinstatement=data.get("reports_at_reinstatement"),
            badges=tuple(Badge.from_dict(b) for b in data.get("badges") or ()),
            calculated_at=parse_iso(data.get("calculated_at")),
            version=int(data.get("_version", 0)),
        )


def warning_level(snapshot: StandingSnapshot) -> WarningLevel:
    status = snapshot.safety_status
    if status == SafetyStatus.SUSPENDED:
        return WarningLevel.CRITICAL
    if status == SafetyStatus.PROBATION or snapshot.warning_count >= 5:
        return WarningLevel.HIGH
    if status == SafetyStatus.WARNING or snapshot.warning_count >= 3:
        return WarningLevel.MEDIUM
    if snapshot.warning_count >= 1:
        return WarningLevel.LOW
    return WarningLevel.NONE


def new_episode_id() -> str:
    return f"susp_{uuid.uuid4().hex[:16]}"


# =============================================
# TRANSITIONS
# =============================================

def _with_status(
    base: StandingSnapshot,
    previous_status: SafetyStatus,
    status: SafetyStatus,
    reasons: Tuple[StatusReason, ...],
    now: datetime,
    suspension_days: Optional[int] = None,
    source: SuspensionSource = SuspensionSource.AUTOMATIC,
) -> StandingSnapshot:
    """Apply the stamps for moving from previous_status to status."""
    changes: Dict[str, Any] = {"safety_status": status, "status_reasons": reasons}

    if status == SafetyStatus.PROBATION:
        if previous_status != SafetyStatus.PROBATION or base.probation_start_date is None:
            changes["probation_start_date"] = now
    else:
        changes["probation_start_date"] = None

    if status == SafetyStatus.SUSPENDED:
        if previous_status != SafetyStatus.SUSPENDED:
            changes.update(
                suspension_start_date=now,
                suspension_end_date=now + timedelta(days=suspension_days) if suspension_days else None,
                suspension_episode_id=new_episode_id(),
                suspension_source=source,
                reinstated_at=None,
                reports_at_reinstatement=None,
            )
    else:
        changes.update(
            suspension_start_date=None,
            suspension_end_date=None,
            suspension_episode_id=None,
            suspension_source=None,
        )
    return replace(base, **changes)


def derive_snapshot(
    previous: Optional[StandingSnapshot],
    user_id: str,
    user_type: UserType,
    metrics: StandingMetrics,
    badges: Tuple[Badge, ...],
    now: datetime,
    policy: Optional[SafetyPolicy] = None,
) -> StandingSnapshot:
    """
    Standing implied by `metrics`, given the previously stored snapshot.

    Pure: the same inputs always give an equal snapshot (a fresh suspension
    episode id is only minted on entry into suspension).
    """
    policy = policy or SafetyPolicy()
    score = compute_safety_score(metrics, policy)

    if previous is None:
        previous = StandingSnapshot(
            user_id=user_id,
            user_type=user_type,
            safety_score=100.0,
            safety_status=SafetyStatus.SAFE,
            metrics=StandingMetrics(),
        )
    base = replace(previous, user_type=user_type, safety_score=score, metrics=metrics,
                   badges=badges, calculated_at=now)
    previous_status = previous.safety_status

    if previous_status == SafetyStatus.SUSPENDED:
        if previous.is_suspended(now):
            return base
        # A time-boxed suspension ran out: treat it like a reinstatement.
        base = replace(base, reinstated_at=now, reports_at_reinstatement=metrics.total_reports)

    status, reasons = status_from_metrics(metrics, score, previous.warning_count, policy)
    if status == SafetyStatus.WARNING and previous_status == SafetyStatus.SAFE:
        # The warning issued by this pass counts toward escalation
        base = replace(base, warning_count=previous.warning_count + 1, last_warning_date=now)
        status, reasons = status_from_metrics(metrics, score, base.warning_count, policy)
    if (
        status == SafetyStatus.SUSPENDED
        and base.reports_at_reinstatement is not None
        and metrics.total_reports <= base.reports_at_reinstatement
    ):
        status = SafetyStatus.PROBATION

    return _with_status(
        base, previous_status, status, reasons, now,
        suspension_days=policy.automatic_suspension_days,
    )


def force_suspension(
    snapshot: StandingSnapshot,
    now: datetime,
    duration_days: Optional[int] = None,
) -> StandingSnapshot:
    """Admin suspension. Opens a new episode even over an automatic one."""
    base = replace(snapshot, calculated_at=now)
    if snapshot.safety_status == SafetyStatus.SUSPENDED:
        base = replace(base, safety_status=SafetyStatus.PROBATION)
    return _with_status(
        base, base.safety_status, SafetyStatus.SUSPENDED, (StatusReason.ADMIN_ACTION,), now,
        suspension_days=duration_days, source=SuspensionSource.ADMIN,
    )


def lift_suspension(
    snapshot: StandingSnapshot,
    now: datetime,
    policy: Optional[SafetyPolicy] = None,
) -> StandingSnapshot:
    """
    Reinstatement. Suspension stamps are cleared and the status is derived from
    current metrics, capped at probation until new reports arrive.
    """
    policy = policy or SafetyPolicy()
    base = replace(
        snapshot,
        calculated_at=now,
        reinstated_at=now,
        reports_at_reinstatement=snapshot.metrics.total_reports,
    )
    status, reasons = status_from_metrics(
        snapshot.metrics, snapshot.safety_score, snapshot.warning_count, policy,
    )
    if status == SafetyStatus.SUSPENDED:
        status = SafetyStatus.PROBATION
    return _with_status(base, SafetyStatus.SUSPENDED, status, reasons, now)


def reset_warnings(snapshot: StandingSnapshot, now: datetime) -> StandingSnapshot:
    return replace(snapshot, warning_count=0, last_warning_date=None, calculated_at=now)
