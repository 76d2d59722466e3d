"""
Standing Engine — Behavioral metrics

Two shapes:
    BehaviorCounters  raw counters, incremented atomically as events arrive
    StandingMetrics   the validated input of every standing computation,
                      rates derived from the counters plus the ledger aggregates

Rates are fractions in [0, 1] everywhere.
"""
from dataclasses import asdict, dataclass
from typing import Any, Dict

from standing.engine.common import check_count, check_rate
from standing.engine.reports import ReportAggregates
from standing.errors import ValidationError

# Used until a user has received any messages
DEFAULT_RESPONSE_RATE = 0.85

# A message answered within this many minutes counts as a quick response
QUICK_RESPONSE_MINUTES = 60

# A booking started within this many minutes of schedule counts as on time
ON_TIME_GRACE_MINUTES = 15

COUNTER_FIELDS = (
    "total_bookings",
    "completed_bookings",
    "cancelled_bookings",
    "on_time_bookings",
    "total_reviews",
    "rating_sum",
    "messages_received",
    "messages_responded",
    "quick_responses",
)


@dataclass(frozen=True)
class BehaviorCounters:
    total_bookings: int = 0
    completed_bookings: int = 0
    cancelled_bookings: int = 0
    on_time_bookings: int = 0
    total_reviews: int = 0
    rating_sum: float = 0.0
    messages_received: int = 0
    messages_responded: int = 0
    quick_responses: int = 0

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "BehaviorCounters":
        data = data or {}
        return BehaviorCounters(
            total_bookings=int(data.get("total_bookings", 0)),
            completed_bookings=int(data.get("completed_bookings", 0)),
            cancelled_bookings=int(data.get("cancelled_bookings", 0)),
            on_time_bookings=int(data.get("on_time_bookings", 0)),
            total_reviews=int(data.get("total_reviews", 0)),
            rating_sum=float(data.get("rating_sum", 0.0)),
            messages_received=int(data.get("messages_received", 0)),
            messages_responded=int(data.get("messages_responded", 0)),
            quick_responses=int(data.get("quick_responses", 0)),
        )

    @property
    def overall_rating(self) -> float:
        if self.total_reviews == 0:
            return 0.0
        return min(max(self.rating_sum / self.total_reviews, 0.0), 5.0)

    @property
    def completion_rate(self) -> float:
        if self.total_bookings == 0:
            return 0.0
        return min(self.completed_bookings / self.total_bookings, 1.0)

    @property
    def cancellation_rate(self) -> float:
        if self.total_bookings == 0:
            return 0.0
        return min(self.cancelled_bookings / self.total_bookings, 1.0)

    @property
    def on_time_rate(self) -> float:
        if self.completed_bookings == 0:
            return 0.0
        return min(self.on_time_bookings / self.completed_bookings, 1.0)

    @property
    def response_rate(self) -> float:
        """70% answered at all, 30% answered quickly."""
        if self.messages_received == 0:
            return DEFAULT_RESPONSE_RATE
        answered = min(self.messages_responded / self.messages_received, 1.0)
        quick = 0.0
        if self.messages_responded:
            quick = min(self.quick_responses / self.messages_responded, 1.0)
        return round(answered * 0.7 + quick * 0.3, 4)


@dataclass(frozen=True)
class StandingMetrics:
    overall_rating: float = 0.0
    total_reviews: int = 0
    total_bookings: int = 0
    completed_bookings: int = 0
    completion_rate: float = 0.0
    cancellation_rate: float = 0.0
    response_rate: float = DEFAULT_RESPONSE_RATE
    on_time_rate: float = 0.0

    total_reports: int = 0
    critical_reports: int = 0
    high_reports: int = 0
    resolved_reports: int = 0
    dismissed_reports: int = 0
    open_critical_reports: int = 0
    behavior_reports: int = 0

    def __post_init__(self):
        if not 0.0 <= float(self.overall_rating) <= 5.0:
            raise ValidationError(f"overall_rating must be in [0, 5], got {self.overall_rating!r}")
        for name in ("completion_rate", "cancellation_rate", "response_rate", "on_time_rate"):
            check_rate(name, getattr(self, name))
        for name in (
            "total_reviews", "total_bookings", "completed_bookings", "total_reports",
            "critical_reports", "high_reports", "resolved_reports", "dismissed_reports",
            "open_critical_reports", "behavior_reports",
        ):
            check_count(name, getattr(self, name))
        if self.resolved_reports + self.dismissed_reports > self.total_reports:
            raise ValidationError("resolved + dismissed reports cannot exceed total reports")
        if self.critical_reports + self.high_reports > self.total_reports:
            raise ValidationError("severity counts cannot exceed total reports")

    @staticmethod
    def build(counters: BehaviorCounters, aggregates: ReportAggregates) -> "StandingMetrics":
        return StandingMetrics(
            overall_rating=round(counters.overall_rating, 3),
            total_reviews=counters.total_reviews,
            total_bookings=counters.total_bookings,
            completed_bookings=counters.completed_bookings,
            completion_rate=round(counters.completion_rate, 4),
            cancellation_rate=round(counters.cancellation_rate, 4),
            response_rate=counters.response_rate,
            on_time_rate=round(counters.on_time_rate, 4),
            total_reports=aggregates.total_reports,
            critical_reports=aggregates.critical_reports,
            high_reports=aggregates.high_reports,
            resolved_reports=aggregates.resolved_reports,
            dismissed_reports=aggregates.dismissed_reports,
            open_critical_reports=aggregates.open_critical_reports,
            behavior_reports=aggregates.behavior_reports,
        )

    @property
    def active_reports_count(self) -> int:
        return self.total_reports - self.resolved_reports - self.dismissed_reports

    @property
    def high_severity_report_percentage(self) -> float:
        if self.total_reports == 0:
            return 0.0
        return (self.critical_reports + self.high_reports) / self.total_reports * 100

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "StandingMetrics":
        return StandingMetrics(**(data or {}))
