"""
Standing Engine — Badges

Badges are a derived snapshot. Every evaluation recomputes the whole set from
current metrics; there is no award or revoke event. A badge that stops
qualifying simply disappears from the next evaluation.

    verified      identity verification approved
    topRated      rating >= 4.8 with 50+ reviews
    reliable      completion rate above 95%
    responsive    response rate above 90%
    professional  no behavior reports across 100+ completed bookings
    expert        top 5% of the supplier's category (needs a ranking input)
"""
import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from standing.engine.common import parse_iso, to_iso
from standing.engine.metrics import StandingMetrics


class BadgeType(str, Enum):
    VERIFIED = "verified"
    TOP_RATED = "topRated"
    RELIABLE = "reliable"
    RESPONSIVE = "responsive"
    PROFESSIONAL = "professional"
    EXPERT = "expert"


BADGE_INFO: Dict[BadgeType, Dict[str, str]] = {
    BadgeType.VERIFIED: {
        "label": "Verified",
        "description": "Identity verified by the platform",
        "icon": "✓",
    },
    BadgeType.TOP_RATED: {
        "label": "Top Rated",
        "description": "Rated 4.8 or higher across 50+ reviews",
        "icon": "⭐",
    },
    BadgeType.RELIABLE: {
        "label": "Reliable",
        "description": "Completes more than 95% of bookings",
        "icon": "📅",
    },
    BadgeType.RESPONSIVE: {
        "label": "Responsive",
        "description": "Replies to more than 90% of messages",
        "icon": "💬",
    },
    BadgeType.PROFESSIONAL: {
        "label": "Professional",
        "description": "No conduct reports across 100+ bookings",
        "icon": "🎩",
    },
    BadgeType.EXPERT: {
        "label": "Expert",
        "description": "Among the top 5% in their category",
        "icon": "🏆",
    },
}

# Thresholds
TOP_RATED_MIN_RATING = 4.8
TOP_RATED_MIN_REVIEWS = 50
RELIABLE_MIN_COMPLETION = 0.95       # strictly greater
RESPONSIVE_MIN_RESPONSE = 0.90       # strictly greater
PROFESSIONAL_MIN_BOOKINGS = 100
EXPERT_TOP_FRACTION = 0.05
EXPERT_MIN_RATING = 4.5
EXPERT_MIN_REVIEWS = 25
EXPERT_SMALL_CATEGORY = 10           # below this, rank is meaningless
EXPERT_SMALL_MIN_RATING = 4.8
EXPERT_SMALL_MIN_REVIEWS = 30


@dataclass(frozen=True)
class CategoryRanking:
    """
    Supplier's place in its category, from the ranking collaborator.
    position is 1-based; total is the number of ranked suppliers.
    """
    category: str
    position: int
    total: int

    @property
    def in_top_fraction(self) -> bool:
        if self.total <= 0 or self.position <= 0:
            return False
        cutoff = max(1, math.ceil(self.total * EXPERT_TOP_FRACTION))
        return self.position <= cutoff


@dataclass(frozen=True)
class Badge:
    type: BadgeType
    awarded_at: datetime
    category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        info = BADGE_INFO[self.type]
        return {
            "type": self.type.value,
            "awarded_at": to_iso(self.awarded_at),
            "category": self.category,
            "label": info["label"],
            "icon": info["icon"],
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Badge":
        return Badge(
            type=BadgeType(data["type"]),
            awarded_at=parse_iso(data["awarded_at"]),
            category=data.get("category"),
        )


def _is_expert(metrics: StandingMetrics, ranking: Optional[CategoryRanking]) -> bool:
    if ranking is None:
        return False
    if ranking.total < EXPERT_SMALL_CATEGORY:
        return (
            metrics.overall_rating >= EXPERT_SMALL_MIN_RATING
            and metrics.total_reviews >= EXPERT_SMALL_MIN_REVIEWS
        )
    return (
        ranking.in_top_fraction
        and metrics.overall_rating >= EXPERT_MIN_RATING
        and metrics.total_reviews >= EXPERT_MIN_REVIEWS
    )


def earned_badge_types(
    metrics: StandingMetrics,
    identity_verified: bool = False,
    ranking: Optional[CategoryRanking] = None,
) -> frozenset:
    earned = set()
    if identity_verified:
        earned.add(BadgeType.VERIFIED)
    if metrics.overall_rating >= TOP_RATED_MIN_RATING and metrics.total_reviews >= TOP_RATED_MIN_REVIEWS:
        earned.add(BadgeType.TOP_RATED)
    if metrics.completion_rate > RELIABLE_MIN_COMPLETION:
        earned.add(BadgeType.RELIABLE)
    if metrics.response_rate > RESPONSIVE_MIN_RESPONSE:
        earned.add(BadgeType.RESPONSIVE)
    if metrics.behavior_reports == 0 and metrics.completed_bookings >= PROFESSIONAL_MIN_BOOKINGS:
        earned.add(BadgeType.PROFESSIONAL)
    if _is_expert(metrics, ranking):
        earned.add(BadgeType.EXPERT)
    return frozenset(earned)


def evaluate_badges(
    metrics: StandingMetrics,
    now: datetime,
    identity_verified: bool = False,
    ranking: Optional[CategoryRanking] = None,
    previous: Iterable[Badge] = (),
) -> Tuple[Badge, ...]:
    """
    Full badge set for the given metrics, sorted by type.

    Badges already held keep their original awarded_at; newly earned ones are
    stamped with `now`.
    """
    held = {b.type: b for b in previous}
    badges = []
    for badge_type in sorted(earned_badge_types(metrics, identity_verified, ranking), key=lambda t: t.value):
        category = ranking.category if badge_type == BadgeType.EXPERT else None
        prior = held.get(badge_type)
        if prior is not None and prior.category == category:
            badges.append(prior)
        else:
            badges.append(Badge(type=badge_type, awarded_at=now, category=category))
    return tuple(badges)
