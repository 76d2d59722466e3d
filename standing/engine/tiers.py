"""
Standing Engine — Supplier Tiers

    basic < gold < diamond < premium

Tiers are checked from the top down and a supplier lands in the highest tier
whose requirements all hold. A supplier with premium ratings but a young
account falls through to diamond, not basic. Requirement and benefit tables
live in standing.config so they can be changed without touching this code.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from standing.config import TIER_REQUIREMENTS, get_tier_benefits
from standing.engine.common import check_count, check_rate
from standing.errors import ValidationError


class SupplierTier(str, Enum):
    BASIC = "basic"
    GOLD = "gold"
    DIAMOND = "diamond"
    PREMIUM = "premium"


TIER_ORDER: Tuple[SupplierTier, ...] = (
    SupplierTier.BASIC,
    SupplierTier.GOLD,
    SupplierTier.DIAMOND,
    SupplierTier.PREMIUM,
)

# requirement key -> (metric attribute, label)
REQUIREMENT_FIELDS = {
    "min_rating": ("rating", "rating"),
    "min_reviews": ("review_count", "reviews"),
    "min_account_age_days": ("account_age_days", "account age (days)"),
    "min_services": ("service_count", "services"),
    "min_response_rate": ("response_rate", "response rate"),
    "min_completion_rate": ("completion_rate", "completion rate"),
}


@dataclass(frozen=True)
class TierMetrics:
    rating: float = 0.0
    review_count: int = 0
    account_age_days: int = 0
    service_count: int = 0
    response_rate: float = 0.0
    completion_rate: float = 0.0

    def __post_init__(self):
        if not 0.0 <= float(self.rating) <= 5.0:
            raise ValidationError(f"rating must be in [0, 5], got {self.rating!r}")
        check_count("review_count", self.review_count)
        check_count("account_age_days", self.account_age_days)
        check_count("service_count", self.service_count)
        check_rate("response_rate", self.response_rate)
        check_rate("completion_rate", self.completion_rate)


@dataclass(frozen=True)
class TierResult:
    tier: SupplierTier
    benefits: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"tier": self.tier.value, "benefits": dict(self.benefits)}


def _missing(metrics: TierMetrics, requirements: Dict[str, Any]) -> List[str]:
    missing = []
    for key, minimum in requirements.items():
        if key not in REQUIREMENT_FIELDS:
            raise ValidationError(f"Unknown tier requirement: {key}")
        attr, label = REQUIREMENT_FIELDS[key]
        if getattr(metrics, attr) < minimum:
            missing.append(f"{label} >= {minimum}")
    return missing


def _requirements_for(table: Dict[str, Dict[str, Any]], tier: SupplierTier) -> Dict[str, Any]:
    # basic is the floor and may be left out of a table
    if tier == SupplierTier.BASIC:
        return table.get(tier.value, {})
    if tier.value not in table:
        raise ValidationError(f"Tier requirements missing for {tier.value}")
    return table[tier.value]


def meets(metrics: TierMetrics, tier: SupplierTier,
          requirements: Optional[Dict[str, Dict[str, Any]]] = None) -> bool:
    table = requirements or TIER_REQUIREMENTS
    return not _missing(metrics, _requirements_for(table, tier))


def classify(metrics: TierMetrics,
             requirements: Optional[Dict[str, Dict[str, Any]]] = None) -> TierResult:
    table = requirements or TIER_REQUIREMENTS
    for tier in reversed(TIER_ORDER):
        if meets(metrics, tier, table):
            return TierResult(tier=tier, benefits=get_tier_benefits(tier.value))
    return TierResult(tier=SupplierTier.BASIC, benefits=get_tier_benefits("basic"))


def next_tier_progress(metrics: TierMetrics,
                       requirements: Optional[Dict[str, Dict[str, Any]]] = None) -> Dict[str, Any]:
    """Where the supplier stands against the tier above their current one."""
    table = requirements or TIER_REQUIREMENTS
    current = classify(metrics, table).tier
    index = TIER_ORDER.index(current)
    if index == len(TIER_ORDER) - 1:
        return {
            "current_tier": current.value,
            "next_tier": None,
            "progress": 1.0,
            "missing_requirements": [],
        }

    next_tier = TIER_ORDER[index + 1]
    reqs = _requirements_for(table, next_tier)
    missing = _missing(metrics, reqs)
    total = len(reqs)
    progress = (total - len(missing)) / total if total else 1.0
    return {
        "current_tier": current.value,
        "next_tier": next_tier.value,
        "progress": round(progress, 2),
        "missing_requirements": missing,
    }
