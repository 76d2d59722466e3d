"""
Standing Engine — Configuration

All settings load from environment variables with safe defaults for development.
In production, set STANDING_ENV=production to enforce required values.

Policy tables (safety thresholds, tier requirements, tier benefits) live here
rather than in the evaluators. Both can be overridden from JSON files named by
SAFETY_POLICY_PATH and TIER_POLICY_PATH.
"""
import json
import os
import secrets
from dataclasses import dataclass, fields
from functools import lru_cache
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()


class Settings:
    def __init__(self):
        self.ENVIRONMENT = os.getenv("STANDING_ENV", "development")

        # === Storage ===
        self.STORE_BACKEND = os.getenv("STORE_BACKEND", "redis")
        self.REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.STORE_PREFIX = os.getenv("STORE_PREFIX", "standing")

        # === History (Neo4j) ===
        self.HISTORY_ENABLED = os.getenv("HISTORY_ENABLED", "true").lower() == "true"
        self.NEO4J_URI = os.getenv("NEO4J_URI", "bolt://localhost:7687")
        self.NEO4J_USER = os.getenv("NEO4J_USER", "neo4j")
        self.NEO4J_PASSWORD = os.getenv("NEO4J_PASSWORD", "standing_dev_password")
        self.NEO4J_DATABASE = os.getenv("NEO4J_DATABASE", "neo4j")

        # === Notifications ===
        self.NOTIFICATION_WEBHOOK_URL = os.getenv("NOTIFICATION_WEBHOOK_URL", "")
        self.NOTIFICATION_TIMEOUT = float(os.getenv("NOTIFICATION_TIMEOUT", "5.0"))

        # === Application ===
        self._secret_from_env = os.getenv("SECRET_KEY", "")
        if self._secret_from_env:
            self.SECRET_KEY = self._secret_from_env
        else:
            self.SECRET_KEY = secrets.token_hex(32)
            if self.ENVIRONMENT == "production":
                raise RuntimeError("SECRET_KEY must be set in production. Add it to .env")
            import warnings
            warnings.warn("SECRET_KEY not set, using random key. JWTs will not survive restarts.")

        self.HOST = os.getenv("STANDING_HOST", "0.0.0.0")
        self.PORT = int(os.getenv("STANDING_PORT", "8000"))
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        self.CORS_ORIGINS = [
            o.strip()
            for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
            if o.strip()
        ]

        # === Security ===
        self.JWT_EXPIRY_DAYS = int(os.getenv("JWT_EXPIRY_DAYS", "30"))

        # === Engine ===
        self.RECOMPUTE_MAX_ATTEMPTS = int(os.getenv("RECOMPUTE_MAX_ATTEMPTS", "5"))
        self.REPORT_RATE_LIMIT = int(os.getenv("REPORT_RATE_LIMIT", "10"))
        self.REPORT_RATE_WINDOW = int(os.getenv("REPORT_RATE_WINDOW", "3600"))
        self.DOCUMENT_RATE_LIMIT = int(os.getenv("DOCUMENT_RATE_LIMIT", "20"))
        self.DOCUMENT_RATE_WINDOW = int(os.getenv("DOCUMENT_RATE_WINDOW", "86400"))
        self.SAFETY_POLICY_PATH = os.getenv("SAFETY_POLICY_PATH", "")
        self.TIER_POLICY_PATH = os.getenv("TIER_POLICY_PATH", "")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


# =============================================
# SAFETY POLICY
# =============================================

@dataclass(frozen=True)
class SafetyPolicy:
    """Thresholds for the safety score and status ladder (score scale 0-100)."""
    warning_threshold: float = 80.0
    probation_threshold: float = 65.0
    suspension_floor: float = 50.0

    # Report volume (active reports)
    warning_report_count: int = 3
    probation_report_count: int = 5
    suspension_report_count: int = 10

    # Warnings accumulated before a warning escalates to probation
    probation_after_warnings: int = 3

    # Minimum sample sizes before rates count against the score
    min_reviews_for_rating: int = 5
    min_bookings_for_rates: int = 5

    # Penalties
    rating_penalty_per_star: float = 6.0
    critical_report_penalty: float = 20.0
    high_report_penalty: float = 10.0
    max_report_penalty: float = 40.0
    cancellation_baseline: float = 0.10
    max_cancellation_penalty: float = 15.0
    completion_baseline: float = 0.90
    max_completion_penalty: float = 15.0
    response_baseline: float = 0.80
    response_penalty_factor: float = 50.0
    max_response_penalty: float = 10.0
    on_time_baseline: float = 0.85
    on_time_penalty_factor: float = 50.0
    max_on_time_penalty: float = 10.0

    # Automatic suspensions are indefinite unless set
    automatic_suspension_days: Optional[int] = None


def _load_json(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)


def load_safety_policy(path: Optional[str] = None) -> SafetyPolicy:
    """Defaults, overlaid with any known keys from the JSON file at `path`."""
    path = path if path is not None else settings.SAFETY_POLICY_PATH
    if not path:
        return SafetyPolicy()
    overrides = _load_json(path)
    known = {f.name for f in fields(SafetyPolicy)}
    return SafetyPolicy(**{k: v for k, v in overrides.items() if k in known})


# =============================================
# SUPPLIER TIERS
# =============================================

# Ordered lowest to highest. "basic" has no requirements.
TIER_REQUIREMENTS: Dict[str, Dict[str, Any]] = {
    "basic": {},
    "gold": {
        "min_rating": 4.5,
        "min_reviews": 20,
        "min_account_age_days": 90,
        "min_services": 5,
    },
    "diamond": {
        "min_rating": 4.7,
        "min_reviews": 50,
        "min_account_age_days": 180,
        "min_services": 10,
        "min_response_rate": 0.90,
    },
    "premium": {
        "min_rating": 4.9,
        "min_reviews": 100,
        "min_account_age_days": 365,
        "min_services": 15,
        "min_response_rate": 0.95,
        "min_completion_rate": 0.98,
    },
}

TIER_BENEFITS: Dict[str, Dict[str, Any]] = {
    "basic": {
        "label": "Basic",
        "search_priority": 4,
        "visibility_boost": 1.0,
        "featured_listing": False,
        "analytics_access": False,
        "dedicated_support": False,
        "badge_icon": "",
    },
    "gold": {
        "label": "Gold",
        "search_priority": 3,
        "visibility_boost": 1.2,
        "featured_listing": True,
        "analytics_access": False,
        "dedicated_support": False,
        "badge_icon": "🥇",
    },
    "diamond": {
        "label": "Diamond",
        "search_priority": 2,
        "visibility_boost": 1.5,
        "featured_listing": True,
        "analytics_access": True,
        "dedicated_support": True,
        "badge_icon": "💎",
    },
    "premium": {
        "label": "Premium",
        "search_priority": 1,
        "visibility_boost": 2.0,
        "featured_listing": True,
        "analytics_access": True,
        "dedicated_support": True,
        "badge_icon": "👑",
    },
}


def load_tier_requirements(path: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
    """Tier requirement table, replaced per tier by the JSON file at `path`."""
    path = path if path is not None else settings.TIER_POLICY_PATH
    table = {tier: dict(reqs) for tier, reqs in TIER_REQUIREMENTS.items()}
    if path:
        for tier, reqs in _load_json(path).items():
            if tier not in table:
                raise ValueError(f"Unknown tier in policy file: {tier}")
            table[tier] = dict(reqs)
    return table


def get_tier_benefits(tier: str) -> dict:
    return TIER_BENEFITS.get(tier, TIER_BENEFITS["basic"])
