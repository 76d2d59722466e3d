"""Timestamp and rate helpers shared by the engine models."""
from datetime import datetime, timezone
from typing import Any, Optional

from standing.errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def parse_iso(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp. Naive values are treated as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value))
        except ValueError as e:
            raise ValidationError(f"Invalid timestamp: {value!r}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def check_rate(name: str, value: float) -> float:
    """Rates are fractions. Percent values are rejected rather than guessed at."""
    if value is None or not 0.0 <= float(value) <= 1.0:
        raise ValidationError(f"{name} must be a fraction in [0, 1], got {value!r}")
    return float(value)


def check_count(name: str, value: int) -> int:
    if value is None or int(value) < 0:
        raise ValidationError(f"{name} must be a non-negative integer, got {value!r}")
    return int(value)


def require_text(name: str, value: Optional[str]) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{name} is required")
    return str(value).strip()
