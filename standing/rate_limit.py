"""
Standing Engine — Rate limits

Per-user sliding windows kept in redis sorted sets, one set per
(endpoint, user). Every hit is recorded, allowed or not, so hammering a
limited endpoint keeps the caller locked out. If redis is unreachable the
request goes through.
"""
import hashlib
import math
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from fastapi import Depends, HTTPException
import redis
import structlog

from standing.auth import require_auth
from standing.config import settings

logger = structlog.get_logger()

_redis = None


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    count: int
    limit: int
    retry_after: int = 0


def endpoint_limits() -> Dict[str, Tuple[int, int]]:
    """(max requests, window seconds) per limited endpoint."""
    return {
        "reports": (settings.REPORT_RATE_LIMIT, settings.REPORT_RATE_WINDOW),
        "documents": (settings.DOCUMENT_RATE_LIMIT, settings.DOCUMENT_RATE_WINDOW),
    }


def _get_redis():
    global _redis
    if _redis is None:
        try:
            client = redis.from_url(settings.REDIS_URL, decode_responses=True)
            client.ping()
        except redis.RedisError as e:
            logger.warning("rate_limiter_redis_unavailable", error=str(e))
            return None
        logger.info("rate_limiter_redis_connected")
        _redis = client
    return _redis


def _rate_key(user_id: str, endpoint: str) -> str:
    digest = hashlib.sha256(user_id.encode()).hexdigest()[:16]
    return f"rl:{endpoint}:{digest}"


def _record_hit(client, key: str, now: float, window_seconds: int) -> Tuple[int, float]:
    """Add this hit to the window. Returns the hit count and the oldest hit time."""
    # Same-instant hits still need distinct members
    member = f"{now:.6f}:{uuid.uuid4().hex[:8]}"
    pipe = client.pipeline()
    pipe.zremrangebyscore(key, "-inf", now - window_seconds)
    pipe.zadd(key, {member: now})
    pipe.zcard(key)
    pipe.zrange(key, 0, 0, withscores=True)
    pipe.expire(key, window_seconds + 1)
    _, _, count, oldest, _ = pipe.execute()
    return count, (oldest[0][1] if oldest else now)


def check_rate_limit(user_id: str, endpoint: str, max_requests: int, window_seconds: int) -> RateDecision:
    """Record a hit for user_id on endpoint. Raises 429 once the window is full."""
    client = _get_redis()
    if client is None:
        return RateDecision(allowed=True, count=0, limit=max_requests)

    now = time.time()
    try:
        count, oldest = _record_hit(client, _rate_key(user_id, endpoint), now, window_seconds)
    except redis.RedisError as e:
        logger.warning("rate_limit_check_failed", endpoint=endpoint, error=str(e))
        return RateDecision(allowed=True, count=0, limit=max_requests)

    if count <= max_requests:
        return RateDecision(allowed=True, count=count, limit=max_requests)

    retry_after = max(1, math.ceil(oldest + window_seconds - now))
    logger.warning("rate_limit_exceeded", user_id=user_id, endpoint=endpoint,
                   count=count, limit=max_requests, retry_after=retry_after)
    raise HTTPException(
        status_code=429,
        detail=f"Rate limit exceeded. Max {max_requests} requests per {window_seconds}s.",
        headers={"Retry-After": str(retry_after)},
    )


def rate_limited(endpoint: str) -> Callable:
    """Auth dependency that also spends one hit of the endpoint's window."""

    async def dependency(user: dict = Depends(require_auth)) -> dict:
        # The in-memory backend runs without redis
        if settings.STORE_BACKEND != "memory":
            max_requests, window_seconds = endpoint_limits()[endpoint]
            check_rate_limit(user["user_id"], endpoint, max_requests, window_seconds)
        return user

    return dependency


rate_limit_reports = rate_limited("reports")
rate_limit_documents = rate_limited("documents")
