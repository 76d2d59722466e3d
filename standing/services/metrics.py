"""
Behavior event ingestion.

Bookings, reviews and message responses arrive as events and bump raw
counters with atomic increments. Rates are derived from the counters when
standing is recomputed, so two concurrent events can never overwrite each
other.
"""
from typing import Optional

import structlog

from standing.engine.metrics import (
    ON_TIME_GRACE_MINUTES,
    QUICK_RESPONSE_MINUTES,
    BehaviorCounters,
)
from standing.errors import ValidationError
from standing.services.users import METRICS, get_user
from standing.store.documents import DocumentStore

logger = structlog.get_logger()

BOOKING_OUTCOMES = ("completed", "cancelled", "no_show")


class MetricsService:

    def __init__(self, store: DocumentStore):
        self._store = store

    def counters(self, user_id: str) -> BehaviorCounters:
        return BehaviorCounters.from_dict(self._store.get(METRICS, user_id) or {})

    def _bump(self, user_id: str, field: str, amount: float = 1) -> None:
        self._store.increment(METRICS, user_id, field, amount)

    def record_booking(self, user_id: str, outcome: str,
                       start_delay_minutes: Optional[float] = None) -> BehaviorCounters:
        """
        One finished booking. `start_delay_minutes` is how late a completed
        booking started; within the grace window it counts as on time.
        """
        if outcome not in BOOKING_OUTCOMES:
            raise ValidationError(f"Unknown booking outcome: {outcome!r}")
        get_user(self._store, user_id)

        self._bump(user_id, "total_bookings")
        if outcome == "completed":
            self._bump(user_id, "completed_bookings")
            if start_delay_minutes is not None and start_delay_minutes <= ON_TIME_GRACE_MINUTES:
                self._bump(user_id, "on_time_bookings")
        elif outcome == "cancelled":
            self._bump(user_id, "cancelled_bookings")

        logger.info("booking_recorded", user_id=user_id, outcome=outcome)
        return self.counters(user_id)

    def record_review(self, user_id: str, rating: float) -> BehaviorCounters:
        if rating is None or not 1.0 <= float(rating) <= 5.0:
            raise ValidationError(f"Rating must be between 1 and 5, got {rating!r}")
        get_user(self._store, user_id)
        self._bump(user_id, "total_reviews")
        self._bump(user_id, "rating_sum", float(rating))
        logger.info("review_recorded", user_id=user_id, rating=rating)
        return self.counters(user_id)

    def record_message(self, user_id: str, responded: bool,
                       response_minutes: Optional[float] = None) -> BehaviorCounters:
        """A message received by `user_id`, and whether/how fast they answered."""
        get_user(self._store, user_id)
        self._bump(user_id, "messages_received")
        if responded:
            self._bump(user_id, "messages_responded")
            if response_minutes is not None and response_minutes <= QUICK_RESPONSE_MINUTES:
                self._bump(user_id, "quick_responses")
        return self.counters(user_id)
