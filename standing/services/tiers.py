"""
Supplier tier refresh: classify from the supplier record and behavior
counters, store the current tier, announce changes.
"""
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import structlog

from standing.engine.common import utcnow
from standing.engine.metrics import BehaviorCounters
from standing.engine.tiers import TierMetrics, TierResult, classify, next_tier_progress
from standing.services.notifications import EventKind, NotificationDispatcher, StandingEvent
from standing.services.onboarding import OnboardingService
from standing.services.users import METRICS
from standing.store.documents import DocumentStore
from standing.store.history import StandingHistory

logger = structlog.get_logger()


class TierService:

    def __init__(
        self,
        store: DocumentStore,
        onboarding: OnboardingService,
        history: Optional[StandingHistory] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        requirements: Optional[Dict[str, Dict[str, Any]]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._onboarding = onboarding
        self._history = history
        self._dispatcher = dispatcher or NotificationDispatcher()
        self._requirements = requirements
        self._clock = clock

    def tier_metrics(self, supplier_id: str) -> TierMetrics:
        record = self._onboarding.get(supplier_id)
        counters = BehaviorCounters.from_dict(self._store.get(METRICS, supplier_id) or {})
        return TierMetrics(
            rating=round(counters.overall_rating, 3),
            review_count=counters.total_reviews,
            account_age_days=record.account_days(self._clock()),
            service_count=record.service_count,
            response_rate=counters.response_rate,
            completion_rate=round(counters.completion_rate, 4),
        )

    def classify_supplier(self, supplier_id: str) -> TierResult:
        return classify(self.tier_metrics(supplier_id), self._requirements)

    def progress(self, supplier_id: str) -> Dict[str, Any]:
        return next_tier_progress(self.tier_metrics(supplier_id), self._requirements)

    def refresh(self, supplier_id: str) -> TierResult:
        record = self._onboarding.get(supplier_id)
        result = self.classify_supplier(supplier_id)
        if result.tier.value == record.current_tier:
            return result

        self._onboarding.set_tier(supplier_id, result.tier.value)
        logger.info("tier_changed", supplier_id=supplier_id,
                    from_tier=record.current_tier, to_tier=result.tier.value)
        if self._history is not None:
            self._history.record_transition(
                user_id=supplier_id, kind="tier",
                from_state=record.current_tier, to_state=result.tier.value,
            )
        try:
            self._dispatcher.dispatch(StandingEvent(
                kind=EventKind.TIER_CHANGED,
                user_id=supplier_id,
                payload={"from": record.current_tier, "to": result.tier.value},
            ))
        except Exception as e:
            logger.error("standing_event_dispatch_failed", kind="tier_changed",
                         user_id=supplier_id, error=str(e))
        return result
