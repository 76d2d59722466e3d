"""
Standing Engine — Service wiring

Services share one document store and one history sink. The ledger calls
back into StandingService.recompute whenever a report change can move a
user's standing.

Singleton instances are built on first use from settings; tests build
their own with build_services(MemoryDocumentStore()).
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import structlog

from standing.config import SafetyPolicy, load_safety_policy, load_tier_requirements, settings
from standing.engine.common import utcnow
from standing.services.appeals import AppealService
from standing.services.ledger import ReportLedger
from standing.services.metrics import MetricsService
from standing.services.notifications import NotificationDispatcher, WebhookDispatcher
from standing.services.onboarding import OnboardingService
from standing.services.standing import RankingProvider, StandingService
from standing.services.tiers import TierService
from standing.store.documents import DocumentStore, MemoryDocumentStore, RedisDocumentStore
from standing.store.history import StandingHistory

logger = structlog.get_logger()


@dataclass
class Services:
    store: DocumentStore
    ledger: ReportLedger
    metrics: MetricsService
    standing: StandingService
    onboarding: OnboardingService
    appeals: AppealService
    tiers: TierService
    dispatcher: NotificationDispatcher
    history: Optional[StandingHistory] = None


def build_services(
    store: DocumentStore,
    history: Optional[StandingHistory] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    policy: Optional[SafetyPolicy] = None,
    tier_requirements: Optional[Dict[str, Dict[str, Any]]] = None,
    ranking: Optional[RankingProvider] = None,
    clock: Callable[[], datetime] = utcnow,
    max_attempts: int = 5,
) -> Services:
    dispatcher = dispatcher or NotificationDispatcher()
    onboarding = OnboardingService(store, history=history, clock=clock)
    standing = StandingService(
        store,
        onboarding=onboarding,
        history=history,
        dispatcher=dispatcher,
        policy=policy,
        ranking=ranking,
        clock=clock,
        max_attempts=max_attempts,
    )
    ledger = ReportLedger(store, on_standing_change=standing.recompute, history=history, clock=clock)
    return Services(
        store=store,
        ledger=ledger,
        metrics=MetricsService(store),
        standing=standing,
        onboarding=onboarding,
        appeals=AppealService(store, standing, history=history, dispatcher=dispatcher, clock=clock),
        tiers=TierService(store, onboarding, history=history, dispatcher=dispatcher,
                          requirements=tier_requirements, clock=clock),
        dispatcher=dispatcher,
        history=history,
    )


# Singleton (initialized on first use)
_services: Optional[Services] = None


def _build_store() -> DocumentStore:
    if settings.STORE_BACKEND == "memory":
        logger.warning("memory_store_in_use", environment=settings.ENVIRONMENT)
        return MemoryDocumentStore()
    return RedisDocumentStore(settings.REDIS_URL, prefix=settings.STORE_PREFIX)


def get_services() -> Services:
    global _services
    if _services is None:
        dispatcher = (
            WebhookDispatcher(settings.NOTIFICATION_WEBHOOK_URL, timeout=settings.NOTIFICATION_TIMEOUT)
            if settings.NOTIFICATION_WEBHOOK_URL
            else NotificationDispatcher()
        )
        _services = build_services(
            _build_store(),
            history=StandingHistory(enabled=settings.HISTORY_ENABLED),
            dispatcher=dispatcher,
            policy=load_safety_policy(),
            tier_requirements=load_tier_requirements(),
            max_attempts=settings.RECOMPUTE_MAX_ATTEMPTS,
        )
        logger.info("services_initialized", store=settings.STORE_BACKEND,
                    history_enabled=settings.HISTORY_ENABLED,
                    webhook=bool(settings.NOTIFICATION_WEBHOOK_URL))
    return _services


def shutdown():
    """Clean shutdown of service resources."""
    global _services
    if _services is not None and isinstance(_services.dispatcher, WebhookDispatcher):
        _services.dispatcher.close()
    _services = None
    logger.info("services_shutdown")
