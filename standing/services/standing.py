"""
Standing Engine — Standing service

recompute(user_id) is the heart of the engine:

    1. read the stored snapshot (with its version)
    2. rebuild metrics from behavior counters + report documents
    3. derive badges and the next snapshot (pure)
    4. if nothing changed, return the stored snapshot untouched
    5. compare-and-set the new snapshot; on conflict go back to 1

After a successful write, side effects run: history, "standing changed"
events, and the supplier account following a suspension or reinstatement.
Side effects never fail the write.
"""
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

import structlog

from standing.config import SafetyPolicy
from standing.engine.badges import CategoryRanking, evaluate_badges
from standing.engine.common import require_text, utcnow
from standing.engine.metrics import BehaviorCounters, StandingMetrics
from standing.engine.onboarding import IdentityVerificationStatus
from standing.engine.safety import (
    SafetyStatus,
    StandingSnapshot,
    UserType,
    derive_snapshot,
    force_suspension,
    lift_suspension,
    reset_warnings,
)
from standing.errors import ConflictError, PolicyViolationError, StandingError, ValidationError
from standing.services.ledger import report_aggregates
from standing.services.notifications import EventKind, NotificationDispatcher, StandingEvent
from standing.services.onboarding import OnboardingService
from standing.services.users import METRICS, STANDINGS, get_user
from standing.store.documents import DocumentStore
from standing.store.history import StandingHistory

logger = structlog.get_logger()

RankingProvider = Callable[[str, Optional[str]], Optional[CategoryRanking]]


class StandingService:

    def __init__(
        self,
        store: DocumentStore,
        onboarding: Optional[OnboardingService] = None,
        history: Optional[StandingHistory] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        policy: Optional[SafetyPolicy] = None,
        ranking: Optional[RankingProvider] = None,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int = 5,
    ):
        self._store = store
        self._onboarding = onboarding
        self._history = history
        self._dispatcher = dispatcher or NotificationDispatcher()
        self._policy = policy or SafetyPolicy()
        self._ranking = ranking
        self._clock = clock
        self._max_attempts = max_attempts

    # =============================================
    # READS
    # =============================================

    def load_metrics(self, user_id: str) -> StandingMetrics:
        counters = BehaviorCounters.from_dict(self._store.get(METRICS, user_id) or {})
        return StandingMetrics.build(counters, report_aggregates(self._store, user_id))

    def _stored(self, user_id: str) -> Optional[StandingSnapshot]:
        doc = self._store.get(STANDINGS, user_id)
        return StandingSnapshot.from_dict(doc) if doc else None

    def get_standing(self, user_id: str) -> StandingSnapshot:
        """Stored snapshot, computing the first one on demand."""
        get_user(self._store, user_id)
        snapshot = self._stored(user_id)
        if snapshot is None:
            snapshot = self.recompute(user_id)
        return snapshot

    # =============================================
    # RECOMPUTE
    # =============================================

    def recompute(self, user_id: str, now: Optional[datetime] = None) -> StandingSnapshot:
        user = get_user(self._store, user_id)
        user_type = UserType.SUPPLIER if user.get("role") == "supplier" else UserType.CLIENT

        for attempt in range(1, self._max_attempts + 1):
            at = now or self._clock()
            previous = self._stored(user_id)
            metrics = self.load_metrics(user_id)

            identity_verified = False
            ranking = None
            if self._onboarding is not None:
                supplier = self._onboarding.find(user_id)
                if supplier is not None:
                    identity_verified = (
                        supplier.identity_verification_status == IdentityVerificationStatus.VERIFIED
                    )
                    if self._ranking is not None:
                        ranking = self._ranking(user_id, supplier.category)

            badges = evaluate_badges(
                metrics, at,
                identity_verified=identity_verified,
                ranking=ranking,
                previous=previous.badges if previous else (),
            )
            snapshot = derive_snapshot(previous, user_id, user_type, metrics, badges, at, self._policy)
            if previous is not None and snapshot == previous:
                logger.debug("standing_unchanged", user_id=user_id)
                return previous

            try:
                written = self._write(snapshot, previous)
            except ConflictError:
                logger.info("standing_recompute_conflict", user_id=user_id, attempt=attempt)
                continue

            logger.info("standing_recomputed",
                        user_id=user_id,
                        score=written.safety_score,
                        status=written.safety_status.value,
                        warning_count=written.warning_count,
                        badges=[b.type.value for b in written.badges])
            self._after_change(previous, written)
            return written

        raise ConflictError(
            f"Standing for {user_id} kept changing underneath recompute",
            {"attempts": self._max_attempts},
        )

    def _write(self, snapshot: StandingSnapshot,
               previous: Optional[StandingSnapshot]) -> StandingSnapshot:
        expected = previous.version if previous is not None else 0
        version = self._store.put(STANDINGS, snapshot.user_id, snapshot.to_dict(),
                                  expected_version=expected)
        return replace(snapshot, version=version)

    def _update(self, user_id: str, change: Callable[[StandingSnapshot, datetime], StandingSnapshot],
                actor: str, reason: Optional[str] = None) -> StandingSnapshot:
        """Apply an admin change to the current snapshot under compare-and-set."""
        for attempt in range(1, self._max_attempts + 1):
            current = self.get_standing(user_id)
            updated = change(current, self._clock())
            try:
                written = self._write(updated, current)
            except ConflictError:
                logger.info("standing_update_conflict", user_id=user_id, attempt=attempt)
                continue
            self._after_change(current, written, actor=actor, reason=reason)
            return written
        raise ConflictError(f"Standing for {user_id} kept changing; try again")

    # =============================================
    # ADMIN ACTIONS
    # =============================================

    def force_suspend(self, user_id: str, admin_id: str, reason: str,
                      duration_days: Optional[int] = None) -> StandingSnapshot:
        reason = require_text("reason", reason)
        if duration_days is not None and duration_days < 1:
            raise ValidationError(f"duration_days must be at least 1, got {duration_days!r}")
        logger.warning("standing_force_suspend", user_id=user_id, admin_id=admin_id,
                       duration_days=duration_days)
        return self._update(
            user_id,
            lambda s, now: force_suspension(s, now, duration_days),
            actor=admin_id, reason=reason,
        )

    def reinstate(self, user_id: str, admin_id: str, reason: str) -> StandingSnapshot:
        reason = require_text("reason", reason)

        def change(s: StandingSnapshot, now: datetime) -> StandingSnapshot:
            if s.safety_status != SafetyStatus.SUSPENDED:
                raise PolicyViolationError(
                    "Only suspended accounts can be reinstated", current=s.safety_status.value,
                )
            return lift_suspension(s, now, self._policy)

        return self._update(user_id, change, actor=admin_id, reason=reason)

    def reset_warnings(self, user_id: str, admin_id: str) -> StandingSnapshot:
        snapshot = self._update(user_id, reset_warnings, actor=admin_id, reason="warnings reset")
        self._emit(EventKind.WARNINGS_RESET, user_id, admin_id=admin_id)
        return snapshot

    # =============================================
    # SIDE EFFECTS
    # =============================================

    def _emit(self, kind: EventKind, user_id: str, **payload) -> None:
        try:
            self._dispatcher.dispatch(StandingEvent(kind=kind, user_id=user_id, payload=payload))
        except Exception as e:
            logger.error("standing_event_dispatch_failed", kind=kind.value, user_id=user_id, error=str(e))

    def _after_change(self, previous: Optional[StandingSnapshot], current: StandingSnapshot,
                      actor: Optional[str] = None, reason: Optional[str] = None) -> None:
        user_id = current.user_id
        old_status = previous.safety_status if previous else SafetyStatus.SAFE
        new_status = current.safety_status
        entered_suspension = (
            new_status == SafetyStatus.SUSPENDED
            and (previous is None or previous.suspension_episode_id != current.suspension_episode_id)
        )
        left_suspension = old_status == SafetyStatus.SUSPENDED and new_status != SafetyStatus.SUSPENDED

        if self._history is not None:
            self._history.save_snapshot(current)
            if old_status != new_status or entered_suspension:
                self._history.record_transition(
                    user_id=user_id,
                    kind="safety_status",
                    from_state=old_status.value,
                    to_state=new_status.value,
                    actor=actor,
                    reason=reason,
                    details={"reasons": [r.value for r in current.status_reasons],
                             "episode_id": current.suspension_episode_id},
                    occurred_at=current.calculated_at,
                )

        previous_warnings = previous.warning_count if previous else 0
        if current.warning_count > previous_warnings:
            self._emit(EventKind.WARNING_ISSUED, user_id, warning_count=current.warning_count)
        if new_status == SafetyStatus.PROBATION and old_status != SafetyStatus.PROBATION:
            self._emit(EventKind.PROBATION_STARTED, user_id)
        if entered_suspension:
            self._emit(
                EventKind.ACCOUNT_SUSPENDED, user_id,
                reasons=[r.value for r in current.status_reasons],
                ends_at=current.suspension_end_date.isoformat() if current.suspension_end_date else None,
            )
        if left_suspension:
            self._emit(EventKind.ACCOUNT_REINSTATED, user_id, status=new_status.value)

        if self._onboarding is not None and current.user_type == UserType.SUPPLIER:
            try:
                if entered_suspension:
                    self._onboarding.suspend_for_standing(user_id)
                elif left_suspension:
                    self._onboarding.reinstate_for_standing(user_id)
            except StandingError as e:
                # The standing write stands; the scheduled refresh re-syncs the account.
                logger.error("supplier_account_sync_failed", user_id=user_id, error=e.message)
