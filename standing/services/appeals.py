"""
Standing Engine — Suspension appeals

A suspended user gets exactly one appeal per suspension episode. The appeal
document id is "{user_id}:{episode_id}" and is written with a conditional
create, so two concurrent submissions cannot both succeed.
"""
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import structlog

from standing.engine.appeals import Appeal, appeal_key
from standing.engine.common import utcnow
from standing.errors import (
    AppealAlreadyPending,
    ConflictError,
    NotFoundError,
    PolicyViolationError,
)
from standing.services.notifications import EventKind, NotificationDispatcher, StandingEvent
from standing.services.standing import StandingService
from standing.services.users import APPEALS
from standing.store.documents import DocumentStore
from standing.store.history import StandingHistory

logger = structlog.get_logger()


class AppealService:

    def __init__(
        self,
        store: DocumentStore,
        standing: StandingService,
        history: Optional[StandingHistory] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._standing = standing
        self._history = history
        self._dispatcher = dispatcher or NotificationDispatcher()
        self._clock = clock

    def _find(self, user_id: str, episode_id: str):
        doc = self._store.get(APPEALS, appeal_key(user_id, episode_id))
        if doc is None:
            return None, 0
        return Appeal.from_dict(doc), doc.get("_version", 0)

    def _reject_duplicate(self, existing: Appeal) -> None:
        if existing.is_pending:
            raise AppealAlreadyPending(existing.user_id, existing.episode_id)
        raise PolicyViolationError(
            "This suspension has already been appealed", current=existing.status.value,
        )

    def _current_episode(self, user_id: str) -> Optional[str]:
        snapshot = self._standing.get_standing(user_id)
        if not snapshot.is_suspended(self._clock()):
            return None
        return snapshot.suspension_episode_id

    # =============================================
    # USER
    # =============================================

    def submit_appeal(self, user_id: str, message: str) -> Appeal:
        episode_id = self._current_episode(user_id)
        if episode_id is None:
            raise PolicyViolationError("Only suspended accounts can appeal")

        existing, _ = self._find(user_id, episode_id)
        if existing is not None:
            self._reject_duplicate(existing)

        appeal = Appeal.new(user_id, episode_id, message, self._clock())
        try:
            self._store.create(APPEALS, appeal.key, appeal.to_dict())
        except ConflictError:
            existing, _ = self._find(user_id, episode_id)
            if existing is None:
                raise
            self._reject_duplicate(existing)

        logger.info("appeal_submitted", user_id=user_id, episode_id=episode_id,
                    appeal_id=appeal.appeal_id)
        self._emit(EventKind.APPEAL_SUBMITTED, user_id, appeal_id=appeal.appeal_id)
        return appeal

    def can_appeal(self, user_id: str) -> bool:
        episode_id = self._current_episode(user_id)
        if episode_id is None:
            return False
        existing, _ = self._find(user_id, episode_id)
        return existing is None

    def suspension_notice(self, user_id: str) -> Dict[str, Any]:
        """What a suspended user sees: reason categories, dates, appeal state. No score."""
        snapshot = self._standing.get_standing(user_id)
        suspended = snapshot.is_suspended(self._clock())
        notice = {
            "suspended": suspended,
            "reasons": [],
            "suspended_at": None,
            "suspended_until": None,
            "can_appeal": False,
            "appeal_status": None,
        }
        if not suspended:
            return notice

        existing, _ = self._find(user_id, snapshot.suspension_episode_id)
        notice.update(
            reasons=[r.value for r in snapshot.status_reasons],
            suspended_at=snapshot.suspension_start_date.isoformat() if snapshot.suspension_start_date else None,
            suspended_until=snapshot.suspension_end_date.isoformat() if snapshot.suspension_end_date else None,
            can_appeal=existing is None,
            appeal_status=existing.status.value if existing else None,
        )
        return notice

    # =============================================
    # ADMIN
    # =============================================

    def get_appeal(self, user_id: str, episode_id: Optional[str] = None) -> Appeal:
        episode_id = episode_id or self._standing.get_standing(user_id).suspension_episode_id
        appeal = self._find(user_id, episode_id)[0] if episode_id else None
        if appeal is None:
            raise NotFoundError("appeal", f"{user_id}:{episode_id}")
        return appeal

    def resolve_appeal(self, user_id: str, approve: bool, admin_id: str,
                       note: Optional[str] = None, episode_id: Optional[str] = None) -> Appeal:
        appeal = self.get_appeal(user_id, episode_id)
        _, version = self._find(appeal.user_id, appeal.episode_id)
        resolved = appeal.resolve(approve, admin_id, self._clock(), note)
        self._store.put(APPEALS, resolved.key, resolved.to_dict(), expected_version=version)

        logger.info("appeal_resolved", user_id=user_id, episode_id=appeal.episode_id,
                    status=resolved.status.value, admin_id=admin_id)
        if self._history is not None:
            self._history.record_transition(
                user_id=user_id, kind="appeal",
                from_state=appeal.status.value, to_state=resolved.status.value,
                actor=admin_id, reason=note,
                details={"appeal_id": appeal.appeal_id, "episode_id": appeal.episode_id},
                occurred_at=resolved.resolved_at,
            )

        if approve:
            self._standing.reinstate(user_id, admin_id, reason=note or "appeal approved")
        self._emit(EventKind.APPEAL_RESOLVED, user_id,
                   appeal_id=appeal.appeal_id, status=resolved.status.value)
        return resolved

    def _emit(self, kind: EventKind, user_id: str, **payload) -> None:
        try:
            self._dispatcher.dispatch(StandingEvent(kind=kind, user_id=user_id, payload=payload))
        except Exception as e:
            logger.error("standing_event_dispatch_failed", kind=kind.value, user_id=user_id, error=str(e))
