"""
Standing Engine — Standing History

Every written standing snapshot and every state-machine transition (report
status, onboarding, identity verification, tier, appeal, admin action) is
appended to Neo4j. This is the audit trail; the document store only holds
current state.

Schema:
    (:StandingRecord {
        record_id, user_id, safety_score, safety_status, warning_count,
        badges,            # JSON array of badge types
        metrics,           # JSON object
        calculated_at
    })
    (:TransitionRecord {
        record_id, user_id, kind, from_state, to_state, actor, reason,
        details,           # JSON object
        occurred_at
    })

    (:User)-[:HAS_STANDING]->(:StandingRecord)        # latest
    (:User)-[:STANDING_HISTORY]->(:StandingRecord)    # all
    (:User)-[:TRANSITION]->(:TransitionRecord)

History is best-effort: a Neo4j outage is logged and never fails the
standing write that triggered it.

Dependencies: neo4j >= 5.17.0
"""
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from standing.engine.safety import StandingSnapshot

logger = structlog.get_logger()


class StandingHistory:
    """Appends standing snapshots and transitions to Neo4j."""

    def __init__(self, session_factory=None, enabled: bool = True):
        self._session_factory = session_factory
        self._enabled = enabled

    def _get_session(self):
        if not self._enabled:
            return None
        if self._session_factory is None:
            from standing.store.neo4j import get_session
            self._session_factory = get_session
        return self._session_factory

    def save_snapshot(self, snapshot: StandingSnapshot) -> Optional[str]:
        """Returns the record id, or None when history is unavailable."""
        get_session = self._get_session()
        if not get_session:
            return None

        record_id = f"std_{uuid.uuid4().hex[:16]}"
        calculated_at = snapshot.calculated_at or datetime.now(timezone.utc)
        try:
            with get_session() as session:
                session.run("""
                    MERGE (u:User {user_id: $user_id})
                    ON CREATE SET u.created_at = datetime(), u.user_type = $user_type

                    CREATE (s:StandingRecord {
                        record_id: $record_id,
                        user_id: $user_id,
                        safety_score: $safety_score,
                        safety_status: $safety_status,
                        warning_count: $warning_count,
                        status_reasons: $status_reasons,
                        badges: $badges,
                        metrics: $metrics,
                        calculated_at: datetime($calculated_at)
                    })

                    WITH u, s
                    OPTIONAL MATCH (u)-[old:HAS_STANDING]->(:StandingRecord)
                    DELETE old
                    CREATE (u)-[:HAS_STANDING]->(s)
                    CREATE (u)-[:STANDING_HISTORY]->(s)
                """,
                    record_id=record_id,
                    user_id=snapshot.user_id,
                    user_type=snapshot.user_type.value,
                    safety_score=snapshot.safety_score,
                    safety_status=snapshot.safety_status.value,
                    warning_count=snapshot.warning_count,
                    status_reasons=[r.value for r in snapshot.status_reasons],
                    badges=json.dumps([b.type.value for b in snapshot.badges]),
                    metrics=json.dumps(snapshot.metrics.to_dict()),
                    calculated_at=calculated_at.isoformat(),
                )
            logger.info("standing_history_saved", user_id=snapshot.user_id, record_id=record_id)
            return record_id
        except Exception as e:
            logger.error("standing_history_failed", user_id=snapshot.user_id, error=str(e))
            return None

    def record_transition(
        self,
        user_id: str,
        kind: str,
        from_state: Optional[str],
        to_state: Optional[str],
        actor: Optional[str] = None,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
    ) -> Optional[str]:
        get_session = self._get_session()
        if not get_session:
            return None

        record_id = f"trn_{uuid.uuid4().hex[:16]}"
        occurred_at = occurred_at or datetime.now(timezone.utc)
        try:
            with get_session() as session:
                session.run("""
                    MERGE (u:User {user_id: $user_id})
                    ON CREATE SET u.created_at = datetime()
                    CREATE (t:TransitionRecord {
                        record_id: $record_id,
                        user_id: $user_id,
                        kind: $kind,
                        from_state: $from_state,
                        to_state: $to_state,
                        actor: $actor,
                        reason: $reason,
                        details: $details,
                        occurred_at: datetime($occurred_at)
                    })
                    CREATE (u)-[:TRANSITION]->(t)
                """,
                    record_id=record_id,
                    user_id=user_id,
                    kind=kind,
                    from_state=from_state,
                    to_state=to_state,
                    actor=actor or "system",
                    reason=reason,
                    details=json.dumps(details or {}, default=str),
                    occurred_at=occurred_at.isoformat(),
                )
            logger.info("transition_recorded", user_id=user_id, kind=kind,
                        from_state=from_state, to_state=to_state)
            return record_id
        except Exception as e:
            logger.error("transition_record_failed", user_id=user_id, kind=kind, error=str(e))
            return None

    def get_history(self, user_id: str, limit: int = 30) -> List[Dict[str, Any]]:
        get_session = self._get_session()
        if not get_session:
            return []

        try:
            with get_session() as session:
                result = session.run("""
                    MATCH (u:User {user_id: $user_id})-[:STANDING_HISTORY]->(s:StandingRecord)
                    RETURN s {.*} as record
                    ORDER BY s.calculated_at DESC
                    LIMIT $limit
                """, user_id=user_id, limit=limit)
                return [dict(r["record"]) for r in result]
        except Exception as e:
            logger.error("standing_history_fetch_failed", user_id=user_id, error=str(e))

        return []

    def get_transitions(self, user_id: str, kind: Optional[str] = None,
                        limit: int = 50) -> List[Dict[str, Any]]:
        get_session = self._get_session()
        if not get_session:
            return []

        try:
            with get_session() as session:
                result = session.run("""
                    MATCH (u:User {user_id: $user_id})-[:TRANSITION]->(t:TransitionRecord)
                    WHERE $kind IS NULL OR t.kind = $kind
                    RETURN t {.*} as record
                    ORDER BY t.occurred_at DESC
                    LIMIT $limit
                """, user_id=user_id, kind=kind, limit=limit)
                return [dict(r["record"]) for r in result]
        except Exception as e:
            logger.error("transition_fetch_failed", user_id=user_id, error=str(e))

        return []
