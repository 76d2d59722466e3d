"""
Standing Engine — Notification dispatch

The engine emits "standing changed" events; turning them into push or email
alerts belongs to a downstream notification service. Delivery is
fire-and-forget: a failed delivery is logged and never undoes the standing
change that produced it.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import httpx
import structlog

logger = structlog.get_logger()


class EventKind(str, Enum):
    WARNING_ISSUED = "warning_issued"
    PROBATION_STARTED = "probation_started"
    ACCOUNT_SUSPENDED = "account_suspended"
    ACCOUNT_REINSTATED = "account_reinstated"
    WARNINGS_RESET = "warnings_reset"
    TIER_CHANGED = "tier_changed"
    APPEAL_SUBMITTED = "appeal_submitted"
    APPEAL_RESOLVED = "appeal_resolved"


@dataclass(frozen=True)
class StandingEvent:
    kind: EventKind
    user_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: f"evt_{uuid.uuid4().hex[:16]}")
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "kind": self.kind.value,
            "user_id": self.user_id,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


class NotificationDispatcher:
    """Base dispatcher: logs the event."""

    def dispatch(self, event: StandingEvent) -> None:
        logger.info("standing_event", **event.to_dict())


class WebhookDispatcher(NotificationDispatcher):
    """POSTs each event as JSON to the configured webhook."""

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self._url = url
        self._client = client or httpx.Client(timeout=timeout)

    def dispatch(self, event: StandingEvent) -> None:
        super().dispatch(event)
        try:
            response = self._client.post(self._url, json=event.to_dict())
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("notification_delivery_failed",
                           event_id=event.event_id, kind=event.kind.value, error=str(e))

    def close(self) -> None:
        self._client.close()
