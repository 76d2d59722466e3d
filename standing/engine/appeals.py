"""
Standing Engine — Appeals

One appeal per suspension episode. The appeal document id is derived from
(user_id, episode_id) so the store's conditional create enforces uniqueness.

    pending ──→ approved   (suspension lifted)
       └─────→ rejected   (suspension stands, episode closed to appeals)
"""
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from standing.engine.common import parse_iso, require_text, to_iso
from standing.errors import PolicyViolationError, ValidationError

MAX_APPEAL_LENGTH = 2000


class AppealStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


def appeal_key(user_id: str, episode_id: str) -> str:
    return f"{user_id}:{episode_id}"


@dataclass(frozen=True)
class Appeal:
    appeal_id: str
    user_id: str
    episode_id: str
    message: str
    status: AppealStatus
    submitted_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_note: Optional[str] = None

    @staticmethod
    def new(user_id: str, episode_id: str, message: str, now: datetime) -> "Appeal":
        message = require_text("message", message)
        if len(message) > MAX_APPEAL_LENGTH:
            raise ValidationError(f"Appeal message is limited to {MAX_APPEAL_LENGTH} characters")
        return Appeal(
            appeal_id=f"apl_{uuid.uuid4().hex[:16]}",
            user_id=user_id,
            episode_id=episode_id,
            message=message,
            status=AppealStatus.PENDING,
            submitted_at=now,
        )

    @property
    def key(self) -> str:
        return appeal_key(self.user_id, self.episode_id)

    @property
    def is_pending(self) -> bool:
        return self.status == AppealStatus.PENDING

    def resolve(self, approve: bool, admin_id: str, now: datetime,
                note: Optional[str] = None) -> "Appeal":
        if not self.is_pending:
            raise PolicyViolationError("Appeal has already been decided", current=self.status.value)
        return replace(
            self,
            status=AppealStatus.APPROVED if approve else AppealStatus.REJECTED,
            resolved_at=now,
            resolved_by=admin_id,
            resolution_note=note,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "appeal_id": self.appeal_id,
            "user_id": self.user_id,
            "episode_id": self.episode_id,
            "message": self.message,
            "status": self.status.value,
            "submitted_at": to_iso(self.submitted_at),
            "resolved_at": to_iso(self.resolved_at),
            "resolved_by": self.resolved_by,
            "resolution_note": self.resolution_note,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Appeal":
        return Appeal(
            appeal_id=data["appeal_id"],
            user_id=data["user_id"],
            episode_id=data["episode_id"],
            message=data["message"],
            status=AppealStatus(data["status"]),
            submitted_at=parse_iso(data["submitted_at"]),
            resolved_at=parse_iso(data.get("resolved_at")),
            resolved_by=data.get("resolved_by"),
            resolution_note=data.get("resolution_note"),
        )
