"""
Standing Engine — Error taxonomy

Every failure a caller can act on is one of these. Services raise them before
mutating anything; the API layer maps `status_code` and `code` to a JSON body.
"""
from typing import Any, Dict, Optional


class StandingError(Exception):
    code = "internal"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(StandingError):
    """Malformed input, e.g. a user reporting themselves."""
    code = "invalid-argument"
    status_code = 400


class NotFoundError(StandingError):
    code = "not-found"
    status_code = 404

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}", {"kind": kind, "id": identifier})


class ConflictError(StandingError):
    """Concurrent write lost a compare-and-set, or a uniqueness constraint fired."""
    code = "conflict"
    status_code = 409


class AppealAlreadyPending(ConflictError):
    code = "appeal-already-pending"

    def __init__(self, user_id: str, episode_id: str):
        self.user_id = user_id
        self.episode_id = episode_id
        super().__init__(
            "An appeal for this suspension is already awaiting review",
            {"user_id": user_id, "episode_id": episode_id},
        )


class PolicyViolationError(StandingError):
    """A transition the state machines do not permit."""
    code = "failed-precondition"
    status_code = 422

    def __init__(self, message: str, current: Optional[str] = None, target: Optional[str] = None):
        self.current = current
        self.target = target
        details = {}
        if current is not None:
            details["current"] = current
        if target is not None:
            details["target"] = target
        super().__init__(message, details)
