"""
Standing Engine — Role gates
FastAPI dependencies layered on the token check in standing.auth.
"""
from typing import Callable

from fastapi import Depends, HTTPException

from standing.auth import get_current_user, require_auth

__all__ = ["get_current_user", "require_auth", "require_role", "require_admin", "require_service"]


def require_role(*roles: str) -> Callable:
    allowed = frozenset(roles)

    async def dependency(user: dict = Depends(require_auth)) -> dict:
        if user.get("role") not in allowed:
            raise HTTPException(status_code=403, detail=f"Requires role: {', '.join(sorted(allowed))}")
        return user

    return dependency


# Moderators act through the admin routes
require_admin = require_role("admin")

# Booking, review and chat backends post behaviour events with a service token
require_service = require_role("admin", "service")
