"""
Standing Engine - Authentication

Login belongs to the identity provider. The engine only checks the HS256
tokens it issues: `sub` is the user id, `role` one of ROLES.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import HTTPException, Request
from pydantic import BaseModel
import jwt
import structlog

from standing.config import settings

logger = structlog.get_logger()

JWT_ALGORITHM = "HS256"
TOKEN_ISSUER = "standing-engine"

# "service" is held by the booking, review and chat backends
ROLES = frozenset({"client", "supplier", "admin", "service"})


class TokenData(BaseModel):
    user_id: str
    role: str


def create_access_token(user_id: str, role: str, expires_in: Optional[timedelta] = None) -> str:
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "role": role,
        "iss": TOKEN_ISSUER,
        "iat": issued,
        "exp": issued + (expires_in or timedelta(days=settings.JWT_EXPIRY_DAYS)),
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[TokenData]:
    """Claims of a valid token, or None for anything expired, forged or malformed."""
    try:
        claims = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[JWT_ALGORITHM],
            issuer=TOKEN_ISSUER,
            options={"require": ["sub", "exp", "iss"]},
        )
    except jwt.ExpiredSignatureError:
        logger.info("token_expired")
        return None
    except jwt.InvalidTokenError:
        return None
    if claims.get("role") not in ROLES:
        return None
    return TokenData(user_id=claims["sub"], role=claims["role"])


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return request.cookies.get("access_token")


async def get_current_user(request: Request) -> Optional[dict]:
    """The caller's claims, from the Authorization header or the access_token cookie."""
    token = _bearer_token(request)
    if not token:
        return None
    data = decode_access_token(token)
    return data.model_dump() if data else None


async def require_auth(request: Request) -> dict:
    user = await get_current_user(request)
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user
