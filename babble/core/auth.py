"""
Principal resolution for chat requests.

- JWT session tokens (``sub`` = user id) from ``Authorization: Bearer`` or
  the ``babble_session`` cookie
- No token: anonymous principal
- Invalid or expired token, or a user that no longer exists: 401
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from fastapi import Depends, HTTPException, Query, Request, WebSocket
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from babble.core.config import get_settings
from babble.core.database import get_session
from babble.core.records import ANONYMOUS, Principal
from babble.core.sql_store import SqlMembership
from babble.core.store import Membership

log = structlog.get_logger()
settings = get_settings()

SESSION_COOKIE = "babble_session"

api_key_header = APIKeyHeader(name="Authorization", auto_error=False)


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(user_id: int, *, expires_delta: timedelta | None = None) -> str:
    """Create a signed session token for a user."""
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {"sub": str(user_id), "iat": now, "exp": exp}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


async def principal_from_token(token: str, membership: Membership) -> Principal:
    try:
        payload = decode_jwt(token)
        user_id = int(payload["sub"])
    except (jwt.PyJWTError, KeyError, ValueError):
        log.info("auth.rejected", reason="invalid_token")
        raise HTTPException(status_code=401, detail="Invalid or expired session")

    principal = await membership.find_user(user_id)
    if principal is None:
        log.info("auth.rejected", reason="unknown_user", user_id=user_id)
        raise HTTPException(status_code=401, detail="User not found")
    return principal


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip() or None
    return None


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

async def get_membership(session: AsyncSession = Depends(get_session)) -> Membership:
    return SqlMembership(session)


async def get_principal(
    request: Request,
    authorization: Optional[str] = Depends(api_key_header),
    membership: Membership = Depends(get_membership),
) -> Principal:
    """Resolve the caller; visitors without a token are anonymous."""
    token = _bearer_token(authorization) or request.cookies.get(SESSION_COOKIE)
    if not token:
        return ANONYMOUS
    principal = await principal_from_token(token, membership)
    request.state.principal = principal
    return principal


async def require_user(principal: Principal = Depends(get_principal)) -> Principal:
    """Any signed-in user."""
    if not principal.authenticated:
        raise HTTPException(status_code=403, detail="Authentication required")
    return principal


async def get_principal_ws(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    membership: Membership = Depends(get_membership),
) -> Principal:
    """WebSocket variant: token from the query string, else the session cookie."""
    token = token or websocket.cookies.get(SESSION_COOKIE)
    if not token:
        return ANONYMOUS
    return await principal_from_token(token, membership)
