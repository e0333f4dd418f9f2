"""Bearer token verification.

Access tokens are issued by the external auth service and signed with the
shared ``secret_key``. SkyBridge only verifies them and resolves the user.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from jose import JWTError, jwt

from skybridge.models.user import User
from skybridge.services.datetime_service import now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


def create_access_token(data: dict[str, Any], secret_key: str, expires_minutes: int = 15) -> str:
    """Create a JWT access token (used by tooling and tests)."""
    to_encode = data.copy()
    expire = now_utc() + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire, "type": "access"})
    return str(jwt.encode(to_encode, secret_key, algorithm=ALGORITHM))


def decode_access_token(token: str, secret_key: str) -> dict[str, Any] | None:
    """Decode and validate a JWT access token."""
    try:
        payload: dict[str, Any] = jwt.decode(token, secret_key, algorithms=[ALGORITHM])
        if payload.get("type") != "access":
            return None
        return payload
    except JWTError:
        logger.debug("Failed to decode access token", exc_info=True)
        return None


async def resolve_user(session: AsyncSession, token: str, secret_key: str) -> User | None:
    """Return the active user a valid access token names, else ``None``."""
    payload = decode_access_token(token, secret_key)
    if payload is None:
        return None
    user_id = payload.get("sub")
    if not isinstance(user_id, (str, int)) or (
        isinstance(user_id, str) and not user_id.isdigit()
    ):
        return None
    user = await session.get(User, int(user_id))
    if user is None or not user.is_active:
        return None
    return user
