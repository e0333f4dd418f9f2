"""Durable, time-limited store for pending OAuth flows.

Entries live in the ``pending_auth_states`` table so that a callback can be
served by a different process or after a restart. Payloads carry the PKCE
verifier and are encrypted at rest.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete

from skybridge.models.auth_state import PendingAuthState
from skybridge.services.crypto_service import decrypt_json, encrypt_json

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class PendingAuthStateStore:
    """Store pending OAuth authorization state with automatic expiry."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        secret_key: str,
        ttl_seconds: int = 600,
    ) -> None:
        self._session_factory = session_factory
        self._secret_key = secret_key
        self._ttl = ttl_seconds

    async def save(self, state: str, data: dict[str, Any], ttl_seconds: int | None = None) -> None:
        """Store data for a pending OAuth flow, replacing any entry with the same state."""
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        async with self._session_factory() as session:
            await self._delete_expired(session)
            entry = await session.get(PendingAuthState, state)
            payload = encrypt_json(data, self._secret_key)
            expires_at = time.time() + ttl
            if entry is None:
                session.add(PendingAuthState(state=state, data=payload, expires_at=expires_at))
            else:
                entry.data = payload
                entry.expires_at = expires_at
            await session.commit()

    async def take(self, state: str) -> dict[str, Any] | None:
        """Retrieve and remove data for a completed OAuth flow.

        Returns ``None`` for unknown or expired states, and for a state that a
        concurrent caller consumed first.
        """
        async with self._session_factory() as session:
            entry = await session.get(PendingAuthState, state)
            if entry is None:
                return None
            payload, expires_at = entry.data, entry.expires_at
            result = await session.execute(
                delete(PendingAuthState).where(PendingAuthState.state == state)
            )
            await session.commit()
            if result.rowcount != 1:  # type: ignore[attr-defined]
                return None
        if time.time() > expires_at:
            return None
        try:
            return decrypt_json(payload, self._secret_key)
        except ValueError:
            logger.warning("Discarding undecryptable OAuth state entry")
            return None

    async def cleanup(self) -> int:
        """Remove expired entries. Returns the number removed."""
        async with self._session_factory() as session:
            removed = await self._delete_expired(session)
            await session.commit()
        return removed

    @staticmethod
    async def _delete_expired(session: AsyncSession) -> int:
        result = await session.execute(
            delete(PendingAuthState).where(PendingAuthState.expires_at < time.time())
        )
        return int(result.rowcount or 0)  # type: ignore[attr-defined]
