"""Tests for the pending OAuth state store."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from sqlalchemy import update

from skybridge.crosspost.oauth_state import PendingAuthStateStore
from skybridge.models.auth_state import PendingAuthState
from tests.conftest import TEST_SECRET_KEY

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


async def _expire(session_factory: async_sessionmaker[AsyncSession], state: str) -> None:
    async with session_factory() as session:
        await session.execute(
            update(PendingAuthState)
            .where(PendingAuthState.state == state)
            .values(expires_at=time.time() - 1)
        )
        await session.commit()


class TestPendingAuthStateStore:
    async def test_store_and_take(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        store = PendingAuthStateStore(session_factory, TEST_SECRET_KEY)
        data = {"user_id": 1, "code_verifier": "v123"}
        await store.save("state-abc", data)
        assert await store.take("state-abc") == data

    async def test_take_is_single_use(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        store = PendingAuthStateStore(session_factory, TEST_SECRET_KEY)
        await store.save("state-abc", {"user_id": 1})
        await store.take("state-abc")
        assert await store.take("state-abc") is None

    async def test_unknown_state(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        store = PendingAuthStateStore(session_factory, TEST_SECRET_KEY)
        assert await store.take("nonexistent") is None

    async def test_payload_encrypted_at_rest(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        store = PendingAuthStateStore(session_factory, TEST_SECRET_KEY)
        await store.save("state-abc", {"code_verifier": "very-secret-verifier"})
        async with session_factory() as session:
            entry = await session.get(PendingAuthState, "state-abc")
        assert entry is not None
        assert "very-secret-verifier" not in entry.data

    async def test_save_replaces_existing_state(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        store = PendingAuthStateStore(session_factory, TEST_SECRET_KEY)
        await store.save("state-abc", {"user_id": 1})
        await store.save("state-abc", {"user_id": 2})
        assert await store.take("state-abc") == {"user_id": 2}

    async def test_expired_entries_are_not_returned(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        store = PendingAuthStateStore(session_factory, TEST_SECRET_KEY)
        await store.save("state-abc", {"user_id": 1})
        await _expire(session_factory, "state-abc")
        assert await store.take("state-abc") is None

    async def test_cleanup_removes_expired(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        store = PendingAuthStateStore(session_factory, TEST_SECRET_KEY)
        await store.save("old", {"user_id": 1})
        await store.save("new", {"user_id": 2})
        await _expire(session_factory, "old")

        assert await store.cleanup() == 1
        assert await store.take("old") is None
        assert await store.take("new") == {"user_id": 2}

    async def test_state_survives_new_store_instance(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await PendingAuthStateStore(session_factory, TEST_SECRET_KEY).save("s", {"user_id": 3})
        restarted = PendingAuthStateStore(session_factory, TEST_SECRET_KEY)
        assert await restarted.take("s") == {"user_id": 3}

    async def test_undecryptable_entry_discarded(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await PendingAuthStateStore(session_factory, TEST_SECRET_KEY).save("s", {"user_id": 3})
        rotated = PendingAuthStateStore(session_factory, "a-rotated-secret-key-of-32-chars!!")
        assert await rotated.take("s") is None
        assert await rotated.take("s") is None
