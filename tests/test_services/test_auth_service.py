"""Unit tests for bearer token verification."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from jose import jwt

from skybridge.services.auth_service import (
    ALGORITHM,
    create_access_token,
    decode_access_token,
    resolve_user,
)
from skybridge.services.datetime_service import now_utc
from tests.conftest import TEST_SECRET_KEY, create_user

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


class TestAccessTokens:
    def test_roundtrip(self) -> None:
        token = create_access_token({"sub": "42"}, TEST_SECRET_KEY)
        payload = decode_access_token(token, TEST_SECRET_KEY)
        assert payload is not None
        assert payload["sub"] == "42"
        assert payload["type"] == "access"

    def test_wrong_key_rejected(self) -> None:
        token = create_access_token({"sub": "42"}, TEST_SECRET_KEY)
        assert decode_access_token(token, "another-secret-key-of-sufficient-size") is None

    def test_expired_token_rejected(self) -> None:
        token = jwt.encode(
            {"sub": "42", "type": "access", "exp": now_utc() - timedelta(minutes=1)},
            TEST_SECRET_KEY,
            algorithm=ALGORITHM,
        )
        assert decode_access_token(token, TEST_SECRET_KEY) is None

    def test_refresh_type_rejected(self) -> None:
        token = jwt.encode(
            {"sub": "42", "type": "refresh", "exp": now_utc() + timedelta(minutes=5)},
            TEST_SECRET_KEY,
            algorithm=ALGORITHM,
        )
        assert decode_access_token(token, TEST_SECRET_KEY) is None

    def test_garbage_rejected(self) -> None:
        assert decode_access_token("not.a.jwt", TEST_SECRET_KEY) is None


class TestResolveUser:
    async def test_resolves_active_user(self, db_session: AsyncSession) -> None:
        user = await create_user(db_session)
        token = create_access_token({"sub": str(user.id)}, TEST_SECRET_KEY)

        resolved = await resolve_user(db_session, token, TEST_SECRET_KEY)

        assert resolved is not None
        assert resolved.id == user.id

    async def test_inactive_user_rejected(self, db_session: AsyncSession) -> None:
        user = await create_user(db_session)
        user.is_active = False
        await db_session.commit()
        token = create_access_token({"sub": str(user.id)}, TEST_SECRET_KEY)

        assert await resolve_user(db_session, token, TEST_SECRET_KEY) is None

    async def test_unknown_user_rejected(self, db_session: AsyncSession) -> None:
        token = create_access_token({"sub": "999"}, TEST_SECRET_KEY)
        assert await resolve_user(db_session, token, TEST_SECRET_KEY) is None

    async def test_non_numeric_subject_rejected(self, db_session: AsyncSession) -> None:
        token = create_access_token({"sub": "alice"}, TEST_SECRET_KEY)
        assert await resolve_user(db_session, token, TEST_SECRET_KEY) is None
