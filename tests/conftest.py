"""Shared test fixtures for SkyBridge."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from skybridge.config import Settings
from skybridge.crosspost.base import (
    AuthError,
    AuthorizationRequest,
    CreatedPost,
    DestinationSession,
    SessionCredentials,
    SessionExpiredError,
    SourcePostPayload,
    SourceTokenGrant,
    TokenRefresh,
)
from skybridge.main import create_app, init_services
from skybridge.models.base import Base
from skybridge.models.user import User
from skybridge.services import account_service
from skybridge.services.auth_service import create_access_token
from skybridge.services.datetime_service import now_str

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from skybridge.models.account import DestinationAccount, SourceAccount

TEST_SECRET_KEY = "test-secret-key-with-at-least-32-characters"

SOURCE_ID = "x-1001"
DESTINATION_ID = "did:plc:destination1"


class FakeSourceClient:
    """In-memory stand-in for the X client."""

    def __init__(self) -> None:
        self.posts: dict[str, list[SourcePostPayload]] = {}
        self.errors: dict[str, Exception] = {}
        self.rejected_tokens: set[str] = set()
        self.refresh_error: Exception | None = None
        self.fetch_calls: list[tuple[str, str, int]] = []
        self.refresh_calls: list[str] = []
        self.exchange_calls: list[tuple[str, str, str]] = []
        self.grant = SourceTokenGrant(
            account_id=SOURCE_ID,
            username="alice_x",
            display_name="Alice",
            profile_image_url="https://pbs.twimg.com/alice.jpg",
            access_token="x-access",
            refresh_token="x-refresh",
        )

    def generate_auth_url(self) -> AuthorizationRequest:
        return AuthorizationRequest(
            authorization_url="https://x.com/i/oauth2/authorize?state=state-123",
            state="state-123",
            code_verifier="verifier-123",
        )

    async def exchange_code_for_token(
        self, code: str, state: str, code_verifier: str
    ) -> SourceTokenGrant:
        self.exchange_calls.append((code, state, code_verifier))
        if code == "bad-code":
            raise AuthError("invalid_grant")
        return self.grant

    async def fetch_recent_posts(
        self, account_id: str, access_token: str, max_count: int
    ) -> list[SourcePostPayload]:
        self.fetch_calls.append((account_id, access_token, max_count))
        await asyncio.sleep(0)
        if access_token in self.rejected_tokens:
            raise AuthError("token rejected")
        error = self.errors.get(account_id)
        if error is not None:
            raise error
        return list(self.posts.get(account_id, []))[:max_count]

    async def refresh_token(self, refresh_token: str) -> TokenRefresh:
        self.refresh_calls.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        return TokenRefresh(access_token="x-access-2", refresh_token="x-refresh-2")


class FakeDestinationClient:
    """In-memory stand-in for the Bluesky client."""

    def __init__(self) -> None:
        self.created: list[tuple[str, SessionCredentials]] = []
        self.failures: dict[str, Exception] = {}
        self.session_expired = False
        self.refresh_on_post: SessionCredentials | None = None
        self.delay = 0.0
        self._updated: dict[str, SessionCredentials] = {}

    async def authenticate(self, identifier: str, secret: str) -> DestinationSession:
        if secret == "wrong-password":
            raise AuthError("Bluesky login rejected: AuthenticationRequired")
        return DestinationSession(
            account_id=DESTINATION_ID,
            username=identifier,
            display_name="Alice on Bluesky",
            profile_image_url="https://cdn.bsky.app/alice.jpg",
            session_access_token="bsky-access",
            session_refresh_token="bsky-refresh",
        )

    async def create_post(self, text: str, credentials: SessionCredentials) -> CreatedPost:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.refresh_on_post is not None:
            self._updated[credentials.account_id] = self.refresh_on_post
            credentials = self.refresh_on_post
            self.refresh_on_post = None
        if self.session_expired:
            raise SessionExpiredError("Bluesky session refresh rejected: ExpiredToken")
        error = self.failures.get(text)
        if error is not None:
            raise error
        self.created.append((text, credentials))
        rkey = f"rkey{len(self.created)}"
        return CreatedPost(
            post_id=f"at://{credentials.account_id}/app.bsky.feed.post/{rkey}",
            text=text,
            created_at="2024-05-02T09:00:00.000Z",
            url=f"https://bsky.app/profile/{credentials.account_id}/post/{rkey}",
        )

    def get_updated_credentials(self, account_id: str) -> SessionCredentials | None:
        return self._updated.pop(account_id, None)


def make_payload(
    post_id: str,
    text: str | None = None,
    *,
    created_at: str = "2024-05-01T10:00:00.000Z",
    like_count: int = 0,
    share_count: int = 0,
) -> SourcePostPayload:
    return SourcePostPayload(
        id=post_id,
        text=text if text is not None else f"post {post_id}",
        created_at=created_at,
        like_count=like_count,
        share_count=share_count,
    )


def auth_headers(user_id: int) -> dict[str, str]:
    """Bearer header for a token the external auth service would issue."""
    token = create_access_token({"sub": str(user_id)}, TEST_SECRET_KEY)
    return {"Authorization": f"Bearer {token}"}


async def create_user(session: AsyncSession, email: str = "alice@example.com") -> User:
    now = now_str()
    user = User(email=email, is_active=True, created_at=now, updated_at=now)
    session.add(user)
    await session.commit()
    return user


async def add_source_account(
    session: AsyncSession,
    user_id: int,
    account_id: str = SOURCE_ID,
    *,
    username: str = "alice_x",
    access_token: str = "x-access",
    refresh_token: str = "x-refresh",
) -> SourceAccount:
    grant = SourceTokenGrant(
        account_id=account_id,
        username=username,
        display_name=username.title(),
        profile_image_url=f"https://pbs.twimg.com/{username}.jpg",
        access_token=access_token,
        refresh_token=refresh_token,
    )
    return await account_service.upsert_source_account(session, user_id, grant, TEST_SECRET_KEY)


async def add_destination_account(
    session: AsyncSession,
    user_id: int,
    account_id: str = DESTINATION_ID,
    *,
    username: str = "alice.bsky.social",
    access_token: str = "bsky-access",
    refresh_token: str = "bsky-refresh",
) -> DestinationAccount:
    login = DestinationSession(
        account_id=account_id,
        username=username,
        display_name=username,
        profile_image_url="",
        session_access_token=access_token,
        session_refresh_token=refresh_token,
    )
    return await account_service.upsert_destination_account(
        session, user_id, login, TEST_SECRET_KEY
    )


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    *,
    source_client: FakeSourceClient | None = None,
    destination_client: FakeDestinationClient | None = None,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (DB schema and
    services) because ASGITransport does not trigger it. The scheduler is
    not started.
    """
    from skybridge.database import create_engine as create_db_engine

    app = create_app(settings)
    settings.validate_runtime_security()

    engine, session_factory = create_db_engine(settings)
    app.state.engine = engine
    app.state.settings = settings

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    init_services(
        app,
        settings,
        session_factory,
        source_client=source_client or FakeSourceClient(),
        destination_client=destination_client or FakeDestinationClient(),
    )

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await engine.dispose()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database."""
    db_path = tmp_path / "test.db"
    return Settings(
        secret_key=TEST_SECRET_KEY,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        x_client_id="test-client-id",
        scheduler_enabled=False,
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the schema in place."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def source_client() -> FakeSourceClient:
    return FakeSourceClient()


@pytest.fixture
def destination_client() -> FakeDestinationClient:
    return FakeDestinationClient()
