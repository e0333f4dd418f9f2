"""Shared API dependencies: DB session, auth, clients and engine."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from skybridge.config import Settings
from skybridge.crosspost.base import DestinationClient, SourceClient
from skybridge.crosspost.oauth_state import PendingAuthStateStore
from skybridge.models.user import User
from skybridge.services.auth_service import resolve_user
from skybridge.services.sync_service import SyncEngine

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


def get_sync_engine(request: Request) -> SyncEngine:
    engine: SyncEngine = request.app.state.sync_engine
    return engine


def get_source_client(request: Request) -> SourceClient:
    client: SourceClient = request.app.state.source_client
    return client


def get_destination_client(request: Request) -> DestinationClient:
    client: DestinationClient = request.app.state.destination_client
    return client


def get_oauth_state_store(request: Request) -> PendingAuthStateStore:
    store: PendingAuthStateStore = request.app.state.oauth_state_store
    return store


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> User | None:
    """Get current authenticated user, or None if not authenticated."""
    if credentials is None:
        return None
    return await resolve_user(session, credentials.credentials, settings.secret_key)


async def require_auth(
    user: Annotated[User | None, Depends(get_current_user)],
) -> User:
    """Require authentication. Raises 401 if not authenticated."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
