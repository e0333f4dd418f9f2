"""Client protocols, payload data classes and upstream error types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


class ClientError(Exception):
    """Base class for failures talking to a source or destination network."""


class AuthError(ClientError):
    """Credentials were rejected; the account must be reconnected."""


class SessionExpiredError(AuthError):
    """Stored destination session tokens are stale and could not be refreshed."""


class RateLimitedError(ClientError):
    """The network throttled the request; retry on a later cycle."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class NetworkError(ClientError):
    """Transport failure or unexpected response from the network."""


@dataclass
class AuthorizationRequest:
    """Start of an OAuth 2.0 PKCE flow."""

    authorization_url: str
    state: str
    code_verifier: str


@dataclass
class SourceTokenGrant:
    """Tokens and profile returned by a completed source OAuth flow."""

    account_id: str
    username: str
    display_name: str
    profile_image_url: str
    access_token: str
    refresh_token: str
    expires_at: str | None = None


@dataclass
class TokenRefresh:
    """Result of refreshing a source access token."""

    access_token: str
    refresh_token: str
    expires_at: str | None = None


@dataclass
class SourcePostPayload:
    """A post as fetched from the source network."""

    id: str
    text: str
    created_at: str
    like_count: int = 0
    share_count: int = 0


@dataclass
class DestinationSession:
    """Profile and session tokens from a destination credential login."""

    account_id: str
    username: str
    display_name: str
    profile_image_url: str
    session_access_token: str
    session_refresh_token: str


@dataclass
class SessionCredentials:
    """Stored session tokens used to post on the destination network."""

    account_id: str
    access_token: str
    refresh_token: str


@dataclass
class CreatedPost:
    """A post created on the destination network."""

    post_id: str
    text: str
    created_at: str
    like_count: int = 0
    share_count: int = 0
    url: str = ""


@runtime_checkable
class SourceClient(Protocol):
    """Protocol for the network posts are read from."""

    def generate_auth_url(self) -> AuthorizationRequest:
        """Build an authorization URL with fresh state and PKCE verifier."""
        ...

    async def exchange_code_for_token(
        self, code: str, state: str, code_verifier: str
    ) -> SourceTokenGrant:
        """Exchange an authorization code for tokens and the account profile."""
        ...

    async def fetch_recent_posts(
        self, account_id: str, access_token: str, max_count: int
    ) -> list[SourcePostPayload]:
        """Fetch the most recent posts of an account, newest first."""
        ...

    async def refresh_token(self, refresh_token: str) -> TokenRefresh:
        """Exchange a refresh token for a new access token."""
        ...


@runtime_checkable
class DestinationClient(Protocol):
    """Protocol for the network posts are reposted to."""

    async def authenticate(self, identifier: str, secret: str) -> DestinationSession:
        """Log in with an identifier and (app) password."""
        ...

    async def create_post(self, text: str, credentials: SessionCredentials) -> CreatedPost:
        """Create a post, refreshing the session once if it has expired."""
        ...

    def get_updated_credentials(self, account_id: str) -> SessionCredentials | None:
        """Return and forget session tokens refreshed during ``create_post``."""
        ...
