"""X (Twitter) source client: OAuth 2.0 PKCE and recent-post fetching via API v2."""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Any
from urllib.parse import urlencode

import httpx

from skybridge.crosspost.base import (
    AuthError,
    AuthorizationRequest,
    NetworkError,
    RateLimitedError,
    SourcePostPayload,
    SourceTokenGrant,
    TokenRefresh,
)
from skybridge.services.datetime_service import format_datetime, normalize_timestamp, now_utc

logger = logging.getLogger(__name__)

X_AUTHORIZE_URL = "https://x.com/i/oauth2/authorize"

# X rejects max_results outside this range for the user timeline endpoint.
X_MIN_RESULTS = 5
X_MAX_RESULTS = 100

_PKCE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"


def generate_pkce_pair() -> tuple[str, str]:
    """Return a ``(code_verifier, code_challenge)`` pair using the S256 method."""
    code_verifier = "".join(secrets.choice(_PKCE_ALPHABET) for _ in range(64))
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    code_challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return code_verifier, code_challenge


def _raise_for_status(resp: httpx.Response, action: str) -> None:
    """Map an unsuccessful X response onto the client error taxonomy."""
    if resp.status_code in (200, 201):
        return
    if resp.status_code in (401, 403):
        raise AuthError(f"X {action} rejected credentials: {resp.status_code}")
    if resp.status_code == 400 and "invalid_grant" in resp.text:
        raise AuthError(f"X {action} rejected grant: {resp.status_code}")
    if resp.status_code == 429:
        retry_after: float | None = None
        reset = resp.headers.get("x-rate-limit-reset")
        if reset and reset.isdigit():
            retry_after = max(float(reset) - now_utc().timestamp(), 0.0)
        raise RateLimitedError(f"X {action} rate limited", retry_after=retry_after)
    raise NetworkError(f"X {action} failed: {resp.status_code} {resp.text[:200]}")


def _json(resp: httpx.Response, action: str) -> dict[str, Any]:
    """Decode a successful X response body; a malformed body is an upstream failure."""
    try:
        body = resp.json()
    except ValueError as exc:
        raise NetworkError(f"X {action} returned a non-JSON body") from exc
    if not isinstance(body, dict):
        raise NetworkError(f"X {action} returned an unexpected body")
    return body

def _expires_at(token_data: dict[str, Any]) -> str | None:
    expires_in = token_data.get("expires_in")
    if not isinstance(expires_in, int | float):
        return None
    return format_datetime(now_utc() + timedelta(seconds=expires_in))


def _parse_tweet(tweet: dict[str, Any]) -> SourcePostPayload:
    metrics = tweet.get("public_metrics") or {}
    return SourcePostPayload(
        id=str(tweet["id"]),
        text=tweet.get("text", ""),
        created_at=normalize_timestamp(tweet["created_at"]),
        like_count=int(metrics.get("like_count", 0)),
        share_count=int(metrics.get("retweet_count", 0)),
    )


class XClient:
    """Source client for X using the OAuth 2.0 user context."""

    platform: str = "x"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        scopes: str = "tweet.read users.read offline.access",
        api_base_url: str = "https://api.x.com",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._scopes = scopes
        self._api_base_url = api_base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._api_base_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    def _token_auth(self) -> tuple[str, str] | None:
        # Confidential clients authenticate with HTTP Basic; public clients
        # send only client_id in the form body.
        if self._client_secret:
            return (self._client_id, self._client_secret)
        return None

    def generate_auth_url(self) -> AuthorizationRequest:
        """Build the X authorization URL for a new PKCE flow."""
        code_verifier, code_challenge = generate_pkce_pair()
        state = secrets.token_urlsafe(32)
        params = urlencode(
            {
                "response_type": "code",
                "client_id": self._client_id,
                "redirect_uri": self._redirect_uri,
                "scope": self._scopes,
                "state": state,
                "code_challenge": code_challenge,
                "code_challenge_method": "S256",
            }
        )
        return AuthorizationRequest(
            authorization_url=f"{X_AUTHORIZE_URL}?{params}",
            state=state,
            code_verifier=code_verifier,
        )

    async def exchange_code_for_token(
        self, code: str, state: str, code_verifier: str
    ) -> SourceTokenGrant:
        """Exchange an authorization code for tokens, then fetch the account profile.

        ``state`` has already been matched against the pending flow by the
        caller; it is accepted here so the contract mirrors the callback.
        """
        logger.debug("Exchanging X authorization code for state %s", state[:8])
        try:
            async with self._http() as client:
                token_resp = await client.post(
                    "/2/oauth2/token",
                    data={
                        "grant_type": "authorization_code",
                        "code": code,
                        "redirect_uri": self._redirect_uri,
                        "client_id": self._client_id,
                        "code_verifier": code_verifier,
                    },
                    auth=self._token_auth(),
                )
                _raise_for_status(token_resp, "token exchange")
                token_data = _json(token_resp, "token exchange")
                access_token = token_data.get("access_token")
                if not access_token:
                    raise AuthError("X token response missing access_token")

                user_resp = await client.get(
                    "/2/users/me",
                    params={"user.fields": "name,profile_image_url"},
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                _raise_for_status(user_resp, "profile fetch")
                user_data = _json(user_resp, "profile fetch").get("data") or {}
        except httpx.HTTPError as exc:
            raise NetworkError(f"X token exchange HTTP error: {exc}") from exc

        account_id = user_data.get("id")
        username = user_data.get("username")
        if not account_id or not username:
            raise NetworkError("X profile response missing id or username")

        return SourceTokenGrant(
            account_id=str(account_id),
            username=username,
            display_name=user_data.get("name", username),
            profile_image_url=user_data.get("profile_image_url", ""),
            access_token=access_token,
            refresh_token=token_data.get("refresh_token", ""),
            expires_at=_expires_at(token_data),
        )

    async def fetch_recent_posts(
        self, account_id: str, access_token: str, max_count: int
    ) -> list[SourcePostPayload]:
        """Fetch the account's most recent original posts, newest first."""
        max_results = min(max(max_count, X_MIN_RESULTS), X_MAX_RESULTS)
        try:
            async with self._http() as client:
                resp = await client.get(
                    f"/2/users/{account_id}/tweets",
                    params={
                        "max_results": max_results,
                        "tweet.fields": "created_at,public_metrics",
                        "exclude": "retweets,replies",
                    },
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as exc:
            raise NetworkError(f"X timeline HTTP error: {exc}") from exc

        _raise_for_status(resp, "timeline fetch")
        tweets = _json(resp, "timeline fetch").get("data") or []
        posts: list[SourcePostPayload] = []
        for tweet in tweets[:max_count]:
            try:
                posts.append(_parse_tweet(tweet))
            except (KeyError, ValueError):
                logger.warning("Skipping malformed tweet payload from account %s", account_id)
        return posts

    async def refresh_token(self, refresh_token: str) -> TokenRefresh:
        """Exchange a refresh token for a new access token (X rotates refresh tokens)."""
        if not refresh_token:
            raise AuthError("No refresh token available")
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self._client_id,
        }
        try:
            async with self._http() as client:
                resp = await client.post("/2/oauth2/token", data=data, auth=self._token_auth())
        except httpx.HTTPError as exc:
            raise NetworkError(f"X token refresh HTTP error: {exc}") from exc

        _raise_for_status(resp, "token refresh")
        token_data = _json(resp, "token refresh")
        access_token = token_data.get("access_token")
        if not access_token:
            raise AuthError("X refresh response missing access_token")
        return TokenRefresh(
            access_token=access_token,
            refresh_token=token_data.get("refresh_token") or refresh_token,
            expires_at=_expires_at(token_data),
        )
