"""Bluesky destination client using AT Protocol credential sessions."""

from __future__ import annotations

import logging
from typing import Any

import grapheme
import httpx

from skybridge.crosspost.base import (
    AuthError,
    CreatedPost,
    DestinationSession,
    NetworkError,
    RateLimitedError,
    SessionCredentials,
    SessionExpiredError,
)
from skybridge.services.datetime_service import format_iso, normalize_timestamp, now_utc

logger = logging.getLogger(__name__)

BSKY_CHAR_LIMIT = 300

_EXPIRED_TOKEN_ERRORS = frozenset({"ExpiredToken", "InvalidToken"})


def build_post_text(text: str) -> str:
    """Fit source text within Bluesky's grapheme limit.

    Over-long text is cut at a word boundary where possible and ends with "...".
    """
    text = text.strip()
    if grapheme.length(text) <= BSKY_CHAR_LIMIT:
        return text
    truncated = grapheme.slice(text, 0, BSKY_CHAR_LIMIT - 3)
    space_pos = truncated.rfind(" ")
    if space_pos > 0:
        truncated = truncated[:space_pos]
    return truncated.rstrip() + "..."


def _error_name(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return ""
    if isinstance(body, dict):
        return str(body.get("error", ""))
    return ""


def _is_expired_session(resp: httpx.Response) -> bool:
    if resp.status_code == 401:
        return True
    return resp.status_code == 400 and _error_name(resp) in _EXPIRED_TOKEN_ERRORS


def _raise_for_status(resp: httpx.Response, action: str) -> None:
    """Map an unsuccessful XRPC response onto the client error taxonomy."""
    if resp.status_code == 200:
        return
    if resp.status_code == 429:
        retry_after: float | None = None
        header = resp.headers.get("retry-after")
        if header and header.isdigit():
            retry_after = float(header)
        raise RateLimitedError(f"Bluesky {action} rate limited", retry_after=retry_after)
    if resp.status_code in (401, 403) or _error_name(resp) == "AuthenticationRequired":
        raise AuthError(f"Bluesky {action} rejected credentials: {resp.status_code}")
    raise NetworkError(f"Bluesky {action} failed: {resp.status_code} {resp.text[:200]}")


def _post_url(handle_or_did: str, uri: str) -> str:
    rkey = uri.rsplit("/", 1)[-1] if uri else ""
    return f"https://bsky.app/profile/{handle_or_did}/post/{rkey}" if rkey else ""


class BlueskyClient:
    """Destination client for Bluesky.

    Session tokens refreshed while posting are kept per account until the
    caller collects them with :meth:`get_updated_credentials`, because
    Bluesky rotates refresh tokens and the old one stops working.
    """

    platform: str = "bluesky"

    def __init__(
        self,
        service_url: str = "https://bsky.social",
        *,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._service_url = service_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._updated_credentials: dict[str, SessionCredentials] = {}

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._service_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def authenticate(self, identifier: str, secret: str) -> DestinationSession:
        """Create a session from a handle/email and app password, then load the profile."""
        if not identifier or not secret:
            raise AuthError("Bluesky identifier and password are required")
        try:
            async with self._http() as client:
                resp = await client.post(
                    "/xrpc/com.atproto.server.createSession",
                    json={"identifier": identifier, "password": secret},
                )
                if resp.status_code in (400, 401) and _error_name(resp) in (
                    "AuthenticationRequired",
                    "AuthFactorTokenRequired",
                    "AccountTakedown",
                ):
                    raise AuthError(f"Bluesky login rejected: {_error_name(resp)}")
                _raise_for_status(resp, "login")
                session_data = resp.json()

                profile: dict[str, Any] = {}
                profile_resp = await client.get(
                    "/xrpc/app.bsky.actor.getProfile",
                    params={"actor": session_data["did"]},
                    headers={"Authorization": f"Bearer {session_data['accessJwt']}"},
                )
                if profile_resp.status_code == 200:
                    profile = profile_resp.json()
                else:
                    logger.warning(
                        "Bluesky profile fetch failed for %s: %s",
                        session_data["did"],
                        profile_resp.status_code,
                    )
        except httpx.HTTPError as exc:
            raise NetworkError(f"Bluesky login HTTP error: {exc}") from exc
        except KeyError as exc:
            raise NetworkError(f"Bluesky session response missing {exc}") from exc

        handle = session_data.get("handle", identifier)
        return DestinationSession(
            account_id=session_data["did"],
            username=handle,
            display_name=profile.get("displayName") or handle,
            profile_image_url=profile.get("avatar", ""),
            session_access_token=session_data["accessJwt"],
            session_refresh_token=session_data["refreshJwt"],
        )

    async def _refresh_session(
        self, client: httpx.AsyncClient, credentials: SessionCredentials
    ) -> SessionCredentials:
        if not credentials.refresh_token:
            raise SessionExpiredError("Bluesky session expired and no refresh token is stored")
        resp = await client.post(
            "/xrpc/com.atproto.server.refreshSession",
            headers={"Authorization": f"Bearer {credentials.refresh_token}"},
        )
        if resp.status_code in (400, 401):
            raise SessionExpiredError(
                f"Bluesky session refresh rejected: {_error_name(resp) or resp.status_code}"
            )
        _raise_for_status(resp, "session refresh")
        data = resp.json()
        refreshed = SessionCredentials(
            account_id=credentials.account_id,
            access_token=data["accessJwt"],
            refresh_token=data["refreshJwt"],
        )
        self._updated_credentials[credentials.account_id] = refreshed
        return refreshed

    async def create_post(self, text: str, credentials: SessionCredentials) -> CreatedPost:
        """Create a text post, refreshing the session once on an expired token."""
        post_text = build_post_text(text)
        created_at = format_iso(now_utc())
        payload = {
            "repo": credentials.account_id,
            "collection": "app.bsky.feed.post",
            "record": {
                "$type": "app.bsky.feed.post",
                "text": post_text,
                "createdAt": created_at,
            },
        }
        try:
            async with self._http() as client:
                resp = await client.post(
                    "/xrpc/com.atproto.repo.createRecord",
                    json=payload,
                    headers={"Authorization": f"Bearer {credentials.access_token}"},
                )
                if _is_expired_session(resp):
                    logger.info(
                        "Bluesky session expired for %s, refreshing", credentials.account_id
                    )
                    credentials = await self._refresh_session(client, credentials)
                    resp = await client.post(
                        "/xrpc/com.atproto.repo.createRecord",
                        json=payload,
                        headers={"Authorization": f"Bearer {credentials.access_token}"},
                    )
                    if _is_expired_session(resp):
                        raise SessionExpiredError("Bluesky rejected the refreshed session")
        except httpx.HTTPError as exc:
            raise NetworkError(f"Bluesky post HTTP error: {exc}") from exc

        _raise_for_status(resp, "post")
        data = resp.json()
        uri = data.get("uri", "")
        if not uri:
            raise NetworkError("Bluesky createRecord response missing uri")
        return CreatedPost(
            post_id=uri,
            text=post_text,
            created_at=normalize_timestamp(created_at),
            url=_post_url(credentials.account_id, uri),
        )

    def get_updated_credentials(self, account_id: str) -> SessionCredentials | None:
        """Return and forget session tokens refreshed for ``account_id``."""
        return self._updated_credentials.pop(account_id, None)
