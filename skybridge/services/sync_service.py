"""Sync & repost engine.

Pulls recent posts from each connected source account, stores them
idempotently, and reposts not-yet-reposted posts to the destination account
named by each active link. Failures are isolated per source account and per
post: a failed post stays unsynced and is retried on the next cycle.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from skybridge.crosspost.base import AuthError, ClientError, SessionExpiredError
from skybridge.exceptions import (
    AlreadyRepostedError,
    LinkNotFoundError,
    NotConnectedError,
)
from skybridge.models.account import DestinationAccount, SourceAccount
from skybridge.services import account_service, link_service, post_service

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from skybridge.crosspost.base import (
        DestinationClient,
        SessionCredentials,
        SourceClient,
        SourcePostPayload,
    )
    from skybridge.models.post import Post
    from skybridge.services.post_service import PostWithAccount

logger = logging.getLogger(__name__)


@dataclass
class AccountSyncError:
    """A source account whose posts could not be fetched this cycle."""

    account_id: str
    error: str


@dataclass
class SyncReport:
    """Outcome of pulling source posts for one user."""

    accounts: int = 0
    fetched: int = 0
    errors: list[AccountSyncError] = field(default_factory=list)


@dataclass
class RepostReport:
    """Outcome of one automatic repost pass for one user."""

    sync: SyncReport = field(default_factory=SyncReport)
    reposted: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)
    skipped_links: list[int] = field(default_factory=list)


class SyncEngine:
    """Orchestrates sync-then-repost for a user.

    Overlapping calls for the same user within this process are serialized by
    a per-user lock, so the scheduler and a manual repost request never both
    post the same unsynced post.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        source_client: SourceClient,
        destination_client: DestinationClient,
        *,
        secret_key: str,
        fetch_limit: int = 10,
    ) -> None:
        self._session_factory = session_factory
        self._source = source_client
        self._destination = destination_client
        self._secret_key = secret_key
        self._fetch_limit = fetch_limit
        self._locks: dict[int, asyncio.Lock] = {}
        self._lock_users: Counter[int] = Counter()

    @asynccontextmanager
    async def _user_lock(self, user_id: int) -> AsyncIterator[None]:
        """Hold the user's lock; it is dropped once no caller holds or awaits it."""
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._lock_users[user_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[user_id] -= 1
            if not self._lock_users[user_id]:
                del self._lock_users[user_id]
                del self._locks[user_id]

    # --- Sync ---

    async def sync_source_posts(self, user_id: int) -> list[PostWithAccount]:
        """Pull recent posts for every connected source account and return the refreshed list."""
        async with self._session_factory() as session:
            await self._sync(session, user_id)
            return await post_service.list_with_accounts(session, user_id)

    async def _sync(self, session: AsyncSession, user_id: int) -> SyncReport:
        report = SyncReport()
        accounts = await account_service.get_syncable_source_accounts(session, user_id)
        if not accounts:
            logger.debug("No connected source accounts for user %s", user_id)
            return report

        # A rollback expires loaded rows, so each account is re-read by primary key.
        targets = [(account.id, account.account_id) for account in accounts]
        report.accounts = len(targets)
        for pk, account_id in targets:
            try:
                account = await session.get(SourceAccount, pk)
                if account is None:
                    continue
                payloads = await self._fetch_account_posts(session, account)
                for payload in payloads:
                    await post_service.upsert_from_source(session, user_id, account_id, payload)
                report.fetched += len(payloads)
            except ClientError as exc:
                logger.warning(
                    "Skipping source account %s of user %s this cycle: %s",
                    account_id,
                    user_id,
                    exc,
                )
                report.errors.append(AccountSyncError(account_id, str(exc)))
            except Exception as exc:
                logger.exception(
                    "Sync of source account %s for user %s failed", account_id, user_id
                )
                await session.rollback()
                report.errors.append(AccountSyncError(account_id, str(exc)))

        logger.info(
            "Synced %d posts from %d source accounts for user %s (%d failed)",
            report.fetched,
            report.accounts,
            user_id,
            len(report.errors),
        )
        return report

    async def _fetch_account_posts(
        self, session: AsyncSession, account: SourceAccount
    ) -> list[SourcePostPayload]:
        """Fetch recent posts, refreshing the access token once if it was rejected."""
        access_token, refresh_token = account_service.decrypt_source_tokens(
            account, self._secret_key
        )
        try:
            return await self._source.fetch_recent_posts(
                account.account_id, access_token, self._fetch_limit
            )
        except AuthError:
            if not refresh_token:
                raise
            logger.info("Refreshing access token for source account %s", account.account_id)

        tokens = await self._source.refresh_token(refresh_token)
        await account_service.store_source_tokens(session, account, tokens, self._secret_key)
        return await self._source.fetch_recent_posts(
            account.account_id, tokens.access_token, self._fetch_limit
        )

    # --- Repost ---

    async def process_auto_repost(self, user_id: int) -> RepostReport:
        """Sync a user's source posts, then repost every unsynced post of each active link."""
        async with self._user_lock(user_id), self._session_factory() as session:
            report = RepostReport(sync=await self._sync(session, user_id))

            links = await link_service.active_links_for(session, user_id)
            targets = [
                (item.id, item.source_account_id, item.destination_account_id) for item in links
            ]
            for link_id, source_account_id, destination_account_id in targets:
                await self._repost_link(
                    session,
                    user_id,
                    link_id,
                    source_account_id,
                    destination_account_id,
                    report,
                )

        if report.reposted or report.failed:
            logger.info(
                "Auto-repost for user %s: %d reposted, %d failed",
                user_id,
                len(report.reposted),
                len(report.failed),
            )
        return report

    async def _repost_link(
        self,
        session: AsyncSession,
        user_id: int,
        link_id: int,
        source_account_id: str,
        destination_account_id: str,
        report: RepostReport,
    ) -> None:
        posts = await post_service.find_unsynced(session, user_id, source_account_id)
        if not posts:
            return

        destination = await account_service.get_destination_account(
            session, user_id, destination_account_id
        )
        if destination is None or self._credentials(destination) is None:
            logger.warning(
                "Skipping link %s of user %s: destination account %s is not connected",
                link_id,
                user_id,
                destination_account_id,
            )
            report.skipped_links.append(link_id)
            return

        destination_pk = destination.id
        pending = [(post.id, post.source_text) for post in posts]
        for post_id, text in pending:
            # Re-read: a rollback or a session refresh may have changed the row.
            destination = await session.get(DestinationAccount, destination_pk)
            if destination is None or self._credentials(destination) is None:
                break
            try:
                await self._repost_post(session, user_id, post_id, text, destination)
            except SessionExpiredError as exc:
                await account_service.mark_destination_reconnect_required(session, destination)
                report.failed[post_id] = str(exc)
                break
            except AlreadyRepostedError:
                logger.info("Post %s was reposted concurrently", post_id)
            except ClientError as exc:
                logger.warning("Repost of post %s for user %s failed: %s", post_id, user_id, exc)
                report.failed[post_id] = str(exc)
            except Exception as exc:
                logger.exception("Repost of post %s for user %s failed", post_id, user_id)
                await session.rollback()
                report.failed[post_id] = str(exc)
            else:
                report.reposted.append(post_id)

    def _credentials(self, destination: DestinationAccount) -> SessionCredentials | None:
        try:
            return account_service.destination_credentials(destination, self._secret_key)
        except ValueError:
            logger.exception("Stored session of destination %s is unreadable", destination.id)
            return None

    async def _repost_post(
        self,
        session: AsyncSession,
        user_id: int,
        post_id: int,
        text: str,
        destination: DestinationAccount,
    ) -> Post:
        """Create the destination post and record it; persists refreshed session tokens."""
        credentials = self._credentials(destination)
        if credentials is None:
            msg = "Destination account is not connected; reconnect required"
            raise NotConnectedError(msg)
        account_id = destination.account_id
        try:
            created = await self._destination.create_post(text, credentials)
        finally:
            refreshed = self._destination.get_updated_credentials(account_id)
            if refreshed is not None:
                await account_service.store_destination_session(
                    session, destination, refreshed, self._secret_key
                )
        return await post_service.mark_reposted(session, user_id, post_id, created)

    async def repost_one(self, user_id: int, post_id: int) -> Post:
        """Manually repost one post through an active link of its source account.

        Links are tried oldest first; the first whose destination holds a
        usable session is used. Raises PostNotFoundError, AlreadyRepostedError,
        LinkNotFoundError or NotConnectedError. Upstream client errors other
        than an expired session propagate to the caller.
        """
        async with self._user_lock(user_id), self._session_factory() as session:
            post = await post_service.get_post(session, user_id, post_id)
            if post.is_reposted:
                msg = f"Post {post_id} has already been reposted"
                raise AlreadyRepostedError(msg)

            links = await link_service.active_links_for_source(
                session, user_id, post.source_account_id
            )
            if not links:
                msg = "No active account link for this post's source account"
                raise LinkNotFoundError(msg)

            destination = await self._usable_destination(
                session, user_id, [item.destination_account_id for item in links]
            )
            if destination is None:
                msg = "Destination account is not connected; reconnect required"
                raise NotConnectedError(msg)

            try:
                reposted = await self._repost_post(
                    session, user_id, post.id, post.source_text, destination
                )
            except SessionExpiredError as exc:
                await account_service.mark_destination_reconnect_required(session, destination)
                msg = "Destination session expired; reconnect required"
                raise NotConnectedError(msg) from exc

        logger.info("Manually reposted post %s for user %s", post_id, user_id)
        return reposted

    async def _usable_destination(
        self, session: AsyncSession, user_id: int, destination_account_ids: list[str]
    ) -> DestinationAccount | None:
        for destination_account_id in destination_account_ids:
            destination = await account_service.get_destination_account(
                session, user_id, destination_account_id
            )
            if destination is not None and self._credentials(destination) is not None:
                return destination
            logger.debug(
                "Destination account %s of user %s cannot post", destination_account_id, user_id
            )
        return None
