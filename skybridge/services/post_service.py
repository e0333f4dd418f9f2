"""Post store: idempotent persistence of synced posts and their repost state."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError

from skybridge.exceptions import AlreadyRepostedError, PostNotFoundError
from skybridge.models.account import SourceAccount
from skybridge.models.post import Post
from skybridge.services.datetime_service import normalize_timestamp, now_str

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from skybridge.crosspost.base import CreatedPost, SourcePostPayload

logger = logging.getLogger(__name__)


@dataclass
class SourceAccountSummary:
    """Display fields of a source account, joined into post listings."""

    id: str
    username: str
    display_name: str
    profile_image_url: str


@dataclass
class PostWithAccount:
    """A post enriched with its source account's display fields."""

    post: Post
    account: SourceAccountSummary | None


async def _get_by_source_id(
    session: AsyncSession, user_id: int, source_post_id: str
) -> Post | None:
    stmt = select(Post).where(Post.user_id == user_id, Post.source_post_id == source_post_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


def _refresh_counts(post: Post, payload: SourcePostPayload, now: str) -> None:
    # Text, creation time and account id are immutable once stored.
    post.source_like_count = payload.like_count
    post.source_share_count = payload.share_count
    post.updated_at = now


async def upsert_from_source(
    session: AsyncSession,
    user_id: int,
    source_account_id: str,
    payload: SourcePostPayload,
) -> Post:
    """Insert a newly observed source post, or refresh the counts of a known one.

    Engagement counts are refreshed whether or not the post has been reposted.
    A concurrent insert of the same ``(user_id, source post id)`` surfaces as a
    unique-constraint violation, which is treated as "already exists".
    """
    now = now_str()
    post = await _get_by_source_id(session, user_id, payload.id)
    if post is None:
        post = Post(
            user_id=user_id,
            source_post_id=payload.id,
            source_account_id=source_account_id,
            source_text=payload.text,
            source_created_at=normalize_timestamp(payload.created_at),
            source_like_count=payload.like_count,
            source_share_count=payload.share_count,
            is_reposted=False,
            created_at=now,
            updated_at=now,
        )
        session.add(post)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            logger.debug("Post %s for user %s inserted concurrently", payload.id, user_id)
            post = await _get_by_source_id(session, user_id, payload.id)
            if post is None:
                raise
        else:
            return post

    _refresh_counts(post, payload, now)
    await session.commit()
    return post


async def get_post(session: AsyncSession, user_id: int, post_id: int) -> Post:
    """Return a user's post. Raises PostNotFoundError if missing or foreign."""
    stmt = select(Post).where(Post.id == post_id, Post.user_id == user_id)
    post = (await session.execute(stmt)).scalar_one_or_none()
    if post is None:
        msg = f"Post {post_id} not found"
        raise PostNotFoundError(msg)
    return post


async def find_unsynced(
    session: AsyncSession,
    user_id: int,
    source_account_id: str,
) -> list[Post]:
    """List not-yet-reposted posts of a source account, newest source post first."""
    stmt = (
        select(Post)
        .where(
            Post.user_id == user_id,
            Post.source_account_id == source_account_id,
            Post.is_reposted.is_(False),
        )
        .order_by(Post.source_created_at.desc(), Post.id.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def mark_reposted(
    session: AsyncSession,
    user_id: int,
    post_id: int,
    payload: CreatedPost,
) -> Post:
    """Record the destination post and flip ``is_reposted``.

    The update is conditional on ``is_reposted`` still being false, so of two
    concurrent markers exactly one succeeds and the other gets
    AlreadyRepostedError; the stored destination post is never overwritten.
    """
    now = now_str()
    stmt = (
        update(Post)
        .where(Post.id == post_id, Post.user_id == user_id, Post.is_reposted.is_(False))
        .values(
            destination_post_id=payload.post_id,
            destination_text=payload.text,
            destination_created_at=normalize_timestamp(payload.created_at),
            destination_like_count=payload.like_count,
            destination_share_count=payload.share_count,
            destination_url=payload.url,
            is_reposted=True,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount != 1:  # type: ignore[attr-defined]
        # Ends the write transaction without expiring loaded instances.
        await session.commit()
        existing = await get_post(session, user_id, post_id)
        msg = f"Post {existing.id} has already been reposted"
        raise AlreadyRepostedError(msg)
    await session.commit()

    post = await session.get(Post, post_id, populate_existing=True)
    if post is None:
        msg = f"Post {post_id} not found"
        raise PostNotFoundError(msg)
    return post


async def list_with_accounts(session: AsyncSession, user_id: int) -> list[PostWithAccount]:
    """List a user's posts, newest source post first, with source account display fields."""
    stmt = (
        select(Post, SourceAccount)
        .outerjoin(
            SourceAccount,
            and_(
                SourceAccount.user_id == Post.user_id,
                SourceAccount.account_id == Post.source_account_id,
            ),
        )
        .where(Post.user_id == user_id)
        .order_by(Post.source_created_at.desc(), Post.id.desc())
    )
    result = await session.execute(stmt)
    items: list[PostWithAccount] = []
    for post, account in result.all():
        summary = (
            SourceAccountSummary(
                id=account.account_id,
                username=account.username,
                display_name=account.display_name,
                profile_image_url=account.profile_image_url,
            )
            if account is not None
            else None
        )
        items.append(PostWithAccount(post=post, account=summary))
    return items
