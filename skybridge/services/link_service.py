"""Account link store: soft-deletable source-to-destination account links."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from skybridge.exceptions import LinkNotFoundError
from skybridge.models.link import AccountLink
from skybridge.services.datetime_service import now_str

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class LinkOutcome(enum.StrEnum):
    CREATED = "created"
    REACTIVATED = "reactivated"
    ALREADY_ACTIVE = "already_active"


class LinkRole(enum.StrEnum):
    SOURCE = "source"
    DESTINATION = "destination"


@dataclass
class LinkResult:
    """Outcome of a link request together with the affected link."""

    link: AccountLink
    outcome: LinkOutcome


async def _find_pair(
    session: AsyncSession,
    user_id: int,
    source_account_id: str,
    destination_account_id: str,
) -> AccountLink | None:
    stmt = select(AccountLink).where(
        AccountLink.user_id == user_id,
        AccountLink.source_account_id == source_account_id,
        AccountLink.destination_account_id == destination_account_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


def _activate(link: AccountLink) -> LinkOutcome:
    if link.active:
        return LinkOutcome.ALREADY_ACTIVE
    link.active = True
    link.updated_at = now_str()
    return LinkOutcome.REACTIVATED


async def link(
    session: AsyncSession,
    user_id: int,
    source_account_id: str,
    destination_account_id: str,
) -> LinkResult:
    """Create, reactivate, or report an already-active link for an account pair.

    Account ownership is checked by the caller. Changes are flushed but not
    committed so the caller can recompute derived flags in the same
    transaction. Must be the first write of that transaction: a concurrent
    insert of the same pair rolls the session back before re-reading.
    """
    existing = await _find_pair(session, user_id, source_account_id, destination_account_id)
    if existing is not None:
        outcome = _activate(existing)
        await session.flush()
        return LinkResult(link=existing, outcome=outcome)

    now = now_str()
    new_link = AccountLink(
        user_id=user_id,
        source_account_id=source_account_id,
        destination_account_id=destination_account_id,
        active=True,
        created_at=now,
        updated_at=now,
    )
    session.add(new_link)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        logger.debug(
            "Link %s -> %s for user %s created concurrently",
            source_account_id,
            destination_account_id,
            user_id,
        )
        existing = await _find_pair(session, user_id, source_account_id, destination_account_id)
        if existing is None:
            raise
        outcome = _activate(existing)
        await session.flush()
        return LinkResult(link=existing, outcome=outcome)
    return LinkResult(link=new_link, outcome=LinkOutcome.CREATED)


async def get_link(session: AsyncSession, user_id: int, link_id: int) -> AccountLink:
    """Return a user's link (active or not). Raises LinkNotFoundError."""
    stmt = select(AccountLink).where(AccountLink.id == link_id, AccountLink.user_id == user_id)
    found = (await session.execute(stmt)).scalar_one_or_none()
    if found is None:
        msg = f"Account link {link_id} not found"
        raise LinkNotFoundError(msg)
    return found


async def unlink(session: AsyncSession, user_id: int, link_id: int) -> AccountLink:
    """Soft-delete a link. Raises LinkNotFoundError if the user has no such link.

    Flushes without committing; the caller recomputes connection flags.
    """
    found = await get_link(session, user_id, link_id)
    found.active = False
    found.updated_at = now_str()
    await session.flush()
    return found


async def active_links_for(session: AsyncSession, user_id: int) -> list[AccountLink]:
    """List a user's active links, oldest first."""
    stmt = (
        select(AccountLink)
        .where(AccountLink.user_id == user_id, AccountLink.active.is_(True))
        .order_by(AccountLink.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def active_links_for_source(
    session: AsyncSession,
    user_id: int,
    source_account_id: str,
) -> list[AccountLink]:
    """List the active links of a source account, oldest first."""
    stmt = (
        select(AccountLink)
        .where(
            AccountLink.user_id == user_id,
            AccountLink.source_account_id == source_account_id,
            AccountLink.active.is_(True),
        )
        .order_by(AccountLink.id)
    )
    return list((await session.execute(stmt)).scalars().all())


async def has_other_active_link(
    session: AsyncSession,
    user_id: int,
    account_id: str,
    excluding_link_id: int | None,
    role: LinkRole,
) -> bool:
    """Whether an active link other than the excluded one references the account in ``role``."""
    column = (
        AccountLink.source_account_id
        if role is LinkRole.SOURCE
        else AccountLink.destination_account_id
    )
    stmt = select(AccountLink.id).where(
        AccountLink.user_id == user_id,
        column == account_id,
        AccountLink.active.is_(True),
    )
    if excluding_link_id is not None:
        stmt = stmt.where(AccountLink.id != excluding_link_id)
    result = await session.execute(stmt.limit(1))
    return result.first() is not None
