"""Account boundary: connected accounts, their credentials and derived link flags."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import select

from skybridge.crosspost.base import SessionCredentials
from skybridge.exceptions import AccountNotFoundError, LinkAlreadyActiveError
from skybridge.models.account import DestinationAccount, SourceAccount
from skybridge.services import link_service
from skybridge.services.crypto_service import decrypt_optional, encrypt_optional
from skybridge.services.datetime_service import now_str
from skybridge.services.link_service import LinkOutcome, LinkResult, LinkRole

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from skybridge.crosspost.base import DestinationSession, SourceTokenGrant, TokenRefresh
    from skybridge.models.link import AccountLink

logger = logging.getLogger(__name__)


@dataclass
class AccountSummary:
    """Display fields of a linked account."""

    id: str
    username: str
    display_name: str
    profile_image_url: str


@dataclass
class LinkWithAccounts:
    """An active link with both account summaries (``None`` if the account is gone)."""

    link: AccountLink
    source_account: AccountSummary | None
    destination_account: AccountSummary | None


# --- Source accounts ---


async def get_source_accounts(session: AsyncSession, user_id: int) -> list[SourceAccount]:
    """List a user's source accounts."""
    stmt = select(SourceAccount).where(SourceAccount.user_id == user_id).order_by(SourceAccount.id)
    return list((await session.execute(stmt)).scalars().all())


async def get_source_account(
    session: AsyncSession, user_id: int, account_id: str
) -> SourceAccount | None:
    """Return a user's source account by network id."""
    stmt = select(SourceAccount).where(
        SourceAccount.user_id == user_id, SourceAccount.account_id == account_id
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def get_syncable_source_accounts(session: AsyncSession, user_id: int) -> list[SourceAccount]:
    """Source accounts eligible for sync: connected and holding an access token."""
    stmt = (
        select(SourceAccount)
        .where(
            SourceAccount.user_id == user_id,
            SourceAccount.connected.is_(True),
            SourceAccount.access_token.is_not(None),
            SourceAccount.access_token != "",
        )
        .order_by(SourceAccount.id)
    )
    return list((await session.execute(stmt)).scalars().all())


async def upsert_source_account(
    session: AsyncSession,
    user_id: int,
    grant: SourceTokenGrant,
    secret_key: str,
) -> SourceAccount:
    """Store a source account after a successful OAuth connect or reconnect."""
    now = now_str()
    account = await get_source_account(session, user_id, grant.account_id)
    if account is None:
        account = SourceAccount(
            user_id=user_id,
            account_id=grant.account_id,
            is_connected=False,
            created_at=now,
        )
        session.add(account)
        logger.info("Connecting source account %s for user %s", grant.username, user_id)
    account.username = grant.username
    account.display_name = grant.display_name
    account.profile_image_url = grant.profile_image_url
    account.access_token = encrypt_optional(grant.access_token, secret_key)
    account.refresh_token = encrypt_optional(grant.refresh_token, secret_key)
    account.token_expires_at = grant.expires_at
    account.connected = True
    account.updated_at = now
    await session.commit()
    return account


def decrypt_source_tokens(account: SourceAccount, secret_key: str) -> tuple[str, str]:
    """Return ``(access_token, refresh_token)``; empty strings for missing tokens."""
    access = decrypt_optional(account.access_token, secret_key) or ""
    refresh = decrypt_optional(account.refresh_token, secret_key) or ""
    return access, refresh


async def store_source_tokens(
    session: AsyncSession,
    account: SourceAccount,
    tokens: TokenRefresh,
    secret_key: str,
) -> None:
    """Persist refreshed source tokens."""
    account.access_token = encrypt_optional(tokens.access_token, secret_key)
    account.refresh_token = encrypt_optional(tokens.refresh_token, secret_key)
    account.token_expires_at = tokens.expires_at
    account.updated_at = now_str()
    await session.commit()


# --- Destination accounts ---


async def get_destination_accounts(
    session: AsyncSession, user_id: int
) -> list[DestinationAccount]:
    """List a user's destination accounts."""
    stmt = (
        select(DestinationAccount)
        .where(DestinationAccount.user_id == user_id)
        .order_by(DestinationAccount.id)
    )
    return list((await session.execute(stmt)).scalars().all())


async def get_destination_account(
    session: AsyncSession, user_id: int, account_id: str
) -> DestinationAccount | None:
    """Return a user's destination account by network id (DID)."""
    stmt = select(DestinationAccount).where(
        DestinationAccount.user_id == user_id, DestinationAccount.account_id == account_id
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def upsert_destination_account(
    session: AsyncSession,
    user_id: int,
    login: DestinationSession,
    secret_key: str,
) -> DestinationAccount:
    """Store a destination account after successful credential authentication."""
    now = now_str()
    account = await get_destination_account(session, user_id, login.account_id)
    if account is None:
        account = DestinationAccount(
            user_id=user_id,
            account_id=login.account_id,
            created_at=now,
        )
        session.add(account)
        logger.info("Connecting destination account %s for user %s", login.username, user_id)
    account.username = login.username
    account.display_name = login.display_name
    account.profile_image_url = login.profile_image_url
    account.access_session_token = encrypt_optional(login.session_access_token, secret_key)
    account.refresh_session_token = encrypt_optional(login.session_refresh_token, secret_key)
    account.is_connected = True
    account.reconnect_required = False
    account.updated_at = now
    await session.commit()
    return account


def destination_credentials(
    account: DestinationAccount, secret_key: str
) -> SessionCredentials | None:
    """Decrypt stored session tokens, or ``None`` if the account cannot post."""
    if not account.is_connected or account.reconnect_required:
        return None
    access = decrypt_optional(account.access_session_token, secret_key)
    if not access:
        return None
    refresh = decrypt_optional(account.refresh_session_token, secret_key) or ""
    return SessionCredentials(
        account_id=account.account_id,
        access_token=access,
        refresh_token=refresh,
    )


async def store_destination_session(
    session: AsyncSession,
    account: DestinationAccount,
    credentials: SessionCredentials,
    secret_key: str,
) -> None:
    """Persist session tokens refreshed by the destination client."""
    account.access_session_token = encrypt_optional(credentials.access_token, secret_key)
    account.refresh_session_token = encrypt_optional(credentials.refresh_token, secret_key)
    account.updated_at = now_str()
    await session.commit()


async def mark_destination_reconnect_required(
    session: AsyncSession, account: DestinationAccount
) -> None:
    """Flag a destination account whose session can no longer be refreshed.

    Links are kept; the account is skipped until the user re-authenticates.
    """
    account.reconnect_required = True
    account.updated_at = now_str()
    await session.commit()
    logger.warning(
        "Destination account %s of user %s requires reconnection",
        account.username,
        account.user_id,
    )


# --- Links and derived connection flags ---


async def recompute_connection_flags(
    session: AsyncSession,
    user_id: int,
    source_account_id: str,
    destination_account_id: str,
    excluding_link_id: int | None = None,
) -> None:
    """Derive both accounts' ``is_connected`` flags from the active links referencing them.

    An account is connected exactly when at least one active link references
    it in its role. A source account's OAuth ``connected`` flag is left alone,
    so unlinked accounts keep syncing. Invoked after every link and unlink;
    does not commit.
    """
    source_linked = await link_service.has_other_active_link(
        session, user_id, source_account_id, excluding_link_id, LinkRole.SOURCE
    )
    destination_linked = await link_service.has_other_active_link(
        session, user_id, destination_account_id, excluding_link_id, LinkRole.DESTINATION
    )

    source = await get_source_account(session, user_id, source_account_id)
    if source is not None and source.is_connected != source_linked:
        source.is_connected = source_linked
        source.updated_at = now_str()
    destination = await get_destination_account(session, user_id, destination_account_id)
    if destination is not None and destination.is_connected != destination_linked:
        destination.is_connected = destination_linked
        destination.updated_at = now_str()
    await session.flush()


async def link_accounts(
    session: AsyncSession,
    user_id: int,
    source_account_id: str,
    destination_account_id: str,
) -> LinkResult:
    """Link a user's source account to one of their destination accounts.

    Raises AccountNotFoundError if either account does not belong to the user
    and LinkAlreadyActiveError if the pair is already actively linked.
    """
    if await get_source_account(session, user_id, source_account_id) is None:
        msg = "Source account not found for this user"
        raise AccountNotFoundError(msg)
    if await get_destination_account(session, user_id, destination_account_id) is None:
        msg = "Destination account not found for this user"
        raise AccountNotFoundError(msg)

    result = await link_service.link(session, user_id, source_account_id, destination_account_id)
    if result.outcome is LinkOutcome.ALREADY_ACTIVE:
        await session.rollback()
        msg = "These accounts are already linked"
        raise LinkAlreadyActiveError(msg)

    await recompute_connection_flags(session, user_id, source_account_id, destination_account_id)
    await session.commit()
    logger.info(
        "Link %s -> %s for user %s %s",
        source_account_id,
        destination_account_id,
        user_id,
        result.outcome.value,
    )
    return result


async def unlink_accounts(session: AsyncSession, user_id: int, link_id: int) -> AccountLink:
    """Deactivate a link and recompute both accounts' connection flags."""
    found = await link_service.unlink(session, user_id, link_id)
    await recompute_connection_flags(
        session,
        user_id,
        found.source_account_id,
        found.destination_account_id,
        excluding_link_id=found.id,
    )
    await session.commit()
    logger.info("Unlinked link %s for user %s", link_id, user_id)
    return found


async def list_links_with_accounts(session: AsyncSession, user_id: int) -> list[LinkWithAccounts]:
    """List active links with both accounts' display fields."""
    links = await link_service.active_links_for(session, user_id)
    sources = {a.account_id: a for a in await get_source_accounts(session, user_id)}
    destinations = {a.account_id: a for a in await get_destination_accounts(session, user_id)}

    def _summary(account: SourceAccount | DestinationAccount | None) -> AccountSummary | None:
        if account is None:
            return None
        return AccountSummary(
            id=account.account_id,
            username=account.username,
            display_name=account.display_name,
            profile_image_url=account.profile_image_url,
        )

    return [
        LinkWithAccounts(
            link=item,
            source_account=_summary(sources.get(item.source_account_id)),
            destination_account=_summary(destinations.get(item.destination_account_id)),
        )
        for item in links
    ]
