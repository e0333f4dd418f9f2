"""Account API endpoints: connecting accounts and managing links."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from skybridge.api.deps import (
    get_destination_client,
    get_oauth_state_store,
    get_session,
    get_settings,
    get_source_client,
    require_auth,
)
from skybridge.config import Settings
from skybridge.crosspost.base import DestinationClient, SourceClient
from skybridge.crosspost.oauth_state import PendingAuthStateStore
from skybridge.models.account import DestinationAccount, SourceAccount
from skybridge.models.link import AccountLink
from skybridge.models.user import User
from skybridge.schemas.account import (
    AccountInfo,
    AccountsResponse,
    BlueskyConnectRequest,
    DestinationAccountResponse,
    LinkCreateResponse,
    LinkListResponse,
    LinkRequest,
    LinkResponse,
    SourceAccountResponse,
    XAuthorizeResponse,
)
from skybridge.services import account_service
from skybridge.services.account_service import AccountSummary
from skybridge.services.link_service import LinkOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/accounts", tags=["accounts"])


def _source_response(account: SourceAccount) -> SourceAccountResponse:
    return SourceAccountResponse(
        id=account.account_id,
        username=account.username,
        display_name=account.display_name,
        profile_image_url=account.profile_image_url,
        connected=account.connected,
        is_connected=account.is_connected,
        created_at=account.created_at,
    )


def _destination_response(account: DestinationAccount) -> DestinationAccountResponse:
    return DestinationAccountResponse(
        id=account.account_id,
        username=account.username,
        display_name=account.display_name,
        profile_image_url=account.profile_image_url,
        is_connected=account.is_connected,
        reconnect_required=account.reconnect_required,
        created_at=account.created_at,
    )


def _info(summary: AccountSummary | None) -> AccountInfo | None:
    if summary is None:
        return None
    return AccountInfo(
        id=summary.id,
        username=summary.username,
        display_name=summary.display_name,
        profile_image_url=summary.profile_image_url,
    )


def _link_response(
    link: AccountLink,
    source: AccountSummary | None = None,
    destination: AccountSummary | None = None,
) -> LinkResponse:
    return LinkResponse(
        id=link.id,
        source_account_id=link.source_account_id,
        destination_account_id=link.destination_account_id,
        active=link.active,
        created_at=link.created_at,
        updated_at=link.updated_at,
        source_account=_info(source),
        destination_account=_info(destination),
    )


@router.get("", response_model=AccountsResponse)
async def list_accounts_endpoint(
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> AccountsResponse:
    """List the user's source and destination accounts."""
    sources = await account_service.get_source_accounts(session, user.id)
    destinations = await account_service.get_destination_accounts(session, user.id)
    return AccountsResponse(
        source_accounts=[_source_response(a) for a in sources],
        destination_accounts=[_destination_response(a) for a in destinations],
    )


@router.post("/link", response_model=LinkCreateResponse, status_code=201)
async def link_accounts_endpoint(
    body: LinkRequest,
    response: Response,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> LinkCreateResponse:
    """Link a source account to a destination account (or reactivate the link)."""
    result = await account_service.link_accounts(
        session, user.id, body.source_account_id, body.destination_account_id
    )
    if result.outcome is LinkOutcome.REACTIVATED:
        response.status_code = status.HTTP_200_OK
    return LinkCreateResponse(link=_link_response(result.link), outcome=result.outcome.value)


@router.get("/links", response_model=LinkListResponse)
async def list_links_endpoint(
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> LinkListResponse:
    """List the user's active links with both accounts' display fields."""
    items = await account_service.list_links_with_accounts(session, user.id)
    return LinkListResponse(
        links=[
            _link_response(item.link, item.source_account, item.destination_account)
            for item in items
        ]
    )


@router.delete("/links/{link_id}", status_code=204)
async def unlink_endpoint(
    link_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> None:
    """Deactivate a link."""
    await account_service.unlink_accounts(session, user.id, link_id)


@router.post("/x/authorize", response_model=XAuthorizeResponse)
async def x_authorize(
    source_client: Annotated[SourceClient, Depends(get_source_client)],
    state_store: Annotated[PendingAuthStateStore, Depends(get_oauth_state_store)],
    user: Annotated[User, Depends(require_auth)],
) -> XAuthorizeResponse:
    """Start the X OAuth 2.0 PKCE flow and return the authorization URL."""
    auth_request = source_client.generate_auth_url()
    await state_store.save(
        auth_request.state,
        {"user_id": user.id, "code_verifier": auth_request.code_verifier},
    )
    return XAuthorizeResponse(authorization_url=auth_request.authorization_url)


@router.get("/x/callback", response_model=SourceAccountResponse)
async def x_callback(
    code: Annotated[str, Query(min_length=1)],
    state: Annotated[str, Query(min_length=1)],
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    source_client: Annotated[SourceClient, Depends(get_source_client)],
    state_store: Annotated[PendingAuthStateStore, Depends(get_oauth_state_store)],
) -> SourceAccountResponse:
    """Handle the X OAuth callback: exchange the code and store the source account."""
    pending = await state_store.take(state)
    if pending is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired OAuth state",
        )
    user = await session.get(User, int(pending["user_id"]))
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="OAuth flow belongs to an unknown user",
        )

    grant = await source_client.exchange_code_for_token(code, state, pending["code_verifier"])
    account = await account_service.upsert_source_account(
        session, user.id, grant, settings.secret_key
    )
    return _source_response(account)


@router.post("/bluesky/connect", response_model=DestinationAccountResponse)
async def bluesky_connect(
    body: BlueskyConnectRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    destination_client: Annotated[DestinationClient, Depends(get_destination_client)],
    user: Annotated[User, Depends(require_auth)],
) -> DestinationAccountResponse:
    """Log in to Bluesky with an app password and store the session."""
    login = await destination_client.authenticate(body.identifier, body.password)
    account = await account_service.upsert_destination_account(
        session, user.id, login, settings.secret_key
    )
    return _destination_response(account)
