"""Account and link schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SourceAccountResponse(BaseModel):
    """A connected source (X) account."""

    id: str
    username: str
    display_name: str
    profile_image_url: str
    connected: bool
    is_connected: bool
    created_at: str


class DestinationAccountResponse(BaseModel):
    """A connected destination (Bluesky) account."""

    id: str
    username: str
    display_name: str
    profile_image_url: str
    is_connected: bool
    reconnect_required: bool
    created_at: str


class AccountsResponse(BaseModel):
    """Both account lists of the current user."""

    source_accounts: list[SourceAccountResponse]
    destination_accounts: list[DestinationAccountResponse]


class LinkRequest(BaseModel):
    """Request to link a source account to a destination account."""

    source_account_id: str = Field(min_length=1, description="Source network account id")
    destination_account_id: str = Field(
        min_length=1, description="Destination network account id (DID)"
    )


class AccountInfo(BaseModel):
    """Display fields of a linked account."""

    id: str
    username: str
    display_name: str
    profile_image_url: str


class LinkResponse(BaseModel):
    """An account link."""

    id: int
    source_account_id: str
    destination_account_id: str
    active: bool
    created_at: str
    updated_at: str
    source_account: AccountInfo | None = None
    destination_account: AccountInfo | None = None


class LinkCreateResponse(BaseModel):
    """Result of a link request."""

    link: LinkResponse
    outcome: str


class LinkListResponse(BaseModel):
    """Active links of the current user."""

    links: list[LinkResponse]


class XAuthorizeResponse(BaseModel):
    """Response with the authorization URL for the X OAuth flow."""

    authorization_url: str


class BlueskyConnectRequest(BaseModel):
    """Credentials for connecting a Bluesky account."""

    identifier: str = Field(
        min_length=1, max_length=253, description="Handle or email, e.g. 'alice.bsky.social'"
    )
    password: str = Field(min_length=1, max_length=256, description="Bluesky app password")
