"""Post-related request/response schemas."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from skybridge.models.post import Post
    from skybridge.services.post_service import PostWithAccount


class SourcePostResponse(BaseModel):
    """The post as published on the source network."""

    id: str
    text: str
    created_at: str
    like_count: int
    share_count: int
    source_account_id: str


class DestinationPostResponse(BaseModel):
    """The repost on the destination network."""

    id: str
    text: str
    created_at: str
    like_count: int
    share_count: int
    url: str


class SourceAccountInfo(BaseModel):
    """Display fields of the account a post came from."""

    id: str
    username: str
    display_name: str
    profile_image_url: str


class PostResponse(BaseModel):
    """A synced post, with its repost once it exists."""

    id: int
    user_id: int
    source_post: SourcePostResponse
    destination_post: DestinationPostResponse | None = None
    is_reposted: bool
    created_at: str
    updated_at: str
    account: SourceAccountInfo | None = None

    @classmethod
    def from_post(cls, post: Post, account: SourceAccountInfo | None = None) -> PostResponse:
        source = post.source_post
        destination = post.destination_post
        return cls(
            id=post.id,
            user_id=post.user_id,
            source_post=SourcePostResponse(
                id=source.id,
                text=source.text,
                created_at=source.created_at,
                like_count=source.like_count,
                share_count=source.share_count,
                source_account_id=source.source_account_id,
            ),
            destination_post=(
                DestinationPostResponse(
                    id=destination.id,
                    text=destination.text,
                    created_at=destination.created_at,
                    like_count=destination.like_count,
                    share_count=destination.share_count,
                    url=destination.url,
                )
                if destination is not None
                else None
            ),
            is_reposted=post.is_reposted,
            created_at=post.created_at,
            updated_at=post.updated_at,
            account=account,
        )

    @classmethod
    def from_item(cls, item: PostWithAccount) -> PostResponse:
        account = (
            SourceAccountInfo(
                id=item.account.id,
                username=item.account.username,
                display_name=item.account.display_name,
                profile_image_url=item.account.profile_image_url,
            )
            if item.account is not None
            else None
        )
        return cls.from_post(item.post, account)


class PostListResponse(BaseModel):
    """Synced posts, newest first."""

    posts: list[PostResponse]


class RepostRequest(BaseModel):
    """Request to repost a single post manually."""

    post_id: int = Field(ge=1, description="Id of the synced post to repost")
