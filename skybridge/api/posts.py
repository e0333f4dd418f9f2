"""Post API endpoints: synced post listing and manual repost."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from skybridge.api.deps import get_sync_engine, require_auth
from skybridge.models.user import User
from skybridge.schemas.post import PostListResponse, PostResponse, RepostRequest
from skybridge.services.sync_service import SyncEngine

router = APIRouter(prefix="/api/posts", tags=["posts"])


@router.get("", response_model=PostListResponse)
async def list_posts_endpoint(
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
    user: Annotated[User, Depends(require_auth)],
) -> PostListResponse:
    """Sync the user's source accounts, then list all synced posts newest first."""
    items = await engine.sync_source_posts(user.id)
    return PostListResponse(posts=[PostResponse.from_item(item) for item in items])


@router.post("/repost", response_model=PostResponse)
async def repost_endpoint(
    body: RepostRequest,
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
    user: Annotated[User, Depends(require_auth)],
) -> PostResponse:
    """Repost one synced post to the destination account it is linked to."""
    post = await engine.repost_one(user.id, body.post_id)
    return PostResponse.from_post(post)
