"""Synced post model."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from skybridge.models.base import Base


@dataclass(frozen=True)
class SourcePost:
    """Read-only view of the source half of a :class:`Post`."""

    id: str
    text: str
    created_at: str
    like_count: int
    share_count: int
    source_account_id: str


@dataclass(frozen=True)
class DestinationPost:
    """Read-only view of the destination half of a reposted :class:`Post`."""

    id: str
    text: str
    created_at: str
    like_count: int
    share_count: int
    url: str


class Post(Base):
    """A source post observed during sync, plus its repost on the destination.

    ``is_reposted`` is true exactly when the ``destination_*`` columns are
    populated. The transition happens once and is never reversed.
    """

    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    source_post_id: Mapped[str] = mapped_column(String, nullable=False)
    source_account_id: Mapped[str] = mapped_column(String, nullable=False)
    source_text: Mapped[str] = mapped_column(Text, nullable=False)
    source_created_at: Mapped[str] = mapped_column(Text, nullable=False)
    source_like_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    source_share_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    destination_post_id: Mapped[str | None] = mapped_column(String, nullable=True)
    destination_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    destination_created_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    destination_like_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    destination_share_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    destination_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_reposted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "source_post_id", name="uq_posts_user_source_post"),
        Index("idx_posts_user_source_created", "user_id", "source_created_at"),
        Index("idx_posts_unsynced", "user_id", "source_account_id", "is_reposted"),
    )

    @property
    def source_post(self) -> SourcePost:
        return SourcePost(
            id=self.source_post_id,
            text=self.source_text,
            created_at=self.source_created_at,
            like_count=self.source_like_count,
            share_count=self.source_share_count,
            source_account_id=self.source_account_id,
        )

    @property
    def destination_post(self) -> DestinationPost | None:
        if not self.is_reposted or self.destination_post_id is None:
            return None
        return DestinationPost(
            id=self.destination_post_id,
            text=self.destination_text or "",
            created_at=self.destination_created_at or "",
            like_count=self.destination_like_count or 0,
            share_count=self.destination_share_count or 0,
            url=self.destination_url or "",
        )
