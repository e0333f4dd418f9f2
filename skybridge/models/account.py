"""Connected source (X) and destination (Bluesky) accounts."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from skybridge.models.base import Base

if TYPE_CHECKING:
    from skybridge.models.user import User


class SourceAccount(Base):
    """X account connected through OAuth 2.0.

    ``account_id`` is the network's user id. Tokens are Fernet-encrypted.
    ``connected`` is set by OAuth and gates sync; ``is_connected`` is derived
    from the active links that name the account as their source.
    """

    __tablename__ = "source_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[str] = mapped_column(String, nullable=False)
    username: Mapped[str] = mapped_column(String, nullable=False)
    display_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    profile_image_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    connected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_connected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    user: Mapped[User] = relationship(back_populates="source_accounts")

    __table_args__ = (
        UniqueConstraint("user_id", "account_id", name="uq_source_accounts_user_account"),
        Index("idx_source_accounts_user", "user_id"),
    )


class DestinationAccount(Base):
    """Bluesky account authenticated with an identifier and app password.

    ``account_id`` is the DID; ``username`` is the handle. Session tokens are
    Fernet-encrypted. ``reconnect_required`` is set when the stored session can
    no longer be refreshed.
    """

    __tablename__ = "destination_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[str] = mapped_column(String, nullable=False)
    username: Mapped[str] = mapped_column(String, nullable=False)
    display_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    profile_image_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_connected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    access_session_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_session_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    reconnect_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    user: Mapped[User] = relationship(back_populates="destination_accounts")

    __table_args__ = (
        UniqueConstraint("user_id", "account_id", name="uq_destination_accounts_user_account"),
        Index("idx_destination_accounts_user", "user_id"),
    )
