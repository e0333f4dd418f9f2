"""Source-to-destination account links."""

from __future__ import annotations

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from skybridge.models.base import Base


class AccountLink(Base):
    """Link routing a source account's posts to a destination account.

    Links are soft-deleted (``active=False``) and reactivated on re-link.
    Account ids are network ids, not row ids.
    """

    __tablename__ = "account_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    source_account_id: Mapped[str] = mapped_column(String, nullable=False)
    destination_account_id: Mapped[str] = mapped_column(String, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "source_account_id",
            "destination_account_id",
            name="uq_account_links_user_pair",
        ),
        Index("idx_account_links_user_active", "user_id", "active"),
    )
