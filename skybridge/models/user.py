"""User model.

Users are owned by the external auth service; SkyBridge only references them
by id and hangs account, post and link rows off them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from skybridge.models.base import Base

if TYPE_CHECKING:
    from skybridge.models.account import DestinationAccount, SourceAccount


class User(Base):
    """Application user."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    source_accounts: Mapped[list[SourceAccount]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    destination_accounts: Mapped[list[DestinationAccount]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
