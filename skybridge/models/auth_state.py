"""Pending OAuth authorization state."""

from __future__ import annotations

from sqlalchemy import Float, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from skybridge.models.base import Base


class PendingAuthState(Base):
    """Single-use OAuth ``state`` with its encrypted payload and expiry (epoch seconds)."""

    __tablename__ = "pending_auth_states"

    state: Mapped[str] = mapped_column(String, primary_key=True)
    data: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (Index("idx_pending_auth_states_expires", "expires_at"),)
