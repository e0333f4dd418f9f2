"""SQLAlchemy ORM models for SkyBridge."""

from skybridge.models.account import DestinationAccount, SourceAccount
from skybridge.models.auth_state import PendingAuthState
from skybridge.models.base import Base
from skybridge.models.link import AccountLink
from skybridge.models.post import Post
from skybridge.models.user import User

__all__ = [
    "AccountLink",
    "Base",
    "DestinationAccount",
    "PendingAuthState",
    "Post",
    "SourceAccount",
    "User",
]
