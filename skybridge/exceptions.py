"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients
  (decryption failures, config validation, etc.). The global handler logs the
  full message at ERROR and returns a generic "Internal server error" (500).
- ``NotFoundError``: a user, post, link or account that does not exist or is
  not owned by the caller (404).
- ``ConflictError``: a state transition that has already happened: duplicate
  link, already-reposted post (409).
- ``NotConnectedError``: the destination account has no usable session and
  must be reconnected before reposting (409).
- ``ValueError``: for *business logic* validation errors that are safe to
  forward to clients. The global ``ValueError`` handler returns ``str(exc)``
  as the 422 detail.

Upstream network failures (``AuthError``, ``RateLimitedError``,
``NetworkError``) are defined next to the clients in ``skybridge.crosspost.base``.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``skybridge/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class NotFoundError(Exception):
    """Raised when a requested record does not exist for the user."""


class PostNotFoundError(NotFoundError):
    """Raised when a post does not exist for the user."""


class LinkNotFoundError(NotFoundError):
    """Raised when an account link does not exist (or is inactive) for the user."""


class AccountNotFoundError(NotFoundError):
    """Raised when a source or destination account does not belong to the user."""


class ConflictError(Exception):
    """Raised when an operation conflicts with the current record state."""


class AlreadyRepostedError(ConflictError):
    """Raised when marking a post reposted that has already been reposted."""


class LinkAlreadyActiveError(ConflictError):
    """Raised when linking an account pair that is already actively linked."""


class NotConnectedError(Exception):
    """Raised when a destination account lacks a connected session."""
