"""Symmetric encryption for account tokens and pending OAuth state at rest."""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Any

from cryptography.fernet import Fernet, InvalidToken


def _fernet(secret_key: str) -> Fernet:
    """Build a Fernet instance keyed by SHA-256 of the application secret."""
    digest = hashlib.sha256(secret_key.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_value(plaintext: str, secret_key: str) -> str:
    """Encrypt a string and return the ciphertext as a URL-safe string."""
    return _fernet(secret_key).encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str, secret_key: str) -> str:
    """Decrypt a ciphertext string. Raises ValueError on failure."""
    try:
        return _fernet(secret_key).decrypt(ciphertext.encode()).decode()
    except InvalidToken as exc:
        raise ValueError("Failed to decrypt credential data") from exc


def encrypt_optional(plaintext: str | None, secret_key: str) -> str | None:
    """Encrypt a token that may be absent. Empty tokens are stored as NULL."""
    if not plaintext:
        return None
    return encrypt_value(plaintext, secret_key)


def decrypt_optional(ciphertext: str | None, secret_key: str) -> str | None:
    """Inverse of :func:`encrypt_optional`."""
    if not ciphertext:
        return None
    return decrypt_value(ciphertext, secret_key)


def encrypt_json(data: dict[str, Any], secret_key: str) -> str:
    """Serialize a mapping to JSON and encrypt it."""
    return encrypt_value(json.dumps(data, separators=(",", ":")), secret_key)


def decrypt_json(ciphertext: str, secret_key: str) -> dict[str, Any]:
    """Decrypt and parse a mapping produced by :func:`encrypt_json`."""
    data = json.loads(decrypt_value(ciphertext, secret_key))
    if not isinstance(data, dict):
        raise ValueError("Decrypted payload is not a JSON object")
    return data
