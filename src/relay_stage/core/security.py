"""Credential and token primitives."""
from __future__ import annotations

import hashlib
import hmac
import secrets

SESSION_TOKEN_BYTES = 32


def hash_key(user_key: str) -> str:
    """Return a SHA-256 hash of the provided user key."""
    return hashlib.sha256(user_key.encode("utf-8")).hexdigest()


def verify_key(user_key: str, stored_hash: str) -> bool:
    """Compare a presented login key against its stored digest."""
    return hmac.compare_digest(hash_key(user_key), stored_hash)


def generate_session_token() -> str:
    """Return a fresh opaque session token."""
    return secrets.token_hex(SESSION_TOKEN_BYTES)
