# src/relay_stage/utils/hash.py
"""BLAKE3 digests for secrets that must never be stored in the clear."""

from __future__ import annotations

from blake3 import blake3


def token_fingerprint(token: str) -> str:
    """Return the lowercase hex digest stored in place of a session token."""
    return blake3(token.encode("utf-8")).hexdigest()
