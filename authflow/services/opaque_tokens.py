"""Opaque bearer secrets for sessions and one-time tokens."""

import hashlib
import secrets

# 48 random bytes, ~64 url-safe characters
TOKEN_BYTES = 48


def generate_token() -> str:
    """Return a fresh token from the OS CSPRNG."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(raw_token: str) -> str:
    """SHA-256 hex digest used as the stored lookup key for a raw token."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def affected_rows(status: str) -> int:
    """Parse the row count out of an asyncpg command status like 'DELETE 3'."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError, IndexError):
        return 0
