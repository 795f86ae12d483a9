"""Secure opaque tokens for password reset and email confirmation."""

import hashlib
import secrets
from datetime import UTC, datetime, timedelta

# Token configuration
SECURE_TOKEN_BYTES = 32  # 256 bits of entropy
REFRESH_TOKEN_BYTES = 64


def generate_secure_token(size: int = SECURE_TOKEN_BYTES) -> str:
    """Generate a cryptographically secure, URL-safe token.

    The `size` random bytes are base64 encoded with the URL-safe alphabet
    ("-" and "_" instead of "+" and "/") and the "=" padding is stripped, so
    the result can go straight into a query string.

    Args:
        size: Number of random bytes.

    Returns:
        URL-safe token string.

    Raises:
        ValueError: If size is not positive.
    """
    if size < 1:
        raise ValueError("Token size must be at least 1 byte")
    return secrets.token_urlsafe(size)


def hash_token(token: str) -> str:
    """Hash a token for secure storage.

    Uses SHA-256 for fast lookup while maintaining security.
    The token itself has enough entropy that rainbow tables are infeasible.

    Args:
        token: The plaintext token to hash.

    Returns:
        Hex-encoded SHA-256 hash of the token.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def get_token_expiry(ttl: timedelta, now: datetime | None = None) -> datetime:
    """Calculate token expiry timestamp.

    Args:
        ttl: Lifetime of the token.
        now: Reference time, defaults to the current UTC time.

    Returns:
        UTC datetime when the token expires.
    """
    return (now or datetime.now(UTC)) + ttl


def is_token_expired(expires_at: datetime, now: datetime | None = None) -> bool:
    """Check if a token has expired.

    Args:
        expires_at: The token's expiry timestamp.
        now: Reference time, defaults to the current UTC time.

    Returns:
        True if the token has expired.
    """
    now = now or datetime.now(UTC)
    # Handle timezone-naive datetimes
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=UTC)
    return now > expires_at
