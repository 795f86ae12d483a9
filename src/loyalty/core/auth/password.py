"""Password hashing and policy checks using bcrypt."""

import re

import bcrypt

MIN_PASSWORD_LENGTH = 8
# bcrypt only looks at the first 72 bytes of its input.
MAX_PASSWORD_BYTES = 72


def password_policy_errors(password: str) -> list[str]:
    """List the policy rules a candidate password breaks.

    Args:
        password: Plain text candidate.

    Returns:
        Human-readable violations, empty when the password is acceptable.
    """
    errors = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        errors.append(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")
    if not re.search(r"[A-Za-z]", password):
        errors.append("Password must contain a letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain a digit")
    return errors


def hash_password(password: str) -> str:
    """Hash a password using bcrypt.

    Args:
        password: Plain text password

    Returns:
        Bcrypt hash string

    Raises:
        ValueError: If the password exceeds what bcrypt can hash.
    """
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password exceeds {MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(encoded, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    """Verify a password against a hash.

    Accounts without a password (social-only) never verify.
    """
    if not plain_password or not hashed_password:
        return False
    encoded = plain_password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, hashed_password.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False
