"""Domain-specific exceptions.

All exceptions in the loyalty system inherit from LoyaltyError,
making it easy to catch all system errors while still being able
to handle specific error types.

Business failures (unknown user, expired link, duplicate email...) are
not exceptions: auth flows report them through OperationResult. The
classes here are for conditions that terminate a request.
"""

from __future__ import annotations


class LoyaltyError(Exception):
    """Base exception for all loyalty errors."""

    pass


class ConfigurationError(LoyaltyError):
    """Required configuration is missing or unusable.

    Raised at construction time, e.g. when the JWT signing secret is
    empty or a social provider has no client credentials.
    """

    pass


class StoreUnavailableError(LoyaltyError):
    """The backing store cannot be reached.

    This is a FATAL error for the request - no auth decision can be made
    without reading the persisted rows.
    """

    pass


class TokenError(LoyaltyError):
    """Raised when JWT validation fails."""

    pass


class TokenExpiredError(TokenError):
    """The JWT is past its expiry."""

    pass


class InvalidTokenError(TokenError):
    """The JWT signature, issuer, or audience did not verify."""

    pass


class MalformedTokenError(InvalidTokenError):
    """The JWT is structurally invalid or carries ill-typed claims."""

    pass


class SocialProviderError(LoyaltyError):
    """A social identity provider rejected the exchange.

    Attributes:
        provider: Name of the provider that failed.
    """

    def __init__(self, message: str, provider: str | None = None) -> None:
        """Initialize SocialProviderError.

        Args:
            message: Error description.
            provider: Provider name, if known.
        """
        super().__init__(message)
        self.provider = provider


class ConflictError(LoyaltyError):
    """A write collided with a unique key held by another row.

    Raised by repositories when a concurrent writer claimed the same email,
    username or external identity between the caller's lookup and insert.

    Attributes:
        constraint: Name of the violated constraint, if known.
    """

    def __init__(self, message: str, constraint: str | None = None) -> None:
        """Initialize ConflictError.

        Args:
            message: Error description.
            constraint: Violated constraint name, if known.
        """
        super().__init__(message)
        self.constraint = constraint
