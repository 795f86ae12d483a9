"""Auth repository protocol for database operations."""

from collections.abc import Iterable
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime
from typing import Protocol, runtime_checkable
from uuid import UUID

from loyalty.core.auth.types import (
    AuthorizationState,
    AuthToken,
    RoleType,
    SocialIdentity,
    SocialProvider,
    TokenPurpose,
    User,
    UserStatus,
)


@runtime_checkable
class AuthRepository(Protocol):
    """Protocol for auth database operations.

    Implementations provide actual storage (PostgreSQL, in-memory).
    Every call made inside `transaction()` commits or rolls back together.
    """

    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Run the enclosed calls as one atomic unit. Nested use joins the outer unit."""
        ...

    # User operations
    async def get_user_by_id(self, user_id: UUID, for_update: bool = False) -> User | None:
        """Get user by ID, optionally locking the row until the transaction ends."""
        ...

    async def get_user_by_email(self, email: str) -> User | None:
        """Get user by email address (case-insensitive)."""
        ...

    async def get_user_by_username(self, username: str) -> User | None:
        """Get user by username (case-insensitive)."""
        ...

    async def get_user_by_external_identity(
        self, provider: SocialProvider, external_id: str
    ) -> User | None:
        """Get the user linked to a social provider account."""
        ...

    async def create_user(
        self,
        username: str,
        email: str,
        password_hash: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        date_of_birth: date | None = None,
        status: UserStatus = UserStatus.PENDING,
        is_email_confirmed: bool = False,
        roles: Iterable[RoleType] = (),
    ) -> User:
        """Create a new user with its role grants.

        Raises:
            ConflictError: If the email or username is already taken.
        """
        ...

    async def update_user(
        self,
        user_id: UUID,
        password_hash: str | None = None,
        status: UserStatus | None = None,
        is_email_confirmed: bool | None = None,
        last_login_at: datetime | None = None,
        clear_password: bool = False,
    ) -> User | None:
        """Update user fields. Fields left as None are unchanged.

        `clear_password` removes the password hash, leaving the account
        reachable only through social sign-in or a password reset.
        """
        ...

    async def add_user_roles(self, user_id: UUID, roles: Iterable[RoleType]) -> frozenset[RoleType]:
        """Grant roles, ignoring ones already held. Returns the resulting set."""
        ...

    async def remove_user_roles(
        self, user_id: UUID, roles: Iterable[RoleType]
    ) -> frozenset[RoleType]:
        """Revoke roles, ignoring ones not held. Returns the resulting set."""
        ...

    # Opaque token operations
    async def create_token(
        self,
        purpose: TokenPurpose,
        user_id: UUID,
        token_hash: str,
        expires_at: datetime,
    ) -> AuthToken:
        """Store a new unused token."""
        ...

    async def get_token(
        self, purpose: TokenPurpose, token_hash: str, for_update: bool = False
    ) -> AuthToken | None:
        """Look up a token by the digest of its plaintext."""
        ...

    async def consume_token(self, purpose: TokenPurpose, token_id: UUID) -> bool:
        """Mark a token used only if it is currently unused.

        Returns:
            True if this call flipped the flag, False if it was already used.
        """
        ...

    async def invalidate_user_tokens(self, purpose: TokenPurpose, user_id: UUID) -> int:
        """Mark every unused token of the user as used. Returns how many changed."""
        ...

    # Social login operations
    async def create_social_identity(
        self,
        user_id: UUID,
        provider: SocialProvider,
        external_id: str,
        email: str | None = None,
    ) -> SocialIdentity:
        """Link a provider account to a local user.

        Raises:
            ConflictError: If the provider account is already linked.
        """
        ...

    async def create_authorization_state(
        self,
        state: str,
        nonce: str,
        provider: SocialProvider,
        expires_at: datetime,
    ) -> AuthorizationState:
        """Record a state/nonce pair issued at redirect time."""
        ...

    async def consume_authorization_state(self, state: str) -> AuthorizationState | None:
        """Mark a state used only if it is currently unused.

        Returns:
            The state as it was before consumption, or None if it is unknown
            or was already consumed.
        """
        ...
