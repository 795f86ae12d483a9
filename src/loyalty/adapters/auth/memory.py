"""In-memory implementation of AuthRepository.

Useful for:
- Unit testing the auth flows without a database
- Local development without PostgreSQL

Transactions are serialized with a single lock and roll back by restoring
a snapshot of every table, which gives the same all-or-nothing behavior
the flows rely on from PostgreSQL.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from typing import Any
from uuid import UUID, uuid4

from loyalty.core.auth.types import (
    TOKEN_MODELS,
    AuthorizationState,
    AuthToken,
    RoleType,
    SocialIdentity,
    SocialProvider,
    TokenPurpose,
    User,
    UserStatus,
)
from loyalty.core.exceptions import ConflictError


class InMemoryAuthRepository:
    """Dictionary-backed auth repository.

    Attributes:
        users: Users by id.
        tokens: Tokens by id, all purposes.
        identities: Social identities by (provider, external_id).
        states: Authorization states by state value.
    """

    def __init__(self) -> None:
        """Initialize empty tables."""
        self.users: dict[UUID, User] = {}
        self.tokens: dict[UUID, AuthToken] = {}
        self.identities: dict[tuple[SocialProvider, str], SocialIdentity] = {}
        self.states: dict[str, AuthorizationState] = {}
        self._lock = asyncio.Lock()
        self._in_transaction: ContextVar[bool] = ContextVar(
            f"auth_tx_{id(self)}", default=False
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Serialize the enclosed calls and undo them all on error."""
        if self._in_transaction.get():
            yield
            return

        async with self._lock:
            snapshot = self._snapshot()
            marker = self._in_transaction.set(True)
            try:
                yield
            except BaseException:
                self._restore(snapshot)
                raise
            finally:
                self._in_transaction.reset(marker)

    def _snapshot(self) -> tuple[dict[Any, Any], ...]:
        # Models are frozen, so shallow copies of the tables are enough
        return (dict(self.users), dict(self.tokens), dict(self.identities), dict(self.states))

    def _restore(self, snapshot: tuple[dict[Any, Any], ...]) -> None:
        self.users, self.tokens, self.identities, self.states = (dict(t) for t in snapshot)

    # User operations
    async def get_user_by_id(self, user_id: UUID, for_update: bool = False) -> User | None:
        """Get user by ID."""
        return self.users.get(user_id)

    async def get_user_by_email(self, email: str) -> User | None:
        """Get user by email address."""
        wanted = email.strip().lower()
        return next((u for u in self.users.values() if u.email.lower() == wanted), None)

    async def get_user_by_username(self, username: str) -> User | None:
        """Get user by username."""
        wanted = username.strip().lower()
        return next((u for u in self.users.values() if u.username.lower() == wanted), None)

    async def get_user_by_external_identity(
        self, provider: SocialProvider, external_id: str
    ) -> User | None:
        """Get the user linked to a provider account."""
        identity = self.identities.get((provider, external_id))
        return self.users.get(identity.user_id) if identity else None

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
        """Create a new user."""
        if await self.get_user_by_email(email) or await self.get_user_by_username(username):
            raise ConflictError("Duplicate email or username")
        user = User(
            id=uuid4(),
            username=username,
            email=email.lower(),
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            date_of_birth=date_of_birth,
            status=status,
            is_email_confirmed=is_email_confirmed,
            roles=frozenset(roles),
            created_at=datetime.now(UTC),
        )
        self.users[user.id] = user
        return user

    async def update_user(
        self,
        user_id: UUID,
        password_hash: str | None = None,
        status: UserStatus | None = None,
        is_email_confirmed: bool | None = None,
        last_login_at: datetime | None = None,
        clear_password: bool = False,
    ) -> User | None:
        """Update user fields."""
        user = self.users.get(user_id)
        if user is None:
            return None
        changes: dict[str, Any] = {
            name: value
            for name, value in (
                ("password_hash", password_hash),
                ("status", status),
                ("is_email_confirmed", is_email_confirmed),
                ("last_login_at", last_login_at),
            )
            if value is not None
        }
        if clear_password:
            changes["password_hash"] = None
        if not changes:
            return user
        changes["updated_at"] = datetime.now(UTC)
        self.users[user_id] = user.model_copy(update=changes)
        return self.users[user_id]

    async def add_user_roles(self, user_id: UUID, roles: Iterable[RoleType]) -> frozenset[RoleType]:
        """Grant roles."""
        return self._set_roles(user_id, self.users[user_id].roles | frozenset(roles))

    async def remove_user_roles(
        self, user_id: UUID, roles: Iterable[RoleType]
    ) -> frozenset[RoleType]:
        """Revoke roles."""
        return self._set_roles(user_id, self.users[user_id].roles - frozenset(roles))

    def _set_roles(self, user_id: UUID, roles: frozenset[RoleType]) -> frozenset[RoleType]:
        user = self.users[user_id]
        self.users[user_id] = user.model_copy(
            update={"roles": roles, "updated_at": datetime.now(UTC)}
        )
        return roles

    # Opaque token operations
    async def create_token(
        self,
        purpose: TokenPurpose,
        user_id: UUID,
        token_hash: str,
        expires_at: datetime,
    ) -> AuthToken:
        """Store a new unused token."""
        token = TOKEN_MODELS[purpose](
            id=uuid4(),
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            created_at=datetime.now(UTC),
        )
        self.tokens[token.id] = token
        return token

    async def get_token(
        self, purpose: TokenPurpose, token_hash: str, for_update: bool = False
    ) -> AuthToken | None:
        """Look up a token by digest."""
        return next(
            (
                t
                for t in self.tokens.values()
                if t.purpose == purpose and t.token_hash == token_hash
            ),
            None,
        )

    async def consume_token(self, purpose: TokenPurpose, token_id: UUID) -> bool:
        """Flip the used flag if it is still clear."""
        token = self.tokens.get(token_id)
        if token is None or token.purpose != purpose or token.is_used:
            return False
        self.tokens[token_id] = token.model_copy(
            update={"is_used": True, "used_at": datetime.now(UTC)}
        )
        return True

    async def invalidate_user_tokens(self, purpose: TokenPurpose, user_id: UUID) -> int:
        """Mark the user's unused tokens as used."""
        pending = [
            t
            for t in self.tokens.values()
            if t.purpose == purpose and t.user_id == user_id and not t.is_used
        ]
        for token in pending:
            await self.consume_token(purpose, token.id)
        return len(pending)

    # Social login operations
    async def create_social_identity(
        self,
        user_id: UUID,
        provider: SocialProvider,
        external_id: str,
        email: str | None = None,
    ) -> SocialIdentity:
        """Link a provider account."""
        if (provider, external_id) in self.identities:
            raise ConflictError("External identity already linked")
        identity = SocialIdentity(
            id=uuid4(),
            user_id=user_id,
            provider=provider,
            external_id=external_id,
            email=email,
            created_at=datetime.now(UTC),
        )
        self.identities[(provider, external_id)] = identity
        return identity

    async def create_authorization_state(
        self,
        state: str,
        nonce: str,
        provider: SocialProvider,
        expires_at: datetime,
    ) -> AuthorizationState:
        """Record an issued state."""
        record = AuthorizationState(
            state=state,
            nonce=nonce,
            provider=provider,
            expires_at=expires_at,
            created_at=datetime.now(UTC),
        )
        self.states[state] = record
        return record

    async def consume_authorization_state(self, state: str) -> AuthorizationState | None:
        """Consume a state exactly once."""
        record = self.states.get(state)
        if record is None or record.is_used:
            return None
        self.states[state] = record.model_copy(update={"is_used": True})
        return record
