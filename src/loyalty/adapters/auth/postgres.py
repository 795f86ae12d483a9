"""PostgreSQL implementation of AuthRepository."""

from collections.abc import Iterable
from contextlib import AbstractAsyncContextManager
from datetime import UTC, date, datetime
from typing import Any
from uuid import UUID

import asyncpg

from loyalty.adapters.db.app_db import AppDatabase
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

TOKEN_TABLES = {
    TokenPurpose.PASSWORD_RESET: "password_reset_tokens",
    TokenPurpose.EMAIL_CONFIRMATION: "email_confirmation_tokens",
}

# Role grants are folded into the user row; a correlated subquery keeps
# FOR UPDATE usable on the users table.
USER_SELECT = """
    SELECT u.*,
           COALESCE(
               (SELECT array_agg(r.role ORDER BY r.role)
                FROM user_roles r WHERE r.user_id = u.id),
               '{}'::text[]
           ) AS roles
    FROM users u
"""


class PostgresAuthRepository:
    """PostgreSQL implementation of auth repository."""

    def __init__(self, db: AppDatabase) -> None:
        """Initialize with database connection.

        Args:
            db: Application database instance.
        """
        self._db = db

    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Run the enclosed calls in one database transaction."""
        return self._db.transaction()

    def _row_to_user(self, row: dict[str, Any]) -> User:
        """Convert database row to User model."""
        return User(
            id=row["id"],
            username=row["username"],
            email=row["email"],
            password_hash=row.get("password_hash"),
            first_name=row.get("first_name"),
            last_name=row.get("last_name"),
            date_of_birth=row.get("date_of_birth"),
            status=UserStatus(row.get("status", UserStatus.PENDING.value)),
            is_email_confirmed=row.get("is_email_confirmed", False),
            roles=frozenset(RoleType(role) for role in row.get("roles") or []),
            created_at=row["created_at"],
            updated_at=row.get("updated_at"),
            last_login_at=row.get("last_login_at"),
        )

    def _row_to_token(self, purpose: TokenPurpose, row: dict[str, Any]) -> AuthToken:
        """Convert database row to a token model."""
        return TOKEN_MODELS[purpose](
            id=row["id"],
            user_id=row["user_id"],
            token_hash=row["token_hash"],
            expires_at=row["expires_at"],
            is_used=row["is_used"],
            created_at=row["created_at"],
            used_at=row.get("used_at"),
        )

    def _row_to_state(self, row: dict[str, Any]) -> AuthorizationState:
        """Convert database row to AuthorizationState."""
        return AuthorizationState(
            state=row["state"],
            nonce=row["nonce"],
            provider=SocialProvider(row["provider"]),
            expires_at=row["expires_at"],
            is_used=row["is_used"],
            created_at=row["created_at"],
        )

    # User operations
    async def get_user_by_id(self, user_id: UUID, for_update: bool = False) -> User | None:
        """Get user by ID."""
        query = f"{USER_SELECT} WHERE u.id = $1"
        if for_update:
            query += " FOR UPDATE OF u"
        row = await self._db.fetch_one(query, user_id)
        return self._row_to_user(row) if row else None

    async def get_user_by_email(self, email: str) -> User | None:
        """Get user by email address."""
        row = await self._db.fetch_one(
            f"{USER_SELECT} WHERE lower(u.email) = lower($1)",
            email.strip(),
        )
        return self._row_to_user(row) if row else None

    async def get_user_by_username(self, username: str) -> User | None:
        """Get user by username."""
        row = await self._db.fetch_one(
            f"{USER_SELECT} WHERE lower(u.username) = lower($1)",
            username.strip(),
        )
        return self._row_to_user(row) if row else None

    async def get_user_by_external_identity(
        self, provider: SocialProvider, external_id: str
    ) -> User | None:
        """Get the user linked to a provider account."""
        row = await self._db.fetch_one(
            f"""{USER_SELECT}
            JOIN social_identities s ON s.user_id = u.id
            WHERE s.provider = $1 AND s.external_id = $2""",
            provider.value,
            external_id,
        )
        return self._row_to_user(row) if row else None

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
        try:
            async with self._db.transaction():
                row = await self._db.fetch_one(
                    """
                    INSERT INTO users (
                        username, email, password_hash, first_name, last_name,
                        date_of_birth, status, is_email_confirmed
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    RETURNING id
                    """,
                    username,
                    email.lower(),
                    password_hash,
                    first_name,
                    last_name,
                    date_of_birth,
                    status.value,
                    is_email_confirmed,
                )
                assert row is not None, "INSERT RETURNING should always return a row"
                await self.add_user_roles(row["id"], roles)
                user = await self.get_user_by_id(row["id"])
        except asyncpg.UniqueViolationError as e:
            raise _conflict(e) from e
        assert user is not None
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
        updates = []
        params: list[Any] = []

        if clear_password:
            updates.append("password_hash = NULL")
            password_hash = None

        for column, value in (
            ("password_hash", password_hash),
            ("status", status.value if status is not None else None),
            ("is_email_confirmed", is_email_confirmed),
            ("last_login_at", last_login_at),
        ):
            if value is not None:
                params.append(value)
                updates.append(f"{column} = ${len(params)}")

        if not updates:
            return await self.get_user_by_id(user_id)

        params.append(datetime.now(UTC))
        updates.append(f"updated_at = ${len(params)}")

        params.append(user_id)
        result = await self._db.execute(
            f"UPDATE users SET {', '.join(updates)} WHERE id = ${len(params)}",
            *params,
        )
        if result.endswith(" 0"):
            return None
        return await self.get_user_by_id(user_id)

    async def add_user_roles(self, user_id: UUID, roles: Iterable[RoleType]) -> frozenset[RoleType]:
        """Grant roles, ignoring ones already held."""
        values = sorted({role.value for role in roles})
        if values:
            await self._db.execute(
                """
                INSERT INTO user_roles (user_id, role)
                SELECT $1, unnest($2::text[])
                ON CONFLICT (user_id, role) DO NOTHING
                """,
                user_id,
                values,
            )
        return await self._get_roles(user_id)

    async def remove_user_roles(
        self, user_id: UUID, roles: Iterable[RoleType]
    ) -> frozenset[RoleType]:
        """Revoke roles, ignoring ones not held."""
        values = sorted({role.value for role in roles})
        if values:
            await self._db.execute(
                "DELETE FROM user_roles WHERE user_id = $1 AND role = ANY($2::text[])",
                user_id,
                values,
            )
        return await self._get_roles(user_id)

    async def _get_roles(self, user_id: UUID) -> frozenset[RoleType]:
        rows = await self._db.fetch_all(
            "SELECT role FROM user_roles WHERE user_id = $1",
            user_id,
        )
        return frozenset(RoleType(row["role"]) for row in rows)

    # Opaque token operations
    async def create_token(
        self,
        purpose: TokenPurpose,
        user_id: UUID,
        token_hash: str,
        expires_at: datetime,
    ) -> AuthToken:
        """Store a new unused token."""
        row = await self._db.fetch_one(
            f"""
            INSERT INTO {TOKEN_TABLES[purpose]} (user_id, token_hash, expires_at)
            VALUES ($1, $2, $3)
            RETURNING *
            """,
            user_id,
            token_hash,
            expires_at,
        )
        assert row is not None, "INSERT RETURNING should always return a row"
        return self._row_to_token(purpose, row)

    async def get_token(
        self, purpose: TokenPurpose, token_hash: str, for_update: bool = False
    ) -> AuthToken | None:
        """Look up a token by digest."""
        query = f"SELECT * FROM {TOKEN_TABLES[purpose]} WHERE token_hash = $1"
        if for_update:
            query += " FOR UPDATE"
        row = await self._db.fetch_one(query, token_hash)
        return self._row_to_token(purpose, row) if row else None

    async def consume_token(self, purpose: TokenPurpose, token_id: UUID) -> bool:
        """Flip the used flag if it is still clear."""
        row = await self._db.fetch_one(
            f"""
            UPDATE {TOKEN_TABLES[purpose]}
            SET is_used = true, used_at = NOW()
            WHERE id = $1 AND is_used = false
            RETURNING id
            """,
            token_id,
        )
        return row is not None

    async def invalidate_user_tokens(self, purpose: TokenPurpose, user_id: UUID) -> int:
        """Mark the user's unused tokens as used."""
        result = await self._db.execute(
            f"""
            UPDATE {TOKEN_TABLES[purpose]}
            SET is_used = true, used_at = NOW()
            WHERE user_id = $1 AND is_used = false
            """,
            user_id,
        )
        # asyncpg returns the command tag, e.g. "UPDATE 2"
        return int(result.split()[-1])

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
        try:
            row = await self._db.fetch_one(
                """
                INSERT INTO social_identities (user_id, provider, external_id, email)
                VALUES ($1, $2, $3, $4)
                RETURNING *
                """,
                user_id,
                provider.value,
                external_id,
                email,
            )
        except asyncpg.UniqueViolationError as e:
            raise _conflict(e) from e
        assert row is not None, "INSERT RETURNING should always return a row"
        return SocialIdentity(
            id=row["id"],
            user_id=row["user_id"],
            provider=SocialProvider(row["provider"]),
            external_id=row["external_id"],
            email=row.get("email"),
            created_at=row["created_at"],
        )

    async def create_authorization_state(
        self,
        state: str,
        nonce: str,
        provider: SocialProvider,
        expires_at: datetime,
    ) -> AuthorizationState:
        """Record a state/nonce pair issued at redirect time."""
        row = await self._db.fetch_one(
            """
            INSERT INTO social_auth_states (state, nonce, provider, expires_at)
            VALUES ($1, $2, $3, $4)
            RETURNING *
            """,
            state,
            nonce,
            provider.value,
            expires_at,
        )
        assert row is not None, "INSERT RETURNING should always return a row"
        return self._row_to_state(row)

    async def consume_authorization_state(self, state: str) -> AuthorizationState | None:
        """Consume a state exactly once."""
        row = await self._db.fetch_one(
            """
            UPDATE social_auth_states
            SET is_used = true
            WHERE state = $1 AND is_used = false
            RETURNING *
            """,
            state,
        )
        if row is None:
            return None
        return self._row_to_state({**row, "is_used": False})


def _conflict(error: asyncpg.UniqueViolationError) -> ConflictError:
    constraint = getattr(error, "constraint_name", None)
    return ConflictError(f"Unique constraint violated: {constraint or error}", constraint)
