"""Auth domain types."""

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class RoleType(str, Enum):
    """Roles a user can hold on the platform."""

    CUSTOMER = "customer"
    STAFF = "staff"
    STORE_MANAGER = "store_manager"
    BRAND_MANAGER = "brand_manager"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: "RoleType | str") -> "RoleType":
        """Resolve a role from its value ("store_manager") or name ("StoreManager").

        Raises:
            ValueError: If the value names no known role.
        """
        if isinstance(value, cls):
            return value
        normalized = str(value).strip()
        for role in cls:
            if normalized.lower() == role.value:
                return role
            if normalized.replace("_", "").lower() == role.name.replace("_", "").lower():
                return role
        raise ValueError(f"Unknown role: {value!r}")


# Role every account falls back to when its role set would become empty.
DEFAULT_ROLE = RoleType.CUSTOMER


class UserStatus(str, Enum):
    """Lifecycle status of a user account."""

    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DEACTIVATED = "deactivated"


class AuthIdentifierType(str, Enum):
    """How a caller identifies an account at login or reset time."""

    EMAIL = "email"
    USERNAME = "username"


class TokenPurpose(str, Enum):
    """What an opaque token unlocks."""

    PASSWORD_RESET = "password_reset"
    EMAIL_CONFIRMATION = "email_confirmation"


class SocialProvider(str, Enum):
    """Supported social login providers."""

    GOOGLE = "google"
    APPLE = "apple"


class User(BaseModel):
    """User domain model."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    username: str
    email: EmailStr
    password_hash: str | None = None  # None for social-only users
    first_name: str | None = None
    last_name: str | None = None
    date_of_birth: date | None = None
    status: UserStatus = UserStatus.PENDING
    is_email_confirmed: bool = False
    roles: frozenset[RoleType] = Field(default_factory=lambda: frozenset({DEFAULT_ROLE}))
    created_at: datetime
    updated_at: datetime | None = None
    last_login_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        """Whether the account may authenticate."""
        return self.status == UserStatus.ACTIVE

    def has_role(self, role: RoleType) -> bool:
        """Check role membership."""
        return role in self.roles


class AuthToken(BaseModel):
    """Persisted single-use opaque token.

    Only the SHA-256 digest of the token is stored; the plaintext value is
    handed to the user once and never kept.
    """

    model_config = ConfigDict(frozen=True)

    purpose: TokenPurpose
    id: UUID
    user_id: UUID
    token_hash: str
    expires_at: datetime
    is_used: bool = False
    created_at: datetime
    used_at: datetime | None = None


class PasswordResetToken(AuthToken):
    """Token that authorizes a single password change."""

    purpose: TokenPurpose = TokenPurpose.PASSWORD_RESET


class EmailConfirmationToken(AuthToken):
    """Token that confirms ownership of an email address."""

    purpose: TokenPurpose = TokenPurpose.EMAIL_CONFIRMATION


TOKEN_MODELS: dict[TokenPurpose, type[AuthToken]] = {
    TokenPurpose.PASSWORD_RESET: PasswordResetToken,
    TokenPurpose.EMAIL_CONFIRMATION: EmailConfirmationToken,
}


class SocialIdentity(BaseModel):
    """Links an external provider account to a local user."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    user_id: UUID
    provider: SocialProvider
    external_id: str
    email: str | None = None
    created_at: datetime


class AuthorizationState(BaseModel):
    """State/nonce pair issued at social authorization-redirect time."""

    model_config = ConfigDict(frozen=True)

    state: str
    nonce: str
    provider: SocialProvider
    expires_at: datetime
    is_used: bool = False
    created_at: datetime


class TokenResult(BaseModel):
    """Access token handed back to a caller after authentication."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int  # seconds
    refresh_token: str | None = None


class TokenPayload(BaseModel):
    """Verified JWT claims."""

    sub: str  # user_id
    username: str
    email: str
    roles: list[str]
    exp: int  # expiration timestamp
    iat: int  # issued at timestamp
    extra: dict[str, Any] = Field(default_factory=dict)


class InternalUser(BaseModel):
    """Minimal user projection returned by social login."""

    id: UUID
    email: str
    username: str
