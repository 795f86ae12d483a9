"""Auth domain types, token utilities and flows."""

from loyalty.core.auth.email_confirmation import EmailConfirmationService
from loyalty.core.auth.jwt import JwtService
from loyalty.core.auth.password import hash_password, verify_password
from loyalty.core.auth.password_reset import PasswordResetService
from loyalty.core.auth.repository import AuthRepository
from loyalty.core.auth.results import GENERIC_TOKEN_ERROR, AuthErrorKind, OperationResult
from loyalty.core.auth.roles import RoleChange, RoleService
from loyalty.core.auth.service import AuthService, RegisterUserRequest
from loyalty.core.auth.social import AuthorizationRequest, SocialAuthResult, SocialAuthService
from loyalty.core.auth.tokens import generate_secure_token, hash_token
from loyalty.core.auth.types import (
    AuthIdentifierType,
    AuthorizationState,
    AuthToken,
    EmailConfirmationToken,
    InternalUser,
    PasswordResetToken,
    RoleType,
    SocialIdentity,
    SocialProvider,
    TokenPayload,
    TokenPurpose,
    TokenResult,
    User,
    UserStatus,
)

__all__ = [
    "User",
    "UserStatus",
    "RoleType",
    "AuthIdentifierType",
    "TokenPurpose",
    "AuthToken",
    "PasswordResetToken",
    "EmailConfirmationToken",
    "SocialProvider",
    "SocialIdentity",
    "AuthorizationState",
    "InternalUser",
    "TokenPayload",
    "TokenResult",
    "AuthErrorKind",
    "OperationResult",
    "GENERIC_TOKEN_ERROR",
    "hash_password",
    "verify_password",
    "generate_secure_token",
    "hash_token",
    "JwtService",
    "AuthRepository",
    "AuthService",
    "RegisterUserRequest",
    "PasswordResetService",
    "EmailConfirmationService",
    "SocialAuthService",
    "AuthorizationRequest",
    "SocialAuthResult",
    "RoleService",
    "RoleChange",
]
