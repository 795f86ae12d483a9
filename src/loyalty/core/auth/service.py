"""Auth service for registration and password login."""

import re
from collections.abc import Iterable
from datetime import UTC, date, datetime

import structlog
from pydantic import BaseModel, EmailStr, ValidationError, field_validator, model_validator

from loyalty.core.auth.email_confirmation import EmailConfirmationService
from loyalty.core.auth.jwt import JwtService
from loyalty.core.auth.password import hash_password, password_policy_errors, verify_password
from loyalty.core.auth.repository import AuthRepository
from loyalty.core.auth.results import AuthErrorKind, OperationResult
from loyalty.core.auth.types import (
    DEFAULT_ROLE,
    AuthIdentifierType,
    RoleType,
    TokenResult,
    User,
    UserStatus,
)
from loyalty.core.exceptions import ConflictError

logger = structlog.get_logger()

INVALID_CREDENTIALS = "Invalid username/email or password"
USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]{3,50}$")


class RegisterUserRequest(BaseModel):
    """Validated sign-up data."""

    username: str
    email: EmailStr
    password: str
    confirm_password: str
    first_name: str
    last_name: str
    date_of_birth: date | None = None

    @field_validator("username")
    @classmethod
    def _check_username(cls, value: str) -> str:
        value = value.strip()
        if not USERNAME_PATTERN.match(value):
            raise ValueError("Username must be 3-50 letters, digits, '.', '_' or '-'")
        return value

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("first_name", "last_name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name must not be empty")
        return value

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        errors = password_policy_errors(value)
        if errors:
            raise ValueError("; ".join(errors))
        return value

    @model_validator(mode="after")
    def _check_confirmation(self) -> "RegisterUserRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class AuthService:
    """Service for registration and password authentication."""

    def __init__(
        self,
        repo: AuthRepository,
        jwt_service: JwtService,
        confirmation: EmailConfirmationService,
    ) -> None:
        """Initialize the service.

        Args:
            repo: Auth repository for database operations.
            jwt_service: Issues access tokens at login.
            confirmation: Issues and sends the confirmation email on sign-up.
        """
        self._repo = repo
        self._jwt = jwt_service
        self._confirmation = confirmation

    async def register(
        self,
        request: RegisterUserRequest | dict,
        roles: Iterable[RoleType] | None = None,
    ) -> OperationResult[User]:
        """Register a new pending user and send the confirmation email.

        The user row, its role grants and the confirmation token are written
        in one transaction; the email goes out after commit.

        Args:
            request: Sign-up data, validated if given as a dict.
            roles: Roles to grant. Defaults to customer.

        Returns:
            The created user, or a VALIDATION / CONFLICT failure.
        """
        if not isinstance(request, RegisterUserRequest):
            try:
                request = RegisterUserRequest.model_validate(request)
            except ValidationError as e:
                details = [str(error["msg"]) for error in e.errors()]
                return OperationResult.fail(
                    AuthErrorKind.VALIDATION, "Registration data is invalid.", details
                )

        try:
            async with self._repo.transaction():
                if await self._repo.get_user_by_email(request.email):
                    logger.info("registration_conflict", field="email")
                    return OperationResult.fail(
                        AuthErrorKind.CONFLICT, f"Email '{request.email}' already exists."
                    )
                if await self._repo.get_user_by_username(request.username):
                    logger.info("registration_conflict", field="username")
                    return OperationResult.fail(
                        AuthErrorKind.CONFLICT, f"Username '{request.username}' already exists."
                    )

                user = await self._repo.create_user(
                    username=request.username,
                    email=request.email,
                    password_hash=hash_password(request.password),
                    first_name=request.first_name,
                    last_name=request.last_name,
                    date_of_birth=request.date_of_birth,
                    status=UserStatus.PENDING,
                    is_email_confirmed=False,
                    roles=frozenset(roles or {DEFAULT_ROLE}),
                )
                token = await self._confirmation.issue_token(user)
        except ConflictError as e:
            # Lost a race with a concurrent sign-up for the same email or username
            logger.info("registration_conflict", constraint=e.constraint)
            return OperationResult.fail(
                AuthErrorKind.CONFLICT, "Email or username already exists."
            )

        logger.info("user_registered", user_id=str(user.id))
        await self._confirmation.send_confirmation(user, token)
        return OperationResult.ok(user)

    async def login(
        self,
        identifier: str,
        password: str,
        identifier_type: AuthIdentifierType = AuthIdentifierType.EMAIL,
    ) -> OperationResult[TokenResult]:
        """Authenticate with a password and return an access token.

        Args:
            identifier: Email address or username.
            password: Plain text password.
            identifier_type: Which of the two `identifier` is.

        Returns:
            TokenResult, or an UNAUTHORIZED failure.
        """
        if identifier_type == AuthIdentifierType.USERNAME:
            user = await self._repo.get_user_by_username(identifier.strip())
        else:
            user = await self._repo.get_user_by_email(identifier.strip().lower())

        # Same answer for unknown user and wrong password
        if user is None or not verify_password(password, user.password_hash):
            logger.info("login_failed", identifier_type=identifier_type.value)
            return OperationResult.fail(AuthErrorKind.UNAUTHORIZED, INVALID_CREDENTIALS)

        if not user.is_active:
            logger.info("login_inactive_user", user_id=str(user.id), status=user.status.value)
            return OperationResult.fail(AuthErrorKind.UNAUTHORIZED, "User account is not active")

        if not user.is_email_confirmed:
            logger.info("login_email_unconfirmed", user_id=str(user.id))
            return OperationResult.fail(AuthErrorKind.UNAUTHORIZED, "Email has not been confirmed")

        user = await self._repo.update_user(user.id, last_login_at=datetime.now(UTC)) or user
        logger.info("login_successful", user_id=str(user.id))
        return OperationResult.ok(self._jwt.generate_token_result(user))
