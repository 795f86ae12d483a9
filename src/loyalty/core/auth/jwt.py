"""JWT access token issuance and validation."""

import secrets
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import jwt
import structlog

from loyalty.config import JwtSettings
from loyalty.core.auth.tokens import REFRESH_TOKEN_BYTES
from loyalty.core.auth.types import RoleType, TokenPayload, TokenResult, User
from loyalty.core.exceptions import (
    ConfigurationError,
    InvalidTokenError,
    MalformedTokenError,
    TokenError,
    TokenExpiredError,
)

logger = structlog.get_logger()

MIN_SECRET_BYTES = 32
BEARER_PREFIX = "Bearer "

# Claims the service owns; callers cannot override them with extra claims.
RESERVED_CLAIMS = frozenset(
    {"sub", "username", "email", "roles", "iat", "exp", "nbf", "iss", "aud", "jti"}
)


class JwtService:
    """Issues and validates signed access tokens.

    Every claim accessor goes through signature verification first, so no
    caller ever reads claims from an unverified token.
    """

    def __init__(self, settings: JwtSettings) -> None:
        """Initialize with signing settings.

        Args:
            settings: JWT secret, issuer, audience and lifetime.

        Raises:
            ConfigurationError: If the secret is missing or too short.
        """
        if not settings.secret:
            raise ConfigurationError("JWT secret is not configured")
        if len(settings.secret.encode("utf-8")) < MIN_SECRET_BYTES:
            raise ConfigurationError(f"JWT secret must be at least {MIN_SECRET_BYTES} bytes")
        if settings.expiration_minutes <= 0:
            raise ConfigurationError("JWT expiration must be positive")
        self._settings = settings

    @property
    def lifetime(self) -> timedelta:
        """Configured access token lifetime."""
        return timedelta(minutes=self._settings.expiration_minutes)

    def generate_token(
        self,
        user_id: UUID | str,
        username: str,
        email: str,
        roles: Iterable[RoleType | str],
        additional_claims: Mapping[str, Any] | None = None,
    ) -> str:
        """Create a signed access token.

        Args:
            user_id: Subject of the token.
            username: User's username.
            email: User's email address.
            roles: Roles granted to the user.
            additional_claims: Extra key/value claims to embed.

        Returns:
            Encoded JWT string.

        Raises:
            ValueError: If an additional claim collides with a reserved claim.
        """
        extra = dict(additional_claims or {})
        clashes = RESERVED_CLAIMS.intersection(extra)
        if clashes:
            raise ValueError(f"Additional claims may not override: {', '.join(sorted(clashes))}")

        now = datetime.now(UTC)
        expire = now + self.lifetime
        role_values = sorted({RoleType.parse(role).value for role in roles})

        payload: dict[str, Any] = {
            **extra,
            "sub": str(user_id),
            "username": username,
            "email": email,
            "roles": role_values,
            "iat": int(now.timestamp()),
            "exp": int(expire.timestamp()),
            "iss": self._settings.issuer,
            "aud": self._settings.audience,
            "jti": secrets.token_hex(16),
        }

        logger.info("jwt_issued", user_id=str(user_id), roles=role_values)
        return jwt.encode(payload, self._settings.secret, algorithm=self._settings.algorithm)

    def generate_token_result(
        self,
        user: User,
        additional_claims: Mapping[str, Any] | None = None,
        include_refresh_token: bool = False,
    ) -> TokenResult:
        """Issue an access token for a resolved user and wrap it for the caller."""
        token = self.generate_token(
            user_id=user.id,
            username=user.username,
            email=user.email,
            roles=user.roles,
            additional_claims=additional_claims,
        )
        return TokenResult(
            access_token=token,
            expires_in=int(self.lifetime.total_seconds()),
            refresh_token=self.generate_refresh_token() if include_refresh_token else None,
        )

    def validate_token(self, token: str) -> TokenPayload:
        """Decode and validate a JWT token.

        Args:
            token: Encoded JWT string

        Returns:
            Verified token payload.

        Raises:
            TokenExpiredError: If the token is past its expiry.
            InvalidTokenError: If signature, issuer or audience do not verify.
            MalformedTokenError: If the token or its claims are structurally invalid.
        """
        claims = self._decode(token, verify_exp=True)
        return self._to_payload(claims)

    def try_parse_token_from_auth_header(self, header: str | None) -> tuple[bool, str | None]:
        """Pull the token out of a "Bearer <token>" Authorization header.

        Returns:
            (True, token) on success, (False, None) when the header is missing
            or does not use the Bearer scheme.
        """
        if not header or not header.startswith(BEARER_PREFIX):
            return False, None
        token = header[len(BEARER_PREFIX) :].strip()
        if not token:
            return False, None
        return True, token

    def generate_refresh_token(self) -> str:
        """Create an opaque refresh token. Not a JWT, carries no claims."""
        return secrets.token_urlsafe(REFRESH_TOKEN_BYTES)

    def get_user_id_from_token(self, token: str) -> UUID | None:
        """Return the verified subject as a UUID, or None."""
        payload = self._try_validate(token)
        if payload is None:
            return None
        try:
            return UUID(payload.sub)
        except ValueError:
            logger.warning("jwt_subject_not_uuid")
            return None

    def get_role_from_token(self, token: str) -> RoleType | None:
        """Return the first verified role, or None."""
        roles = self.get_roles_from_token(token)
        if not roles:
            return None
        return sorted(roles, key=lambda role: list(RoleType).index(role))[0]

    def get_roles_from_token(self, token: str) -> frozenset[RoleType]:
        """Return the verified role set, empty when the token is unusable."""
        payload = self._try_validate(token)
        if payload is None:
            return frozenset()
        roles = set()
        for value in payload.roles:
            try:
                roles.add(RoleType.parse(value))
            except ValueError:
                logger.warning("jwt_unknown_role", role=value)
        return frozenset(roles)

    def get_token_expiration_time(self, token: str) -> datetime | None:
        """Return the expiry of a correctly signed token, or None.

        The signature is verified but expiry is not enforced, so callers can
        learn when an already expired token lapsed.
        """
        if not token:
            return None
        try:
            claims = self._decode(token, verify_exp=False)
        except TokenError as e:
            logger.warning("jwt_expiration_unreadable", error=str(e))
            return None
        if not isinstance(claims.get("exp"), int):
            logger.warning("jwt_expiration_unreadable", error="exp claim is not an integer")
            return None
        return datetime.fromtimestamp(claims["exp"], tz=UTC)

    def is_token_valid(self, token: str) -> bool:
        """Whether the token verifies and is unexpired."""
        return self._try_validate(token) is not None

    def _try_validate(self, token: str) -> TokenPayload | None:
        if not token:
            return None
        try:
            return self.validate_token(token)
        except TokenError as e:
            logger.info("jwt_validation_failed", reason=type(e).__name__)
            return None

    def _decode(self, token: str, verify_exp: bool) -> dict[str, Any]:
        try:
            claims: dict[str, Any] = jwt.decode(
                token,
                self._settings.secret,
                algorithms=[self._settings.algorithm],
                audience=self._settings.audience,
                issuer=self._settings.issuer,
                leeway=0,
                options={
                    "require": ["sub", "exp", "iat", "iss", "aud"],
                    "verify_exp": verify_exp,
                },
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError("Token has expired") from None
        except jwt.InvalidSignatureError:
            raise InvalidTokenError("Token signature verification failed") from None
        except jwt.MissingRequiredClaimError as e:
            raise MalformedTokenError(f"Malformed token: {e}") from None
        except jwt.DecodeError as e:
            raise MalformedTokenError(f"Malformed token: {e}") from None
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(f"Invalid token: {e}") from None
        return claims

    def _to_payload(self, claims: dict[str, Any]) -> TokenPayload:
        roles = claims.get("roles", [])
        if isinstance(roles, str):
            roles = [roles]
        if not isinstance(roles, list) or not all(isinstance(role, str) for role in roles):
            raise MalformedTokenError("Malformed token: roles claim must be a list of strings")
        for name in ("sub", "username", "email"):
            if not isinstance(claims.get(name), str):
                raise MalformedTokenError(f"Malformed token: missing {name} claim")
        if not isinstance(claims.get("exp"), int) or not isinstance(claims.get("iat"), int):
            raise MalformedTokenError("Malformed token: exp and iat must be integers")

        return TokenPayload(
            sub=claims["sub"],
            username=claims["username"],
            email=claims["email"],
            roles=roles,
            exp=claims["exp"],
            iat=claims["iat"],
            extra={key: value for key, value in claims.items() if key not in RESERVED_CLAIMS},
        )
