"""Social login: link a verified provider identity to a local account."""

import hmac
import re
import secrets
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

import structlog

from loyalty.config import TokenSettings
from loyalty.core.auth.jwt import JwtService
from loyalty.core.auth.repository import AuthRepository
from loyalty.core.auth.results import AuthErrorKind, OperationResult
from loyalty.core.auth.tokens import generate_secure_token, get_token_expiry, is_token_expired
from loyalty.core.auth.types import (
    DEFAULT_ROLE,
    InternalUser,
    RoleType,
    SocialProvider,
    TokenResult,
    User,
    UserStatus,
)
from loyalty.core.exceptions import ConflictError, SocialProviderError
from loyalty.core.interfaces import SocialProviderClient, SocialUserInfo

logger = structlog.get_logger()

PROVIDER_FAILURE = "Invalid social login credentials."
USERNAME_ATTEMPTS = 5
RESOLVE_ATTEMPTS = 2


@dataclass(frozen=True)
class AuthorizationRequest:
    """Where to send the user, and the values the callback must echo."""

    provider: SocialProvider
    authorization_url: str
    state: str
    nonce: str


@dataclass(frozen=True)
class SocialAuthResult:
    """Outcome of a completed social login."""

    token: TokenResult
    user: InternalUser
    is_new_user: bool
    external_id: str
    external_email: str


class SocialAuthService:
    """Runs the provider round trip and decides which local user signs in.

    Lookup order after a verified exchange: the linked external identity,
    then the email address (and link it), then a newly provisioned account.
    """

    def __init__(
        self,
        repo: AuthRepository,
        jwt_service: JwtService,
        providers: Mapping[SocialProvider, SocialProviderClient],
        settings: TokenSettings,
    ) -> None:
        """Initialize the service.

        Args:
            repo: Auth repository for database operations.
            jwt_service: Issues the access token on success.
            providers: Configured provider clients by provider.
            settings: Holds the lifetime of issued state values.
        """
        self._repo = repo
        self._jwt = jwt_service
        self._providers = dict(providers)
        self._settings = settings

    async def begin_authorization(self, provider: SocialProvider | str) -> AuthorizationRequest:
        """Issue a state/nonce pair and build the provider redirect URL.

        Raises:
            ValueError: If the provider is unknown or not configured.
        """
        resolved = self._resolve_provider(provider)
        if resolved is None:
            raise ValueError(f"Social provider not configured: {provider}")

        state = generate_secure_token()
        nonce = generate_secure_token()
        await self._repo.create_authorization_state(
            state=state,
            nonce=nonce,
            provider=resolved,
            expires_at=get_token_expiry(self._settings.social_state_ttl),
        )
        url = await self._providers[resolved].get_authorization_url(state, nonce)
        logger.info("social_authorization_started", provider=resolved.value)
        return AuthorizationRequest(
            provider=resolved, authorization_url=url, state=state, nonce=nonce
        )

    async def authenticate_with_provider(
        self,
        auth_code: str,
        state: str,
        nonce: str,
        provider: SocialProvider | str,
        allowed_roles: Iterable[RoleType] | None = None,
    ) -> OperationResult[SocialAuthResult]:
        """Complete a social login.

        The state is consumed before anything else, so a replayed callback
        fails even if the first attempt did not finish.

        Args:
            auth_code: Code from the provider callback.
            state: State echoed by the callback.
            nonce: Nonce issued with the state.
            provider: Provider that issued the code.
            allowed_roles: Roles permitted to sign in this way; also the roles
                given to newly provisioned users. Defaults to customer.

        Returns:
            Token, user and linkage details, or a PROVIDER_AUTH_FAILED /
            UNAUTHORIZED failure. CONFLICT only if concurrent sign-ins keep
            colliding on the same account.
        """
        resolved = self._resolve_provider(provider)
        if resolved is None:
            logger.warning("social_auth_unsupported_provider", provider=str(provider))
            return OperationResult.fail(
                AuthErrorKind.PROVIDER_AUTH_FAILED, "Unsupported social provider."
            )

        issued = await self._repo.consume_authorization_state(state)
        if issued is None:
            logger.warning("social_auth_state_unknown_or_replayed", provider=resolved.value)
            return OperationResult.fail(AuthErrorKind.PROVIDER_AUTH_FAILED, PROVIDER_FAILURE)
        if is_token_expired(issued.expires_at):
            logger.warning("social_auth_state_expired", provider=resolved.value)
            return OperationResult.fail(AuthErrorKind.PROVIDER_AUTH_FAILED, PROVIDER_FAILURE)
        if issued.provider != resolved or not hmac.compare_digest(issued.nonce, nonce):
            logger.warning("social_auth_state_mismatch", provider=resolved.value)
            return OperationResult.fail(AuthErrorKind.PROVIDER_AUTH_FAILED, PROVIDER_FAILURE)

        try:
            info = await self._providers[resolved].exchange_code(auth_code, nonce)
        except SocialProviderError as e:
            logger.warning("social_auth_exchange_failed", provider=resolved.value, error=str(e))
            return OperationResult.fail(AuthErrorKind.PROVIDER_AUTH_FAILED, PROVIDER_FAILURE)

        if not info.external_id or not info.email or not info.email_verified:
            logger.warning("social_auth_unverified_identity", provider=resolved.value)
            return OperationResult.fail(AuthErrorKind.PROVIDER_AUTH_FAILED, PROVIDER_FAILURE)

        roles = frozenset(allowed_roles or {DEFAULT_ROLE})
        for attempt in range(RESOLVE_ATTEMPTS):
            try:
                async with self._repo.transaction():
                    user, is_new_user = await self._resolve_user(resolved, info, roles)
                break
            except ConflictError as e:
                # A concurrent sign-in created the account or link; look it up again
                logger.info(
                    "social_auth_conflict",
                    provider=resolved.value,
                    attempt=attempt + 1,
                    constraint=e.constraint,
                )
        else:
            return OperationResult.fail(
                AuthErrorKind.CONFLICT, "Account is being updated, please try again."
            )

        if user is None:
            return OperationResult.fail(
                AuthErrorKind.UNAUTHORIZED, "User is not allowed to sign in."
            )

        logger.info(
            "social_auth_successful",
            provider=resolved.value,
            user_id=str(user.id),
            is_new_user=is_new_user,
        )
        return OperationResult.ok(
            SocialAuthResult(
                token=self._jwt.generate_token_result(user),
                user=InternalUser(id=user.id, email=user.email, username=user.username),
                is_new_user=is_new_user,
                external_id=info.external_id,
                external_email=info.email,
            )
        )

    async def _resolve_user(
        self,
        provider: SocialProvider,
        info: SocialUserInfo,
        roles: frozenset[RoleType],
    ) -> tuple[User | None, bool]:
        email = info.email.strip().lower()

        user = await self._repo.get_user_by_external_identity(provider, info.external_id)
        is_linked = user is not None
        if user is None:
            user = await self._repo.get_user_by_email(email)

        if user is None:
            user = await self._repo.create_user(
                username=await self._generate_username(email),
                email=email,
                password_hash=None,
                first_name=info.first_name,
                last_name=info.last_name,
                status=UserStatus.ACTIVE,
                is_email_confirmed=True,
                roles=roles,
            )
            await self._repo.create_social_identity(
                user.id, provider, info.external_id, email=email
            )
            logger.info("social_user_provisioned", provider=provider.value, user_id=str(user.id))
            return user, True

        if not user.roles & roles:
            logger.warning("social_auth_role_not_allowed", user_id=str(user.id))
            return None, False

        if user.status not in (UserStatus.PENDING, UserStatus.ACTIVE):
            logger.warning("social_auth_inactive_user", provider=provider.value)
            return None, False

        if user.status == UserStatus.PENDING or not user.is_email_confirmed:
            # The provider has verified the address this account was waiting on.
            # A password set before that proof is discarded.
            unproven_password = not user.is_email_confirmed and user.password_hash is not None
            user = await self._repo.update_user(
                user.id,
                status=UserStatus.ACTIVE,
                is_email_confirmed=True,
                clear_password=unproven_password,
            )
            if user is None:
                return None, False
            if unproven_password:
                logger.warning("social_auth_unconfirmed_password_cleared", user_id=str(user.id))

        if not is_linked:
            await self._repo.create_social_identity(
                user.id, provider, info.external_id, email=email
            )
            logger.info("social_identity_linked", provider=provider.value, user_id=str(user.id))
        return user, False

    async def _generate_username(self, email: str) -> str:
        base = re.sub(r"[^a-z0-9._-]", "", email.split("@", 1)[0].lower()) or "user"
        for _ in range(USERNAME_ATTEMPTS):
            candidate = f"{base}-{secrets.token_hex(3)}"
            if await self._repo.get_user_by_username(candidate) is None:
                return candidate
        return f"{base}-{secrets.token_hex(8)}"

    def _resolve_provider(self, provider: SocialProvider | str) -> SocialProvider | None:
        if isinstance(provider, SocialProvider):
            resolved = provider
        else:
            try:
                resolved = SocialProvider(provider.strip().lower())
            except ValueError:
                return None
        return resolved if resolved in self._providers else None
