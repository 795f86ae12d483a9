"""OIDC social login providers (Google, Sign in with Apple)."""

import asyncio
import hmac
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx
import jwt
import structlog

from loyalty.config import AppleAuthSettings, GoogleAuthSettings, SocialAuthSettings
from loyalty.core.auth.types import SocialProvider
from loyalty.core.exceptions import ConfigurationError, SocialProviderError
from loyalty.core.interfaces import SocialProviderClient, SocialUserInfo

logger = structlog.get_logger()

ID_TOKEN_ALGORITHMS = ["RS256", "ES256"]
APPLE_ISSUER = "https://appleid.apple.com"
GOOGLE_ISSUER = "https://accounts.google.com"
APPLE_CLIENT_SECRET_TTL = 300


@dataclass
class OIDCConfig:
    """OIDC provider configuration."""

    issuer_url: str
    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: list[str] | None = None

    @property
    def default_scopes(self) -> list[str]:
        """Default OIDC scopes."""
        return self.scopes or ["openid", "email", "profile"]


@dataclass
class OIDCTokens:
    """Tokens from OIDC provider."""

    access_token: str
    id_token: str
    token_type: str
    expires_in: int
    refresh_token: str | None = None


def _is_true(value: Any) -> bool:
    # Apple sends boolean claims as strings
    return value is True or (isinstance(value, str) and value.lower() == "true")


class OIDCProvider:
    """OIDC authentication provider.

    Handles OAuth2/OIDC flow:
    1. Generate authorization URL
    2. Exchange code for tokens
    3. Verify the ID token and extract the identity from its claims
    """

    def __init__(
        self,
        config: OIDCConfig,
        provider: SocialProvider,
        jwks_client: jwt.PyJWKClient | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            config: OIDC configuration.
            provider: Which social provider this client talks to.
            jwks_client: Signing key source. Built from discovery if omitted.
        """
        if not config.client_id:
            raise ConfigurationError(f"{provider.value} client_id is not configured")
        self._config = config
        self._provider = provider
        self._discovery: dict[str, Any] | None = None
        self._jwks_client = jwks_client

    @property
    def provider(self) -> SocialProvider:
        """Provider served by this client."""
        return self._provider

    async def get_discovery(self) -> dict[str, Any]:
        """Fetch OIDC discovery document.

        Returns:
            Discovery document with endpoints.
        """
        if self._discovery:
            return self._discovery

        discovery_url = f"{self._config.issuer_url.rstrip('/')}/.well-known/openid-configuration"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(discovery_url)
                response.raise_for_status()
                self._discovery = response.json()
        except httpx.HTTPError as e:
            raise SocialProviderError(
                f"Discovery failed: {e}", provider=self._provider.value
            ) from e

        return self._discovery

    def authorization_params(self) -> dict[str, str]:
        """Extra query parameters for the authorization URL."""
        return {}

    def client_secret(self) -> str:
        """Client secret sent with the code exchange."""
        return self._config.client_secret

    async def get_authorization_url(self, state: str, nonce: str) -> str:
        """Generate authorization URL for user redirect.

        Args:
            state: State parameter for CSRF protection.
            nonce: Nonce for ID token replay protection.

        Returns:
            Authorization URL to redirect user to.
        """
        discovery = await self.get_discovery()
        auth_endpoint = discovery["authorization_endpoint"]

        params = {
            "response_type": "code",
            "client_id": self._config.client_id,
            "redirect_uri": self._config.redirect_uri,
            "scope": " ".join(self._config.default_scopes),
            "state": state,
            "nonce": nonce,
            **self.authorization_params(),
        }

        return f"{auth_endpoint}?{urlencode(params)}"

    async def request_tokens(self, code: str) -> OIDCTokens:
        """Exchange authorization code for tokens.

        Args:
            code: Authorization code from IdP callback.

        Returns:
            Token response with access_token, id_token, etc.

        Raises:
            SocialProviderError: If the token endpoint rejects the code.
        """
        discovery = await self.get_discovery()
        token_endpoint = discovery["token_endpoint"]

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    token_endpoint,
                    data={
                        "grant_type": "authorization_code",
                        "code": code,
                        "redirect_uri": self._config.redirect_uri,
                        "client_id": self._config.client_id,
                        "client_secret": self.client_secret(),
                    },
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise SocialProviderError(
                f"Token exchange failed: {e}", provider=self._provider.value
            ) from e

        if "id_token" not in data:
            raise SocialProviderError("Token response has no id_token", self._provider.value)

        return OIDCTokens(
            access_token=data.get("access_token", ""),
            id_token=data["id_token"],
            token_type=data.get("token_type", "Bearer"),
            expires_in=data.get("expires_in", 3600),
            refresh_token=data.get("refresh_token"),
        )

    async def verify_id_token(self, id_token: str, nonce: str) -> dict[str, Any]:
        """Verify the ID token signature and claims.

        Checks the signature against the provider's JWKS, the audience
        (our client id), the issuer, expiry and the nonce.

        Raises:
            SocialProviderError: If any check fails.
        """
        discovery = await self.get_discovery()
        if self._jwks_client is None:
            self._jwks_client = jwt.PyJWKClient(discovery["jwks_uri"])

        try:
            # PyJWKClient fetches keys with blocking I/O
            signing_key = await asyncio.to_thread(
                self._jwks_client.get_signing_key_from_jwt, id_token
            )
            claims: dict[str, Any] = jwt.decode(
                id_token,
                signing_key.key,
                algorithms=ID_TOKEN_ALGORITHMS,
                audience=self._config.client_id,
                issuer=discovery.get("issuer", self._config.issuer_url),
                options={"require": ["sub", "exp", "iat", "aud", "iss"]},
            )
        except jwt.PyJWTError as e:
            raise SocialProviderError(
                f"ID token rejected: {e}", provider=self._provider.value
            ) from e

        if not hmac.compare_digest(str(claims.get("nonce", "")), nonce):
            raise SocialProviderError("ID token nonce mismatch", provider=self._provider.value)
        return claims

    def user_info_from_claims(self, claims: dict[str, Any]) -> SocialUserInfo:
        """Build the identity from verified ID token claims."""
        return SocialUserInfo(
            external_id=str(claims["sub"]),
            email=str(claims.get("email", "")),
            email_verified=_is_true(claims.get("email_verified", False)),
            first_name=claims.get("given_name"),
            last_name=claims.get("family_name"),
        )

    async def exchange_code(self, auth_code: str, nonce: str) -> SocialUserInfo:
        """Exchange an authorization code for a verified identity.

        Raises:
            SocialProviderError: If the exchange or ID token check fails.
        """
        tokens = await self.request_tokens(auth_code)
        claims = await self.verify_id_token(tokens.id_token, nonce)
        info = self.user_info_from_claims(claims)
        logger.debug("social_identity_verified", provider=self._provider.value)
        return info


class GoogleProvider(OIDCProvider):
    """Google sign-in, optionally limited to Workspace domains."""

    def __init__(
        self, settings: GoogleAuthSettings, jwks_client: jwt.PyJWKClient | None = None
    ) -> None:
        """Initialize from Google settings."""
        super().__init__(
            OIDCConfig(
                issuer_url=GOOGLE_ISSUER,
                client_id=settings.client_id,
                client_secret=settings.client_secret,
                redirect_uri=settings.redirect_uri,
                scopes=settings.scopes,
            ),
            SocialProvider.GOOGLE,
            jwks_client=jwks_client,
        )
        self._allowed_domains = {d.lower() for d in settings.allowed_domains}

    def authorization_params(self) -> dict[str, str]:
        """Hint the Workspace domain when there is exactly one."""
        if len(self._allowed_domains) == 1:
            return {"hd": next(iter(self._allowed_domains))}
        return {}

    def user_info_from_claims(self, claims: dict[str, Any]) -> SocialUserInfo:
        """Build the identity, rejecting accounts outside the allowed domains."""
        info = super().user_info_from_claims(claims)
        if self._allowed_domains:
            domain = str(claims.get("hd") or info.email.rpartition("@")[2]).lower()
            if domain not in self._allowed_domains:
                raise SocialProviderError(
                    f"Domain not allowed: {domain}", provider=self._provider.value
                )
        return info


class AppleProvider(OIDCProvider):
    """Sign in with Apple.

    Apple has no static client secret: each code exchange sends a
    short-lived ES256 JWT signed with the team's private key.
    """

    def __init__(
        self, settings: AppleAuthSettings, jwks_client: jwt.PyJWKClient | None = None
    ) -> None:
        """Initialize from Apple settings."""
        if not (settings.team_id and settings.key_id and settings.private_key):
            raise ConfigurationError("Apple team_id, key_id and private_key are required")
        super().__init__(
            OIDCConfig(
                issuer_url=APPLE_ISSUER,
                client_id=settings.client_id,
                client_secret="",
                redirect_uri=settings.redirect_uri,
                scopes=settings.scopes,
            ),
            SocialProvider.APPLE,
            jwks_client=jwks_client,
        )
        self._settings = settings

    def authorization_params(self) -> dict[str, str]:
        """Apple requires form_post when name or email is requested."""
        if {"name", "email"} & set(self._config.default_scopes):
            return {"response_mode": "form_post"}
        return {}

    def client_secret(self) -> str:
        """Sign a client secret JWT for this exchange."""
        now = int(time.time())
        return jwt.encode(
            {
                "iss": self._settings.team_id,
                "iat": now,
                "exp": now + APPLE_CLIENT_SECRET_TTL,
                "aud": APPLE_ISSUER,
                "sub": self._settings.client_id,
            },
            self._settings.private_key,
            algorithm="ES256",
            headers={"kid": self._settings.key_id},
        )


def build_social_providers(
    settings: SocialAuthSettings,
) -> dict[SocialProvider, SocialProviderClient]:
    """Create clients for every configured provider."""
    providers: dict[SocialProvider, SocialProviderClient] = {}
    if settings.google is not None:
        providers[SocialProvider.GOOGLE] = GoogleProvider(settings.google)
    if settings.apple is not None:
        providers[SocialProvider.APPLE] = AppleProvider(settings.apple)
    logger.info("social_providers_configured", providers=sorted(p.value for p in providers))
    return providers
