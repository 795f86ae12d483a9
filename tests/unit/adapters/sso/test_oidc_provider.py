"""Tests for OIDC social login providers."""

import time
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from loyalty.adapters.sso import (
    AppleProvider,
    GoogleProvider,
    OIDCConfig,
    build_social_providers,
)
from loyalty.adapters.sso.oidc_provider import APPLE_ISSUER, GOOGLE_ISSUER
from loyalty.config import AppleAuthSettings, GoogleAuthSettings, SocialAuthSettings
from loyalty.core.auth.types import SocialProvider
from loyalty.core.exceptions import ConfigurationError, SocialProviderError
from loyalty.core.interfaces import SocialProviderClient


class FakeJwksClient:
    """Signing key source returning one fixed public key."""

    def __init__(self, public_key: Any) -> None:
        self._public_key = public_key

    def get_signing_key_from_jwt(self, token: str) -> SimpleNamespace:
        return SimpleNamespace(key=self._public_key)


@pytest.fixture(scope="module")
def signing_key() -> ec.EllipticCurvePrivateKey:
    """Return the key the fake provider signs ID tokens with."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def google_settings() -> GoogleAuthSettings:
    """Return Google settings."""
    return GoogleAuthSettings(
        client_id="google-client-id",
        client_secret="google-secret",  # pragma: allowlist secret
        redirect_uri="https://app.example.com/auth/google/callback",
    )


@pytest.fixture
def google_discovery() -> dict:
    """Mock Google discovery document."""
    return {
        "authorization_endpoint": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_endpoint": "https://oauth2.googleapis.com/token",
        "jwks_uri": "https://www.googleapis.com/oauth2/v3/certs",
        "issuer": GOOGLE_ISSUER,
    }


@pytest.fixture
def google(
    google_settings: GoogleAuthSettings,
    google_discovery: dict,
    signing_key: ec.EllipticCurvePrivateKey,
) -> GoogleProvider:
    """Return a Google provider with discovery preloaded."""
    provider = GoogleProvider(
        google_settings, jwks_client=FakeJwksClient(signing_key.public_key())
    )
    provider._discovery = google_discovery
    return provider


def _id_token(key: ec.EllipticCurvePrivateKey, **overrides: Any) -> str:
    now = int(time.time())
    claims = {
        "sub": "google-sub-1",
        "email": "grace@example.com",
        "email_verified": True,
        "given_name": "Grace",
        "family_name": "Hopper",
        "aud": "google-client-id",
        "iss": GOOGLE_ISSUER,
        "iat": now,
        "exp": now + 300,
        "nonce": "nonce-1",
    }
    claims.update(overrides)
    return jwt.encode(claims, key, algorithm="ES256")


def _token_response(id_token: str) -> MagicMock:
    response = MagicMock()
    response.json.return_value = {
        "access_token": "access-123",
        "id_token": id_token,
        "token_type": "Bearer",
        "expires_in": 3600,
    }
    response.raise_for_status = MagicMock()
    return response


class TestOIDCConfig:
    """Tests for OIDCConfig."""

    def test_default_scopes(self) -> None:
        """Returns default scopes when none specified."""
        config = OIDCConfig(
            issuer_url="https://idp.example.com",
            client_id="test",
            client_secret="test",  # pragma: allowlist secret
            redirect_uri="https://app.example.com/callback",
        )
        assert config.default_scopes == ["openid", "email", "profile"]


class TestGetAuthorizationUrl:
    """Tests for get_authorization_url method."""

    def test_implements_protocol(self, google: GoogleProvider) -> None:
        """Provider should satisfy SocialProviderClient."""
        assert isinstance(google, SocialProviderClient)

    async def test_builds_auth_url(self, google: GoogleProvider) -> None:
        """Builds correct authorization URL."""
        url = await google.get_authorization_url(state="test-state", nonce="test-nonce")

        assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
        assert "response_type=code" in url
        assert "client_id=google-client-id" in url
        assert "state=test-state" in url
        assert "nonce=test-nonce" in url
        assert "scope=openid+email+profile" in url

    async def test_discovery_failure(self, google_settings: GoogleAuthSettings) -> None:
        """Discovery errors surface as SocialProviderError."""
        provider = GoogleProvider(google_settings)

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.get = AsyncMock(
                side_effect=httpx.ConnectError("unreachable")
            )

            with pytest.raises(SocialProviderError):
                await provider.get_authorization_url("s", "n")


class TestExchangeCode:
    """Tests for exchange_code method."""

    async def test_returns_verified_identity(
        self, google: GoogleProvider, signing_key: ec.EllipticCurvePrivateKey
    ) -> None:
        """Valid ID token yields the identity."""
        with patch("httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=_token_response(_id_token(signing_key)))
            mock_client.return_value.__aenter__.return_value.post = post

            info = await google.exchange_code("auth-code-123", "nonce-1")

        assert info.external_id == "google-sub-1"
        assert info.email == "grace@example.com"
        assert info.email_verified is True
        assert info.first_name == "Grace"
        sent = post.call_args.kwargs["data"]
        assert sent["code"] == "auth-code-123"
        assert sent["client_secret"] == "google-secret"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"nonce": "other-nonce"},
            {"aud": "someone-else"},
            {"iss": "https://evil.example.com"},
            {"exp": int(time.time()) - 10},
        ],
    )
    async def test_rejects_bad_id_token(
        self,
        google: GoogleProvider,
        signing_key: ec.EllipticCurvePrivateKey,
        overrides: dict,
    ) -> None:
        """Nonce, audience, issuer and expiry are all enforced."""
        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=_token_response(_id_token(signing_key, **overrides))
            )

            with pytest.raises(SocialProviderError):
                await google.exchange_code("code", "nonce-1")

    async def test_rejects_foreign_signature(self, google: GoogleProvider) -> None:
        """ID tokens signed by another key are rejected."""
        other_key = ec.generate_private_key(ec.SECP256R1())
        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=_token_response(_id_token(other_key))
            )

            with pytest.raises(SocialProviderError):
                await google.exchange_code("code", "nonce-1")

    async def test_token_endpoint_rejects_code(self, google: GoogleProvider) -> None:
        """HTTP errors from the token endpoint surface as SocialProviderError."""
        response = MagicMock()
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "invalid_grant", request=MagicMock(), response=MagicMock()
        )
        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=response
            )

            with pytest.raises(SocialProviderError):
                await google.exchange_code("code", "nonce-1")

    async def test_allowed_domains(
        self,
        google_settings: GoogleAuthSettings,
        google_discovery: dict,
        signing_key: ec.EllipticCurvePrivateKey,
    ) -> None:
        """Accounts outside the allowed domains are rejected."""
        google_settings.allowed_domains = ["corp.example.com"]
        provider = GoogleProvider(
            google_settings, jwks_client=FakeJwksClient(signing_key.public_key())
        )
        provider._discovery = google_discovery

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=_token_response(_id_token(signing_key))
            )

            with pytest.raises(SocialProviderError, match="Domain"):
                await provider.exchange_code("code", "nonce-1")

        assert "hd=corp.example.com" in await provider.get_authorization_url("s", "n")


class TestAppleProvider:
    """Tests for Sign in with Apple."""

    @pytest.fixture
    def apple_settings(self, signing_key: ec.EllipticCurvePrivateKey) -> AppleAuthSettings:
        """Return Apple settings with a generated team key."""
        pem = signing_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ).decode()
        return AppleAuthSettings(
            client_id="com.example.loyalty",
            team_id="TEAM123456",
            key_id="KEY123",
            private_key=pem,
            redirect_uri="https://app.example.com/auth/apple/callback",
        )

    def test_client_secret_is_signed_jwt(
        self, apple_settings: AppleAuthSettings, signing_key: ec.EllipticCurvePrivateKey
    ) -> None:
        """Client secret is an ES256 JWT for Apple's audience."""
        provider = AppleProvider(apple_settings)

        secret = provider.client_secret()

        assert jwt.get_unverified_header(secret)["kid"] == "KEY123"
        claims = jwt.decode(
            secret, signing_key.public_key(), algorithms=["ES256"], audience=APPLE_ISSUER
        )
        assert claims["iss"] == "TEAM123456"
        assert claims["sub"] == "com.example.loyalty"

    async def test_string_email_verified(
        self, apple_settings: AppleAuthSettings, signing_key: ec.EllipticCurvePrivateKey
    ) -> None:
        """Apple's string booleans are understood."""
        provider = AppleProvider(
            apple_settings, jwks_client=FakeJwksClient(signing_key.public_key())
        )
        provider._discovery = {
            "authorization_endpoint": "https://appleid.apple.com/auth/authorize",
            "token_endpoint": "https://appleid.apple.com/auth/token",
            "jwks_uri": "https://appleid.apple.com/auth/keys",
            "issuer": APPLE_ISSUER,
        }
        id_token = _id_token(
            signing_key,
            sub="apple-sub",
            aud="com.example.loyalty",
            iss=APPLE_ISSUER,
            email_verified="true",
        )

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=_token_response(id_token)
            )

            info = await provider.exchange_code("code", "nonce-1")

        assert info.external_id == "apple-sub"
        assert info.email_verified is True
        assert "response_mode=form_post" in await provider.get_authorization_url("s", "n")

    def test_requires_team_key(self, apple_settings: AppleAuthSettings) -> None:
        """Missing signing material is a configuration error."""
        apple_settings.private_key = ""
        with pytest.raises(ConfigurationError):
            AppleProvider(apple_settings)


class TestBuildSocialProviders:
    """Tests for the provider factory."""

    def test_only_configured_providers(self, google_settings: GoogleAuthSettings) -> None:
        """Unset providers are skipped."""
        providers = build_social_providers(SocialAuthSettings(google=google_settings))

        assert set(providers) == {SocialProvider.GOOGLE}
        assert isinstance(providers[SocialProvider.GOOGLE], GoogleProvider)

    def test_nothing_configured(self) -> None:
        """No settings means no providers."""
        assert build_social_providers(SocialAuthSettings()) == {}
