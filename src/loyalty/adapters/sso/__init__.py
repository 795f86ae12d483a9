"""Social login adapters."""

from loyalty.adapters.sso.oidc_provider import (
    AppleProvider,
    GoogleProvider,
    OIDCConfig,
    OIDCProvider,
    OIDCTokens,
    build_social_providers,
)

__all__ = [
    "AppleProvider",
    "GoogleProvider",
    "OIDCConfig",
    "OIDCProvider",
    "OIDCTokens",
    "build_social_providers",
]
