"""Application settings loaded from environment.

The core never reads the environment itself: services receive the
dataclasses below through their constructors.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta


def _split(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class EmailConfig:
    """Email configuration."""

    smtp_host: str
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    from_email: str = "no-reply@loyalty.example.com"
    from_name: str = "Loyalty"
    use_tls: bool = True


@dataclass
class JwtSettings:
    """Access token signing configuration."""

    secret: str
    issuer: str = "loyalty"
    audience: str = "loyalty-api"
    expiration_minutes: int = 60
    algorithm: str = "HS256"


@dataclass
class TokenSettings:
    """Lifetimes for opaque tokens and the links that carry them."""

    password_reset_ttl: timedelta = timedelta(hours=1)
    email_confirmation_ttl: timedelta = timedelta(days=1)
    social_state_ttl: timedelta = timedelta(minutes=10)
    frontend_url: str = "http://localhost:3000"


@dataclass
class GoogleAuthSettings:
    """Google sign-in client configuration."""

    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: list[str] = field(default_factory=lambda: ["openid", "email", "profile"])
    allowed_domains: list[str] = field(default_factory=list)


@dataclass
class AppleAuthSettings:
    """Sign in with Apple client configuration."""

    client_id: str
    team_id: str
    key_id: str
    private_key: str
    redirect_uri: str
    scopes: list[str] = field(default_factory=lambda: ["openid", "email", "name"])


@dataclass
class SocialAuthSettings:
    """Configured social providers. A provider left as None is disabled."""

    google: GoogleAuthSettings | None = None
    apple: AppleAuthSettings | None = None


class Settings:
    """Application settings loaded from environment."""

    def __init__(self) -> None:
        """Load settings from environment variables."""
        self.database_url = os.getenv("DATABASE_URL", "postgresql://localhost:5432/loyalty")

        self.jwt = JwtSettings(
            secret=os.getenv("JWT_SECRET_KEY", ""),
            issuer=os.getenv("JWT_ISSUER", "loyalty"),
            audience=os.getenv("JWT_AUDIENCE", "loyalty-api"),
            expiration_minutes=int(os.getenv("JWT_EXPIRATION_MINUTES", "60")),
        )

        self.tokens = TokenSettings(
            password_reset_ttl=timedelta(
                minutes=int(os.getenv("PASSWORD_RESET_TTL_MINUTES", "60"))
            ),
            email_confirmation_ttl=timedelta(
                hours=int(os.getenv("EMAIL_CONFIRMATION_TTL_HOURS", "24"))
            ),
            social_state_ttl=timedelta(minutes=int(os.getenv("SOCIAL_STATE_TTL_MINUTES", "10"))),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
        )

        self.email = EmailConfig(
            smtp_host=os.getenv("SMTP_HOST", "localhost"),
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
            smtp_user=os.getenv("SMTP_USER") or None,
            smtp_password=os.getenv("SMTP_PASSWORD") or None,
            from_email=os.getenv("SMTP_FROM_EMAIL", "no-reply@loyalty.example.com"),
            from_name=os.getenv("SMTP_FROM_NAME", "Loyalty"),
            use_tls=os.getenv("SMTP_USE_TLS", "true").lower() == "true",
        )
        # Print links to the console instead of sending mail
        self.email_console = os.getenv("EMAIL_CONSOLE", "").lower() == "true"

        self.social = SocialAuthSettings(google=self._google(), apple=self._apple())

    @staticmethod
    def _google() -> GoogleAuthSettings | None:
        client_id = os.getenv("GOOGLE_CLIENT_ID", "")
        if not client_id:
            return None
        return GoogleAuthSettings(
            client_id=client_id,
            client_secret=os.getenv("GOOGLE_CLIENT_SECRET", ""),
            redirect_uri=os.getenv("GOOGLE_REDIRECT_URI", ""),
            allowed_domains=_split(os.getenv("GOOGLE_ALLOWED_DOMAINS", "")),
        )

    @staticmethod
    def _apple() -> AppleAuthSettings | None:
        client_id = os.getenv("APPLE_CLIENT_ID", "")
        if not client_id:
            return None
        return AppleAuthSettings(
            client_id=client_id,
            team_id=os.getenv("APPLE_TEAM_ID", ""),
            key_id=os.getenv("APPLE_KEY_ID", ""),
            private_key=os.getenv("APPLE_PRIVATE_KEY", "").replace("\\n", "\n"),
            redirect_uri=os.getenv("APPLE_REDIRECT_URI", ""),
        )
