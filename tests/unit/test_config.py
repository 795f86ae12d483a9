"""Tests for environment-driven settings."""

from datetime import timedelta

import pytest

from loyalty.config import Settings


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Unset variables fall back to defaults."""
        for name in ("JWT_SECRET_KEY", "GOOGLE_CLIENT_ID", "APPLE_CLIENT_ID", "EMAIL_CONSOLE"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings()

        assert settings.jwt.expiration_minutes == 60
        assert settings.tokens.password_reset_ttl == timedelta(hours=1)
        assert settings.tokens.email_confirmation_ttl == timedelta(days=1)
        assert settings.social.google is None
        assert settings.social.apple is None
        assert settings.email_console is False

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Variables override defaults."""
        monkeypatch.setenv("JWT_SECRET_KEY", "s" * 40)
        monkeypatch.setenv("JWT_EXPIRATION_MINUTES", "15")
        monkeypatch.setenv("PASSWORD_RESET_TTL_MINUTES", "30")
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "gid")
        monkeypatch.setenv("GOOGLE_ALLOWED_DOMAINS", "a.com, b.com")
        monkeypatch.setenv("EMAIL_CONSOLE", "true")
        monkeypatch.setenv("SMTP_USE_TLS", "false")

        settings = Settings()

        assert settings.jwt.secret == "s" * 40
        assert settings.jwt.expiration_minutes == 15
        assert settings.tokens.password_reset_ttl == timedelta(minutes=30)
        assert settings.social.google is not None
        assert settings.social.google.allowed_domains == ["a.com", "b.com"]
        assert settings.email_console is True
        assert settings.email.use_tls is False
