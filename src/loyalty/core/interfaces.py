"""Protocol definitions for external collaborators of the auth core.

The core only depends on these protocols, never on concrete
implementations: SMTP, console output, or a provider's HTTP API all sit
behind them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@runtime_checkable
class EmailSender(Protocol):
    """Interface for outbound email.

    Delivery is fire-and-forget from the flows' perspective: a False return
    or an exception is logged, never rolled back into the caller's state.
    """

    async def send(self, to_address: str, subject: str, body: str) -> bool:
        """Send a plain-text email.

        Args:
            to_address: Recipient address.
            subject: Subject line.
            body: Plain-text body.

        Returns:
            True if the message was handed to the transport.
        """
        ...


@dataclass
class SocialUserInfo:
    """Verified identity returned by a social provider."""

    external_id: str  # Unique user ID at the provider
    email: str
    email_verified: bool = False
    first_name: str | None = None
    last_name: str | None = None


@runtime_checkable
class SocialProviderClient(Protocol):
    """Interface for one social identity provider (Google, Apple).

    Implementations own the OAuth/OIDC wire mechanics; the core only sees
    the verified identity.
    """

    async def get_authorization_url(self, state: str, nonce: str) -> str:
        """Build the URL the user is redirected to.

        Args:
            state: State parameter for CSRF protection.
            nonce: Nonce for ID token replay protection.

        Returns:
            Authorization URL.
        """
        ...

    async def exchange_code(self, auth_code: str, nonce: str) -> SocialUserInfo:
        """Exchange an authorization code for a verified identity.

        Args:
            auth_code: Code returned by the provider callback.
            nonce: Nonce that must appear in the ID token.

        Returns:
            Verified identity.

        Raises:
            SocialProviderError: If the provider rejects the code or the ID
                token does not verify.
        """
        ...
