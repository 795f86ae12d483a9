"""Account emails sent by the auth flows."""

from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode
from uuid import UUID

import structlog

from loyalty.core.interfaces import EmailSender

logger = structlog.get_logger()

FOOTER = "If you did not request this, you can ignore this email."


@dataclass(frozen=True)
class AccountEmail:
    """A rendered email ready for an EmailSender."""

    to_address: str
    subject: str
    body: str


def password_reset_email(to_address: str, token: str, frontend_url: str) -> AccountEmail:
    """Render the reset-link email."""
    link = f"{frontend_url.rstrip('/')}/password-reset/confirm?{urlencode({'token': token})}"
    body = (
        "We received a request to reset your loyalty account password.\n\n"
        f"Reset your password: {link}\n\n"
        f"{FOOTER}\n"
    )
    return AccountEmail(to_address, "Reset your password", body)


def email_confirmation_email(
    to_address: str, user_id: UUID, token: str, frontend_url: str
) -> AccountEmail:
    """Render the confirm-your-address email."""
    query = urlencode({"user_id": str(user_id), "token": token})
    link = f"{frontend_url.rstrip('/')}/confirm-email?{query}"
    body = (
        "Welcome! Please confirm your email address to activate your account.\n\n"
        f"Confirm your email: {link}\n\n"
        f"{FOOTER}\n"
    )
    return AccountEmail(to_address, "Confirm your email address", body)


async def dispatch(sender: EmailSender, email: AccountEmail, event: str, **context: Any) -> bool:
    """Send an account email without letting delivery failures escape.

    Called after the state change has been committed; a failed send is
    logged and reported through the return value only.
    """
    try:
        sent = await sender.send(email.to_address, email.subject, email.body)
    except Exception:
        logger.exception(f"{event}_email_failed", **context)
        return False

    if sent:
        logger.info(f"{event}_email_sent", **context)
    else:
        logger.error(f"{event}_email_failed", **context)
    return sent
