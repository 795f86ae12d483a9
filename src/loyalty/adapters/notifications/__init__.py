"""Notification adapters."""

from loyalty.adapters.notifications.email import (
    ConsoleEmailSender,
    SmtpEmailSender,
    build_email_sender,
)

__all__ = [
    "ConsoleEmailSender",
    "SmtpEmailSender",
    "build_email_sender",
]
