"""Email adapters for account notifications."""

import asyncio
import smtplib
from email.mime.text import MIMEText

import structlog

from loyalty.config import EmailConfig
from loyalty.core.interfaces import EmailSender

logger = structlog.get_logger()


class SmtpEmailSender:
    """Delivers account emails via SMTP."""

    def __init__(self, config: EmailConfig):
        """Initialize the email sender.

        Args:
            config: Email configuration settings.
        """
        self.config = config

    def send_message(self, to_address: str, subject: str, body: str) -> bool:
        """Send a plain-text email.

        Returns True if the email was sent successfully.
        Note: This is synchronous - `send` runs it in a worker thread.
        """
        try:
            msg = MIMEText(body, "plain", "utf-8")
            msg["Subject"] = subject
            msg["From"] = f"{self.config.from_name} <{self.config.from_email}>"
            msg["To"] = to_address

            with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port) as server:
                if self.config.use_tls:
                    server.starttls()

                if self.config.smtp_user and self.config.smtp_password:
                    server.login(self.config.smtp_user, self.config.smtp_password)

                server.sendmail(
                    self.config.from_email,
                    [to_address],
                    msg.as_string(),
                )

            logger.info("email_sent", to=to_address, subject=subject)
            return True

        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                "email_error",
                to=to_address,
                subject=subject,
                error=str(e),
            )
            return False

    async def send(self, to_address: str, subject: str, body: str) -> bool:
        """Send a plain-text email without blocking the event loop."""
        return await asyncio.to_thread(self.send_message, to_address, subject, body)


class ConsoleEmailSender:
    """Prints account emails to stdout for demo/dev mode.

    Useful for:
    - Local development without SMTP setup
    - Demo environments where links must be clicked from the logs
    """

    async def send(self, to_address: str, subject: str, body: str) -> bool:
        """Print the email instead of sending it.

        Returns:
            True (console printing always succeeds).
        """
        print("\n" + "=" * 70, flush=True)
        print(f"[EMAIL] {subject}", flush=True)
        print(f"  To: {to_address}", flush=True)
        print(body, flush=True)
        print("=" * 70 + "\n", flush=True)
        return True


def build_email_sender(config: EmailConfig, console: bool = False) -> EmailSender:
    """Pick the console sender in dev mode, SMTP otherwise."""
    if console:
        return ConsoleEmailSender()
    return SmtpEmailSender(config)
