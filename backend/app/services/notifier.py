"""Out-of-band user notifications (email), fire-and-forget from the caller's view."""
from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from ..config import settings

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, user, subject: str, body: str) -> tuple[bool, str | None]:
        ...


class LoggingNotifier:
    """Used when no SMTP server is configured; records what would have been sent."""

    def notify(self, user, subject: str, body: str) -> tuple[bool, str | None]:
        logger.info("Notification for %s: %s", user.email, subject)
        return True, None


class EmailNotifier:
    """Send plain-text mail through the configured SMTP server."""

    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        sender: str = "no-reply@production-orders.local",
        timeout: int = 10,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.timeout = timeout

    def _message(self, user, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = user.email
        message["Subject"] = subject
        message.set_content(body)
        return message

    def notify(self, user, subject: str, body: str) -> tuple[bool, str | None]:
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                smtp.send_message(self._message(user, subject, body))
        except (smtplib.SMTPException, OSError) as exc:
            error = f"{exc.__class__.__name__}: {exc}"
            logger.warning("Failed to notify %s: %s", user.email, error)
            return False, error
        return True, None


def get_notifier() -> Notifier:
    if not settings.SMTP_HOST:
        return LoggingNotifier()
    return EmailNotifier(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        username=settings.SMTP_USERNAME,
        password=settings.SMTP_PASSWORD,
        use_tls=settings.SMTP_USE_TLS,
        sender=settings.MAIL_FROM,
    )
