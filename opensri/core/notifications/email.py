"""Outbound email transport."""

from __future__ import annotations

import smtplib
import ssl
from email.message import EmailMessage
from typing import Protocol

from opensri.exceptions import NotificationError
from opensri.utils.config import Settings
from opensri.utils.logging import get_logger

logger = get_logger(__name__)

SMTP_SSL_PORT = 465


class EmailSender(Protocol):
    """Delivers one fully built message or raises."""

    def send(self, message: EmailMessage) -> None: ...


class SMTPEmailSender:
    """SMTP delivery: implicit TLS on port 465, STARTTLS otherwise."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> SMTPEmailSender:
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password.get_secret_value(),
            timeout=settings.smtp_timeout,
        )

    def send(self, message: EmailMessage) -> None:
        """Send ``message``.

        Raises:
            NotificationError: On connection, authentication or delivery failure
        """
        context = ssl.create_default_context()
        try:
            if self.port == SMTP_SSL_PORT:
                with smtplib.SMTP_SSL(
                    self.host, self.port, context=context, timeout=self.timeout
                ) as server:
                    self._deliver(server, message)
            else:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    self._deliver(server, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                "smtp_send_failed",
                host=self.host,
                port=self.port,
                recipient=message["To"],
                error=str(e),
                error_type=type(e).__name__,
            )
            raise NotificationError(
                f"SMTP delivery to {message['To']} failed: {e}",
                context={"host": self.host, "port": self.port},
                original_error=e,
            ) from e

    def _deliver(self, server: smtplib.SMTP, message: EmailMessage) -> None:
        if self.username:
            server.login(self.username, self.password)
        server.send_message(message)
