"""Customer notifications."""

from .dispatcher import NotificationDispatcher
from .email import EmailSender, SMTPEmailSender

__all__ = ["EmailSender", "NotificationDispatcher", "SMTPEmailSender"]
