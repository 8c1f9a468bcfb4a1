"""Delivery backends for guest notification email."""
from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Dict, Optional

from .config import EmailConfig, SMTPSettings

logger = logging.getLogger("mail")


@dataclass(frozen=True)
class OutboundEmail:
    """A rendered message ready for delivery."""

    to: str
    subject: str
    text_body: str
    html_body: str


class EmailProvider:
    """Base class for transports; subclasses implement :meth:`send`."""

    name = "base"

    def __init__(self, *, from_email: str, reply_to: Optional[str] = None) -> None:
        self.from_email = from_email
        self.reply_to = reply_to

    def send(self, email: OutboundEmail) -> None:
        raise NotImplementedError

    def describe(self) -> Dict[str, str]:
        return {"email_provider": self.name, "email_sender": self.from_email}


class LogOnlyProvider(EmailProvider):
    """Records messages on the ``mail`` logger instead of delivering them."""

    name = "dev"

    def send(self, email: OutboundEmail) -> None:
        logger.info("Guest email to %s: %s", email.to, email.subject, extra=self.describe())


class SMTPProvider(EmailProvider):
    name = "smtp"

    def __init__(self, *, from_email: str, settings: SMTPSettings, reply_to: Optional[str] = None) -> None:
        super().__init__(from_email=from_email, reply_to=reply_to)
        self.settings = settings

    def build_message(self, email: OutboundEmail) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.from_email
        message["To"] = email.to
        message["Subject"] = email.subject
        if self.reply_to:
            message["Reply-To"] = self.reply_to
        message.set_content(email.text_body)
        message.add_alternative(email.html_body, subtype="html")
        return message

    def send(self, email: OutboundEmail) -> None:
        message = self.build_message(email)
        settings = self.settings
        with smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout) as client:
            if settings.use_tls:
                client.starttls()
            if settings.has_credentials:
                client.login(settings.username, settings.password)
            client.send_message(message)


def create_email_provider(config: EmailConfig) -> EmailProvider:
    if config.provider_name == "smtp":
        return SMTPProvider(from_email=config.from_email, settings=config.smtp, reply_to=config.reply_to)
    if config.provider_name != "dev":
        logger.warning("Unknown EMAIL_PROVIDER %r, guest email will only be logged", config.provider_name)
    return LogOnlyProvider(from_email=config.from_email, reply_to=config.reply_to)


__all__ = [
    "EmailProvider",
    "LogOnlyProvider",
    "OutboundEmail",
    "SMTPProvider",
    "create_email_provider",
]
