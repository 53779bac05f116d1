"""Outbound share-link emails.

With SMTP credentials configured, mail goes out through fastapi-mail.
Without them, a logging sink prints the message instead so local setups
work offline.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType
from pydantic import ValidationError as PydanticValidationError

from dropzone.config import Settings
from dropzone.errors import ValidationError
from dropzone.templating import templates

logger = logging.getLogger(__name__)


@dataclass
class ShareEmail:
    share_url: str
    recipient_email: str
    sender_email: Optional[str] = None
    file_name: Optional[str] = None

    @property
    def subject(self) -> str:
        return f"File shared with you: {self.file_name or 'Download'}"


def render_share_email(email: ShareEmail) -> str:
    return templates.get_template("email.html").render(
        share_url=email.share_url,
        sender_email=email.sender_email,
        file_name=email.file_name or "Shared File",
    )


class Notifier(ABC):
    """Sink for rendered share emails."""

    @abstractmethod
    async def send(self, email: ShareEmail, html: str) -> str:
        """Deliver the message; returns a message id."""

    async def send_share_email(self, email: ShareEmail) -> str:
        return await self.send(email, render_share_email(email))


class LoggingNotifier(Notifier):
    """Local no-op sink: logs the message instead of sending it."""

    async def send(self, email: ShareEmail, html: str) -> str:
        logger.info(
            "EMAIL MOCK (no SMTP configured) to=%s subject=%r\n%s",
            email.recipient_email, email.subject, html,
        )
        return f"mock-{int(time.time() * 1000)}"


class SmtpNotifier(Notifier):

    def __init__(self, conf: ConnectionConfig):
        self.mailer = FastMail(conf)

    async def send(self, email: ShareEmail, html: str) -> str:
        try:
            message = MessageSchema(
                subject=email.subject,
                recipients=[email.recipient_email],
                reply_to=[email.sender_email] if email.sender_email else [],
                body=html,
                subtype=MessageType.html,
            )
        except PydanticValidationError as e:
            raise ValidationError("Invalid email address") from e
        await self.mailer.send_message(message)
        logger.info("Share email sent to %s", email.recipient_email)
        return f"smtp-{int(time.time() * 1000)}"


def build_notifier(settings: Settings) -> Notifier:
    if not (settings.SMTP_USER and settings.SMTP_PASS):
        logger.info("Configured local mock mail transport (logs to console)")
        return LoggingNotifier()
    conf = ConnectionConfig(
        MAIL_USERNAME=settings.SMTP_USER,
        MAIL_PASSWORD=settings.SMTP_PASS,
        MAIL_FROM=settings.SMTP_USER,
        MAIL_PORT=settings.SMTP_PORT,
        MAIL_SERVER=settings.SMTP_HOST,
        MAIL_FROM_NAME=settings.MAIL_FROM_NAME,
        MAIL_STARTTLS=settings.SMTP_STARTTLS,
        MAIL_SSL_TLS=settings.SMTP_SSL_TLS,
        USE_CREDENTIALS=True,
        VALIDATE_CERTS=True,
    )
    logger.info("Configured SMTP mail transport via %s", settings.SMTP_HOST)
    return SmtpNotifier(conf)
