"""
Transactional mail for password reset links.

BrevoMailer sends through the Brevo SMTP API. When BREVO_API_KEY is not
configured, LogMailer is used instead and only records that a reset was
requested (the link itself is never logged).
"""
from abc import ABC, abstractmethod
from typing import Optional

import httpx
import structlog

from dashboard.config import get_config
from shared.errors import MailDeliveryError

logger = structlog.get_logger()


class Mailer(ABC):
    """Interface for sending account mail."""

    @abstractmethod
    async def send_password_reset(self, to_email: str, reset_link: str) -> None:
        """
        Deliver a reset link.

        Raises:
            MailDeliveryError: If the mail provider is unreachable or
                rejects the message
        """


class LogMailer(Mailer):
    """Development mailer: logs the event, sends nothing."""

    async def send_password_reset(self, to_email: str, reset_link: str) -> None:
        logger.info("password_reset_mail_skipped", to_email=to_email, reason="no_mail_provider_configured")


class BrevoMailer(Mailer):
    """Mailer backed by the Brevo transactional email API."""

    base_url = "https://api.brevo.com/v3"

    def __init__(
        self,
        api_key: str,
        sender: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self.transport = transport

    async def send_password_reset(self, to_email: str, reset_link: str) -> None:
        payload = {
            "sender": {"name": "Voice Usage Dashboard", "email": self.sender},
            "to": [{"email": to_email, "name": to_email.split('@')[0]}],
            "subject": "Set your dashboard password",
            "htmlContent": (
                "<p>Use the link below to set a new password for your dashboard account.</p>"
                f'<p><a href="{reset_link}">Set password</a></p>'
                "<p>If you did not request this, you can ignore this email.</p>"
            ),
        }
        headers = {
            "accept": "application/json",
            "content-type": "application/json",
            "api-key": self.api_key,
        }
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout,
                                         transport=self.transport) as client:
                response = await client.post("/smtp/email", json=payload, headers=headers)
        except httpx.RequestError as e:
            logger.error("password_reset_mail_unreachable", to_email=to_email, error=str(e))
            raise MailDeliveryError("Mail provider is unreachable", detail=type(e).__name__)

        if not response.is_success:
            logger.error("password_reset_mail_failed", to_email=to_email, status=response.status_code)
            raise MailDeliveryError(
                f"Mail provider rejected the message with status {response.status_code}",
                detail=response.reason_phrase or None,
            )
        logger.info("password_reset_mail_sent", to_email=to_email)


def build_mailer(api_key: Optional[str] = None, sender: Optional[str] = None) -> Mailer:
    """Return the configured mailer."""
    config = get_config()
    api_key = api_key if api_key is not None else config.brevo_api_key
    if not api_key:
        return LogMailer()
    return BrevoMailer(api_key, sender or config.mail_sender)
