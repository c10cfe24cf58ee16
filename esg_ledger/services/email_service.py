"""
ESG Ledger - Email Service

Delivery transport for the notification queue.
Supports SendGrid, Mailgun, or SMTP, and falls back to a logging mock
when no provider is configured.
"""

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

import httpx

from esg_ledger.config import Settings, settings as default_settings
from esg_ledger.utils.error_handling import TransportException

logger = logging.getLogger(__name__)


class EmailProvider:
    """Email provider types."""
    SMTP = "smtp"
    SENDGRID = "sendgrid"
    MAILGUN = "mailgun"
    MOCK = "mock"


@dataclass
class EmailMessage:
    """Email message data structure."""
    to: List[str]
    subject: str
    body_text: str


class EmailService:
    """
    Send plain-text email through the configured provider.

    ``send`` is the transport contract used by the notification queue:
    it returns on success and raises TransportException on any failure.
    """

    def __init__(self, config: Optional[Settings] = None):
        config = config or default_settings
        self.from_email = config.email_from
        self.from_name = config.mail_from_name
        self.timeout = config.email_timeout_seconds

        # SMTP settings
        self.smtp_host = config.mail_server
        self.smtp_port = config.mail_port
        self.smtp_username = config.mail_username
        self.smtp_password = config.mail_password
        self.smtp_use_tls = config.mail_use_tls

        # SendGrid settings
        self.sendgrid_api_key = config.sendgrid_api_key

        # Mailgun settings
        self.mailgun_api_key = config.mailgun_api_key
        self.mailgun_domain = config.mailgun_domain

        self.provider = self._determine_provider()

    def _determine_provider(self) -> str:
        """Determine which email provider to use based on configuration."""
        if self.sendgrid_api_key:
            return EmailProvider.SENDGRID
        elif self.mailgun_api_key and self.mailgun_domain:
            return EmailProvider.MAILGUN
        elif self.smtp_host:
            return EmailProvider.SMTP
        else:
            return EmailProvider.MOCK

    async def send(self, recipient: str, subject: str, body: str) -> None:
        """Deliver one message to one recipient."""
        await self.send_email(EmailMessage(to=[recipient], subject=subject, body_text=body))

    async def send_email(self, message: EmailMessage) -> None:
        """
        Send an email using the configured provider.

        Raises:
            TransportException: the provider rejected the message or was unreachable
        """
        if self.provider == EmailProvider.SENDGRID:
            await self._send_via_sendgrid(message)
        elif self.provider == EmailProvider.MAILGUN:
            await self._send_via_mailgun(message)
        elif self.provider == EmailProvider.SMTP:
            await self._send_via_smtp(message)
        else:
            await self._send_mock(message)

    async def _send_via_sendgrid(self, message: EmailMessage) -> None:
        """Send email via SendGrid API."""
        url = "https://api.sendgrid.com/v3/mail/send"

        payload = {
            "personalizations": [
                {
                    "to": [{"email": email} for email in message.to],
                }
            ],
            "from": {
                "email": self.from_email,
                "name": self.from_name,
            },
            "subject": message.subject,
            "content": [
                {"type": "text/plain", "value": message.body_text},
            ],
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self.sendgrid_api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportException(EmailProvider.SENDGRID, str(e), original_error=e) from e

        if response.status_code not in (200, 202):
            raise TransportException(
                EmailProvider.SENDGRID,
                f"API error {response.status_code}: {response.text}",
            )
        logger.info(f"Email sent via SendGrid to {message.to}")

    async def _send_via_mailgun(self, message: EmailMessage) -> None:
        """Send email via Mailgun API."""
        url = f"https://api.mailgun.net/v3/{self.mailgun_domain}/messages"

        data = {
            "from": f"{self.from_name} <{self.from_email}>",
            "to": message.to,
            "subject": message.subject,
            "text": message.body_text,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    url,
                    data=data,
                    auth=("api", self.mailgun_api_key),
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportException(EmailProvider.MAILGUN, str(e), original_error=e) from e

        if response.status_code != 200:
            raise TransportException(
                EmailProvider.MAILGUN,
                f"API error {response.status_code}: {response.text}",
            )
        logger.info(f"Email sent via Mailgun to {message.to}")

    async def _send_via_smtp(self, message: EmailMessage) -> None:
        """Send email via SMTP."""
        msg = MIMEMultipart('alternative')
        msg['Subject'] = message.subject
        msg['From'] = f"{self.from_name} <{self.from_email}>"
        msg['To'] = ', '.join(message.to)

        msg.attach(MIMEText(message.body_text, 'plain'))

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                if self.smtp_use_tls:
                    server.starttls(context=ssl.create_default_context())
                if self.smtp_username and self.smtp_password:
                    server.login(self.smtp_username, self.smtp_password)
                server.sendmail(self.from_email, message.to, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise TransportException(EmailProvider.SMTP, str(e), original_error=e) from e

        logger.info(f"Email sent via SMTP to {message.to}")

    async def _send_mock(self, message: EmailMessage) -> None:
        """Mock email sending for development."""
        logger.info(f"[MOCK EMAIL] To: {message.to} | Subject: {message.subject}")
        logger.debug(f"[MOCK EMAIL] Body: {message.body_text[:200]}...")
