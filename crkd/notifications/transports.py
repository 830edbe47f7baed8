"""
Mail transports.

A transport knows how to verify its credentials and how to hand one message
to a mail server. Two are provided:

- ``SMTPTransport``: authenticated SMTP via aiosmtplib (implicit TLS or
  STARTTLS)
- ``MailDiverTransport``: the MailDiver HTTP API via aiohttp

Transports raise ``TransportError`` on failure and never retry; retry policy
belongs to the caller.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Any, Dict, Optional

import aiohttp
import aiosmtplib
import structlog

from crkd.config import EmailConfig

from .errors import TransportError

logger = structlog.get_logger(__name__)


@dataclass
class OutgoingEmail:
    """One rendered message addressed to one recipient."""
    to: str
    subject: str
    html: str
    reply_to: Optional[str] = None


class MailTransport(ABC):
    """Interface implemented by every mail transport."""

    @abstractmethod
    async def verify(self) -> None:
        """Perform a real handshake with the mail provider; raise on failure."""

    @abstractmethod
    async def send(self, message: OutgoingEmail) -> None:
        """Deliver one message; raise ``TransportError`` on failure."""

    @abstractmethod
    def describe(self) -> Dict[str, Any]:
        """Non-secret settings, for status output and logs."""


class SMTPTransport(MailTransport):
    """
    Authenticated SMTP transport.

    Each verify or send opens its own connection, so concurrent sends never
    share SMTP session state.
    """

    def __init__(self,
                 host: str,
                 port: int,
                 username: str,
                 password: str,
                 sender: str,
                 sender_name: Optional[str] = None,
                 secure: bool = False,
                 validate_certs: bool = True,
                 timeout_seconds: float = 30.0):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.sender_name = sender_name
        self.secure = secure
        self.validate_certs = validate_certs
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_config(cls, config: EmailConfig) -> 'SMTPTransport':
        return cls(
            host=config.host,
            port=config.port,
            username=config.username or "",
            password=config.password or "",
            sender=config.sender,
            sender_name=config.from_name,
            secure=config.secure,
            validate_certs=config.validate_certs,
            timeout_seconds=config.send_timeout_seconds
        )

    def describe(self) -> Dict[str, Any]:
        return {
            'transport': 'smtp',
            'host': self.host,
            'port': self.port,
            'secure': self.secure,
            'user': self.username,
        }

    async def _open(self) -> aiosmtplib.SMTP:
        smtp = aiosmtplib.SMTP(
            hostname=self.host,
            port=self.port,
            timeout=self.timeout_seconds,
            use_tls=self.secure,
            start_tls=False,
            validate_certs=self.validate_certs
        )
        await smtp.connect()
        if not self.secure:
            await smtp.starttls()
        await smtp.login(self.username, self.password)
        return smtp

    async def verify(self) -> None:
        try:
            smtp = await self._open()
            await smtp.quit()
        except aiosmtplib.SMTPException as e:
            raise TransportError(f"SMTP verification failed: {e}") from e
        except OSError as e:
            raise TransportError(f"Cannot reach SMTP server {self.host}:{self.port}: {e}") from e

        logger.info("SMTP transport verified", **self.describe())

    def build_message(self, message: OutgoingEmail) -> EmailMessage:
        msg = EmailMessage()
        msg['From'] = formataddr((self.sender_name, self.sender)) if self.sender_name else self.sender
        msg['To'] = message.to
        msg['Subject'] = message.subject
        msg['Message-ID'] = make_msgid()
        if message.reply_to:
            msg['Reply-To'] = message.reply_to
        msg.set_content("This message requires an HTML capable email client.")
        msg.add_alternative(message.html, subtype='html')
        return msg

    async def send(self, message: OutgoingEmail) -> None:
        try:
            msg = self.build_message(message)
        except ValueError as e:
            raise TransportError(f"Cannot build message for {message.to}: {e}") from e

        try:
            smtp = await self._open()
            try:
                await smtp.send_message(msg)
            finally:
                await smtp.quit()
        except aiosmtplib.SMTPResponseException as e:
            raise TransportError(f"{e.code} {e.message}", status=e.code) from e
        except aiosmtplib.SMTPException as e:
            raise TransportError(str(e)) from e
        except OSError as e:
            raise TransportError(f"Cannot reach SMTP server {self.host}:{self.port}: {e}") from e


class MailDiverTransport(MailTransport):
    """MailDiver HTTP API transport."""

    def __init__(self,
                 api_key: str,
                 sender: str,
                 sender_name: Optional[str] = None,
                 api_url: str = "https://api.maildiver.com/v1/messages",
                 verify_url: str = "https://api.maildiver.com/v1/domains",
                 timeout_seconds: float = 30.0):
        if not api_key:
            raise ValueError("MAILDRIVER_API_KEY environment variable is required")
        self.api_key = api_key
        self.sender = sender
        self.sender_name = sender_name
        self.api_url = api_url
        self.verify_url = verify_url
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_config(cls, config: EmailConfig) -> 'MailDiverTransport':
        return cls(
            api_key=config.api_key or "",
            sender=config.sender,
            sender_name=config.from_name,
            api_url=config.api_url,
            verify_url=config.verify_url,
            timeout_seconds=config.send_timeout_seconds
        )

    def describe(self) -> Dict[str, Any]:
        return {'transport': 'maildiver', 'api_url': self.api_url, 'from_email': self.sender}

    def _headers(self) -> Dict[str, str]:
        return {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json'
        }

    def build_payload(self, message: OutgoingEmail) -> Dict[str, Any]:
        sender: Dict[str, str] = {'email': self.sender}
        if self.sender_name:
            sender['name'] = self.sender_name
        payload: Dict[str, Any] = {
            'from': sender,
            'to': [{'email': message.to}],
            'subject': message.subject,
            'html': message.html,
        }
        if message.reply_to:
            payload['reply_to'] = {'email': message.reply_to}
        return payload

    async def verify(self) -> None:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    self.verify_url,
                    headers=self._headers(),
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
                ) as response:
                    if response.status in (401, 403):
                        raise TransportError("MailDiver rejected the API key", status=response.status)
                    if response.status >= 400:
                        error_text = await response.text()
                        raise TransportError(
                            f"MailDiver verification failed: {error_text}", status=response.status
                        )
        except aiohttp.ClientError as e:
            raise TransportError(f"Cannot reach MailDiver API: {e}") from e

        logger.info("MailDiver transport verified", **self.describe())

    async def send(self, message: OutgoingEmail) -> None:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.api_url,
                    headers=self._headers(),
                    json=self.build_payload(message),
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
                ) as response:
                    if response.status not in (200, 201, 202):
                        error_text = await response.text()
                        raise TransportError(
                            f"MailDiver returned {response.status}: {error_text}",
                            status=response.status
                        )
        except aiohttp.ClientError as e:
            raise TransportError(f"Cannot reach MailDiver API: {e}") from e


def create_transport(config: EmailConfig) -> MailTransport:
    """Build the transport selected by ``EMAIL_TRANSPORT``."""
    if config.transport == "maildiver":
        return MailDiverTransport.from_config(config)
    return SMTPTransport.from_config(config)
