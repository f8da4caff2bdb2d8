"""Email delivery channel.

Providers:

* ``smtp`` -- any SMTP relay (SendGrid SMTP, Mailgun SMTP, Gmail app
  password, ...).  ``smtplib`` is blocking, so each send runs in a
  worker thread.
* ``mock`` -- logs the message and succeeds.
"""

from __future__ import annotations

import asyncio
import smtplib
import ssl
from email.message import EmailMessage
from typing import Any, Final

import structlog

from src.middleware.privacy import mask_target
from src.services.channels.base import ChannelNotConfigured, DeliveryError

logger = structlog.get_logger(__name__)

DEFAULT_SUBJECT: Final[str] = "AeroBantu SOS Alert"


class _EmailProviderBase:
    name: str = "base"

    async def send(self, to: str, subject: str, body: str) -> None:
        raise NotImplementedError


class SMTPProvider(_EmailProviderBase):
    """Plain-text mail over SMTP with STARTTLS (or implicit TLS when *secure*)."""

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int = 587,
        *,
        secure: bool = False,
        username: str = "",
        password: str = "",
        sender: str = "",
        timeout_seconds: float = 15.0,
    ) -> None:
        self._host = host
        self._port = port
        self._secure = secure
        self._username = username
        self._password = password
        self._sender = sender or username
        self._timeout = timeout_seconds

    def _build_message(self, to: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        return message

    def _send_blocking(self, message: EmailMessage) -> None:
        context = ssl.create_default_context()
        if self._secure:
            with smtplib.SMTP_SSL(self._host, self._port, timeout=self._timeout, context=context) as server:
                self._login_and_send(server, message)
        else:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
                server.starttls(context=context)
                self._login_and_send(server, message)

    def _login_and_send(self, server: smtplib.SMTP, message: EmailMessage) -> None:
        if self._username:
            server.login(self._username, self._password)
        server.send_message(message)

    async def send(self, to: str, subject: str, body: str) -> None:
        if not self._host:
            raise ChannelNotConfigured("SMTP not configured. Set SMTP_HOST/SMTP_PORT/SMTP_USER/SMTP_PASS.")
        if not self._sender:
            raise ChannelNotConfigured("Missing EMAIL_FROM or SMTP_USER.")
        message = self._build_message(to, subject, body)
        try:
            await asyncio.to_thread(self._send_blocking, message)
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(f"SMTP error: {exc}") from exc


class MockEmailProvider(_EmailProviderBase):
    name = "mock"

    async def send(self, to: str, subject: str, body: str) -> None:
        logger.info(
            "mock_email.sent",
            to=mask_target(to),
            subject=subject,
            message_preview=body[:80],
        )


class EmailChannel:
    """Email channel: ``send(target, body)`` succeeds or raises."""

    __slots__ = ("_provider", "_subject")

    def __init__(self, provider: _EmailProviderBase, *, subject: str = DEFAULT_SUBJECT) -> None:
        self._provider = provider
        self._subject = subject

    @classmethod
    def from_settings(cls, settings: Any) -> EmailChannel:
        name = settings.email_provider.lower()
        if name == "mock":
            return cls(MockEmailProvider())
        if name == "smtp":
            return cls(
                SMTPProvider(
                    settings.smtp_host,
                    settings.smtp_port,
                    secure=settings.smtp_secure,
                    username=settings.smtp_user,
                    password=settings.smtp_pass,
                    sender=settings.email_from,
                )
            )
        raise ValueError(f"Unknown email provider {settings.email_provider!r}. Supported: mock, smtp.")

    @property
    def provider_name(self) -> str:
        return self._provider.name

    async def send(self, target: str, body: str) -> None:
        address = target.strip()
        if "@" not in address:
            raise DeliveryError(f"Invalid email address: {target!r}")
        await self._provider.send(address, self._subject, body)
        logger.info("email.sent", to=mask_target(address), provider=self._provider.name)
