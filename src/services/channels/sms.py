"""SMS delivery channel.

Providers:

* ``twilio`` -- Twilio Programmable Messaging REST API, called directly
  over ``httpx`` with HTTP basic auth (account SID / auth token).
* ``mock``   -- logs the message and succeeds; for local development.

A missing credential is not a startup error: the channel is still
constructed and every send raises :class:`ChannelNotConfigured`, so the
dispatch fan-out records a per-contact failure instead of refusing the
whole alert.
"""

from __future__ import annotations

import re
from typing import Any, Final
from uuid import uuid4

import httpx
import structlog

from src.middleware.privacy import mask_target
from src.services.channels.base import ChannelNotConfigured, DeliveryError

logger = structlog.get_logger(__name__)

_TWILIO_API_BASE: Final[str] = "https://api.twilio.com/2010-04-01"
_SEPARATORS: Final[re.Pattern[str]] = re.compile(r"[\s\-\(\)]+")


def normalise_phone(number: str) -> str:
    """Strip spaces, dashes and parentheses from *number*.

    Numbers are otherwise passed through untouched: short codes such as
    ``10111`` are valid emergency targets.
    """
    cleaned = _SEPARATORS.sub("", number.strip())
    if not cleaned or not re.fullmatch(r"\+?\d+", cleaned):
        raise DeliveryError(f"Invalid phone number: {number!r}")
    return cleaned


# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


class _SMSProviderBase:
    """Abstract base for SMS gateway providers."""

    name: str = "base"

    async def send(self, to: str, body: str) -> dict[str, Any]:
        raise NotImplementedError


class TwilioProvider(_SMSProviderBase):
    """Twilio Messages resource (``POST /Accounts/{sid}/Messages.json``)."""

    name = "twilio"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number
        self._timeout = timeout_seconds
        self._transport = transport

    async def send(self, to: str, body: str) -> dict[str, Any]:
        if not self._account_sid or not self._auth_token:
            raise ChannelNotConfigured("Twilio not configured. Set TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN.")
        if not self._from_number:
            raise ChannelNotConfigured("Missing TWILIO_FROM_NUMBER.")

        url = f"{_TWILIO_API_BASE}/Accounts/{self._account_sid}/Messages.json"
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(
                url,
                data={"From": self._from_number, "To": to, "Body": body},
                auth=(self._account_sid, self._auth_token),
            )
        if response.is_error:
            try:
                detail = response.json().get("message", "")
            except ValueError:
                detail = response.text[:200]
            raise DeliveryError(f"Twilio HTTP {response.status_code}: {detail}".rstrip(": "))
        return response.json()


class MockProvider(_SMSProviderBase):
    """Mock SMS provider for local development and testing."""

    name = "mock"

    async def send(self, to: str, body: str) -> dict[str, Any]:
        logger.info(
            "mock_sms.sent",
            to=mask_target(to),
            message_preview=body[:80],
            length=len(body),
        )
        return {"status": "mock", "sid": f"mock_{uuid4().hex[:12]}"}


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------


class SMSChannel:
    """SMS channel: ``send(target, body)`` succeeds or raises."""

    __slots__ = ("_provider",)

    def __init__(self, provider: _SMSProviderBase) -> None:
        self._provider = provider

    @classmethod
    def from_settings(cls, settings: Any) -> SMSChannel:
        name = settings.sms_provider.lower()
        if name == "mock":
            return cls(MockProvider())
        if name == "twilio":
            return cls(
                TwilioProvider(
                    settings.twilio_account_sid,
                    settings.twilio_auth_token,
                    settings.twilio_from_number,
                )
            )
        raise ValueError(f"Unknown SMS provider {settings.sms_provider!r}. Supported: mock, twilio.")

    @property
    def provider_name(self) -> str:
        return self._provider.name

    async def send(self, target: str, body: str) -> None:
        phone = normalise_phone(target)
        try:
            result = await self._provider.send(phone, body)
        except DeliveryError:
            raise
        except httpx.HTTPError as exc:
            raise DeliveryError(f"SMS transport error: {exc}") from exc
        logger.info(
            "sms.sent",
            to=mask_target(phone),
            provider=self._provider.name,
            provider_id=result.get("sid", ""),
        )
