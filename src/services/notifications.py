"""Notification gateway: one entry point for both outbound channels.

The gateway routes a ``(channel, target, body)`` triple to the SMS or
email channel.  Each call is independent and atomic per recipient and
channel; the gateway keeps no state between calls.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from src.models.enums import DeliveryChannel
from src.services.channels import EmailChannel, SMSChannel

logger = structlog.get_logger(__name__)


class Channel(Protocol):
    async def send(self, target: str, body: str) -> None: ...


class NotificationGateway:
    """Routes sends to the configured SMS and email channels."""

    __slots__ = ("_channels",)

    def __init__(self, *, sms: Channel, email: Channel) -> None:
        self._channels: dict[DeliveryChannel, Channel] = {
            DeliveryChannel.SMS: sms,
            DeliveryChannel.EMAIL: email,
        }

    @classmethod
    def from_settings(cls, settings: object) -> NotificationGateway:
        gateway = cls(
            sms=SMSChannel.from_settings(settings),
            email=EmailChannel.from_settings(settings),
        )
        logger.info(
            "notifications.gateway_initialised",
            sms_provider=getattr(settings, "sms_provider", ""),
            email_provider=getattr(settings, "email_provider", ""),
        )
        return gateway

    async def send(self, channel: DeliveryChannel, target: str, body: str) -> None:
        """Deliver *body* to *target* on *channel*.  Raises on failure."""
        await self._channels[channel].send(target, body)
