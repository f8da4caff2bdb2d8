"""Outbound delivery channels (SMS, email).

Each channel exposes a single ``send(target, body)`` coroutine that
either completes or raises :class:`DeliveryError`.
"""

from __future__ import annotations

from src.services.channels.base import ChannelNotConfigured, DeliveryError
from src.services.channels.email import EmailChannel
from src.services.channels.sms import SMSChannel

__all__ = [
    "ChannelNotConfigured",
    "DeliveryError",
    "EmailChannel",
    "SMSChannel",
]
