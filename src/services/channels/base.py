from __future__ import annotations


class DeliveryError(Exception):
    """A provider rejected or failed to deliver a message."""


class ChannelNotConfigured(DeliveryError):
    """The channel has no usable provider credentials."""
