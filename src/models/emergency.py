"""Client-side emergency domain models.

These models back the emergency state machine and the persisted device
store.  They are plain pydantic models so they serialise cleanly to the
device store's JSON file and to the dispatch API payload.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import NamedTuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.models.enums import ContactCategory, DeliveryChannel, DispatchStatus


def _now_ms() -> int:
    return int(time.time() * 1000)


class ChannelKey(NamedTuple):
    """Composite key identifying one (contact, channel) delivery.

    Used on both the request-building side (log entries) and the
    response-reconciliation side (dispatch results).
    """

    contact_id: str
    channel: DeliveryChannel


class LocationSnapshot(BaseModel):
    """A single position fix.  Immutable once captured."""

    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    accuracy: float = 0.0
    timestamp: int = Field(default_factory=_now_ms)
    speed: float | None = None  # metres per second
    battery_level: float | None = None  # fraction 0..1
    network_type: str | None = None

    @property
    def speed_kmh(self) -> float:
        return max(0.0, (self.speed or 0.0) * 3.6)

    @property
    def battery_percent(self) -> int | None:
        if self.battery_level is None:
            return None
        return round(self.battery_level * 100)


class Contact(BaseModel):
    """An emergency contact on the user's device."""

    id: str = Field(default_factory=lambda: uuid4().hex[:9])
    name: str
    phone: str = ""
    email: str = ""
    category: ContactCategory = ContactCategory.FAMILY
    enabled: bool = True
    priority: int = 0

    def target_for(self, channel: DeliveryChannel) -> str:
        """Return the trimmed address for *channel* (may be empty)."""
        if channel == DeliveryChannel.SMS:
            return self.phone.strip()
        return self.email.strip()

    def channel_keys(self) -> list[ChannelKey]:
        """Channels this contact can be reached on, SMS first."""
        return [
            ChannelKey(self.id, channel)
            for channel in (DeliveryChannel.SMS, DeliveryChannel.EMAIL)
            if self.target_for(channel)
        ]


class EmergencySession(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex[:9])
    start_time: int = Field(default_factory=_now_ms)
    last_location: LocationSnapshot | None = None
    is_active: bool = True
    reason: str | None = None


class DispatchLogEntry(BaseModel):
    """UI-visible record of one (contact, channel) delivery attempt."""

    key: ChannelKey
    contact_name: str
    target: str
    status: DispatchStatus = DispatchStatus.PENDING
    timestamp: datetime = Field(default_factory=datetime.now)
    error: str | None = None

    @property
    def id(self) -> str:
        return f"{self.key.contact_id}:{self.key.channel.lower()}"

    @property
    def channel(self) -> DeliveryChannel:
        return self.key.channel

    def with_status(self, status: DispatchStatus, error: str | None = None) -> DispatchLogEntry:
        """Return a copy moved to *status*; terminal entries are returned unchanged."""
        if self.status.is_terminal:
            return self
        return self.model_copy(update={"status": status, "error": error})
