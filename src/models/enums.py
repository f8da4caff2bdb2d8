from __future__ import annotations

from enum import StrEnum


class ContactCategory(StrEnum):
    __slots__ = ()

    FAMILY = "Family"
    FRIENDS = "Friends"
    MEDICAL = "Medical"
    AUTHORITIES = "Authorities"


class DeliveryChannel(StrEnum):
    """Outbound delivery channels used by the dispatch fan-out."""

    __slots__ = ()

    SMS = "SMS"
    EMAIL = "EMAIL"


class DispatchStatus(StrEnum):
    """Lifecycle of a single dispatch log entry.  SENT and FAILED are terminal."""

    __slots__ = ()

    PENDING = "PENDING"
    UPLINKING = "UPLINKING"
    SENT = "SENT"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (DispatchStatus.SENT, DispatchStatus.FAILED)


class EmergencyPhase(StrEnum):
    __slots__ = ()

    IDLE = "idle"
    ARMED = "armed"
    DISPATCHING = "dispatching"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
