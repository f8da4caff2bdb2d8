from src.models.dispatch import (
    AuthorityResult,
    ChannelResult,
    DispatchAlertRequest,
    DispatchAlertResponse,
    DispatchContact,
)
from src.models.emergency import (
    ChannelKey,
    Contact,
    DispatchLogEntry,
    EmergencySession,
    LocationSnapshot,
)
from src.models.enums import (
    ContactCategory,
    DeliveryChannel,
    DispatchStatus,
    EmergencyPhase,
)
from src.models.safety import SafePlace, SafePlacesResult
from src.models.tracking import TrackingRecord, TrackingUpdate

__all__ = [
    "AuthorityResult",
    "ChannelKey",
    "ChannelResult",
    "Contact",
    "ContactCategory",
    "DeliveryChannel",
    "DispatchAlertRequest",
    "DispatchAlertResponse",
    "DispatchContact",
    "DispatchLogEntry",
    "DispatchStatus",
    "EmergencyPhase",
    "EmergencySession",
    "LocationSnapshot",
    "SafePlace",
    "SafePlacesResult",
    "TrackingRecord",
    "TrackingUpdate",
]
