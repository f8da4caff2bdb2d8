"""AeroBantu service layer -- storage, tracking, notification channels,
authority relay, dispatch orchestration and message generation.
"""

from __future__ import annotations

from src.services.authority import AuthorityRelay
from src.services.dispatch import DispatchOrchestrator, DispatchOutcome, InvalidDispatchRequest
from src.services.llm import GeminiMessageWriter, MessageGenerationError
from src.services.notifications import NotificationGateway
from src.services.storage import (
    InMemoryRecordBackend,
    RecordStore,
    RedisRecordBackend,
    StorageUnavailableError,
)
from src.services.tracking import TrackingStore

__all__ = [
    "AuthorityRelay",
    "DispatchOrchestrator",
    "DispatchOutcome",
    "GeminiMessageWriter",
    "InMemoryRecordBackend",
    "InvalidDispatchRequest",
    "MessageGenerationError",
    "NotificationGateway",
    "RecordStore",
    "RedisRecordBackend",
    "StorageUnavailableError",
    "TrackingStore",
]
