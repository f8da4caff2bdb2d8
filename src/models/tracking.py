"""Wire and storage models for the live tracking protocol."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TrackingUpdate(_CamelModel):
    """Body of ``POST /api/v1/tracking/update``."""

    session_id: str = Field(..., min_length=4, max_length=32)
    lat: float
    lng: float
    accuracy: float
    speed_kmh: float
    battery: float | None = None
    network: str | None = None

    @field_validator("session_id")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()

    @field_validator("lat", "lng", "accuracy", "speed_kmh", "battery", mode="before")
    @classmethod
    def _reject_non_numbers(cls, value: object) -> object:
        # Numeric strings and booleans would otherwise be coerced.
        if isinstance(value, (str, bool)):
            raise ValueError("must be a number")
        return value


class TrackingRecord(_CamelModel):
    """Latest known position for a session code.  Times are epoch milliseconds."""

    session_id: str
    lat: float
    lng: float
    accuracy: float
    speed_kmh: float
    battery: float | None = None
    network: str | None = None
    created_at: int
    updated_at: int

    def is_expired(self, now_ms: int, ttl_ms: int) -> bool:
        return self.updated_at < now_ms - ttl_ms
