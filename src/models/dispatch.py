"""Wire models for ``POST /api/v1/dispatch/alert``."""

from __future__ import annotations

from typing import Final

from pydantic import BaseModel, ConfigDict, Field

from src.models.emergency import ChannelKey
from src.models.enums import DeliveryChannel

MAX_MESSAGE_LENGTH: Final[int] = 2000


class DispatchContact(BaseModel):
    """A recipient as seen by the dispatch endpoint."""

    id: str
    name: str
    phone: str | None = None
    email: str | None = None


class DispatchAlertRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    contacts: list[DispatchContact] = Field(..., min_length=1)


class ChannelResult(BaseModel):
    """Outcome of one (contact, channel) send."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: DeliveryChannel
    ok: bool
    error: str | None = None

    @property
    def key(self) -> ChannelKey:
        return ChannelKey(self.id, self.type)


class AuthorityResult(BaseModel):
    """Informational outcome of the authority webhook relay."""

    enabled: bool
    ok: bool | None = None
    status: int | None = None
    error: str | None = None


class DispatchAlertResponse(BaseModel):
    ok: bool = True
    results: list[ChannelResult]
    authority: AuthorityResult
