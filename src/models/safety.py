"""Safe-zone lookup models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SafePlace(BaseModel):
    """A police station, hospital or rescue point returned by map grounding."""

    title: str
    uri: str = "#"


class SafePlacesResult(BaseModel):
    """Summary text plus the grounded places near a position."""

    text: str
    places: list[SafePlace] = Field(default_factory=list)
