"""Gemini-backed distress message writer and safe-zone lookup.

Turns a location fix and trigger reason into a short, human-readable
distress message, and lists safe places near a position.  Callers
must treat this as an unreliable external collaborator:
:meth:`GeminiMessageWriter.generate_emergency_message` raises on failure,
and the emergency state machine falls back to a static template.
"""

from __future__ import annotations

from typing import Any, Final, Protocol

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.models.emergency import LocationSnapshot
from src.models.safety import SafePlace, SafePlacesResult

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

DEFAULT_MODEL: Final[str] = "gemini-2.5-flash"

STATIC_DISTRESS_MESSAGE: Final[str] = "AeroBantu SOS: Distress signal initiated. Assistance required."
SAFE_PLACES_UNAVAILABLE: Final[str] = "Safe-zone lookup unavailable. Move towards a busy, well-lit public place."

_DISTRESS_PROMPT: Final[str] = """\
DISTRESS SIGNAL DETECTED:
Target: {name}
Coordinates: {lat}, {lng}
Battery: {battery}%
Network: {network}
Trigger: {reason}
Context: South Africa (Immediate assistance required).

Write a single SMS-length distress message (under 300 characters) for \
the person's emergency contacts.  Include the coordinates and a Google \
Maps link.  Plain text only.\
"""

_SAFE_PLACES_PROMPT: Final[str] = (
    "Locate the nearest SAPS police stations, secure hospitals and emergency rescue points."
)


class MessageGenerationError(RuntimeError):
    """The text-generation collaborator failed or returned nothing usable."""


class EmergencyMessageGenerator(Protocol):
    async def generate_emergency_message(
        self,
        name: str,
        location: LocationSnapshot,
        reason: str | None = None,
    ) -> str: ...


def fallback_distress_message(name: str, location: LocationSnapshot | None) -> str:
    """Fixed template embedding whatever is known."""
    if location is None:
        return STATIC_DISTRESS_MESSAGE
    return (
        f"AeroBantu SOS: Distress signal from {name} at "
        f"{location.latitude}, {location.longitude}. Urgent assistance requested."
    )


class GeminiMessageWriter:
    """Async Gemini client for distress messages and safe-zone lookups."""

    def __init__(self, api_key: str, model_name: str = DEFAULT_MODEL) -> None:
        self._api_key = api_key
        self._model_name = model_name
        self._client = None

    @classmethod
    def from_settings(cls, settings: object) -> GeminiMessageWriter | None:
        """Build a writer from ``gemini_api_key`` / ``gemini_model``, or ``None`` without a key."""
        api_key = getattr(settings, "gemini_api_key", "")
        if not api_key:
            logger.info("llm.disabled", reason="no_api_key")
            return None
        return cls(api_key, model_name=getattr(settings, "gemini_model", "") or DEFAULT_MODEL)

    @property
    def model_name(self) -> str:
        return self._model_name

    def _ensure_client(self):
        if self._client is None:
            from google import genai

            self._client = genai.Client(api_key=self._api_key)
            logger.info("llm.client_initialised", model=self._model_name)
        return self._client

    @retry(
        retry=retry_if_exception_type(MessageGenerationError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _generate(self, prompt: str, config: Any = None) -> Any:
        client = self._ensure_client()
        try:
            return await client.aio.models.generate_content(
                model=self._model_name,
                contents=prompt,
                config=config,
            )
        except Exception as exc:
            logger.warning("llm.generate_failed", error=str(exc))
            raise MessageGenerationError(str(exc)) from exc

    async def generate_emergency_message(
        self,
        name: str,
        location: LocationSnapshot,
        reason: str | None = None,
    ) -> str:
        battery = location.battery_percent
        prompt = _DISTRESS_PROMPT.format(
            name=name,
            lat=location.latitude,
            lng=location.longitude,
            battery=battery if battery is not None else "UNK",
            network=location.network_type or "UNK",
            reason=reason or "Manual SOS",
        )
        response = await self._generate(prompt)
        text = (response.text or "").strip()
        if not text:
            return fallback_distress_message(name, location)
        return text

    async def find_nearby_safe_places(self, latitude: float, longitude: float) -> SafePlacesResult:
        """Police stations, hospitals and rescue points near a position.

        Uses Google Maps grounding anchored at the given coordinates.
        Never raises: a failed lookup returns :data:`SAFE_PLACES_UNAVAILABLE`
        with no places.
        """
        from google.genai import types

        config = types.GenerateContentConfig(
            tools=[types.Tool(google_maps=types.GoogleMaps())],
            tool_config=types.ToolConfig(
                retrieval_config=types.RetrievalConfig(
                    lat_lng=types.LatLng(latitude=latitude, longitude=longitude),
                ),
            ),
        )
        try:
            response = await self._generate(_SAFE_PLACES_PROMPT, config)
        except MessageGenerationError:
            logger.warning("llm.safe_places_failed")
            return SafePlacesResult(text=SAFE_PLACES_UNAVAILABLE)

        places = _grounded_places(response)
        logger.info("llm.safe_places_found", count=len(places))
        return SafePlacesResult(
            text=(response.text or "").strip() or "Scan complete. Nearby safe places listed below.",
            places=places,
        )


def _grounded_places(response: Any) -> list[SafePlace]:
    candidates = getattr(response, "candidates", None) or []
    metadata = getattr(candidates[0], "grounding_metadata", None) if candidates else None
    chunks = getattr(metadata, "grounding_chunks", None) or []
    places: list[SafePlace] = []
    for chunk in chunks:
        maps = getattr(chunk, "maps", None)
        if maps is None:
            continue
        places.append(SafePlace(title=maps.title or "Safe zone", uri=maps.uri or "#"))
    return places
