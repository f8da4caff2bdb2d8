"""Tests for the Gemini distress message writer (client mocked, no network)."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.models.emergency import LocationSnapshot
from src.services.llm import (
    DEFAULT_MODEL,
    SAFE_PLACES_UNAVAILABLE,
    STATIC_DISTRESS_MESSAGE,
    GeminiMessageWriter,
    MessageGenerationError,
    fallback_distress_message,
)

_FIX = LocationSnapshot(latitude=-29.8587, longitude=31.0218, battery_level=0.15, network_type="LTE")


def _writer(generate: AsyncMock) -> GeminiMessageWriter:
    writer = GeminiMessageWriter(api_key="test-key")
    client = MagicMock()
    client.aio.models.generate_content = generate
    writer._client = client
    return writer


class TestFallback:
    def test_without_location(self) -> None:
        assert fallback_distress_message("Naledi", None) == STATIC_DISTRESS_MESSAGE

    def test_with_location(self) -> None:
        message = fallback_distress_message("Naledi", _FIX)
        assert message == (
            "AeroBantu SOS: Distress signal from Naledi at -29.8587, 31.0218. Urgent assistance requested."
        )


class TestGeminiMessageWriter:
    async def test_prompt_carries_context(self) -> None:
        generate = AsyncMock(return_value=SimpleNamespace(text="  SOS from Naledi  "))
        message = await _writer(generate).generate_emergency_message("Naledi", _FIX, "Panic button")

        assert message == "SOS from Naledi", "model output should be stripped"
        prompt = generate.call_args.kwargs["contents"]
        assert "Target: Naledi" in prompt
        assert "-29.8587, 31.0218" in prompt
        assert "Battery: 15%" in prompt
        assert "Trigger: Panic button" in prompt
        assert "South Africa" in prompt

    async def test_empty_output_falls_back(self) -> None:
        generate = AsyncMock(return_value=SimpleNamespace(text=None))
        message = await _writer(generate).generate_emergency_message("Naledi", _FIX)
        assert message == fallback_distress_message("Naledi", _FIX)

    async def test_transient_failure_retried(self) -> None:
        generate = AsyncMock(side_effect=[RuntimeError("503"), SimpleNamespace(text="ok")])
        writer = _writer(generate)
        writer._generate.retry.sleep = AsyncMock()  # type: ignore[attr-defined]

        assert await writer.generate_emergency_message("Naledi", _FIX) == "ok"
        assert generate.await_count == 2, "a failed call should be retried"

    async def test_persistent_failure_raises(self) -> None:
        generate = AsyncMock(side_effect=RuntimeError("quota exceeded"))
        writer = _writer(generate)
        writer._generate.retry.sleep = AsyncMock()  # type: ignore[attr-defined]

        with pytest.raises(MessageGenerationError):
            await writer.generate_emergency_message("Naledi", _FIX)
        assert generate.await_count == 3, "three attempts should be made before giving up"


class TestFromSettings:
    def test_no_key_disables_writer(self) -> None:
        settings = SimpleNamespace(gemini_api_key="", gemini_model="gemini-2.5-flash")
        assert GeminiMessageWriter.from_settings(settings) is None, "no key should mean no collaborator"

    def test_key_and_model_applied(self) -> None:
        settings = SimpleNamespace(gemini_api_key="k-123", gemini_model="gemini-2.5-pro")
        writer = GeminiMessageWriter.from_settings(settings)
        assert writer is not None
        assert writer.model_name == "gemini-2.5-pro"
        assert writer._api_key == "k-123"

    def test_blank_model_uses_default(self) -> None:
        writer = GeminiMessageWriter.from_settings(SimpleNamespace(gemini_api_key="k", gemini_model=""))
        assert writer is not None and writer.model_name == DEFAULT_MODEL


def _maps_chunk(title: str | None, uri: str | None) -> SimpleNamespace:
    return SimpleNamespace(maps=SimpleNamespace(title=title, uri=uri), web=None)


class TestSafePlaces:
    async def test_grounded_places_listed(self) -> None:
        response = SimpleNamespace(
            text="Two stations nearby.",
            candidates=[
                SimpleNamespace(
                    grounding_metadata=SimpleNamespace(
                        grounding_chunks=[
                            _maps_chunk("Hillbrow SAPS", "https://maps.google.com/?cid=1"),
                            SimpleNamespace(maps=None, web=SimpleNamespace(title="News", uri="https://x")),
                            _maps_chunk(None, None),
                        ]
                    )
                )
            ],
        )
        generate = AsyncMock(return_value=response)
        result = await _writer(generate).find_nearby_safe_places(-26.19, 28.05)

        assert result.text == "Two stations nearby."
        assert [p.title for p in result.places] == ["Hillbrow SAPS", "Safe zone"], "only map chunks count"
        assert result.places[1].uri == "#"

        config = generate.call_args.kwargs["config"]
        lat_lng = config.tool_config.retrieval_config.lat_lng
        assert (lat_lng.latitude, lat_lng.longitude) == (-26.19, 28.05), "lookup must be anchored at the fix"
        assert config.tools[0].google_maps is not None
        assert "police stations" in generate.call_args.kwargs["contents"]

    async def test_no_grounding_metadata(self) -> None:
        generate = AsyncMock(return_value=SimpleNamespace(text="", candidates=None))
        result = await _writer(generate).find_nearby_safe_places(0.0, 0.0)
        assert result.places == []
        assert result.text, "an empty reply should still carry a summary"

    async def test_failure_never_raises(self) -> None:
        generate = AsyncMock(side_effect=RuntimeError("unavailable"))
        writer = _writer(generate)
        writer._generate.retry.sleep = AsyncMock()  # type: ignore[attr-defined]

        result = await writer.find_nearby_safe_places(-26.19, 28.05)
        assert result.text == SAFE_PLACES_UNAVAILABLE
        assert result.places == []
