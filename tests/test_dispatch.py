"""Tests for the dispatch orchestrator and notification gateway.

Covers fan-out shape (one result per non-blank channel), per-channel
failure isolation, input validation and the informational authority
relay outcome.

All tests run WITHOUT network access.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from src.models.dispatch import AuthorityResult, DispatchContact
from src.models.enums import DeliveryChannel
from src.services.authority import AuthorityRelay
from src.services.channels import DeliveryError
from src.services.dispatch import DispatchOrchestrator, InvalidDispatchRequest
from src.services.notifications import NotificationGateway


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sms() -> AsyncMock:
    channel = AsyncMock()
    channel.send = AsyncMock(return_value=None)
    return channel


@pytest.fixture
def email() -> AsyncMock:
    channel = AsyncMock()
    channel.send = AsyncMock(return_value=None)
    return channel


@pytest.fixture
def orchestrator(sms: AsyncMock, email: AsyncMock) -> DispatchOrchestrator:
    return DispatchOrchestrator(NotificationGateway(sms=sms, email=email))


# ---------------------------------------------------------------------------
# Fan-out shape
# ---------------------------------------------------------------------------


class TestFanOut:
    async def test_one_result_per_non_blank_channel(
        self, orchestrator: DispatchOrchestrator, sms: AsyncMock, email: AsyncMock
    ) -> None:
        contacts = [
            DispatchContact(id="c1", name="Phone only", phone="0821234567", email=""),
            DispatchContact(id="c2", name="Email only", phone="", email="a@b.com"),
        ]
        outcome = await orchestrator.dispatch("test", contacts)

        keys = [(r.id, r.type) for r in outcome.results]
        assert keys == [("c1", DeliveryChannel.SMS), ("c2", DeliveryChannel.EMAIL)], (
            "should produce exactly one SMS and one EMAIL result"
        )
        sms.send.assert_awaited_once_with("0821234567", "test")
        email.send.assert_awaited_once_with("a@b.com", "test")

    async def test_contact_with_both_channels_gets_two_results(self, orchestrator: DispatchOrchestrator) -> None:
        contacts = [DispatchContact(id="c1", name="Both", phone="112", email="x@y.co.za")]
        outcome = await orchestrator.dispatch("help", contacts)
        assert [r.type for r in outcome.results] == [DeliveryChannel.SMS, DeliveryChannel.EMAIL], (
            "SMS should precede EMAIL for the same contact"
        )

    async def test_blank_contact_contributes_nothing(
        self, orchestrator: DispatchOrchestrator, sms: AsyncMock, email: AsyncMock
    ) -> None:
        contacts = [DispatchContact(id="c1", name="Nobody", phone="   ", email=None)]
        outcome = await orchestrator.dispatch("help", contacts)
        assert outcome.results == [], "a contact with only blank fields should yield no results"
        sms.send.assert_not_awaited()
        email.send.assert_not_awaited()

    async def test_targets_are_trimmed(self, orchestrator: DispatchOrchestrator, sms: AsyncMock) -> None:
        await orchestrator.dispatch("help", [DispatchContact(id="c1", name="A", phone="  10111 ")])
        sms.send.assert_awaited_once_with("10111", "help")


# ---------------------------------------------------------------------------
# Failure isolation
# ---------------------------------------------------------------------------


class TestFailureIsolation:
    async def test_failing_sms_does_not_block_other_sends(self, sms: AsyncMock, email: AsyncMock) -> None:
        async def _sms_send(target: str, body: str) -> None:
            if target == "000":
                raise DeliveryError("invalid number")

        sms.send = AsyncMock(side_effect=_sms_send)
        orchestrator = DispatchOrchestrator(NotificationGateway(sms=sms, email=email))
        contacts = [
            DispatchContact(id="bad", name="Bad", phone="000"),
            DispatchContact(id="good", name="Good", phone="0821234567"),
            DispatchContact(id="mail", name="Mail", email="a@b.com"),
        ]

        outcome = await orchestrator.dispatch("help", contacts)

        by_id = {r.id: r for r in outcome.results}
        assert by_id["bad"].ok is False, "the failing send should be recorded as not ok"
        assert by_id["bad"].error == "invalid number", "the provider error message should be preserved"
        assert by_id["good"].ok is True, "other SMS sends should still succeed"
        assert by_id["mail"].ok is True, "email sends should still succeed"
        assert sms.send.await_count == 2, "every SMS should have been attempted"
        assert outcome.sent == 2 and outcome.failed == 1

    async def test_all_channels_failing_still_returns_full_results(self, sms: AsyncMock, email: AsyncMock) -> None:
        sms.send = AsyncMock(side_effect=DeliveryError("sms down"))
        email.send = AsyncMock(side_effect=DeliveryError("smtp down"))
        orchestrator = DispatchOrchestrator(NotificationGateway(sms=sms, email=email))

        outcome = await orchestrator.dispatch(
            "help", [DispatchContact(id="c1", name="A", phone="112", email="a@b.com")]
        )
        assert len(outcome.results) == 2, "total failure is still reported per channel"
        assert all(not r.ok for r in outcome.results)

    async def test_empty_exception_message_becomes_send_failed(self, sms: AsyncMock, email: AsyncMock) -> None:
        sms.send = AsyncMock(side_effect=RuntimeError())
        orchestrator = DispatchOrchestrator(NotificationGateway(sms=sms, email=email))
        outcome = await orchestrator.dispatch("help", [DispatchContact(id="c1", name="A", phone="112")])
        assert outcome.results[0].error == "SEND_FAILED"


# ---------------------------------------------------------------------------
# Validation and authority relay
# ---------------------------------------------------------------------------


class TestValidation:
    async def test_empty_message_rejected(self, orchestrator: DispatchOrchestrator, sms: AsyncMock) -> None:
        with pytest.raises(InvalidDispatchRequest):
            await orchestrator.dispatch("", [DispatchContact(id="c1", name="A", phone="112")])
        sms.send.assert_not_awaited()

    async def test_too_long_message_rejected(self, orchestrator: DispatchOrchestrator) -> None:
        with pytest.raises(InvalidDispatchRequest):
            await orchestrator.dispatch("x" * 2001, [DispatchContact(id="c1", name="A", phone="112")])

    async def test_no_contacts_rejected(self, orchestrator: DispatchOrchestrator) -> None:
        with pytest.raises(InvalidDispatchRequest):
            await orchestrator.dispatch("help", [])


class TestAuthorityOutcome:
    async def test_disabled_relay_reported(self, orchestrator: DispatchOrchestrator) -> None:
        outcome = await orchestrator.dispatch("help", [DispatchContact(id="c1", name="A", phone="112")])
        assert outcome.authority == AuthorityResult(enabled=False)

    async def test_crashing_relay_does_not_fail_dispatch(self, sms: AsyncMock, email: AsyncMock) -> None:
        relay = AuthorityRelay("https://control-room.example/hook")
        orchestrator = DispatchOrchestrator(NotificationGateway(sms=sms, email=email), relay)

        with patch.object(AuthorityRelay, "relay", AsyncMock(side_effect=RuntimeError("boom"))):
            outcome = await orchestrator.dispatch("help", [DispatchContact(id="c1", name="A", phone="112")])

        assert outcome.results[0].ok is True, "channel results are unaffected by the relay"
        assert outcome.authority.enabled is True
        assert outcome.authority.ok is False
        assert outcome.authority.error == "boom"
