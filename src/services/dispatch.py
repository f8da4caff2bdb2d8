"""Emergency dispatch orchestrator.

Fans a distress message out to every channel of every contact it is
given: phone -> SMS, email -> EMAIL.  Sends are independent.  A failing
phone number or an email provider outage is recorded against that one
``(contact, channel)`` pair and never prevents any other send from
being attempted.  Partial failure is data, not an exception.

Filtering disabled contacts is the caller's job; the orchestrator
fans out to whatever it receives.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

import structlog

from src.middleware.privacy import mask_target
from src.models.dispatch import (
    MAX_MESSAGE_LENGTH,
    AuthorityResult,
    ChannelResult,
    DispatchContact,
)
from src.models.enums import DeliveryChannel
from src.services.authority import AuthorityRelay
from src.services.notifications import NotificationGateway

logger = structlog.get_logger(__name__)


class InvalidDispatchRequest(ValueError):
    """Malformed dispatch input.  Raised before any send is attempted."""


@dataclass(slots=True)
class DispatchOutcome:
    results: list[ChannelResult]
    authority: AuthorityResult

    @property
    def sent(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)


def _targets(contact: DispatchContact) -> list[tuple[DeliveryChannel, str]]:
    pairs: list[tuple[DeliveryChannel, str]] = []
    phone = (contact.phone or "").strip()
    if phone:
        pairs.append((DeliveryChannel.SMS, phone))
    email = (contact.email or "").strip()
    if email:
        pairs.append((DeliveryChannel.EMAIL, email))
    return pairs


class DispatchOrchestrator:
    """Multi-channel fan-out with per-channel failure isolation."""

    __slots__ = ("_authority", "_gateway")

    def __init__(self, gateway: NotificationGateway, authority: AuthorityRelay | None = None) -> None:
        self._gateway = gateway
        self._authority = authority or AuthorityRelay()

    async def dispatch(self, message: str, contacts: list[DispatchContact]) -> DispatchOutcome:
        """Send *message* to every channel of every contact.

        Returns one :class:`ChannelResult` per attempted pair, ordered by
        contact and SMS before EMAIL, together with the authority relay
        outcome.

        Raises
        ------
        InvalidDispatchRequest
            If the message is empty or too long, or no contacts are given.
        """
        if not message or len(message) > MAX_MESSAGE_LENGTH:
            raise InvalidDispatchRequest(f"message must be 1-{MAX_MESSAGE_LENGTH} characters")
        if not contacts:
            raise InvalidDispatchRequest("at least one contact is required")

        start = time.perf_counter()
        sends = [
            self._send_one(contact.id, channel, target, message)
            for contact in contacts
            for channel, target in _targets(contact)
        ]

        results, authority = await asyncio.gather(
            asyncio.gather(*sends),
            self._relay(message, contacts),
        )
        outcome = DispatchOutcome(results=list(results), authority=authority)

        logger.info(
            "dispatch.complete",
            contacts=len(contacts),
            attempted=len(outcome.results),
            sent=outcome.sent,
            failed=outcome.failed,
            authority_enabled=authority.enabled,
            elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return outcome

    async def _send_one(
        self,
        contact_id: str,
        channel: DeliveryChannel,
        target: str,
        message: str,
    ) -> ChannelResult:
        try:
            await self._gateway.send(channel, target, message)
        except Exception as exc:
            logger.warning(
                "dispatch.send_failed",
                contact_id=contact_id,
                channel=channel,
                to=mask_target(target),
                error=str(exc),
            )
            return ChannelResult(id=contact_id, type=channel, ok=False, error=str(exc) or "SEND_FAILED")
        return ChannelResult(id=contact_id, type=channel, ok=True)

    async def _relay(self, message: str, contacts: list[DispatchContact]) -> AuthorityResult:
        try:
            return await self._authority.relay(message, contacts)
        except Exception as exc:
            logger.error("dispatch.authority_relay_crashed", exc_info=True)
            return AuthorityResult(enabled=self._authority.enabled, ok=False, error=str(exc) or "FAILED")
