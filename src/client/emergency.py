"""Client-side emergency dispatch state machine.

Phases run ``IDLE -> ARMED -> DISPATCHING -> COMPLETE`` with a manual
``ARMED -> CANCELLED`` exit.  Every transition goes through
:meth:`EmergencyStateMachine._transition`, which rejects anything not
in :data:`_TRANSITIONS`.

The machine owns two timers: the countdown (one task per armed session)
and the location poller (alive from arming until :meth:`end`).  The
dispatch itself runs in its own task so that ending the session never
interrupts sends already in flight.

Hosts observe progress through :meth:`subscribe`; each phase change,
countdown tick and log update is delivered as a :class:`StateChange`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Final, Protocol

import structlog

from src.client.device_store import DeviceStore
from src.client.location import LocationPoller, LocationProvider
from src.middleware.privacy import mask_target
from src.models.dispatch import MAX_MESSAGE_LENGTH, DispatchAlertResponse
from src.models.emergency import Contact, DispatchLogEntry, LocationSnapshot
from src.models.enums import DispatchStatus, EmergencyPhase
from src.services.llm import (
    STATIC_DISTRESS_MESSAGE,
    EmergencyMessageGenerator,
    fallback_distress_message,
)

logger = structlog.get_logger(__name__)

_P = EmergencyPhase

_TRANSITIONS: Final[dict[tuple[EmergencyPhase, str], EmergencyPhase]] = {
    (_P.IDLE, "trigger"): _P.ARMED,
    (_P.ARMED, "tick"): _P.ARMED,
    (_P.ARMED, "countdown_elapsed"): _P.DISPATCHING,
    (_P.ARMED, "cancel"): _P.CANCELLED,
    (_P.DISPATCHING, "reconciled"): _P.COMPLETE,
    (_P.DISPATCHING, "end"): _P.IDLE,
    (_P.COMPLETE, "end"): _P.IDLE,
    (_P.CANCELLED, "end"): _P.IDLE,
}


class InvalidTransition(RuntimeError):
    """Raised when an event is not allowed in the current phase."""

    def __init__(self, phase: EmergencyPhase, event: str) -> None:
        super().__init__(f"Cannot {event} while {phase}")
        self.phase = phase
        self.event = event


class DispatchTransport(Protocol):
    """The one call the machine makes to the backend (see ``ApiClient``)."""

    async def send_alert(self, message: str, contacts: list[Contact]) -> DispatchAlertResponse: ...


@dataclass(frozen=True, slots=True)
class StateChange:
    """Snapshot delivered to observers after every change."""

    kind: str  # "phase" | "tick" | "log"
    phase: EmergencyPhase
    countdown: int
    log: tuple[DispatchLogEntry, ...] = field(default_factory=tuple)


Listener = Callable[[StateChange], None]


def build_dispatch_log(contacts: Sequence[Contact]) -> list[DispatchLogEntry]:
    """One PENDING entry per (enabled contact, non-blank channel) pair."""
    return [
        DispatchLogEntry(key=key, contact_name=contact.name, target=contact.target_for(key.channel))
        for contact in contacts
        if contact.enabled
        for key in contact.channel_keys()
    ]


def reconcile_dispatch_log(
    entries: Sequence[DispatchLogEntry],
    response: DispatchAlertResponse | None,
) -> list[DispatchLogEntry]:
    """Apply backend results to *entries* by (contact id, channel).

    Entries without a matching result, or every entry when *response*
    is ``None`` (transport failure), end up FAILED.
    """
    results = {r.key: r for r in response.results} if response is not None else {}
    reconciled: list[DispatchLogEntry] = []
    for entry in entries:
        result = results.get(entry.key)
        if result is None:
            reconciled.append(entry.with_status(DispatchStatus.FAILED, "NO_RESULT"))
        elif result.ok:
            reconciled.append(entry.with_status(DispatchStatus.SENT))
        else:
            reconciled.append(entry.with_status(DispatchStatus.FAILED, result.error))
    return reconciled


class EmergencyStateMachine:
    """Countdown, message composition, fan-out and reconciliation for one SOS.

    Parameters
    ----------
    store:
        Device store supplying the user, contacts and session.
    transport:
        Backend dispatch call; usually an :class:`~src.client.api.ApiClient`.
    location_provider:
        Source of position fixes.
    message_generator:
        Optional text-generation collaborator.  ``None`` always uses the
        fallback template.
    countdown_ticks, tick_seconds:
        Countdown length; 5 ticks of 1 second by default.
    location_interval_seconds:
        Fix refresh cadence while the session is alive.
    auto_countdown:
        When ``False`` no countdown timer is started and the host drives
        :meth:`tick` itself.
    on_alerts_sent:
        Awaited/called once after reconciliation, whatever the outcome.
    """

    def __init__(
        self,
        store: DeviceStore,
        transport: DispatchTransport,
        location_provider: LocationProvider,
        *,
        message_generator: EmergencyMessageGenerator | None = None,
        countdown_ticks: int = 5,
        tick_seconds: float = 1.0,
        location_interval_seconds: float = 10.0,
        auto_countdown: bool = True,
        on_alerts_sent: Callable[[list[DispatchLogEntry]], Awaitable[None] | None] | None = None,
    ) -> None:
        self._store = store
        self._transport = transport
        self._generator = message_generator
        self._countdown_ticks = countdown_ticks
        self._tick_seconds = tick_seconds
        self._auto_countdown = auto_countdown
        self._on_alerts_sent = on_alerts_sent

        self._poller = LocationPoller(
            location_provider,
            self._on_location,
            interval_seconds=location_interval_seconds,
        )
        self._listeners: list[Listener] = []

        self._phase = EmergencyPhase.IDLE
        self._countdown = 0
        self._log: list[DispatchLogEntry] = []
        self._message: str | None = None
        self._dispatch_latched = False
        self._generation = 0
        self._countdown_task: asyncio.Task[None] | None = None
        self._dispatch_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def phase(self) -> EmergencyPhase:
        return self._phase

    @property
    def countdown(self) -> int:
        return self._countdown

    @property
    def log(self) -> list[DispatchLogEntry]:
        return list(self._log)

    @property
    def message(self) -> str | None:
        """The distress message sent in this session, once composed."""
        return self._message

    @property
    def all_sent(self) -> bool:
        return bool(self._log) and all(e.status == DispatchStatus.SENT for e in self._log)

    @property
    def dispatch_task(self) -> asyncio.Task[None] | None:
        return self._dispatch_task

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _emit(self, kind: str) -> None:
        change = StateChange(kind=kind, phase=self._phase, countdown=self._countdown, log=tuple(self._log))
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("emergency.listener_failed", kind=kind)

    def _transition(self, event: str) -> None:
        target = _TRANSITIONS.get((self._phase, event))
        if target is None:
            raise InvalidTransition(self._phase, event)
        previous, self._phase = self._phase, target
        if previous != target:
            logger.info("emergency.transition", transition=event, source=previous, target=target)
            self._emit("phase")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def trigger(self, reason: str | None = None) -> None:
        """Arm the countdown and start location polling."""
        self._transition("trigger")
        self._generation += 1
        self._dispatch_latched = False
        self._log = []
        self._message = None
        self._countdown = self._countdown_ticks
        if self._store.session is not None:
            logger.info("emergency.stale_session_discarded", session_id=self._store.session.id)
            self._store.clear_session()
        self._store.start_session(reason)
        self._poller.start()
        if self._auto_countdown:
            self._countdown_task = asyncio.create_task(self._run_countdown())
        self._emit("tick")

    async def tick(self) -> None:
        """Advance the countdown by one.

        Safe to call redundantly: ticks outside ARMED are ignored and the
        hand-off to DISPATCHING happens at most once per session.
        """
        if self._phase != EmergencyPhase.ARMED:
            logger.debug("emergency.tick_ignored", phase=self._phase)
            return
        self._countdown = max(0, self._countdown - 1)
        if self._countdown > 0:
            self._transition("tick")
            self._emit("tick")
            return
        if self._dispatch_latched:
            return
        self._dispatch_latched = True
        self._emit("tick")
        self._transition("countdown_elapsed")
        self._dispatch_task = asyncio.create_task(self._run_dispatch(self._generation))

    async def cancel(self) -> None:
        """Abort during the countdown; no dispatch will be attempted."""
        self._transition("cancel")
        await self._stop_countdown()
        await self._poller.stop()
        self._store.clear_session()
        logger.info("emergency.cancelled")

    async def end(self) -> None:
        """Stop tracking and discard the session.

        Sends already in flight run to completion in the background.
        """
        self._transition("end")
        await self._stop_countdown()
        await self._poller.stop()
        self._generation += 1
        self._countdown = 0
        self._store.clear_session()
        self._emit("phase")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_countdown(self) -> None:
        while self._phase == EmergencyPhase.ARMED:
            await asyncio.sleep(self._tick_seconds)
            await self.tick()

    async def _stop_countdown(self) -> None:
        task, self._countdown_task = self._countdown_task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _on_location(self, fix: LocationSnapshot) -> None:
        self._store.update_location(fix)

    def _set_log(self, generation: int, entries: list[DispatchLogEntry]) -> None:
        # A dispatch outliving its session must not overwrite the next one.
        if generation != self._generation:
            return
        self._log = entries
        self._emit("log")

    async def _compose_message(self, reason: str | None) -> str:
        session = self._store.session
        location = session.last_location if session is not None else None
        name = self._store.display_name
        if location is None:
            return STATIC_DISTRESS_MESSAGE
        if self._generator is None:
            return fallback_distress_message(name, location)
        try:
            text = await self._generator.generate_emergency_message(name, location, reason)
        except Exception as exc:
            logger.warning("emergency.message_generation_failed", error=str(exc))
            return fallback_distress_message(name, location)
        text = (text or "").strip()
        if not text or len(text) > MAX_MESSAGE_LENGTH:
            logger.warning("emergency.generated_message_rejected", length=len(text))
            return fallback_distress_message(name, location)
        return text

    async def _run_dispatch(self, generation: int) -> None:
        session = self._store.session
        contacts = self._store.enabled_contacts
        log = build_dispatch_log(contacts)
        self._set_log(generation, log)

        message = await self._compose_message(session.reason if session is not None else None)
        if generation == self._generation:
            self._message = message
        contacts = [c for c in contacts if c.channel_keys()]

        if not contacts:
            logger.warning("emergency.no_reachable_contacts")
        else:
            log = [e.with_status(DispatchStatus.UPLINKING) for e in log]
            self._set_log(generation, log)
            response: DispatchAlertResponse | None = None
            try:
                response = await self._transport.send_alert(message, contacts)
            except Exception as exc:
                logger.error("emergency.dispatch_failed", error=str(exc))
            log = reconcile_dispatch_log(log, response)
            self._set_log(generation, log)

        for entry in log:
            if entry.status == DispatchStatus.FAILED:
                logger.warning(
                    "emergency.delivery_failed",
                    channel=entry.channel,
                    target=mask_target(entry.target),
                    error=entry.error,
                )

        if generation != self._generation:
            logger.info("emergency.dispatch_finished_after_end")
            return

        self._transition("reconciled")
        logger.info(
            "emergency.dispatch_complete",
            total=len(self._log),
            sent=sum(1 for e in self._log if e.status == DispatchStatus.SENT),
        )
        if self._on_alerts_sent is not None:
            outcome = self._on_alerts_sent(self.log)
            if asyncio.iscoroutine(outcome):
                await outcome

