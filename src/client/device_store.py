"""Persisted device state.

Everything the app remembers between launches -- the signed-in user,
the emergency contact list, the active emergency session and the live
tracking session code -- lives in one :class:`DeviceStore`.  The store
is loaded once at start (:meth:`DeviceStore.load`) and written back on
every change; listeners are notified after each save.

Components receive the store explicitly instead of reaching for
globals.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from typing import Final

import orjson
import structlog
from pydantic import BaseModel, Field, ValidationError

from src.models.emergency import Contact, EmergencySession, LocationSnapshot
from src.models.enums import ContactCategory

logger = structlog.get_logger(__name__)

Listener = Callable[["DeviceState"], None]


def default_contacts() -> list[Contact]:
    """Contacts seeded on first launch (South African emergency lines)."""
    return [
        Contact(id="1", name="SAPS (Police)", phone="10111", category=ContactCategory.AUTHORITIES, priority=0),
        Contact(id="2", name="Emergency Medical (RSA)", phone="112", category=ContactCategory.MEDICAL, priority=1),
        Contact(id="3", name="Netcare 911 / ER24", phone="082911", category=ContactCategory.MEDICAL, priority=2),
        Contact(
            id="4",
            name="Primary Guardian",
            phone="0821234567",
            email="guardian@example.co.za",
            category=ContactCategory.FAMILY,
            priority=3,
        ),
    ]


class DeviceUser(BaseModel):
    username: str
    tactical_id: str = ""
    full_name: str = ""
    blood_type: str = "N/A"
    emergency_note: str = ""

    @property
    def display_name(self) -> str:
        return self.full_name or self.username


class DeviceState(BaseModel):
    user: DeviceUser | None = None
    contacts: list[Contact] = Field(default_factory=default_contacts)
    session: EmergencySession | None = None
    tracking_session_id: str | None = None


_DEFAULT_DISPLAY_NAME: Final[str] = "AeroBantu User"


class DeviceStore:
    """JSON-file backed device state with save-on-change semantics."""

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._state = DeviceState()
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load(self) -> DeviceState:
        """Read state from disk.  A missing or unreadable file yields defaults."""
        if self._path is None or not self._path.exists():
            return self._state
        try:
            self._state = DeviceState.model_validate(orjson.loads(self._path.read_bytes()))
        except (orjson.JSONDecodeError, ValidationError, OSError):
            logger.warning("device_store.load_failed", path=str(self._path), exc_info=True)
            self._state = DeviceState()
        return self._state

    def save(self) -> None:
        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_bytes(orjson.dumps(self._state.model_dump(mode="json"), option=orjson.OPT_INDENT_2))
            os.replace(tmp, self._path)
        for listener in list(self._listeners):
            listener(self._state)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> DeviceState:
        return self._state

    @property
    def contacts(self) -> list[Contact]:
        return list(self._state.contacts)

    @property
    def enabled_contacts(self) -> list[Contact]:
        return [c for c in self._state.contacts if c.enabled]

    @property
    def session(self) -> EmergencySession | None:
        return self._state.session

    @property
    def display_name(self) -> str:
        user = self._state.user
        return user.display_name if user is not None else _DEFAULT_DISPLAY_NAME

    # ------------------------------------------------------------------
    # Mutations (each one persists)
    # ------------------------------------------------------------------

    def set_user(self, user: DeviceUser | None) -> None:
        self._state.user = user
        self.save()

    def set_contacts(self, contacts: list[Contact]) -> None:
        self._state.contacts = list(contacts)
        self.save()

    def upsert_contact(self, contact: Contact) -> None:
        contacts = [c for c in self._state.contacts if c.id != contact.id]
        contacts.append(contact)
        contacts.sort(key=lambda c: c.priority)
        self.set_contacts(contacts)

    def remove_contact(self, contact_id: str) -> None:
        self.set_contacts([c for c in self._state.contacts if c.id != contact_id])

    def start_session(self, reason: str | None = None) -> EmergencySession:
        """Create the active emergency session.

        Raises
        ------
        RuntimeError
            If a session is already active; there is at most one.
        """
        if self._state.session is not None and self._state.session.is_active:
            raise RuntimeError("An emergency session is already active")
        session = EmergencySession(reason=reason or "Manual user trigger")
        self._state.session = session
        self.save()
        return session

    def update_location(self, location: LocationSnapshot) -> None:
        session = self._state.session
        if session is None:
            return
        self._state.session = session.model_copy(update={"last_location": location})
        self.save()

    def clear_session(self) -> None:
        self._state.session = None
        self.save()

    def tracking_session_id(self, factory: Callable[[], str]) -> str:
        """Return the persisted tracking code, creating it on first use."""
        if not self._state.tracking_session_id:
            self._state.tracking_session_id = factory().upper()
            self.save()
        return self._state.tracking_session_id
