"""Typed notifications emitted by the registry, server and client.

Every state change is published as an immutable event model through an
``EventChannel``. Observers are plain callables; a failing observer is
logged and never interrupts the component that emitted the event.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Callable, Generic, TypeVar

from pydantic import BaseModel, ConfigDict

from arrowctl.domain.models import ConnectionStatus, RegisteredDevice

logger = logging.getLogger(__name__)


class DeviceEventKind(str, enum.Enum):
    REGISTERED = "registered"
    UPDATED = "updated"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    PAIRED = "paired"
    UNPAIRED = "unpaired"
    REMOVED = "removed"


class ServerEventKind(str, enum.Enum):
    CONNECTION_OPENED = "connection_opened"
    CONNECTION_CLOSED = "connection_closed"
    CONNECTION_TERMINATED = "connection_terminated"
    COMMAND_RESULT = "command_result"


class ClientEventKind(str, enum.Enum):
    STATUS_CHANGED = "status_changed"
    REGISTERED = "registered"
    PAIRING_REQUIRED = "pairing_required"
    PAIRING_RESULT = "pairing_result"
    COMMAND_EXECUTED = "command_executed"
    CONTROLLER_ERROR = "controller_error"
    RECONNECT_SCHEDULED = "reconnect_scheduled"
    RECONNECT_EXHAUSTED = "reconnect_exhausted"


class DeviceEvent(BaseModel):
    """A change to a record in the device registry."""

    model_config = ConfigDict(frozen=True)

    kind: DeviceEventKind
    device: RegisteredDevice
    previous_id: str | None = None


class ServerEvent(BaseModel):
    """Something observed by the control server on one connection."""

    model_config = ConfigDict(frozen=True)

    kind: ServerEventKind
    connection_id: str
    device_id: str | None = None
    ip: str | None = None
    command_type: str | None = None
    success: bool | None = None
    error: str | None = None
    result: Any = None


class ClientEvent(BaseModel):
    """A state change or notable message on the target's control client."""

    model_config = ConfigDict(frozen=True)

    kind: ClientEventKind
    status: ConnectionStatus | None = None
    pairing_token: str | None = None
    success: bool | None = None
    error: str | None = None
    command_type: str | None = None
    code: int | None = None
    attempt: int | None = None
    delay: float | None = None


EventT = TypeVar("EventT", bound=BaseModel)


class EventChannel(Generic[EventT]):
    """An ordered set of observers for one event type."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._observers: list[Callable[[EventT], None]] = []

    def subscribe(self, observer: Callable[[EventT], None]) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe(self, observer: Callable[[EventT], None]) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def emit(self, event: EventT) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:
                logger.exception("%s observer failed handling %r", self._name, event)
