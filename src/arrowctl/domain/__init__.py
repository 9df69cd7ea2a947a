"""Domain models for arrowctl.

This package contains the device model, connection states, structured
operation results and the typed notifications exchanged between
components. All models use Pydantic v2.
"""

from arrowctl.domain.events import (
    ClientEvent,
    ClientEventKind,
    DeviceEvent,
    DeviceEventKind,
    EventChannel,
    ServerEvent,
    ServerEventKind,
)
from arrowctl.domain.models import (
    CommandDispatchResult,
    ConnectionStatus,
    DeviceInfo,
    DeviceType,
    DispatchFailure,
    PairingResult,
    RegisteredDevice,
)

__all__ = [
    "ClientEvent",
    "ClientEventKind",
    "CommandDispatchResult",
    "ConnectionStatus",
    "DeviceEvent",
    "DeviceEventKind",
    "DeviceInfo",
    "DeviceType",
    "DispatchFailure",
    "EventChannel",
    "PairingResult",
    "RegisteredDevice",
    "ServerEvent",
    "ServerEventKind",
]
