"""Core domain models for the arrowctl system.

These models describe the peers taking part in the protocol (controller
and targets), the controller's view of each registered target, and the
structured results returned by registry and dispatch operations instead
of raising on expected failures.
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class DeviceType(str, enum.Enum):
    """Role a peer plays in the protocol."""

    CONTROLLER = "controller"
    TARGET = "target"


class ConnectionStatus(str, enum.Enum):
    """Connection/pairing state of a device or of the target's client."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    PAIRED = "paired"
    ERROR = "error"


class DispatchFailure(str, enum.Enum):
    """Why a command could not be handed to the transport."""

    DEVICE_NOT_FOUND = "device_not_found"
    NOT_CONNECTED = "not_connected"
    NOT_PAIRED = "not_paired"
    UNSUPPORTED_COMMAND = "unsupported_command"
    NO_CONNECTION = "no_connection"
    INVALID_PARAMETERS = "invalid_parameters"
    SEND_FAILED = "send_failed"


# ---------------------------------------------------------------------------
# Wire base
# ---------------------------------------------------------------------------


class WireModel(BaseModel):
    """Base for models exchanged on the wire with camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump to a JSON-ready dict using wire (camelCase) names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Device models
# ---------------------------------------------------------------------------


class DeviceInfo(WireModel):
    """Identity a peer generates for itself at startup.

    The id is stable for the peer's process lifetime; a restarted peer
    usually comes back with a new id but the same ip/mac.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Peer-generated identity")
    name: str = Field(default="", description="Human-readable device name")
    ip: str = Field(default="", description="IPv4 address the peer reports for itself")
    mac: str | None = Field(default=None, description="Hardware address, if known")
    type: DeviceType = Field(description="Role of the peer")
    supported_commands: list[str] = Field(
        default_factory=list, description="Command identifiers the peer can execute"
    )

    def supports(self, command_type: str) -> bool:
        return command_type in self.supported_commands


class RegisteredDevice(BaseModel):
    """The controller registry's record of one target device.

    Mutated in place by the registry; everything else treats it as
    read-only. Timestamps are epoch seconds from the registry's clock.
    """

    device_info: DeviceInfo
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    first_seen: float
    last_seen: float
    connection_id: str | None = None
    paired: bool = False
    pairing_token: str | None = None
    pairing_expiration: float | None = None
    auth_token: str | None = None

    @property
    def id(self) -> str:
        return self.device_info.id

    @property
    def name(self) -> str:
        return self.device_info.name

    @property
    def is_connected(self) -> bool:
        """Whether the device currently has a live, registered session."""
        return self.status in (ConnectionStatus.CONNECTED, ConnectionStatus.PAIRED)


# ---------------------------------------------------------------------------
# Structured results
# ---------------------------------------------------------------------------


class PairingResult(BaseModel):
    """Outcome of a pair/unpair operation on the registry."""

    success: bool
    device: RegisteredDevice | None = None
    error: str | None = None


class CommandDispatchResult(BaseModel):
    """Outcome of handing a command to the transport.

    ``success`` only means the frame was buffered by the local transport;
    the remote execution result arrives later as a ``command_result``.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    command_type: str | None = None
    failure: DispatchFailure | None = None
    error: str | None = None
