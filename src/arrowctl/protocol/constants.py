"""Protocol-wide constants shared by the controller and target roles."""

from __future__ import annotations

import enum

PROTOCOL_VERSION = "1.0.0"
PROTOCOL_NAME = "arrow-control"

# Ports
DEFAULT_CONTROL_PORT = 8080
DEFAULT_CONTROLLER_DISCOVERY_PORT = 3000
DEFAULT_TARGET_DISCOVERY_PORT = 8081
DEFAULT_API_PORT = 8000
BROADCAST_ADDRESS = "255.255.255.255"

# Timing (seconds)
DEFAULT_BROADCAST_INTERVAL = 5.0
DEFAULT_PING_INTERVAL = 30.0
DEFAULT_HEARTBEAT_INTERVAL = 30.0
PAIRING_TOKEN_TTL = 5 * 60.0
DISCOVERED_PEER_TTL = 5 * 60.0
DEFAULT_DEVICE_MAX_AGE = 24 * 60 * 60.0

# Reconnect backoff
DEFAULT_RECONNECT_BASE_DELAY = 1.0
DEFAULT_RECONNECT_MAX_DELAY = 30.0
DEFAULT_MAX_RECONNECT_ATTEMPTS = 10

# Random bytes per pairing/auth token (hex encoded, so twice as many chars)
DEFAULT_TOKEN_BYTES = 32


class MessageType(str, enum.Enum):
    ANNOUNCE = "announce"
    REGISTER = "register"
    REGISTERED = "registered"
    PAIRING_REQUEST = "pairing_request"
    PAIRING_RESPONSE = "pairing_response"
    COMMAND = "command"
    COMMAND_RESULT = "command_result"
    HEARTBEAT = "heartbeat"
    HEARTBEAT_ACK = "heartbeat_ack"
    ERROR = "error"


class CommandType(str, enum.Enum):
    ARROW_LEFT = "arrow_left"
    ARROW_RIGHT = "arrow_right"


class ErrorCode(enum.IntEnum):
    """Stable numeric codes carried by ``error`` messages."""

    INVALID_MESSAGE = 100
    AUTHENTICATION_FAILED = 101
    INVALID_COMMAND = 102
    INTERNAL_ERROR = 103
    NOT_PAIRED = 104


ARROW_COMMANDS: dict[str, CommandType] = {
    "left": CommandType.ARROW_LEFT,
    "right": CommandType.ARROW_RIGHT,
}

# Key names handed to the key-press capability for each arrow command
COMMAND_KEYS: dict[str, str] = {
    CommandType.ARROW_LEFT.value: "left",
    CommandType.ARROW_RIGHT.value: "right",
}
