"""Wire protocol shared by the controller and target roles.

Public API:
    ProtocolMessage -- Message envelope
    parse_message / validate_message -- Inbound validation
    build_message / build_error / encode_message -- Outbound construction
"""

from arrowctl.protocol.constants import (
    PROTOCOL_VERSION,
    CommandType,
    ErrorCode,
    MessageType,
)
from arrowctl.protocol.messages import (
    ProtocolMessage,
    build_error,
    build_message,
    encode_message,
    generate_token,
    parse_message,
    parse_payload,
    validate_message,
)

__all__ = [
    "PROTOCOL_VERSION",
    "CommandType",
    "ErrorCode",
    "MessageType",
    "ProtocolMessage",
    "build_error",
    "build_message",
    "encode_message",
    "generate_token",
    "parse_message",
    "parse_payload",
    "validate_message",
]
