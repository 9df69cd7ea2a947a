"""Message envelope, payload models and validation for the wire protocol.

Every transport frame carries exactly one JSON object::

    {
        "type": "register",
        "version": "1.0.0",
        "timestamp": 1700000000000,
        "sender": {"id": "t1", "type": "target"},
        "data": {...}
    }

``data`` is shaped by ``type``; the payload models below describe each
shape using the camelCase field names that appear on the wire.
Validation never raises: it reports the first violated constraint.
"""

from __future__ import annotations

import json
import secrets
import time
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from arrowctl.domain.models import DeviceInfo, DeviceType, WireModel
from arrowctl.protocol.constants import (
    DEFAULT_TOKEN_BYTES,
    PROTOCOL_VERSION,
    ErrorCode,
    MessageType,
)

PayloadT = TypeVar("PayloadT", bound=BaseModel)


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class Sender(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: DeviceType


class ProtocolMessage(BaseModel):
    """The envelope shared by every message kind.

    ``type`` is kept as a plain string so that messages of unknown kinds
    still parse and can be answered with an ``error`` message.
    """

    model_config = ConfigDict(frozen=True)

    type: str
    version: str = PROTOCOL_VERSION
    timestamp: int
    sender: Sender
    data: dict[str, Any] = Field(default_factory=dict)


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool
    error: str | None = None


class ParseResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: ProtocolMessage | None = None
    error: str | None = None

    @property
    def valid(self) -> bool:
        return self.message is not None


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class AnnounceData(WireModel):
    controller_info: DeviceInfo
    discovery_port: int = Field(ge=1, le=65535)
    control_port: int = Field(ge=1, le=65535)


class RegisterData(WireModel):
    device_info: DeviceInfo


class RegisteredData(WireModel):
    device_id: str
    pairing_required: bool
    pairing_token: str | None = None


class PairingRequestData(WireModel):
    pairing_token: str = Field(min_length=1)


class PairingResponseData(WireModel):
    accepted: bool
    auth_token: str | None = None
    error: str | None = None


class ArrowParameters(WireModel):
    """Parameters of an arrow command.

    ``repeat`` is the number of discrete key taps. ``hold_time`` is in
    milliseconds: 0 means an instantaneous tap, anything greater presses
    and holds the key that long before releasing it.
    """

    repeat: int = Field(default=1, ge=1)
    hold_time: int = Field(default=0, ge=0)


class CommandData(WireModel):
    command_type: str = Field(min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)


class CommandResultData(WireModel):
    command_type: str = Field(min_length=1)
    success: bool
    error: str | None = None
    result: Any = None


class ErrorData(WireModel):
    code: int
    message: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_token(length: int = DEFAULT_TOKEN_BYTES) -> str:
    """Return a cryptographically random hex token of ``length`` bytes."""
    return secrets.token_hex(length)


def tokens_match(expected: str, provided: str) -> bool:
    """Compare two secrets without leaking timing information."""
    return secrets.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def _invalid(error: str) -> ValidationResult:
    return ValidationResult(valid=False, error=error)


def validate_message(obj: Any) -> ValidationResult:
    """Check the envelope of a decoded message.

    Checks run in a fixed order and the first violation is reported.
    """
    if not isinstance(obj, dict):
        return _invalid("Message must be an object")

    for field in ("type", "version", "timestamp", "sender"):
        if obj.get(field) in (None, ""):
            return _invalid(f"Message missing required field: {field}")

    if not isinstance(obj["type"], str):
        return _invalid("Invalid field: type must be a string")
    if not isinstance(obj["version"], str):
        return _invalid("Invalid field: version must be a string")
    timestamp = obj["timestamp"]
    if isinstance(timestamp, bool) or not isinstance(timestamp, int) or timestamp < 0:
        return _invalid("Invalid field: timestamp must be a non-negative integer")

    sender = obj["sender"]
    if not isinstance(sender, dict):
        return _invalid("Invalid field: sender must be an object")
    for field in ("id", "type"):
        if sender.get(field) in (None, ""):
            return _invalid(f"Sender missing required field: {field}")
    if not isinstance(sender["id"], str):
        return _invalid("Invalid field: sender.id must be a string")
    if sender["type"] not in (DeviceType.CONTROLLER.value, DeviceType.TARGET.value):
        return _invalid(f"Invalid sender type: {sender['type']}")

    if "data" in obj and obj["data"] is not None and not isinstance(obj["data"], dict):
        return _invalid("Invalid field: data must be an object")

    return ValidationResult(valid=True)


def parse_message(raw: str | bytes) -> ParseResult:
    """Decode and validate one transport frame."""
    try:
        obj = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return ParseResult(error="Invalid JSON")

    validation = validate_message(obj)
    if not validation.valid:
        return ParseResult(error=validation.error)

    if obj.get("data") is None:
        obj["data"] = {}
    try:
        return ParseResult(message=ProtocolMessage.model_validate(obj))
    except ValidationError as e:
        return ParseResult(error=f"Invalid message: {e.errors()[0]['msg']}")


def parse_payload(message: ProtocolMessage, model: type[PayloadT]) -> PayloadT:
    """Validate ``message.data`` against a payload model.

    Raises:
        pydantic.ValidationError: If the payload does not match.
    """
    return model.model_validate(message.data)


def build_message(
    message_type: MessageType | str,
    sender_id: str,
    sender_type: DeviceType,
    data: BaseModel | dict[str, Any] | None = None,
) -> ProtocolMessage:
    if isinstance(data, WireModel):
        payload = data.to_wire()
    elif isinstance(data, BaseModel):
        payload = data.model_dump(mode="json", exclude_none=True)
    else:
        payload = dict(data or {})
    return ProtocolMessage(
        type=message_type.value if isinstance(message_type, MessageType) else message_type,
        version=PROTOCOL_VERSION,
        timestamp=now_ms(),
        sender=Sender(id=sender_id, type=sender_type),
        data=payload,
    )


def build_error(
    sender_id: str,
    sender_type: DeviceType,
    code: ErrorCode = ErrorCode.INTERNAL_ERROR,
    message: str = "Internal error",
) -> ProtocolMessage:
    return build_message(
        MessageType.ERROR,
        sender_id,
        sender_type,
        ErrorData(code=int(code), message=message),
    )


def encode_message(message: ProtocolMessage) -> str:
    return message.model_dump_json()
