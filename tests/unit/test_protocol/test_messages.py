"""Tests for message validation, parsing and construction."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from arrowctl.domain.models import DeviceType
from arrowctl.protocol.constants import PROTOCOL_VERSION, ErrorCode, MessageType
from arrowctl.protocol.messages import (
    ArrowParameters,
    CommandData,
    RegisteredData,
    build_error,
    build_message,
    encode_message,
    generate_token,
    parse_message,
    parse_payload,
    tokens_match,
    validate_message,
)


def _valid() -> dict:
    return {
        "type": "heartbeat",
        "version": "1.0.0",
        "timestamp": 1,
        "sender": {"id": "t1", "type": "target"},
        "data": {},
    }


class TestValidateMessage:
    def test_valid_message(self) -> None:
        assert validate_message(_valid()).valid is True

    def test_not_an_object(self) -> None:
        result = validate_message(["heartbeat"])
        assert result.valid is False
        assert result.error == "Message must be an object"

    @pytest.mark.parametrize("field", ["type", "version", "timestamp", "sender"])
    def test_missing_envelope_field(self, field: str) -> None:
        msg = _valid()
        del msg[field]
        result = validate_message(msg)
        assert result.error == f"Message missing required field: {field}"

    def test_first_violation_wins(self) -> None:
        msg = _valid()
        del msg["version"]
        del msg["sender"]
        assert validate_message(msg).error == "Message missing required field: version"

    @pytest.mark.parametrize("field", ["id", "type"])
    def test_missing_sender_field(self, field: str) -> None:
        msg = _valid()
        del msg["sender"][field]
        assert validate_message(msg).error == f"Sender missing required field: {field}"

    def test_unknown_sender_type(self) -> None:
        msg = _valid()
        msg["sender"]["type"] = "printer"
        assert validate_message(msg).error == "Invalid sender type: printer"

    def test_negative_timestamp(self) -> None:
        msg = _valid()
        msg["timestamp"] = -5
        assert validate_message(msg).valid is False

    def test_data_must_be_object(self) -> None:
        msg = _valid()
        msg["data"] = "nope"
        assert validate_message(msg).valid is False


class TestParseMessage:
    def test_invalid_json(self) -> None:
        result = parse_message("{not json")
        assert result.valid is False
        assert result.error == "Invalid JSON"

    def test_validation_error_is_reported(self) -> None:
        result = parse_message(json.dumps({"type": "heartbeat"}))
        assert result.error == "Message missing required field: version"

    def test_unknown_type_still_parses(self) -> None:
        msg = _valid()
        msg["type"] = "teleport"
        result = parse_message(json.dumps(msg))
        assert result.valid
        assert result.message.type == "teleport"

    def test_missing_data_defaults_to_empty(self) -> None:
        msg = _valid()
        del msg["data"]
        result = parse_message(json.dumps(msg).encode())
        assert result.message.data == {}


class TestBuildMessage:
    def test_envelope_and_camel_case_payload(self) -> None:
        msg = build_message(
            MessageType.REGISTERED,
            "c1",
            DeviceType.CONTROLLER,
            RegisteredData(device_id="t1", pairing_required=True, pairing_token="abc"),
        )
        wire = json.loads(encode_message(msg))
        assert wire["type"] == "registered"
        assert wire["version"] == PROTOCOL_VERSION
        assert wire["sender"] == {"id": "c1", "type": "controller"}
        assert wire["data"] == {"deviceId": "t1", "pairingRequired": True, "pairingToken": "abc"}

    def test_command_parameters_on_wire(self) -> None:
        msg = build_message(
            MessageType.COMMAND,
            "c1",
            DeviceType.CONTROLLER,
            CommandData(command_type="arrow_left", parameters=ArrowParameters(repeat=2).to_wire()),
        )
        assert msg.data == {"commandType": "arrow_left", "parameters": {"repeat": 2, "holdTime": 0}}

    def test_build_error(self) -> None:
        msg = build_error("c1", DeviceType.CONTROLLER, ErrorCode.NOT_PAIRED, "Device unpaired")
        assert msg.type == "error"
        assert msg.data == {"code": 104, "message": "Device unpaired"}

    def test_encoded_message_round_trips_through_parser(self) -> None:
        msg = build_message(MessageType.HEARTBEAT, "t1", DeviceType.TARGET)
        assert parse_message(encode_message(msg)).message == msg


class TestPayloads:
    def test_parse_payload_accepts_wire_names(self) -> None:
        msg = parse_message(json.dumps({**_valid(), "type": "command", "data": {
            "commandType": "arrow_right", "parameters": {"repeat": 3, "holdTime": 100},
        }})).message
        data = parse_payload(msg, CommandData)
        params = ArrowParameters.model_validate(data.parameters)
        assert (params.repeat, params.hold_time) == (3, 100)

    def test_arrow_parameters_bounds(self) -> None:
        with pytest.raises(ValidationError):
            ArrowParameters(repeat=0)
        with pytest.raises(ValidationError):
            ArrowParameters(hold_time=-1)


class TestTokens:
    def test_generated_token_is_64_hex_chars(self) -> None:
        token = generate_token()
        assert len(token) == 64
        int(token, 16)

    def test_tokens_are_unique(self) -> None:
        assert generate_token() != generate_token()

    def test_tokens_match(self) -> None:
        assert tokens_match("abc", "abc")
        assert not tokens_match("abc", "abd")
        assert not tokens_match("abc", "")
