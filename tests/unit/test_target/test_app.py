"""Tests for the target process wrapper."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from arrowctl.config.settings import TargetConfig
from arrowctl.domain.models import ConnectionStatus
from arrowctl.keyboard.base import KeyPresser
from arrowctl.target.app import TargetDevice


@pytest.fixture
def config() -> TargetConfig:
    return TargetConfig(id="t1-device", controller_host="10.0.0.2", controller_port=8080)


@pytest.fixture
def make_target(config: TargetConfig, key_presser, connector):
    def _make(**overrides) -> TargetDevice:
        options = dict(config=config, key_presser=key_presser, connector=connector)
        options.update(overrides)
        return TargetDevice(**options)

    return _make


class TestIdentity:
    def test_generated_name_and_commands(self, make_target) -> None:
        target = make_target()
        assert target.info.id == "t1-device"
        assert target.info.name == "ArrowTarget-t1-devic"
        assert target.info.supported_commands == ["arrow_left", "arrow_right"]
        assert target.info.ip

    def test_random_id_when_unset(self, make_target) -> None:
        a = make_target(config=TargetConfig(controller_host="10.0.0.2"))
        b = make_target(config=TargetConfig(controller_host="10.0.0.2"))
        assert a.info.id != b.info.id


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_uses_configured_controller(self, make_target, connector) -> None:
        target = make_target()
        assert await target.start() is True
        try:
            assert connector.uris == ["ws://10.0.0.2:8080"]
            status = target.status()
            assert status.status == ConnectionStatus.CONNECTED
            assert (status.controller_host, status.controller_port) == ("10.0.0.2", 8080)
        finally:
            await target.stop()
        assert target.status().status == ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_stop_closes_key_presser(self, make_target) -> None:
        presser = AsyncMock(spec=KeyPresser)
        target = make_target(key_presser=presser)
        await target.start()
        await target.stop()
        presser.open.assert_awaited_once()
        presser.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_controller_discovered(self, make_target, connector) -> None:
        config = TargetConfig(discovery_port=0, discovery_timeout=0.01)
        target = make_target(config=config)
        try:
            assert await target.start() is False
            assert connector.uris == []
        finally:
            await target.stop()


class TestPairingPrompt:
    @pytest.mark.asyncio
    async def test_accepted_prompt_sends_request(
        self, make_target, connector, from_controller, settle
    ) -> None:
        confirm = AsyncMock(return_value=True)
        target = make_target(confirm_pairing=confirm)
        await target.start()
        try:
            connector.socket.feed(from_controller(
                "registered", {"deviceId": "t1-device", "pairingRequired": True, "pairingToken": "abc"}
            ))
            await settle()
            confirm.assert_awaited_once_with("abc")
            [request] = connector.socket.of_type("pairing_request")
            assert request["data"] == {"pairingToken": "abc"}
            assert target.status().pending_pairing_token == "abc"

            connector.socket.feed(from_controller("pairing_response", {"accepted": True, "authToken": "x"}))
            await settle()
            status = target.status()
            assert status.status == ConnectionStatus.PAIRED
            assert status.pending_pairing_token is None
        finally:
            await target.stop()

    @pytest.mark.asyncio
    async def test_declined_prompt(self, make_target, connector, from_controller, settle) -> None:
        target = make_target(confirm_pairing=AsyncMock(return_value=False))
        await target.start()
        try:
            connector.socket.feed(from_controller(
                "registered", {"deviceId": "t1-device", "pairingRequired": True, "pairingToken": "abc"}
            ))
            await settle()
            assert connector.socket.of_type("pairing_request") == []
        finally:
            await target.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_open_prompt(self, make_target, connector, from_controller, settle) -> None:
        never = asyncio.Event()

        async def confirm(token: str) -> bool:
            await never.wait()
            return True

        target = make_target(confirm_pairing=confirm)
        await target.start()
        connector.socket.feed(from_controller(
            "registered", {"deviceId": "t1-device", "pairingRequired": True, "pairingToken": "abc"}
        ))
        await settle()
        await target.stop()
        assert connector.socket.of_type("pairing_request") == []


class TestStatus:
    @pytest.mark.asyncio
    async def test_commands_are_counted(
        self, make_target, connector, from_controller, settle, key_presser
    ) -> None:
        target = make_target()
        await target.start()
        try:
            connector.socket.feed(from_controller("command", {"commandType": "arrow_right"}))
            connector.socket.feed(from_controller("command", {"commandType": "arrow_left"}))
            await settle(20)
            status = target.status()
            assert status.commands_executed == 2
            assert status.last_command == "arrow_left"
            assert status.last_command_time is not None
            assert list(key_presser.presses) == [("right", 0), ("left", 0)]
        finally:
            await target.stop()
