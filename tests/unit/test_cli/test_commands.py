"""Tests for the arrowctl command line."""

from __future__ import annotations

import argparse
import asyncio
from typing import Any

import pytest

from arrowctl import cli
from arrowctl.config.settings import Settings
from arrowctl.controller.http_client import ControllerApiError
from arrowctl.target.app import TargetDevice


class TestParseArgs:
    def test_send(self) -> None:
        args = cli.parse_args(["send", "t1", "left", "--repeat", "3", "--hold", "200"])
        assert (args.command, args.device_id, args.direction) == ("send", "t1", "left")
        assert (args.repeat, args.hold) == (3, 200)

    def test_send_rejects_other_directions(self) -> None:
        with pytest.raises(SystemExit):
            cli.parse_args(["send", "t1", "up"])

    def test_target_options(self) -> None:
        args = cli.parse_args(["-v", "target", "--host", "10.0.0.2", "--auto-accept", "--backend", "pynput"])
        assert args.verbose is True
        assert args.host == "10.0.0.2"
        assert args.port is None
        assert args.auto_accept is True
        assert args.backend == "pynput"

    def test_controller_options(self) -> None:
        args = cli.parse_args(["controller", "--port", "9000", "--no-discovery"])
        assert args.port == 9000
        assert args.api_port is None
        assert args.no_discovery is True

    def test_devices_default_state(self) -> None:
        assert cli.parse_args(["devices"]).state == "all"

    def test_no_command_prints_help(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli.main([])
        assert exc_info.value.code == 0


class FakeApi:
    """Stands in for ControllerApiClient inside ``_api_call``."""

    devices: list[dict[str, Any]] = []
    error: ControllerApiError | None = None

    def __init__(self, base_url: str, timeout: float) -> None:
        self.base_url = base_url

    async def __aenter__(self) -> FakeApi:
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None

    async def send_arrow(self, device_id: str, direction: str, repeat: int, hold_time: int) -> dict:
        if self.error is not None:
            raise self.error
        return {"success": True, "commandType": f"arrow_{direction}"}

    async def list_devices(self, state: str) -> list[dict[str, Any]]:
        return self.devices


class TestApiCommands:
    @pytest.fixture(autouse=True)
    def fake_api(self, monkeypatch: pytest.MonkeyPatch) -> type[FakeApi]:
        monkeypatch.setattr("arrowctl.controller.http_client.ControllerApiClient", FakeApi)
        monkeypatch.setattr(FakeApi, "devices", [])
        monkeypatch.setattr(FakeApi, "error", None)
        return FakeApi

    def _run(self, argv: list[str]) -> int:
        args: argparse.Namespace = cli.parse_args(argv)
        return asyncio.run(cli._api_call(Settings(), args))

    def test_send(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert self._run(["send", "t1", "right"]) == 0
        assert "Sent arrow_right to t1" in capsys.readouterr().out

    def test_send_failure(self, fake_api: type[FakeApi], capsys: pytest.CaptureFixture[str]) -> None:
        fake_api.error = ControllerApiError("Device not paired", status_code=409)
        assert self._run(["send", "t1", "left"]) == 1
        assert "Device not paired" in capsys.readouterr().err

    def test_devices_shows_pairing_token(
        self, fake_api: type[FakeApi], capsys: pytest.CaptureFixture[str]
    ) -> None:
        fake_api.devices = [
            {"id": "t1", "name": "Den", "ip": "192.168.1.50", "status": "connected", "pairingToken": "abc"},
            {"id": "t2", "name": "Hall", "ip": "192.168.1.51", "status": "paired", "pairingToken": None},
        ]
        assert self._run(["devices"]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert lines[0].endswith("token=abc")
        assert "token=" not in lines[1]

    def test_no_devices(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert self._run(["devices", "--state", "paired"]) == 0
        assert "No devices" in capsys.readouterr().out


class TestRunTarget:
    @pytest.fixture
    def run_target(self, monkeypatch: pytest.MonkeyPatch, connector):
        monkeypatch.setattr(
            "arrowctl.target.app.TargetDevice",
            lambda **kwargs: TargetDevice(connector=connector, **kwargs),
        )
        settings = Settings()
        settings.target.auto_reconnect = False
        settings.keyboard.repeat_delay = 0
        args = cli.parse_args(["target", "--host", "10.0.0.2", "--auto-accept", "--backend", "mock"])
        return lambda: cli._run_target(settings, args)

    @pytest.mark.asyncio
    async def test_exits_when_session_lost(self, run_target, connector) -> None:
        run = asyncio.create_task(run_target())
        while not connector.sockets:
            await asyncio.sleep(0.005)
        connector.socket.drop()
        assert await asyncio.wait_for(run, 2.0) == 1
        assert len(connector.uris) == 1

    @pytest.mark.asyncio
    async def test_exits_when_connect_fails(self, run_target, connector) -> None:
        connector.failing = True
        assert await asyncio.wait_for(run_target(), 2.0) == 1
        assert connector.uris == ["ws://10.0.0.2:8080"]
