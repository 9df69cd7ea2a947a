"""Tests for configuration loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from arrowctl.config.settings import (
    ControllerConfig,
    DiscoveryConfig,
    KeyboardConfig,
    Settings,
    TargetConfig,
    _read_dotenv,
    load_settings,
)

_LEGACY_VARS = (
    "CONTROLLER_ID",
    "CONTROLLER_NAME",
    "DEVICE_ID",
    "DEVICE_NAME",
    "CONTROLLER_IP",
    "CONTROLLER_PORT",
    "WEBSOCKET_PORT",
    "DISCOVERY_PORT",
    "AUTO_ACCEPT_PAIRING",
    "HEARTBEAT_INTERVAL",
)


@pytest.fixture
def clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run from an empty directory with every legacy variable blank."""
    monkeypatch.chdir(tmp_path)
    for var in _LEGACY_VARS:
        monkeypatch.setenv(var, "")
    return tmp_path


class TestSettings:
    def test_default_settings(self) -> None:
        settings = Settings()
        assert settings.controller.control_port == 8080
        assert settings.discovery.port == 3000
        assert settings.discovery.target_port == 8081
        assert settings.target.controller_discovery_port == 3000
        assert settings.target.discovery_port == 8081
        assert settings.keyboard.backend == "mock"

    def test_section_defaults(self) -> None:
        assert ControllerConfig().pairing_timeout == 300
        assert ControllerConfig().device_max_age == 24 * 60 * 60
        assert DiscoveryConfig().broadcast_interval == 5
        target = TargetConfig()
        assert target.controller_host is None
        assert target.reconnect_base_delay == 1
        assert target.reconnect_max_delay == 30
        assert target.auto_accept_pairing is False

    def test_invalid_values_rejected(self) -> None:
        with pytest.raises(ValidationError):
            TargetConfig(controller_port=70000)
        with pytest.raises(ValidationError):
            KeyboardConfig(backend="usb_hid")

    def test_prefixed_env_override(self, clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ARROWCTL_TARGET__AUTO_ACCEPT_PAIRING", "true")
        assert Settings().target.auto_accept_pairing is True


class TestLoadSettings:
    def test_missing_file(self, clean_env: Path) -> None:
        settings = load_settings(clean_env / "nonexistent.yaml")
        assert settings.controller.control_port == 8080

    def test_yaml_file(self, clean_env: Path) -> None:
        path = clean_env / "arrowctl.yaml"
        path.write_text(
            "controller:\n"
            "  name: Office\n"
            "  control_port: 9000\n"
            "target:\n"
            "  controller_host: 10.0.0.2\n"
            "keyboard:\n"
            "  backend: pynput\n"
        )
        settings = load_settings(path)
        assert settings.controller.name == "Office"
        assert settings.controller.control_port == 9000
        assert settings.target.controller_host == "10.0.0.2"
        assert settings.keyboard.backend == "pynput"

    def test_empty_yaml_file(self, clean_env: Path) -> None:
        path = clean_env / "empty.yaml"
        path.write_text("")
        assert load_settings(path).api.port == 8000

    def test_legacy_env(self, clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEVICE_ID", "t-42")
        monkeypatch.setenv("CONTROLLER_IP", "192.168.1.2")
        monkeypatch.setenv("WEBSOCKET_PORT", "9001")
        monkeypatch.setenv("DISCOVERY_PORT", "3100")
        monkeypatch.setenv("AUTO_ACCEPT_PAIRING", "true")
        settings = load_settings(clean_env / "none.yaml")
        assert settings.target.id == "t-42"
        assert settings.target.controller_host == "192.168.1.2"
        assert settings.controller.control_port == 9001
        assert settings.target.controller_port == 9001
        assert settings.discovery.port == 3100
        assert settings.target.controller_discovery_port == 3100
        assert settings.target.auto_accept_pairing is True

    def test_env_beats_yaml(self, clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = clean_env / "arrowctl.yaml"
        path.write_text("controller:\n  id: from-yaml\n")
        monkeypatch.setenv("CONTROLLER_ID", "from-env")
        assert load_settings(path).controller.id == "from-env"

    def test_heartbeat_interval_in_milliseconds(
        self, clean_env: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("HEARTBEAT_INTERVAL", "15000")
        assert load_settings(clean_env / "none.yaml").target.heartbeat_interval == 15

    def test_bad_heartbeat_interval_ignored(
        self, clean_env: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("HEARTBEAT_INTERVAL", "soon")
        assert load_settings(clean_env / "none.yaml").target.heartbeat_interval == 30

    def test_dotenv_file(self, clean_env: Path) -> None:
        (clean_env / ".env").write_text("# local overrides\nCONTROLLER_NAME=Den\n")
        assert load_settings(clean_env / "none.yaml").controller.name == "Den"

    def test_dotenv_does_not_override_environment(
        self, clean_env: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("CONTROLLER_NAME", "Hall")
        (clean_env / ".env").write_text("CONTROLLER_NAME=Den\n")
        assert load_settings(clean_env / "none.yaml").controller.name == "Hall"


class TestReadDotenv:
    def test_skips_comments_and_junk(self, tmp_path: Path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("# header\n\nDEVICE_ID = t9\nnot a pair\nDEVICE_NAME=Kiosk=2\n")
        assert _read_dotenv(env_file) == {"DEVICE_ID": "t9", "DEVICE_NAME": "Kiosk=2"}
