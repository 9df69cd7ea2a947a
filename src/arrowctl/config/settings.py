"""Settings for the controller and target roles.

One YAML file holds a section per concern (controller, discovery, target,
keyboard, api, logging). Prefixed ``ARROWCTL_`` variables and the
unprefixed names used by existing deployments override it.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from arrowctl.protocol.constants import (
    BROADCAST_ADDRESS,
    DEFAULT_API_PORT,
    DEFAULT_BROADCAST_INTERVAL,
    DEFAULT_CONTROL_PORT,
    DEFAULT_CONTROLLER_DISCOVERY_PORT,
    DEFAULT_DEVICE_MAX_AGE,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_PING_INTERVAL,
    DEFAULT_RECONNECT_BASE_DELAY,
    DEFAULT_RECONNECT_MAX_DELAY,
    DEFAULT_TARGET_DISCOVERY_PORT,
    DISCOVERED_PEER_TTL,
    PAIRING_TOKEN_TTL,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/arrowctl.yaml")


class ControllerConfig(BaseModel):
    id: str | None = Field(default=None, description="Controller id; random when unset")
    name: str = Field(default="ArrowController")
    host: str = Field(default="0.0.0.0")
    control_port: int = Field(default=DEFAULT_CONTROL_PORT, ge=0, le=65535)
    ping_interval: float = Field(default=DEFAULT_PING_INTERVAL, gt=0)
    pairing_timeout: float = Field(default=PAIRING_TOKEN_TTL, gt=0)
    device_max_age: float = Field(default=DEFAULT_DEVICE_MAX_AGE, gt=0)
    cleanup_interval: float = Field(default=60 * 60.0, gt=0)


class DiscoveryConfig(BaseModel):
    enabled: bool = Field(default=True)
    port: int = Field(
        default=DEFAULT_CONTROLLER_DISCOVERY_PORT, ge=0, le=65535,
        description="UDP port the controller binds for discovery",
    )
    target_port: int = Field(
        default=DEFAULT_TARGET_DISCOVERY_PORT, ge=1, le=65535,
        description="UDP port targets listen on for announcements",
    )
    broadcast_address: str = Field(default=BROADCAST_ADDRESS)
    broadcast_interval: float = Field(default=DEFAULT_BROADCAST_INTERVAL, gt=0)
    peer_ttl: float = Field(default=DISCOVERED_PEER_TTL, gt=0)


class TargetConfig(BaseModel):
    id: str | None = Field(default=None, description="Device id; random when unset")
    name: str | None = Field(default=None)
    controller_host: str | None = Field(
        default=None, description="Controller address; discovered over UDP when unset"
    )
    controller_port: int = Field(default=DEFAULT_CONTROL_PORT, ge=1, le=65535)
    discovery_port: int = Field(default=DEFAULT_TARGET_DISCOVERY_PORT, ge=0, le=65535)
    controller_discovery_port: int = Field(
        default=DEFAULT_CONTROLLER_DISCOVERY_PORT, ge=1, le=65535
    )
    discovery_timeout: float = Field(default=30.0, gt=0)
    heartbeat_interval: float = Field(default=DEFAULT_HEARTBEAT_INTERVAL, gt=0)
    auto_reconnect: bool = Field(default=True)
    reconnect_base_delay: float = Field(default=DEFAULT_RECONNECT_BASE_DELAY, gt=0)
    reconnect_max_delay: float = Field(default=DEFAULT_RECONNECT_MAX_DELAY, gt=0)
    max_reconnect_attempts: int = Field(default=DEFAULT_MAX_RECONNECT_ATTEMPTS, ge=0)
    auto_accept_pairing: bool = Field(default=False)


class KeyboardConfig(BaseModel):
    backend: Literal["mock", "pynput"] = Field(default="mock")
    repeat_delay: float = Field(default=0.05, ge=0)


class ApiConfig(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=DEFAULT_API_PORT, ge=1, le=65535)
    base_url: str = Field(
        default=f"http://127.0.0.1:{DEFAULT_API_PORT}",
        description="Where CLI commands reach a running controller",
    )
    timeout: float = Field(default=10.0, gt=0)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Settings tree shared by both roles; each process reads only its sections."""

    model_config = {
        "env_prefix": "ARROWCTL_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    controller: ControllerConfig = Field(default_factory=ControllerConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    target: TargetConfig = Field(default_factory=TargetConfig)
    keyboard: KeyboardConfig = Field(default_factory=KeyboardConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Build the settings for one arrowctl process.

    Sources, strongest first: the process environment, a ``.env`` file in
    the working directory, the YAML file (``config/arrowctl.yaml`` unless
    ``config_path`` is given), then the model defaults. A missing YAML file
    is not an error; both roles run on defaults alone.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    _load_dotenv()

    yaml_data: dict = {}
    if path.exists():
        yaml_data = yaml.safe_load(path.read_text()) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("No config file at %s; using defaults and environment", path)

    _apply_env_overrides(yaml_data)
    return Settings(**yaml_data)


def _read_dotenv(env_path: Path) -> dict[str, str]:
    """Parse ``KEY=value`` lines, skipping blanks and ``#`` comments."""
    pairs: dict[str, str] = {}
    for raw in env_path.read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        pairs[key.strip()] = value.strip()
    return pairs


def _load_dotenv(env_path: Path = Path(".env")) -> None:
    # Only fills variables the environment leaves unset or blank
    if not env_path.exists():
        return
    for key, value in _read_dotenv(env_path).items():
        if not os.environ.get(key):
            os.environ[key] = value


# Unprefixed variable -> (section, key) paths it sets
_LEGACY_ENV: dict[str, tuple[tuple[str, str], ...]] = {
    "CONTROLLER_ID": (("controller", "id"),),
    "CONTROLLER_NAME": (("controller", "name"),),
    "DEVICE_ID": (("target", "id"),),
    "DEVICE_NAME": (("target", "name"),),
    "CONTROLLER_IP": (("target", "controller_host"),),
    "CONTROLLER_PORT": (("target", "controller_port"),),
    "WEBSOCKET_PORT": (("controller", "control_port"), ("target", "controller_port")),
    "DISCOVERY_PORT": (("discovery", "port"), ("target", "controller_discovery_port")),
    "AUTO_ACCEPT_PAIRING": (("target", "auto_accept_pairing"),),
}


def _apply_env_overrides(yaml_data: dict) -> None:
    """Apply environment variable overrides for non-prefixed vars."""
    for var, paths in _LEGACY_ENV.items():
        value = os.environ.get(var, "")
        if not value:
            continue
        for section, key in paths:
            yaml_data.setdefault(section, {})[key] = value

    # Deployed as milliseconds
    heartbeat = os.environ.get("HEARTBEAT_INTERVAL", "")
    if heartbeat:
        try:
            seconds = int(heartbeat) / 1000
        except ValueError:
            logger.warning("Ignoring non-numeric HEARTBEAT_INTERVAL=%r", heartbeat)
        else:
            yaml_data.setdefault("target", {})["heartbeat_interval"] = seconds
