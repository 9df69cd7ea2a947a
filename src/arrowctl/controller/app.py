"""Controller process: registry, control server and discovery wired together."""

from __future__ import annotations

import asyncio
import logging
import uuid

from arrowctl.config.settings import ControllerConfig, DiscoveryConfig
from arrowctl.controller.discovery import DiscoveredPeer, DiscoveryService
from arrowctl.controller.registry import DeviceRegistry
from arrowctl.controller.server import ControlServer
from arrowctl.domain.events import DeviceEvent, DeviceEventKind, ServerEvent, ServerEventKind
from arrowctl.domain.models import (
    CommandDispatchResult,
    DeviceInfo,
    DeviceType,
    PairingResult,
    RegisteredDevice,
)
from arrowctl.utils.network import get_local_ip, get_mac_address

logger = logging.getLogger(__name__)


class ControllerApp:
    """Runs the controller role.

    Owns the registry, the control server and (optionally) the discovery
    broadcaster, logs every state change they report and periodically
    forgets devices that have not been seen for ``device_max_age``.
    """

    def __init__(
        self,
        config: ControllerConfig | None = None,
        discovery: DiscoveryConfig | None = None,
        registry: DeviceRegistry | None = None,
    ) -> None:
        self._config = config or ControllerConfig()
        self._discovery_config = discovery or DiscoveryConfig()

        self._info = DeviceInfo(
            id=self._config.id or str(uuid.uuid4()),
            name=self._config.name,
            ip=get_local_ip(),
            mac=get_mac_address(),
            type=DeviceType.CONTROLLER,
        )
        self.registry = (
            registry if registry is not None
            else DeviceRegistry(pairing_timeout=self._config.pairing_timeout)
        )
        self.server = ControlServer(
            controller_id=self._info.id,
            registry=self.registry,
            host=self._config.host,
            port=self._config.control_port,
            ping_interval=self._config.ping_interval,
        )
        self.discovery: DiscoveryService | None = None
        if self._discovery_config.enabled:
            self.discovery = DiscoveryService(
                controller_info=self._info,
                control_port=self._config.control_port,
                port=self._discovery_config.port,
                target_port=self._discovery_config.target_port,
                broadcast_address=self._discovery_config.broadcast_address,
                broadcast_interval=self._discovery_config.broadcast_interval,
                peer_ttl=self._discovery_config.peer_ttl,
            )
        self._cleanup_task: asyncio.Task[None] | None = None

        self.registry.subscribe(self._on_device_event)
        self.server.subscribe(self._on_server_event)

    @property
    def info(self) -> DeviceInfo:
        return self._info

    @property
    def is_running(self) -> bool:
        return self.server.is_running

    async def start(self) -> None:
        logger.info("Starting controller %s (%s)", self._info.name, self._info.id)
        await self.server.start()
        if self.discovery is not None:
            # Advertise the real port when the server picked one
            self.discovery.control_port = self.server.port
            try:
                await self.discovery.start()
            except OSError as e:
                logger.error("Discovery unavailable, continuing without it: %s", e)
                self.discovery = None
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info(
            "Controller ready: control port %d, discovery %s",
            self.server.port,
            "on" if self.discovery is not None else "off",
        )

    async def stop(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        if self.discovery is not None:
            await self.discovery.stop()
        if self.server.is_running:
            await self.server.stop()
        logger.info("Controller stopped")

    # -------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------

    async def send_arrow_command(
        self, device_id: str, direction: str, repeat: int = 1, hold_time: int = 0
    ) -> CommandDispatchResult:
        return await self.server.send_arrow_command(device_id, direction, repeat, hold_time)

    async def unpair_device(self, device_id: str) -> PairingResult:
        return await self.server.unpair_device(device_id)

    def get_devices(self, state: str = "all") -> list[RegisteredDevice]:
        if state == "connected":
            return self.registry.get_connected_devices()
        if state == "paired":
            return self.registry.get_paired_devices()
        return self.registry.get_all_devices()

    def get_discovered_peers(self) -> list[DiscoveredPeer]:
        if self.discovery is None:
            return []
        return self.discovery.get_discovered_peers()

    def cleanup(self, max_age: float | None = None) -> list[RegisteredDevice]:
        return self.registry.cleanup_old_devices(
            self._config.device_max_age if max_age is None else max_age
        )

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.cleanup_interval)
            self.cleanup()

    # -------------------------------------------------------------------
    # Event logging
    # -------------------------------------------------------------------

    def _on_device_event(self, event: DeviceEvent) -> None:
        device = event.device
        if event.kind == DeviceEventKind.REGISTERED and not device.paired:
            logger.info(
                "New device %s (%s) awaiting pairing, token %s",
                device.name,
                device.id,
                device.pairing_token,
            )
        elif event.kind == DeviceEventKind.UPDATED and event.previous_id:
            logger.info("Device %s now known as %s", event.previous_id, device.id)
        else:
            logger.debug("Device %s: %s", event.kind.value, device.id)

    def _on_server_event(self, event: ServerEvent) -> None:
        if event.kind == ServerEventKind.COMMAND_RESULT:
            logger.debug(
                "Result for %s on %s: %s",
                event.command_type,
                event.device_id,
                "ok" if event.success else event.error,
            )
        elif event.kind == ServerEventKind.CONNECTION_TERMINATED:
            logger.debug("Connection %s terminated: %s", event.connection_id, event.error)
