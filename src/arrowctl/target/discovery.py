"""Controller discovery for the target role.

Listens for ``announce`` broadcasts and turns them into controller
endpoints, and can broadcast the target's own ``register`` so the
controller learns about it before a session exists. Only an (ip, port)
candidate comes out of this module; the control client treats it the
same as an address given on the command line.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from pydantic import BaseModel, ConfigDict, ValidationError

from arrowctl.domain.models import DeviceInfo, DeviceType
from arrowctl.protocol.constants import (
    BROADCAST_ADDRESS,
    DEFAULT_CONTROLLER_DISCOVERY_PORT,
    DEFAULT_TARGET_DISCOVERY_PORT,
    MessageType,
)
from arrowctl.protocol.messages import (
    AnnounceData,
    RegisterData,
    build_message,
    encode_message,
    parse_message,
    parse_payload,
)
from arrowctl.utils.udp import open_broadcast_endpoint

logger = logging.getLogger(__name__)


class ControllerEndpoint(BaseModel):
    """Where a discovered controller accepts control sessions."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    ip: str
    port: int


class DiscoveryListener:
    """Collects controller announcements on the target discovery port."""

    def __init__(
        self,
        device_info: DeviceInfo,
        port: int = DEFAULT_TARGET_DISCOVERY_PORT,
        controller_port: int = DEFAULT_CONTROLLER_DISCOVERY_PORT,
        broadcast_address: str = BROADCAST_ADDRESS,
    ) -> None:
        self._device_info = device_info
        self._port = port
        self._controller_port = controller_port
        self._broadcast_address = broadcast_address
        self._controllers: dict[str, ControllerEndpoint] = {}
        self._transport: asyncio.DatagramTransport | None = None
        self._found: asyncio.Event | None = None
        self._on_found: list[Callable[[ControllerEndpoint], None]] = []

    @property
    def controllers(self) -> list[ControllerEndpoint]:
        return list(self._controllers.values())

    def on_controller_found(self, callback: Callable[[ControllerEndpoint], None]) -> None:
        self._on_found.append(callback)

    async def start(self) -> None:
        if self._transport is not None:
            return
        self._found = asyncio.Event()
        self._transport = await open_broadcast_endpoint(self._port, self.handle_datagram)
        logger.info("Listening for controller announcements on UDP port %d", self._port)

    async def stop(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None
            logger.info("Discovery listener stopped")

    def handle_datagram(self, data: bytes, addr: tuple[str, int]) -> None:
        parsed = parse_message(data)
        if parsed.message is None:
            logger.debug("Ignoring invalid packet from %s: %s", addr[0], parsed.error)
            return
        message = parsed.message
        if (
            message.type != MessageType.ANNOUNCE.value
            or message.sender.type != DeviceType.CONTROLLER
        ):
            return
        try:
            announce = parse_payload(message, AnnounceData)
        except ValidationError as e:
            logger.debug("Ignoring malformed announcement from %s: %s", addr[0], e)
            return

        info = announce.controller_info
        # Trust the packet source over the self-reported address
        endpoint = ControllerEndpoint(
            id=info.id, name=info.name, ip=addr[0], port=announce.control_port
        )
        is_new = self._controllers.get(info.id) != endpoint
        self._controllers[info.id] = endpoint
        if is_new:
            logger.info(
                "Found controller %s (%s) at %s:%d", endpoint.name, endpoint.id, endpoint.ip, endpoint.port
            )
            for callback in list(self._on_found):
                callback(endpoint)
        if self._found is not None:
            self._found.set()

    def broadcast_register(self) -> bool:
        """Announce this target to controllers that have not seen it yet."""
        if self._transport is None:
            logger.error("Discovery listener is not running")
            return False
        message = build_message(
            MessageType.REGISTER,
            self._device_info.id,
            DeviceType.TARGET,
            RegisterData(device_info=self._device_info),
        )
        try:
            self._transport.sendto(
                encode_message(message).encode("utf-8"),
                (self._broadcast_address, self._controller_port),
            )
        except OSError as e:
            logger.error("Error broadcasting registration: %s", e)
            return False
        logger.debug("Broadcast registration to port %d", self._controller_port)
        return True

    async def wait_for_controller(self, timeout: float | None = None) -> ControllerEndpoint | None:
        """Return the first known controller, waiting up to ``timeout`` seconds."""
        if self._controllers:
            return next(iter(self._controllers.values()))
        if self._found is None:
            raise RuntimeError("DiscoveryListener.start() must be called first")
        try:
            await asyncio.wait_for(self._found.wait(), timeout)
        except asyncio.TimeoutError:
            logger.warning("No controller announcement within %.0fs", timeout or 0)
            return None
        return next(iter(self._controllers.values()), None)
