"""UDP discovery for the controller role.

Periodically broadcasts an ``announce`` so targets can find the control
port, and listens for ``register`` datagrams broadcast by targets. Peers
seen this way are kept in a separate discovered-peer set that expires on
its own; nothing here authorizes anything, the registry only learns
about a device once it registers over the control transport.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from pydantic import BaseModel, ConfigDict, ValidationError

from arrowctl.domain.models import DeviceInfo, DeviceType
from arrowctl.protocol.constants import (
    BROADCAST_ADDRESS,
    DEFAULT_BROADCAST_INTERVAL,
    DEFAULT_CONTROLLER_DISCOVERY_PORT,
    DEFAULT_TARGET_DISCOVERY_PORT,
    DISCOVERED_PEER_TTL,
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


class DiscoveredPeer(BaseModel):
    """A target seen on the discovery channel, keyed by source ip."""

    model_config = ConfigDict(frozen=True)

    ip: str
    device_info: DeviceInfo
    first_seen: float
    last_seen: float


class DiscoveryService:
    """Announces the controller and collects target broadcasts.

    Args:
        controller_info: Identity placed in every announcement.
        control_port: WebSocket port advertised to targets.
        port: UDP port to bind (targets broadcast ``register`` here).
        target_port: UDP port targets listen on for announcements.
        broadcast_interval: Seconds between announcements.
        peer_ttl: Seconds after which an unseen peer is forgotten.
    """

    def __init__(
        self,
        controller_info: DeviceInfo,
        control_port: int,
        port: int = DEFAULT_CONTROLLER_DISCOVERY_PORT,
        target_port: int = DEFAULT_TARGET_DISCOVERY_PORT,
        broadcast_address: str = BROADCAST_ADDRESS,
        broadcast_interval: float = DEFAULT_BROADCAST_INTERVAL,
        peer_ttl: float = DISCOVERED_PEER_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._controller_info = controller_info
        self._control_port = control_port
        self._port = port
        self._target_port = target_port
        self._broadcast_address = broadcast_address
        self._broadcast_interval = broadcast_interval
        self._peer_ttl = peer_ttl
        self._clock = clock
        self._peers: dict[str, DiscoveredPeer] = {}
        self._transport: asyncio.DatagramTransport | None = None
        self._broadcast_task: asyncio.Task[None] | None = None
        self._cleanup_task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._transport is not None

    @property
    def control_port(self) -> int:
        return self._control_port

    @control_port.setter
    def control_port(self, port: int) -> None:
        self._control_port = port

    async def start(self) -> None:
        """Bind the discovery socket and start the announce/cleanup loops."""
        if self._transport is not None:
            logger.warning("Discovery service is already running")
            return
        logger.info("Starting discovery on UDP port %d", self._port)
        self._transport = await open_broadcast_endpoint(self._port, self.handle_datagram)
        self._broadcast_task = asyncio.create_task(self._broadcast_loop())
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("Discovery service started")

    async def stop(self) -> None:
        if self._transport is None:
            return
        for task in (self._broadcast_task, self._cleanup_task):
            if task is not None:
                task.cancel()
        for task in (self._broadcast_task, self._cleanup_task):
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._broadcast_task = None
        self._cleanup_task = None
        self._transport.close()
        self._transport = None
        logger.info("Discovery service stopped")

    # -------------------------------------------------------------------
    # Announcements
    # -------------------------------------------------------------------

    def build_announcement(self) -> bytes:
        message = build_message(
            MessageType.ANNOUNCE,
            self._controller_info.id,
            DeviceType.CONTROLLER,
            AnnounceData(
                controller_info=self._controller_info,
                discovery_port=self._port or DEFAULT_CONTROLLER_DISCOVERY_PORT,
                control_port=self._control_port,
            ),
        )
        return encode_message(message).encode("utf-8")

    def send_announcement(self) -> bool:
        if self._transport is None:
            logger.error("Discovery socket not initialized")
            return False
        try:
            self._transport.sendto(
                self.build_announcement(), (self._broadcast_address, self._target_port)
            )
        except OSError as e:
            logger.error("Error sending broadcast announcement: %s", e)
            return False
        logger.debug("Sent broadcast announcement")
        return True

    async def _broadcast_loop(self) -> None:
        while True:
            self.send_announcement()
            await asyncio.sleep(self._broadcast_interval)

    # -------------------------------------------------------------------
    # Listening
    # -------------------------------------------------------------------

    def handle_datagram(self, data: bytes, addr: tuple[str, int]) -> None:
        parsed = parse_message(data)
        if parsed.message is None:
            logger.debug("Ignoring invalid discovery packet from %s: %s", addr[0], parsed.error)
            return
        message = parsed.message
        if message.type != MessageType.REGISTER.value or message.sender.type != DeviceType.TARGET:
            return
        try:
            info = parse_payload(message, RegisterData).device_info
        except ValidationError as e:
            logger.debug("Ignoring malformed register broadcast from %s: %s", addr[0], e)
            return

        ip = addr[0]
        now = self._clock()
        previous = self._peers.get(ip)
        self._peers[ip] = DiscoveredPeer(
            ip=ip,
            device_info=info,
            first_seen=previous.first_seen if previous else now,
            last_seen=now,
        )
        if previous is None:
            logger.info("Discovered target: %s (%s) at %s", info.name, info.id, ip)

    def get_discovered_peers(self) -> list[DiscoveredPeer]:
        return list(self._peers.values())

    def expire_peers(self) -> list[DiscoveredPeer]:
        """Drop peers not seen within the peer TTL."""
        cutoff = self._clock() - self._peer_ttl
        stale = [p for p in self._peers.values() if p.last_seen < cutoff]
        for peer in stale:
            del self._peers[peer.ip]
            logger.info("Discovered peer expired: %s (%s)", peer.device_info.name, peer.ip)
        return stale

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._peer_ttl)
            self.expire_peers()
