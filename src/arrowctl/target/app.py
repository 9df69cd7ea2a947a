"""Target process: control client, key presser and address discovery.

The controller address comes either from configuration or from a UDP
announcement; both feed the same ``ControlClient.connect`` call.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Awaitable, Callable

from pydantic import BaseModel, ConfigDict

from arrowctl.config.settings import TargetConfig
from arrowctl.domain.events import ClientEvent, ClientEventKind
from arrowctl.domain.models import ConnectionStatus, DeviceInfo, DeviceType
from arrowctl.keyboard.base import KeyPresser
from arrowctl.keyboard.mock_backend import LoggingKeyPresser
from arrowctl.protocol.constants import CommandType
from arrowctl.target.client import ControlClient, Connector
from arrowctl.target.discovery import DiscoveryListener
from arrowctl.utils.network import get_local_ip, get_mac_address

logger = logging.getLogger(__name__)

PairingConfirm = Callable[[str], Awaitable[bool]]


class TargetStatus(BaseModel):
    """Snapshot of the target's state for display."""

    model_config = ConfigDict(frozen=True)

    device_id: str
    device_name: str
    status: ConnectionStatus
    controller_host: str | None = None
    controller_port: int | None = None
    pending_pairing_token: str | None = None
    commands_executed: int = 0
    last_command: str | None = None
    last_command_time: float | None = None


class TargetDevice:
    """Runs the target role.

    Args:
        config: Target section of the settings.
        key_presser: Executes commands; a logging mock when omitted.
        confirm_pairing: Asked whether to accept a pairing token when
            auto-accept is off. Without it the token is only logged.
        connector: Passed through to the control client.
    """

    def __init__(
        self,
        config: TargetConfig | None = None,
        key_presser: KeyPresser | None = None,
        confirm_pairing: PairingConfirm | None = None,
        connector: Connector | None = None,
    ) -> None:
        self._config = config or TargetConfig()
        self._key_presser = key_presser or LoggingKeyPresser()
        self._confirm_pairing = confirm_pairing

        device_id = self._config.id or str(uuid.uuid4())
        self._info = DeviceInfo(
            id=device_id,
            name=self._config.name or f"ArrowTarget-{device_id[:8]}",
            ip=get_local_ip(),
            mac=get_mac_address(),
            type=DeviceType.TARGET,
            supported_commands=[c.value for c in CommandType],
        )
        self.client = ControlClient(
            device_info=self._info,
            key_presser=self._key_presser,
            heartbeat_interval=self._config.heartbeat_interval,
            auto_reconnect=self._config.auto_reconnect,
            auto_accept_pairing=self._config.auto_accept_pairing,
            reconnect_base_delay=self._config.reconnect_base_delay,
            reconnect_max_delay=self._config.reconnect_max_delay,
            max_reconnect_attempts=self._config.max_reconnect_attempts,
            connector=connector,
        )
        self._listener: DiscoveryListener | None = None
        self._pairing_task: asyncio.Task[None] | None = None
        self._pending_token: str | None = None
        self._commands_executed = 0
        self._last_command: str | None = None
        self._last_command_time: float | None = None

        self.client.subscribe(self._on_client_event)

    @property
    def info(self) -> DeviceInfo:
        return self._info

    async def start(self) -> bool:
        """Open the key presser, locate the controller and connect.

        Returns False when no controller address could be found.
        """
        await self._key_presser.open()
        address = await self._resolve_controller()
        if address is None:
            logger.error("No controller address configured or discovered")
            return False
        host, port = address
        return await self.client.connect(host, port)

    async def stop(self) -> None:
        if self._pairing_task is not None:
            self._pairing_task.cancel()
            self._pairing_task = None
        await self.client.disconnect()
        if self._listener is not None:
            await self._listener.stop()
            self._listener = None
        await self._key_presser.close()
        logger.info("Target stopped")

    async def _resolve_controller(self) -> tuple[str, int] | None:
        if self._config.controller_host:
            return self._config.controller_host, self._config.controller_port

        self._listener = DiscoveryListener(
            device_info=self._info,
            port=self._config.discovery_port,
            controller_port=self._config.controller_discovery_port,
        )
        try:
            await self._listener.start()
        except OSError as e:
            logger.error("Cannot listen for controller announcements: %s", e)
            return None
        self._listener.broadcast_register()
        logger.info("Waiting for a controller announcement...")
        endpoint = await self._listener.wait_for_controller(self._config.discovery_timeout)
        await self._listener.stop()
        self._listener = None
        if endpoint is None:
            return None
        return endpoint.ip, endpoint.port

    def status(self) -> TargetStatus:
        address = self.client.controller_address
        return TargetStatus(
            device_id=self._info.id,
            device_name=self._info.name,
            status=self.client.status,
            controller_host=address[0] if address else None,
            controller_port=address[1] if address else None,
            pending_pairing_token=self._pending_token,
            commands_executed=self._commands_executed,
            last_command=self._last_command,
            last_command_time=self._last_command_time,
        )

    # -------------------------------------------------------------------
    # Client events
    # -------------------------------------------------------------------

    def _on_client_event(self, event: ClientEvent) -> None:
        if event.kind == ClientEventKind.PAIRING_REQUIRED:
            self._pending_token = event.pairing_token
            if not self._config.auto_accept_pairing and event.pairing_token:
                self._ask_pairing(event.pairing_token)
        elif event.kind == ClientEventKind.PAIRING_RESULT:
            if event.success:
                self._pending_token = None
                logger.info("Paired with controller")
            else:
                logger.warning("Pairing failed: %s", event.error)
        elif event.kind == ClientEventKind.COMMAND_EXECUTED:
            self._commands_executed += 1
            self._last_command = event.command_type
            self._last_command_time = time.time()
        elif event.kind == ClientEventKind.RECONNECT_EXHAUSTED:
            logger.error("Controller unreachable, giving up")

    def _ask_pairing(self, token: str) -> None:
        if self._confirm_pairing is None:
            logger.warning("Pairing required; token %s (enable auto_accept_pairing to pair)", token)
            return
        if self._pairing_task is not None:
            self._pairing_task.cancel()
        self._pairing_task = asyncio.create_task(self._run_pairing_prompt(token))

    async def _run_pairing_prompt(self, token: str) -> None:
        assert self._confirm_pairing is not None
        try:
            accepted = await self._confirm_pairing(token)
        except Exception:
            logger.exception("Pairing confirmation failed")
            return
        if accepted:
            await self.client.send_pairing_request(token)
        else:
            logger.info("Pairing declined by operator")
