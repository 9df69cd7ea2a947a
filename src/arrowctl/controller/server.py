"""WebSocket control server for the controller role.

Accepts target sessions, routes protocol messages to the device
registry, dispatches arrow commands and runs the liveness sweep.

Each live session is tracked by a ``Connection`` record in the server's
connection table. The underlying socket is borrowed from the transport
and never handed out; everything outside this module refers to sessions
by connection id.

Liveness uses two signals: targets send application ``heartbeat``
messages, and the server pings every connection at a fixed interval. A
connection that has not answered the previous cycle's ping (nor sent a
heartbeat since) is terminated on the next cycle, so one missed ping is
tolerated.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from functools import partial
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, ValidationError
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from arrowctl.controller.registry import DeviceRegistry
from arrowctl.domain.events import EventChannel, ServerEvent, ServerEventKind
from arrowctl.domain.models import (
    CommandDispatchResult,
    DeviceType,
    DispatchFailure,
    PairingResult,
)
from arrowctl.protocol.constants import (
    ARROW_COMMANDS,
    DEFAULT_CONTROL_PORT,
    DEFAULT_PING_INTERVAL,
    ErrorCode,
    MessageType,
)
from arrowctl.protocol.messages import (
    ArrowParameters,
    CommandData,
    CommandResultData,
    PairingRequestData,
    PairingResponseData,
    ProtocolMessage,
    RegisterData,
    RegisteredData,
    build_error,
    build_message,
    encode_message,
    parse_message,
    parse_payload,
)

logger = logging.getLogger(__name__)


class Connection(BaseModel):
    """One live transport session, owned by the server's connection table."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    socket: Any
    ip: str = "unknown"
    is_alive: bool = True
    last_activity: float
    device_id: str | None = None


def _peer_ip(websocket: Any) -> str:
    address = getattr(websocket, "remote_address", None)
    if isinstance(address, tuple) and address:
        return str(address[0])
    return "unknown"


def _abort(websocket: Any) -> None:
    """Drop the transport without a closing handshake."""
    transport = getattr(websocket, "transport", None)
    if transport is not None:
        transport.abort()


class ControlServer:
    """Serves the control protocol to target devices.

    Args:
        controller_id: Sender id used on every outgoing message.
        registry: The device registry this server reports into.
        host: Interface to bind.
        port: TCP port for the WebSocket listener (0 picks a free port).
        ping_interval: Seconds between liveness sweep cycles.
        clock: Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        controller_id: str,
        registry: DeviceRegistry,
        host: str = "0.0.0.0",
        port: int = DEFAULT_CONTROL_PORT,
        ping_interval: float = DEFAULT_PING_INTERVAL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._controller_id = controller_id
        self._registry = registry
        self._host = host
        self._port = port
        self._ping_interval = ping_interval
        self._clock = clock
        self._connections: dict[str, Connection] = {}
        self._server: Server | None = None
        self._sweep_task: asyncio.Task[None] | None = None
        self._events: EventChannel[ServerEvent] = EventChannel("ControlServer")
        self._handlers = {
            MessageType.REGISTER.value: self._handle_register,
            MessageType.PAIRING_REQUEST.value: self._handle_pairing_request,
            MessageType.HEARTBEAT.value: self._handle_heartbeat,
            MessageType.COMMAND_RESULT.value: self._handle_command_result,
        }

    @property
    def controller_id(self) -> str:
        return self._controller_id

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def port(self) -> int:
        """The bound port once started, otherwise the configured one."""
        if self._server is not None:
            for sock in self._server.sockets:
                return sock.getsockname()[1]
        return self._port

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def get_connection(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def get_connection_for_device(self, device_id: str) -> Connection | None:
        for connection in self._connections.values():
            if connection.device_id == device_id:
                return connection
        return None

    def subscribe(self, observer: Callable[[ServerEvent], None]) -> None:
        self._events.subscribe(observer)

    def unsubscribe(self, observer: Callable[[ServerEvent], None]) -> None:
        self._events.unsubscribe(observer)

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------

    async def start(self) -> None:
        if self._server is not None:
            logger.warning("Control server is already running")
            return
        # The library's own keepalive is disabled; check_liveness() owns pings.
        self._server = await serve(
            self._handle_connection, self._host, self._port, ping_interval=None
        )
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("Control server listening on %s:%d", self._host, self.port)

    async def stop(self) -> None:
        """Cancel the sweep, drop every session, then release the port."""
        if self._server is None:
            logger.warning("Control server is not running")
            return

        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        for connection in list(self._connections.values()):
            self._terminate(connection, reason="server shutdown")
        self._connections.clear()

        server, self._server = self._server, None
        server.close()
        await server.wait_closed()
        logger.info("Control server stopped")

    # -------------------------------------------------------------------
    # Session handling
    # -------------------------------------------------------------------

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        connection = self.open_connection(websocket)
        try:
            async for raw in websocket:
                connection.last_activity = self._clock()
                await self.handle_message(connection, raw)
        except ConnectionClosed as e:
            logger.debug("Connection %s closed abnormally: %s", connection.id, e)
        finally:
            self.close_connection(connection)

    def open_connection(self, websocket: Any) -> Connection:
        """Add a new session to the connection table."""
        connection = Connection(
            id=uuid.uuid4().hex,
            socket=websocket,
            ip=_peer_ip(websocket),
            last_activity=self._clock(),
        )
        self._connections[connection.id] = connection
        logger.info("New connection from %s (%s)", connection.ip, connection.id)
        self._events.emit(
            ServerEvent(
                kind=ServerEventKind.CONNECTION_OPENED,
                connection_id=connection.id,
                ip=connection.ip,
            )
        )
        return connection

    def close_connection(self, connection: Connection) -> None:
        """Transport closed: unbind and disconnect, unless already terminated."""
        if self._connections.pop(connection.id, None) is None:
            return
        device_id = connection.device_id
        logger.info("Connection closed (%s)", connection.id)
        self._release_device(connection)
        self._events.emit(
            ServerEvent(
                kind=ServerEventKind.CONNECTION_CLOSED,
                connection_id=connection.id,
                device_id=device_id,
                ip=connection.ip,
            )
        )

    def _release_device(self, connection: Connection, disconnect: bool = True) -> None:
        device_id, connection.device_id = connection.device_id, None
        if not device_id or not disconnect:
            return
        device = self._registry.get_device_by_id(device_id)
        if device is not None and device.connection_id == connection.id:
            self._registry.disconnect_device(device_id)

    def _terminate(
        self, connection: Connection, reason: str, disconnect: bool = True
    ) -> bool:
        """Forcibly end a session. Returns False if it was already gone."""
        if self._connections.pop(connection.id, None) is None:
            return False
        device_id = connection.device_id
        connection.is_alive = False
        self._release_device(connection, disconnect=disconnect)
        try:
            _abort(connection.socket)
        except OSError as e:
            logger.debug("Error aborting connection %s: %s", connection.id, e)
        logger.info("Terminated connection %s (%s)", connection.id, reason)
        self._events.emit(
            ServerEvent(
                kind=ServerEventKind.CONNECTION_TERMINATED,
                connection_id=connection.id,
                device_id=device_id,
                ip=connection.ip,
                error=reason,
            )
        )
        return True

    async def _send(self, connection: Connection, message: ProtocolMessage) -> bool:
        try:
            await connection.socket.send(encode_message(message))
            return True
        except (ConnectionClosed, OSError) as e:
            logger.error("Error sending %s to connection %s: %s", message.type, connection.id, e)
            return False

    async def _send_error(self, connection: Connection, code: ErrorCode, text: str) -> None:
        await self._send(
            connection,
            build_error(self._controller_id, DeviceType.CONTROLLER, code, text),
        )

    def _reply(self, message_type: MessageType, data: BaseModel | dict | None = None) -> ProtocolMessage:
        return build_message(message_type, self._controller_id, DeviceType.CONTROLLER, data)

    # -------------------------------------------------------------------
    # Message routing
    # -------------------------------------------------------------------

    async def handle_message(self, connection: Connection, raw: str | bytes) -> None:
        """Route one inbound frame. The connection stays open whatever happens."""
        parsed = parse_message(raw)
        if parsed.message is None:
            logger.warning("Invalid message from connection %s: %s", connection.id, parsed.error)
            await self._send_error(
                connection, ErrorCode.INVALID_MESSAGE, parsed.error or "Invalid message format"
            )
            return

        message = parsed.message
        handler = self._handlers.get(message.type)
        if handler is None:
            logger.warning("Unhandled message type from %s: %s", connection.id, message.type)
            await self._send_error(
                connection,
                ErrorCode.INVALID_MESSAGE,
                f"Unsupported message type: {message.type}",
            )
            return

        try:
            await handler(connection, message)
        except Exception:
            logger.exception("Error handling %s from connection %s", message.type, connection.id)
            await self._send_error(connection, ErrorCode.INTERNAL_ERROR, "Internal server error")

    async def _handle_register(self, connection: Connection, message: ProtocolMessage) -> None:
        if message.sender.type != DeviceType.TARGET:
            logger.warning("Register from non-target sender %s", message.sender.id)
            await self._send_error(
                connection, ErrorCode.INVALID_MESSAGE, "Only target devices can register"
            )
            return

        try:
            info = parse_payload(message, RegisterData).device_info
        except ValidationError as e:
            logger.warning("Invalid register message from %s: %s", connection.id, e)
            await self._send_error(connection, ErrorCode.INVALID_MESSAGE, "Invalid device info")
            return

        if info.type != DeviceType.TARGET:
            logger.warning("Invalid device type in register message: %s", info.type.value)
            await self._send_error(
                connection, ErrorCode.INVALID_MESSAGE, "Only target devices can register"
            )
            return

        if not info.ip and connection.ip != "unknown":
            info = info.model_copy(update={"ip": connection.ip})

        device = self._registry.register_device(info)

        # One live socket per identity: a newer registration wins.
        stale = [
            c for c in self._connections.values()
            if c is not connection and c.device_id == device.id
        ]
        for other in stale:
            logger.warning(
                "Device %s registered on %s, terminating previous connection %s",
                device.id,
                connection.id,
                other.id,
            )
            self._terminate(other, reason="superseded", disconnect=False)

        connection.device_id = device.id
        connection.is_alive = True
        self._registry.connect_device(device.id, connection.id)

        await self._send(
            connection,
            self._reply(
                MessageType.REGISTERED,
                RegisteredData(
                    device_id=device.id,
                    pairing_required=not device.paired,
                    pairing_token=device.pairing_token,
                ),
            ),
        )
        logger.info(
            "Device registered: %s (%s)%s",
            device.name,
            device.id,
            "" if device.paired else " - pairing required",
        )

    async def _handle_pairing_request(
        self, connection: Connection, message: ProtocolMessage
    ) -> None:
        if not connection.device_id:
            logger.warning("Pairing request from unregistered connection %s", connection.id)
            await self._send_error(connection, ErrorCode.INVALID_MESSAGE, "Device not registered")
            return

        try:
            token = parse_payload(message, PairingRequestData).pairing_token
        except ValidationError:
            logger.warning("Pairing request without token from %s", connection.id)
            await self._send_error(connection, ErrorCode.INVALID_MESSAGE, "Missing pairing token")
            return

        result = self._registry.pair_device(connection.device_id, token)
        if not result.success:
            logger.warning("Pairing failed for device %s: %s", connection.device_id, result.error)
            response = PairingResponseData(accepted=False, error=result.error)
        else:
            response = PairingResponseData(accepted=True, auth_token=result.device.auth_token)
        await self._send(connection, self._reply(MessageType.PAIRING_RESPONSE, response))

    async def _handle_heartbeat(self, connection: Connection, message: ProtocolMessage) -> None:
        connection.is_alive = True
        connection.last_activity = self._clock()
        if connection.device_id:
            self._registry.update_last_seen(connection.device_id)
        await self._send(connection, self._reply(MessageType.HEARTBEAT_ACK))

    async def _handle_command_result(
        self, connection: Connection, message: ProtocolMessage
    ) -> None:
        if not connection.device_id:
            logger.warning("Command result from unregistered connection %s", connection.id)
            return
        try:
            result = parse_payload(message, CommandResultData)
        except ValidationError as e:
            logger.warning("Invalid command result from %s: %s", connection.id, e)
            return
        device = self._registry.get_device_by_id(connection.device_id)
        if device is None:
            logger.warning("Command result from unknown device %s", connection.device_id)
            return

        if result.success:
            logger.info("Command %s succeeded on %s", result.command_type, device.name)
        else:
            logger.warning(
                "Command %s failed on %s: %s", result.command_type, device.name, result.error
            )
        self._events.emit(
            ServerEvent(
                kind=ServerEventKind.COMMAND_RESULT,
                connection_id=connection.id,
                device_id=device.id,
                command_type=result.command_type,
                success=result.success,
                error=result.error,
                result=result.result,
            )
        )

    # -------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------

    async def send_arrow_command(
        self,
        device_id: str,
        direction: str,
        repeat: int = 1,
        hold_time: int = 0,
    ) -> CommandDispatchResult:
        """Send an arrow command to a paired device.

        Success means the frame was handed to the transport. The
        execution outcome arrives later as a ``command_result`` event,
        correlated by device id and command type only, so at most one
        command of a given type should be in flight per device.
        """
        command_type = ARROW_COMMANDS.get(direction.lower())
        if command_type is None:
            return self._dispatch_failure(
                DispatchFailure.INVALID_PARAMETERS, f"Invalid direction: {direction}", device_id
            )
        try:
            parameters = ArrowParameters(repeat=repeat, hold_time=hold_time)
        except ValidationError as e:
            return self._dispatch_failure(
                DispatchFailure.INVALID_PARAMETERS,
                f"Invalid command parameters: {e.errors()[0]['msg']}",
                device_id,
            )

        device = self._registry.get_device_by_id(device_id)
        if device is None:
            return self._dispatch_failure(DispatchFailure.DEVICE_NOT_FOUND, "Device not found", device_id)
        if not device.is_connected:
            return self._dispatch_failure(DispatchFailure.NOT_CONNECTED, "Device not connected", device_id)
        if not device.paired:
            return self._dispatch_failure(DispatchFailure.NOT_PAIRED, "Device not paired", device_id)
        if not device.device_info.supports(command_type.value):
            return self._dispatch_failure(
                DispatchFailure.UNSUPPORTED_COMMAND,
                f"Device does not support command: {command_type.value}",
                device_id,
            )
        connection = self.get_connection_for_device(device_id)
        if connection is None:
            return self._dispatch_failure(
                DispatchFailure.NO_CONNECTION, "No active connection for device", device_id
            )

        message = self._reply(
            MessageType.COMMAND,
            CommandData(command_type=command_type.value, parameters=parameters.to_wire()),
        )
        if not await self._send(connection, message):
            return self._dispatch_failure(
                DispatchFailure.SEND_FAILED, "Failed to send command", device_id
            )

        logger.debug(
            "Sent %s to %s (repeat=%d, holdTime=%dms)",
            command_type.value,
            device_id,
            repeat,
            hold_time,
        )
        return CommandDispatchResult(success=True, command_type=command_type.value)

    @staticmethod
    def _dispatch_failure(
        failure: DispatchFailure, error: str, device_id: str
    ) -> CommandDispatchResult:
        logger.error("Cannot send command to %s: %s", device_id, error)
        return CommandDispatchResult(success=False, failure=failure, error=error)

    async def unpair_device(self, device_id: str) -> PairingResult:
        """Revoke a device's pairing and tell its live session, if any."""
        result = self._registry.unpair_device(device_id)
        if result.success:
            connection = self.get_connection_for_device(device_id)
            if connection is not None:
                await self._send_error(connection, ErrorCode.NOT_PAIRED, "Device unpaired")
        return result

    # -------------------------------------------------------------------
    # Liveness
    # -------------------------------------------------------------------

    async def check_liveness(self) -> None:
        """Run one liveness sweep cycle over every connection."""
        for connection in list(self._connections.values()):
            if connection.id not in self._connections:
                continue
            if not connection.is_alive:
                logger.warning("Connection not responding (%s), terminating", connection.id)
                self._terminate(connection, reason="missed ping")
                continue

            connection.is_alive = False
            try:
                pong_waiter = await connection.socket.ping()
            except (ConnectionClosed, OSError) as e:
                logger.error("Error sending ping to connection %s: %s", connection.id, e)
                self._terminate(connection, reason="ping failed")
                continue
            pong_waiter.add_done_callback(partial(self._on_pong, connection))

    def _on_pong(self, connection: Connection, waiter: asyncio.Future) -> None:
        if waiter.cancelled() or waiter.exception() is not None:
            return
        self.mark_alive(connection.id)

    def mark_alive(self, connection_id: str) -> None:
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.is_alive = True
            connection.last_activity = self._clock()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._ping_interval)
            try:
                await self.check_liveness()
            except Exception:
                logger.exception("Liveness sweep failed")
