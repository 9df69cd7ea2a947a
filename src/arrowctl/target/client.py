"""Control client for the target role.

Keeps one WebSocket session to a controller, registers, pairs, sends
heartbeats and executes arrow commands through a ``KeyPresser``.

Status flow::

    disconnected -> connecting -> connected -> paired
          ^                                      |
          +---------- transport close -----------+

While auto-reconnect is on and a session ends unexpectedly, a single
reconnect task is scheduled with exponential backoff. Its handle is
stored on the client and always cancelled before a replacement is
created. ``disconnect()`` is an operator stop and never reconnects.

Commands are queued and executed by a per-session worker task, one at a
time in arrival order, so a long key hold never delays noticing that the
transport closed. Ending the session cancels the worker.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from pydantic import ValidationError
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from arrowctl.domain.events import ClientEvent, ClientEventKind, EventChannel
from arrowctl.domain.models import ConnectionStatus, DeviceInfo, DeviceType
from arrowctl.keyboard.base import KeyPresser
from arrowctl.protocol.constants import (
    COMMAND_KEYS,
    DEFAULT_CONTROL_PORT,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_RECONNECT_BASE_DELAY,
    DEFAULT_RECONNECT_MAX_DELAY,
    ErrorCode,
    MessageType,
)
from arrowctl.protocol.messages import (
    ArrowParameters,
    CommandData,
    CommandResultData,
    ErrorData,
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

Connector = Callable[[str], Awaitable[Any]]

UNSUPPORTED_COMMAND = "Unsupported command"
INVALID_PARAMETERS = "Invalid command parameters"
EXECUTION_FAILED = "Command execution failed"
INTERNAL_ERROR = "Internal error"


def _default_connector(uri: str) -> Awaitable[Any]:
    # The controller drives transport pings; the library still answers them.
    return ws_connect(uri, ping_interval=None)


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Delay before reconnect attempt ``attempt`` (1-based)."""
    return min(base * 2 ** (attempt - 1), cap)


class ControlClient:
    """Target-side session with a controller.

    Args:
        device_info: Identity sent in ``register``.
        key_presser: Executes arrow commands.
        heartbeat_interval: Seconds between ``heartbeat`` messages.
        auto_reconnect: Reconnect after an unexpected session end.
        auto_accept_pairing: Answer a pairing challenge without asking.
        reconnect_base_delay: First backoff delay in seconds.
        reconnect_max_delay: Upper bound for any backoff delay.
        max_reconnect_attempts: Attempts before giving up for good.
        connector: Opens a WebSocket for a ``ws://`` URI.
    """

    def __init__(
        self,
        device_info: DeviceInfo,
        key_presser: KeyPresser,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        auto_reconnect: bool = True,
        auto_accept_pairing: bool = False,
        reconnect_base_delay: float = DEFAULT_RECONNECT_BASE_DELAY,
        reconnect_max_delay: float = DEFAULT_RECONNECT_MAX_DELAY,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        connector: Connector | None = None,
    ) -> None:
        self._device_info = device_info
        self._key_presser = key_presser
        self._heartbeat_interval = heartbeat_interval
        self._auto_reconnect = auto_reconnect
        self._auto_accept_pairing = auto_accept_pairing
        self._reconnect_base_delay = reconnect_base_delay
        self._reconnect_max_delay = reconnect_max_delay
        self._max_reconnect_attempts = max_reconnect_attempts
        self._connector = connector or _default_connector

        self._status = ConnectionStatus.DISCONNECTED
        self._ws: Any = None
        self._controller_address: tuple[str, int] | None = None
        self._pairing_token: str | None = None
        self._auth_token: str | None = None
        self._reconnect_attempts = 0
        self._stopping = False
        self._receive_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._command_task: asyncio.Task[None] | None = None
        self._commands: asyncio.Queue[ProtocolMessage] | None = None
        self._events: EventChannel[ClientEvent] = EventChannel("ControlClient")
        self._handlers = {
            MessageType.REGISTERED.value: self._handle_registered,
            MessageType.PAIRING_RESPONSE.value: self._handle_pairing_response,
            MessageType.COMMAND.value: self._handle_command,
            MessageType.HEARTBEAT_ACK.value: self._handle_heartbeat_ack,
            MessageType.ERROR.value: self._handle_error,
        }

    # -------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def device_info(self) -> DeviceInfo:
        return self._device_info

    @property
    def device_id(self) -> str:
        return self._device_info.id

    @property
    def controller_address(self) -> tuple[str, int] | None:
        return self._controller_address

    @property
    def pairing_token(self) -> str | None:
        return self._pairing_token

    @property
    def is_paired(self) -> bool:
        return self._status == ConnectionStatus.PAIRED

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def set_controller_address(self, host: str, port: int = DEFAULT_CONTROL_PORT) -> None:
        self._controller_address = (host, port)

    def subscribe(self, observer: Callable[[ClientEvent], None]) -> None:
        self._events.subscribe(observer)

    def unsubscribe(self, observer: Callable[[ClientEvent], None]) -> None:
        self._events.unsubscribe(observer)

    def _emit(self, kind: ClientEventKind, **fields: Any) -> None:
        self._events.emit(ClientEvent(kind=kind, **fields))

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self._status:
            return
        logger.info("Status: %s -> %s", self._status.value, status.value)
        self._status = status
        self._emit(ClientEventKind.STATUS_CHANGED, status=status)

    # -------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------

    async def connect(self, host: str, port: int = DEFAULT_CONTROL_PORT) -> bool:
        """Open a session to ``host:port``.

        Returns True once the transport is open and ``register`` was
        sent. A failure is logged and, with auto-reconnect, schedules a
        retry; it never raises.
        """
        if self._ws is not None:
            logger.warning("Already connected to a controller")
            return False
        self._cancel_reconnect()
        self._stopping = False
        self._controller_address = (host, port)
        return await self._open_session()

    async def _open_session(self) -> bool:
        assert self._controller_address is not None
        host, port = self._controller_address
        uri = f"ws://{host}:{port}"
        logger.info("Connecting to controller at %s", uri)
        self._set_status(ConnectionStatus.CONNECTING)

        try:
            ws = await self._connector(uri)
        except (OSError, WebSocketException) as e:
            logger.error("Could not connect to %s: %s", uri, e)
            self._end_session(unexpected=True)
            return False

        if self._stopping:
            await ws.close()
            return False

        self._ws = ws
        self._reconnect_attempts = 0
        logger.info("Connected to controller at %s", uri)
        self._set_status(ConnectionStatus.CONNECTED)
        self._commands = asyncio.Queue()
        self._command_task = asyncio.create_task(self._command_loop(self._commands))
        await self._send_registration()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        self._receive_task = asyncio.create_task(self._receive_loop(ws))
        return True

    async def disconnect(self) -> None:
        """Close the session and cancel every pending task. No reconnect follows."""
        self._stopping = True
        self._cancel_reconnect()
        self._stop_heartbeat()
        self._stop_commands()

        task, self._receive_task = self._receive_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except (ConnectionClosed, OSError) as e:
                logger.debug("Error closing WebSocket: %s", e)

        self._pairing_token = None
        self._set_status(ConnectionStatus.DISCONNECTED)
        logger.info("Disconnected from controller")

    async def _receive_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                await self.handle_message(raw)
        except ConnectionClosed as e:
            logger.warning("Connection to controller lost: %s", e)
        except OSError as e:
            logger.error("Transport error: %s", e)
        else:
            logger.info("Controller closed the connection")
        if self._ws is ws:
            self._ws = None
            self._receive_task = None
            self._end_session(unexpected=not self._stopping)

    def _end_session(self, unexpected: bool) -> None:
        """Common tail of every session end: stop heartbeats, maybe retry."""
        self._stop_heartbeat()
        self._stop_commands()
        self._pairing_token = None
        self._set_status(ConnectionStatus.DISCONNECTED)
        if unexpected and self._auto_reconnect and not self._stopping:
            self._schedule_reconnect()

    # -------------------------------------------------------------------
    # Reconnect
    # -------------------------------------------------------------------

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _schedule_reconnect(self) -> None:
        if self._controller_address is None:
            return
        self._cancel_reconnect()

        if self._reconnect_attempts >= self._max_reconnect_attempts:
            logger.error(
                "Giving up after %d reconnect attempts", self._reconnect_attempts
            )
            self._set_status(ConnectionStatus.ERROR)
            self._emit(
                ClientEventKind.RECONNECT_EXHAUSTED,
                attempt=self._reconnect_attempts,
                error="Maximum reconnect attempts reached",
            )
            return

        self._reconnect_attempts += 1
        delay = backoff_delay(
            self._reconnect_attempts, self._reconnect_base_delay, self._reconnect_max_delay
        )
        logger.info(
            "Reconnecting in %.1fs (attempt %d/%d)",
            delay,
            self._reconnect_attempts,
            self._max_reconnect_attempts,
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))
        self._emit(
            ClientEventKind.RECONNECT_SCHEDULED, attempt=self._reconnect_attempts, delay=delay
        )

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # The handle now refers to a running attempt; a failure schedules a new one.
        self._reconnect_task = None
        if not self._stopping and self._ws is None:
            await self._open_session()

    # -------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------

    def _message(self, message_type: MessageType, data: Any = None) -> ProtocolMessage:
        return build_message(message_type, self.device_id, DeviceType.TARGET, data)

    async def _send(self, message: ProtocolMessage) -> bool:
        if self._ws is None:
            logger.error("Cannot send %s: not connected", message.type)
            return False
        try:
            await self._ws.send(encode_message(message))
            return True
        except (ConnectionClosed, OSError) as e:
            logger.error("Error sending %s: %s", message.type, e)
            return False

    async def _send_registration(self) -> bool:
        sent = await self._send(
            self._message(MessageType.REGISTER, RegisterData(device_info=self._device_info))
        )
        if sent:
            logger.info("Sent device registration")
        return sent

    async def send_pairing_request(self, pairing_token: str | None = None) -> bool:
        """Send ``pairing_request`` with the given or last received token."""
        token = pairing_token or self._pairing_token
        if self._ws is None:
            logger.error("Cannot send pairing request: not connected")
            return False
        if not token:
            logger.error("Cannot send pairing request: no pairing token available")
            return False
        sent = await self._send(
            self._message(MessageType.PAIRING_REQUEST, PairingRequestData(pairing_token=token))
        )
        if sent:
            logger.info("Sent pairing request")
        return sent

    async def _send_command_result(
        self, command_type: str, success: bool, error: str | None = None, result: Any = None
    ) -> None:
        await self._send(
            self._message(
                MessageType.COMMAND_RESULT,
                CommandResultData(
                    command_type=command_type, success=success, error=error, result=result
                ),
            )
        )
        self._emit(
            ClientEventKind.COMMAND_EXECUTED,
            command_type=command_type,
            success=success,
            error=error,
        )

    def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            if self._status in (ConnectionStatus.CONNECTED, ConnectionStatus.PAIRED):
                if await self._send(self._message(MessageType.HEARTBEAT)):
                    logger.debug("Sent heartbeat")

    # -------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------

    async def handle_message(self, raw: str | bytes) -> None:
        parsed = parse_message(raw)
        if parsed.message is None:
            logger.warning("Invalid message from controller: %s", parsed.error)
            return
        message = parsed.message
        handler = self._handlers.get(message.type)
        if handler is None:
            logger.warning("Unhandled message type: %s", message.type)
            return
        try:
            await handler(message)
        except ValidationError as e:
            logger.warning("Malformed %s message: %s", message.type, e)

    async def _handle_registered(self, message: ProtocolMessage) -> None:
        data = parse_payload(message, RegisteredData)
        if data.device_id != self.device_id:
            logger.warning("Ignoring registration for another device: %s", data.device_id)
            return

        self._emit(ClientEventKind.REGISTERED, success=True)
        if data.pairing_required:
            self._pairing_token = data.pairing_token
            self._set_status(ConnectionStatus.CONNECTED)
            logger.info("Registered with controller; pairing required (token: %s)", data.pairing_token)
            self._emit(ClientEventKind.PAIRING_REQUIRED, pairing_token=data.pairing_token)
            if self._auto_accept_pairing:
                await self.send_pairing_request()
        else:
            logger.info("Registered with controller; already paired")
            self._set_status(ConnectionStatus.PAIRED)

    async def _handle_pairing_response(self, message: ProtocolMessage) -> None:
        data = parse_payload(message, PairingResponseData)
        if data.accepted:
            self._auth_token = data.auth_token
            self._pairing_token = None
            logger.info("Pairing accepted")
            self._set_status(ConnectionStatus.PAIRED)
            self._emit(ClientEventKind.PAIRING_RESULT, success=True)
        else:
            logger.warning("Pairing rejected: %s", data.error)
            self._emit(ClientEventKind.PAIRING_RESULT, success=False, error=data.error)

    async def _handle_command(self, message: ProtocolMessage) -> None:
        if self._commands is None:
            logger.warning("Dropping command received outside a session")
            return
        self._commands.put_nowait(message)

    async def _command_loop(self, commands: asyncio.Queue[ProtocolMessage]) -> None:
        """Execute queued commands one at a time, in arrival order."""
        while True:
            await self._execute_command(await commands.get())

    def _stop_commands(self) -> None:
        self._commands = None
        task, self._command_task = self._command_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _execute_command(self, message: ProtocolMessage) -> None:
        try:
            data = parse_payload(message, CommandData)
        except ValidationError as e:
            logger.warning("Invalid command message: %s", e)
            await self._send(
                build_error(self.device_id, DeviceType.TARGET, ErrorCode.INVALID_COMMAND, "Invalid command")
            )
            return

        command_type = data.command_type
        key = COMMAND_KEYS.get(command_type)
        if key is None or not self._device_info.supports(command_type):
            logger.warning("Unsupported command: %s", command_type)
            await self._send_command_result(command_type, False, UNSUPPORTED_COMMAND)
            return

        try:
            parameters = ArrowParameters.model_validate(data.parameters)
        except ValidationError as e:
            logger.warning("Invalid parameters for %s: %s", command_type, e)
            await self._send_command_result(command_type, False, INVALID_PARAMETERS)
            return

        logger.info(
            "Executing %s (repeat=%d, holdTime=%dms)",
            command_type,
            parameters.repeat,
            parameters.hold_time,
        )
        try:
            ok = await self._key_presser.press(key, parameters.repeat, parameters.hold_time)
        except Exception:
            logger.exception("Error executing %s", command_type)
            await self._send_command_result(command_type, False, INTERNAL_ERROR)
            return

        if ok:
            await self._send_command_result(command_type, True)
        else:
            await self._send_command_result(command_type, False, EXECUTION_FAILED)

    async def _handle_heartbeat_ack(self, message: ProtocolMessage) -> None:
        logger.debug("Received heartbeat acknowledgement")

    async def _handle_error(self, message: ProtocolMessage) -> None:
        try:
            data = parse_payload(message, ErrorData)
        except ValidationError:
            data = ErrorData(code=int(ErrorCode.INTERNAL_ERROR), message="Malformed error message")
        logger.warning("Controller error %d: %s", data.code, data.message)
        self._emit(ClientEventKind.CONTROLLER_ERROR, code=data.code, error=data.message)

        if data.code == ErrorCode.AUTHENTICATION_FAILED:
            self._auth_token = None
            self._pairing_token = None
            if self._status == ConnectionStatus.PAIRED:
                self._set_status(ConnectionStatus.CONNECTED)
        elif data.code == ErrorCode.NOT_PAIRED:
            self._auth_token = None
            if self._status == ConnectionStatus.PAIRED:
                self._set_status(ConnectionStatus.CONNECTED)
            # Re-register to pick up the fresh pairing token
            await self._send_registration()
