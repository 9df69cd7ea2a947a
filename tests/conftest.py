"""Shared test fixtures for the arrowctl test suite.

Provides fake clocks, fake WebSocket peers for both sides of the
control transport, and sample device identities.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest
from websockets.exceptions import ConnectionClosedError

from arrowctl.controller.registry import DeviceRegistry
from arrowctl.domain.models import DeviceInfo, DeviceType
from arrowctl.keyboard.mock_backend import LoggingKeyPresser


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def token_factory() -> Callable[[], str]:
    """Deterministic tokens: tok-1, tok-2, ..."""
    counter = iter(range(1, 10_000))
    return lambda: f"tok-{next(counter)}"


@pytest.fixture
def registry(clock: FakeClock, token_factory: Callable[[], str]) -> DeviceRegistry:
    return DeviceRegistry(pairing_timeout=300, clock=clock, token_factory=token_factory)


# ---------------------------------------------------------------------------
# Device identities
# ---------------------------------------------------------------------------


@pytest.fixture
def make_target_info() -> Callable[..., DeviceInfo]:
    def _make(
        device_id: str = "t1",
        ip: str = "192.168.1.50",
        mac: str | None = None,
        name: str = "Living Room",
        commands: list[str] | None = None,
    ) -> DeviceInfo:
        return DeviceInfo(
            id=device_id,
            name=name,
            ip=ip,
            mac=mac,
            type=DeviceType.TARGET,
            supported_commands=["arrow_left", "arrow_right"] if commands is None else commands,
        )

    return _make


@pytest.fixture
def target_info(make_target_info: Callable[..., DeviceInfo]) -> DeviceInfo:
    return make_target_info()


# ---------------------------------------------------------------------------
# Controller-side socket
# ---------------------------------------------------------------------------


class FakeServerSocket:
    """Stands in for a server-side WebSocket connection."""

    def __init__(self, ip: str = "192.168.1.50") -> None:
        self.remote_address = (ip, 54321)
        self.transport = MagicMock()
        self.sent: list[dict[str, Any]] = []
        self.pings: list[asyncio.Future] = []
        self.fail_send = False

    async def send(self, text: str) -> None:
        if self.fail_send:
            raise ConnectionClosedError(None, None)
        self.sent.append(json.loads(text))

    async def ping(self) -> asyncio.Future:
        waiter = asyncio.get_running_loop().create_future()
        self.pings.append(waiter)
        return waiter

    def answer_pings(self) -> None:
        for waiter in self.pings:
            if not waiter.done():
                waiter.set_result(0.001)

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m["type"] == message_type]

    @property
    def last(self) -> dict[str, Any]:
        return self.sent[-1]


@pytest.fixture
def make_server_socket() -> Callable[..., FakeServerSocket]:
    return FakeServerSocket


# ---------------------------------------------------------------------------
# Target-side socket and connector
# ---------------------------------------------------------------------------

_CLOSE = object()
_DROP = object()


class FakeClientSocket:
    """Stands in for a client WebSocket; the test plays the controller."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, text: str) -> None:
        if self.closed:
            raise ConnectionClosedError(None, None)
        self.sent.append(json.loads(text))

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(_CLOSE)

    def feed(self, message: dict[str, Any] | str) -> None:
        self._incoming.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self) -> None:
        """Simulate an abnormal transport failure."""
        self.closed = True
        self._incoming.put_nowait(_DROP)

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m["type"] == message_type]

    def __aiter__(self) -> FakeClientSocket:
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if item is _DROP:
            raise ConnectionClosedError(None, None)
        return item


class FakeConnector:
    """Connector that hands out fake sockets, or fails while ``failing`` is set."""

    def __init__(self) -> None:
        self.uris: list[str] = []
        self.sockets: list[FakeClientSocket] = []
        self.failing = False

    async def __call__(self, uri: str) -> FakeClientSocket:
        self.uris.append(uri)
        if self.failing:
            raise ConnectionRefusedError(111, "Connection refused")
        socket = FakeClientSocket()
        self.sockets.append(socket)
        return socket

    @property
    def socket(self) -> FakeClientSocket:
        return self.sockets[-1]


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def key_presser() -> LoggingKeyPresser:
    return LoggingKeyPresser(repeat_delay=0)


def controller_message(message_type: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "type": message_type,
        "version": "1.0.0",
        "timestamp": 1_700_000_000_000,
        "sender": {"id": "c1", "type": "controller"},
        "data": data or {},
    }


def target_message(
    message_type: str, data: dict[str, Any] | None = None, sender_id: str = "t1"
) -> dict[str, Any]:
    return {
        "type": message_type,
        "version": "1.0.0",
        "timestamp": 1_700_000_000_000,
        "sender": {"id": sender_id, "type": "target"},
        "data": data or {},
    }


@pytest.fixture
def from_controller() -> Callable[..., dict[str, Any]]:
    return controller_message


@pytest.fixture
def from_target() -> Callable[..., dict[str, Any]]:
    return target_message


async def _settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settle() -> Callable[..., Any]:
    """Let pending tasks run a few event loop iterations."""
    return _settle
