"""UDP broadcast endpoint shared by both discovery roles."""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Callable

logger = logging.getLogger(__name__)

DatagramHandler = Callable[[bytes, tuple[str, int]], None]


class BroadcastProtocol(asyncio.DatagramProtocol):
    """asyncio UDP protocol that hands every datagram to a callback."""

    def __init__(self, on_datagram: DatagramHandler) -> None:
        self._on_datagram = on_datagram

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        try:
            self._on_datagram(data, addr)
        except Exception:
            logger.exception("Error handling datagram from %s", addr[0])

    def error_received(self, exc: Exception) -> None:
        logger.warning("Discovery UDP error: %s", exc)


async def open_broadcast_endpoint(
    port: int, on_datagram: DatagramHandler, host: str = "0.0.0.0"
) -> asyncio.DatagramTransport:
    """Bind a broadcast-capable UDP socket and wrap it in a transport."""
    loop = asyncio.get_running_loop()

    # SO_REUSEADDR must be set before binding so several processes on one
    # host can share the discovery port
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.setblocking(False)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise

    transport, _ = await loop.create_datagram_endpoint(
        lambda: BroadcastProtocol(on_datagram),
        sock=sock,
    )
    return transport
