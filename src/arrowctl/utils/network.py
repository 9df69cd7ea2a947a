"""Local network helpers."""

from __future__ import annotations

import logging
import socket
import uuid

logger = logging.getLogger(__name__)


def get_local_ip(route_address: str = "8.8.8.8") -> str:
    """Return this host's primary IPv4 address.

    Connecting a UDP socket sends no packets; it only asks the kernel
    which interface would route to ``route_address``. Falls back to
    loopback when no route exists.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect((route_address, 80))
        return sock.getsockname()[0]
    except OSError as e:
        logger.debug("Could not determine local IP: %s", e)
        return "127.0.0.1"
    finally:
        sock.close()


def get_mac_address() -> str | None:
    """Return the primary interface MAC as ``aa:bb:cc:dd:ee:ff``, if known."""
    node = uuid.getnode()
    # getnode() sets the multicast bit when it had to invent a random value
    if (node >> 40) & 1:
        return None
    return ":".join(f"{(node >> shift) & 0xFF:02x}" for shift in range(40, -1, -8))
