"""Controller role for arrowctl.

Public API:
    DeviceRegistry -- Authoritative device/pairing state
    ControlServer -- WebSocket control server with liveness sweep
    DiscoveryService -- UDP announce broadcaster and register listener
    ControllerApp -- All of the above wired together
"""

from arrowctl.controller.app import ControllerApp
from arrowctl.controller.discovery import DiscoveredPeer, DiscoveryService
from arrowctl.controller.registry import DeviceRegistry
from arrowctl.controller.server import Connection, ControlServer

__all__ = [
    "Connection",
    "ControlServer",
    "ControllerApp",
    "DeviceRegistry",
    "DiscoveredPeer",
    "DiscoveryService",
]
