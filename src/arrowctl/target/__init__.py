"""Target role for arrowctl.

Public API:
    ControlClient -- Session with a controller, reconnect and heartbeat
    DiscoveryListener -- Finds controllers from UDP announcements
    TargetDevice -- All of the above wired to a key presser
"""

from arrowctl.target.app import TargetDevice, TargetStatus
from arrowctl.target.client import ControlClient
from arrowctl.target.discovery import ControllerEndpoint, DiscoveryListener

__all__ = [
    "ControlClient",
    "ControllerEndpoint",
    "DiscoveryListener",
    "TargetDevice",
    "TargetStatus",
]
