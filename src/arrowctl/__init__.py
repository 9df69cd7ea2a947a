"""arrowctl -- LAN arrow-key remote control.

A controller process discovers target processes on the local network,
pairs with them through a one-time token handshake, and sends them
left/right arrow-key presses over a WebSocket control channel. Targets
execute the presses through a pluggable key-press backend.
"""

__version__ = "0.1.0"
