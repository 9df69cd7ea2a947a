"""Key-press output for the target role.

Turns arrow commands into local key presses via pluggable backends.
The abstract interface lets the target run against a real keyboard
(pynput) or a logging-only mock without changing any other code.

Public API:
    KeyPresser -- Abstract base class
    LoggingKeyPresser -- Mock backend that only logs
    PynputKeyPresser -- OS key events via pynput
    create_key_presser -- Backend factory
"""

from arrowctl.keyboard.base import KeyPresser, KeyPresserError, create_key_presser
from arrowctl.keyboard.mock_backend import LoggingKeyPresser

__all__ = [
    "KeyPresser",
    "KeyPresserError",
    "LoggingKeyPresser",
    "PynputKeyPresser",
    "create_key_presser",
]


def __getattr__(name: str) -> type:
    """Lazy import for concrete implementations that require external deps."""
    if name == "PynputKeyPresser":
        from arrowctl.keyboard.pynput_backend import PynputKeyPresser
        return PynputKeyPresser
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
