"""Abstract base class for key-press output.

All key-press backends conform to this interface so the target's
control client can execute arrow commands without knowing whether the
keys end up in the OS input queue or only in a log.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

# Pause between discrete taps when a command repeats
DEFAULT_REPEAT_DELAY = 0.05


class KeyPresser(ABC):
    """Abstract interface for pressing keys on the local machine.

    Example usage::

        async with LoggingKeyPresser() as keys:
            await keys.press_left(repeat=3)
            await keys.press_right(hold_time=500)
    """

    def __init__(self, repeat_delay: float = DEFAULT_REPEAT_DELAY) -> None:
        self._repeat_delay = repeat_delay

    async def open(self) -> None:
        """Acquire whatever the backend needs. Safe to call twice."""

    async def close(self) -> None:
        """Release backend resources. Safe to call twice."""

    @abstractmethod
    async def _press_once(self, key: str, hold_time: int) -> bool:
        """Press ``key`` once, holding it ``hold_time`` milliseconds."""
        ...

    async def press(self, key: str, repeat: int = 1, hold_time: int = 0) -> bool:
        """Press ``key`` ``repeat`` times.

        Args:
            key: Logical key name ('left' or 'right').
            repeat: Number of discrete presses, at least 1.
            hold_time: Milliseconds to hold each press; 0 is a plain tap.

        Returns:
            True if every press was delivered.

        Raises:
            KeyPresserError: If the backend cannot press keys at all.
        """
        if repeat < 1 or hold_time < 0:
            raise ValueError("repeat must be >= 1 and hold_time >= 0")
        for i in range(repeat):
            if not await self._press_once(key, hold_time):
                logger.warning("Press %d/%d of %s failed", i + 1, repeat, key)
                return False
            if i < repeat - 1:
                await asyncio.sleep(self._repeat_delay)
        return True

    async def press_left(self, repeat: int = 1, hold_time: int = 0) -> bool:
        return await self.press("left", repeat, hold_time)

    async def press_right(self, repeat: int = 1, hold_time: int = 0) -> bool:
        return await self.press("right", repeat, hold_time)

    async def __aenter__(self) -> KeyPresser:
        await self.open()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.close()


class KeyPresserError(Exception):
    """Raised when a key-press backend is unusable."""

    def __init__(self, message: str, backend: str = "") -> None:
        super().__init__(message)
        self.backend = backend


def create_key_presser(backend: str = "mock", repeat_delay: float = DEFAULT_REPEAT_DELAY) -> KeyPresser:
    """Build the key presser named by ``backend`` ('mock' or 'pynput')."""
    if backend == "mock":
        from arrowctl.keyboard.mock_backend import LoggingKeyPresser

        return LoggingKeyPresser(repeat_delay=repeat_delay)
    if backend == "pynput":
        from arrowctl.keyboard.pynput_backend import PynputKeyPresser

        return PynputKeyPresser(repeat_delay=repeat_delay)
    raise KeyPresserError(f"Unknown key backend: {backend}", backend=backend)
