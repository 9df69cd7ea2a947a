"""Key-press backend using pynput.

Injects real key events through the desktop session (X11, Windows or
macOS). pynput is an optional dependency installed with the ``keys``
extra.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from arrowctl.keyboard.base import KeyPresser, KeyPresserError

logger = logging.getLogger(__name__)


class PynputKeyPresser(KeyPresser):
    """Presses arrow keys with ``pynput.keyboard.Controller``."""

    def __init__(self, repeat_delay: float = 0.05) -> None:
        super().__init__(repeat_delay=repeat_delay)
        self._controller: Any = None
        self._keys: dict[str, Any] = {}

    async def open(self) -> None:
        if self._controller is not None:
            return
        try:
            from pynput import keyboard
        except ImportError as e:
            raise KeyPresserError(
                "pynput is not installed (pip install arrowctl[keys])", backend="pynput"
            ) from e
        except Exception as e:
            # pynput raises on import when no display server is reachable
            raise KeyPresserError(f"pynput is unusable here: {e}", backend="pynput") from e

        self._controller = keyboard.Controller()
        self._keys = {"left": keyboard.Key.left, "right": keyboard.Key.right}
        logger.info("pynput key backend ready")

    async def close(self) -> None:
        self._controller = None
        self._keys = {}

    async def _press_once(self, key: str, hold_time: int) -> bool:
        if self._controller is None:
            await self.open()
        target = self._keys.get(key)
        if target is None:
            logger.error("No key mapping for %r", key)
            return False
        self._controller.press(target)
        try:
            if hold_time > 0:
                await asyncio.sleep(hold_time / 1000)
        finally:
            self._controller.release(target)
        logger.debug("Pressed %s (hold %dms)", key, hold_time)
        return True
