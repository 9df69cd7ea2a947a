"""Key-press backend that only logs.

Used in development and on hosts without an input device; every press
succeeds.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque

from arrowctl.keyboard.base import KeyPresser

logger = logging.getLogger(__name__)

# Presses kept for inspection; older ones are dropped
HISTORY_SIZE = 100


class LoggingKeyPresser(KeyPresser):
    """Records recent presses instead of sending them to the OS."""

    def __init__(self, repeat_delay: float = 0.05, history_size: int = HISTORY_SIZE) -> None:
        super().__init__(repeat_delay=repeat_delay)
        self.presses: deque[tuple[str, int]] = deque(maxlen=history_size)
        self.press_count = 0

    async def _press_once(self, key: str, hold_time: int) -> bool:
        if hold_time > 0:
            logger.info("[mock] holding %s for %dms", key, hold_time)
            await asyncio.sleep(hold_time / 1000)
        else:
            logger.info("[mock] pressing %s", key)
        self.presses.append((key, hold_time))
        self.press_count += 1
        return True
