"""
Injectable time source for TTL checks and debounce timers.
"""

import asyncio
import time


class Clock:
    """Monotonic wall clock backed by the running event loop."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


SYSTEM_CLOCK = Clock()
