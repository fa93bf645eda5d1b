"""
Time source used by supervisors and schedulers.

Everything that waits goes through a Clock so tests can substitute a
simulated one.
"""

import asyncio
from abc import ABC, abstractmethod


class Clock(ABC):
    @abstractmethod
    def time(self) -> float:
        """Monotonic time in seconds."""

    @abstractmethod
    async def sleep(self, delay: float) -> None:
        """Suspend the calling task for ``delay`` seconds."""

    async def sleep_until(self, deadline: float) -> None:
        """Suspend until ``deadline``; returns at once if it already passed."""
        await self.sleep(max(0.0, deadline - self.time()))


class AsyncioClock(Clock):
    """Clock backed by the running event loop."""

    def time(self) -> float:
        return asyncio.get_running_loop().time()

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)
