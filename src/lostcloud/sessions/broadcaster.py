"""
Liveness Broadcaster: periodic status push for observers.

Every interval the broadcaster asks the surrounding system which session ids
it wants reported (typically every stored session), takes a liveness
snapshot from the manager and hands it to a callback.
"""

import asyncio
import inspect
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional, Union

from lostcloud.clock import AsyncioClock, Clock
from lostcloud.logger import get_logger
from lostcloud.sessions.manager import SessionManager
from lostcloud.sessions.models import LivenessEntry

logger = get_logger(__name__)

BROADCAST_INTERVAL = 10.0  # seconds

IdsProvider = Callable[[], Union[Iterable[str], Awaitable[Iterable[str]]]]
SnapshotCallback = Callable[[list[LivenessEntry]], Union[None, Awaitable[None]]]


class LivenessBroadcaster:
    """Pushes a liveness snapshot to a callback at a fixed interval."""

    def __init__(
        self,
        manager: SessionManager,
        ids_provider: IdsProvider,
        callback: SnapshotCallback,
        interval: float = BROADCAST_INTERVAL,
        clock: Optional[Clock] = None,
    ):
        self.manager = manager
        self.interval = interval
        self._ids_provider = ids_provider
        self._callback = callback
        self._clock = clock or AsyncioClock()
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._last_run_at: Optional[datetime] = None
        self._last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Send one snapshot now, then keep sending every interval."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"LivenessBroadcaster started (every {self.interval:g}s)")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("LivenessBroadcaster stopped.")

    async def tick(self) -> list[LivenessEntry]:
        """Build and deliver a single snapshot."""
        ids = self._ids_provider()
        if inspect.isawaitable(ids):
            ids = await ids
        snapshot = self.manager.liveness_snapshot(ids)
        result = self._callback(snapshot)
        if inspect.isawaitable(result):
            await result
        self._last_run_at = datetime.now()
        return snapshot

    def get_status(self) -> dict:
        return {
            "running": self._running,
            "interval": self.interval,
            "last_run_at": self._last_run_at.isoformat() if self._last_run_at else None,
            "last_error": self._last_error,
        }

    # -- Internal ------------------------------------------------------------

    async def _run_loop(self):
        deadline = self._clock.time()
        while self._running:
            try:
                await self.tick()
                self._last_error = None
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Liveness broadcast failed: {e}")
                self._last_error = str(e)

            deadline += self.interval
            try:
                await self._clock.sleep_until(deadline)
            except asyncio.CancelledError:
                break
