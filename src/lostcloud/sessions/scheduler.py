"""
Behavior Scheduler: periodic low-impact activity on a live connection.

Three independent timers run while the scheduler is attached:

- orientation sweep (every 5 min): a full turn of yaw over 1 s in 20 steps
- drift (every 5 s): walk to a nearby block, sometimes with a jump
- idle pulse (every 60 s): arm swing plus a short sneak

Each timer reschedules from its own previous deadline so periods do not
accumulate drift. A failing command is logged and counted; it never stops the
other timers or the scheduler.
"""

import asyncio
import math
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from lostcloud.clock import AsyncioClock, Clock
from lostcloud.connection.base import Connection
from lostcloud.logger import get_logger

logger = get_logger(__name__)

ORIENTATION_PERIOD = 300.0
SWEEP_DURATION = 1.0
SWEEP_STEPS = 20
FULL_TURN = 2 * math.pi

DRIFT_PERIOD = 5.0
DRIFT_RANGE = 5  # blocks, inclusive on both sides
JUMP_CHANCE = 0.3
JUMP_HOLD = 0.5

IDLE_PULSE_PERIOD = 60.0
SNEAK_MIN = 0.5
SNEAK_SPAN = 1.0


@dataclass
class Behavior:
    """One periodic behavior and its counters."""

    name: str
    period: float
    action: Callable[[], Awaitable[None]]
    requires_ready: bool = False
    fires: int = 0
    skipped: int = 0
    errors: int = 0


class BehaviorScheduler:
    """
    Runs the periodic behaviors for one connection.

    Args:
        connection: The connection commands are issued on.
        clock: Time source; defaults to the event loop clock.
        rng: Randomness for drift targets, jumps and sneak durations.
    """

    def __init__(
        self,
        connection: Connection,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
    ):
        self._connection = connection
        self._clock = clock or AsyncioClock()
        self._rng = rng or random.Random()
        self._attached = False
        self._timers: list[asyncio.Task] = []
        self._inflight: set[asyncio.Task] = set()
        self.behaviors: dict[str, Behavior] = {
            b.name: b
            for b in (
                Behavior(
                    "orientation_sweep",
                    ORIENTATION_PERIOD,
                    self._orientation_sweep,
                    requires_ready=True,
                ),
                Behavior("drift", DRIFT_PERIOD, self._drift, requires_ready=True),
                Behavior("idle_pulse", IDLE_PULSE_PERIOD, self._idle_pulse),
            )
        }

    @property
    def attached(self) -> bool:
        return self._attached

    def attach(self) -> None:
        """Start all timers. No-op if already attached."""
        if self._attached:
            return
        self._attached = True
        start = self._clock.time()
        self._timers = [
            asyncio.create_task(self._run_timer(behavior, start))
            for behavior in self.behaviors.values()
        ]
        logger.debug(f"Scheduler attached to '{self._connection.username}'")

    def detach(self) -> None:
        """
        Stop all timers at once.

        A fire already in progress finishes its sequence; no new fire starts.
        """
        if not self._attached:
            return
        self._attached = False
        for task in self._timers:
            task.cancel()
        self._timers = []
        logger.debug(f"Scheduler detached from '{self._connection.username}'")

    def get_status(self) -> dict:
        return {
            "attached": self._attached,
            "in_flight": len(self._inflight),
            "behaviors": {
                b.name: {
                    "period": b.period,
                    "fires": b.fires,
                    "skipped": b.skipped,
                    "errors": b.errors,
                }
                for b in self.behaviors.values()
            },
        }

    # -- Internal ------------------------------------------------------------

    async def _run_timer(self, behavior: Behavior, start: float) -> None:
        deadline = start
        while self._attached:
            deadline += behavior.period
            await self._clock.sleep_until(deadline)
            if not self._attached:
                break
            task = asyncio.create_task(self._fire(behavior))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _fire(self, behavior: Behavior) -> None:
        behavior.fires += 1
        if behavior.requires_ready and not self._connection.is_ready():
            behavior.skipped += 1
            logger.debug(
                f"Skipping {behavior.name} on '{self._connection.username}': not ready"
            )
            return
        try:
            await behavior.action()
        except Exception as e:
            behavior.errors += 1
            logger.error(
                f"Error in {behavior.name} on '{self._connection.username}': {e}"
            )

    async def _orientation_sweep(self) -> None:
        yaw, pitch = self._connection.orientation
        step_delay = SWEEP_DURATION / SWEEP_STEPS
        for step in range(1, SWEEP_STEPS + 1):
            await self._clock.sleep(step_delay)
            await self._connection.look(yaw + FULL_TURN * step / SWEEP_STEPS, pitch)

    async def _drift(self) -> None:
        dx = self._rng.randint(-DRIFT_RANGE, DRIFT_RANGE)
        dz = self._rng.randint(-DRIFT_RANGE, DRIFT_RANGE)
        await self._connection.issue_navigate(dx, 0, dz)

        if self._rng.random() < JUMP_CHANCE:
            await self._connection.set_control("jump", True)
            await self._clock.sleep(JUMP_HOLD)
            await self._connection.set_control("jump", False)

    async def _idle_pulse(self) -> None:
        await self._connection.issue_short_action("swing_arm")
        await self._connection.set_control("sneak", True)
        await self._clock.sleep(SNEAK_MIN + self._rng.random() * SNEAK_SPAN)
        await self._connection.set_control("sneak", False)
