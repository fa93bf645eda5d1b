"""Shared pytest fixtures: a simulated clock and scripted connections."""

import asyncio
import heapq
import itertools
import random

import pytest

from lostcloud.clock import Clock
from lostcloud.connection.base import Connection
from lostcloud.sessions.manager import SessionManager
from lostcloud.sessions.registry import SessionRegistry

SETTLE_ROUNDS = 50


async def settle():
    """Let every ready task run until the loop goes quiet."""
    for _ in range(SETTLE_ROUNDS):
        await asyncio.sleep(0)


class FakeClock(Clock):
    """Simulated clock; time only moves through advance()."""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._sleepers: list = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self._now

    async def sleep(self, delay: float) -> None:
        if delay <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + delay, next(self._seq), future))
        await future

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking sleepers in deadline order."""
        target = self._now + seconds
        await settle()
        while self._sleepers and self._sleepers[0][0] <= target + 1e-9:
            deadline, _, future = heapq.heappop(self._sleepers)
            if future.done():
                continue
            self._now = max(self._now, deadline)
            future.set_result(None)
            await settle()
        self._now = target
        await settle()


class FakeConnection(Connection):
    """
    Connection double.

    ``outcome`` scripts the connect attempt: None succeeds, an exception is
    raised, a Future is awaited (its result, if an exception, is raised).
    """

    def __init__(self, params, username, outcome=None):
        super().__init__(params, username)
        self.outcome = outcome
        self.commands: list[tuple] = []
        self.fail_commands: set[str] = set()
        self.closed = False

    async def _open(self):
        if isinstance(self.outcome, asyncio.Future):
            result = await self.outcome
            if isinstance(result, Exception):
                raise result
        elif isinstance(self.outcome, Exception):
            raise self.outcome

    async def _close(self):
        self.closed = True

    async def _send_look(self, yaw, pitch):
        self._record("look", yaw, pitch)

    async def _send_navigate(self, x, y, z):
        self._record("navigate", x, y, z)

    async def _send_control(self, control, engaged):
        self._record("control", control, engaged)

    async def _send_action(self, kind):
        self._record("action", kind)

    def _record(self, name, *args):
        if name in self.fail_commands:
            raise RuntimeError(f"{name} rejected")
        self.commands.append((name, *args))

    def drop(self, reason: str = "kicked: test"):
        """Simulate a remote-side termination."""
        self._emit_terminated(reason)

    def named(self, name: str) -> list[tuple]:
        return [c for c in self.commands if c[0] == name]


class FakeConnectionFactory:
    """Hands out FakeConnections with scripted outcomes, in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.created: list[FakeConnection] = []

    def __call__(self, params, username):
        outcome = self.outcomes.pop(0) if self.outcomes else None
        connection = FakeConnection(params, username, outcome)
        self.created.append(connection)
        return connection

    @property
    def latest(self) -> FakeConnection:
        return self.created[-1]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def factory():
    return FakeConnectionFactory()


@pytest.fixture
def manager(registry, factory, clock):
    return SessionManager(
        registry,
        connection_factory=factory,
        clock=clock,
        rng_factory=lambda: random.Random(1234),
    )
