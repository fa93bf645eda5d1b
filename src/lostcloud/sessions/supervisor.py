"""
Session Supervisor: the connect/reconnect state machine of one session.

States:
    CONNECTING -> LIVE -> (DISCONNECTED -> CONNECTING)* -> TERMINATED

The first connect is request/response: if it fails, the session is
terminated and the error goes back to the caller. Once a session has been
live, every drop is followed by a reconnect after RECONNECT_DELAY, with the
same identity and params, for as long as it takes. Only terminate() stops it.
"""

import asyncio
import random
from typing import Any, Optional

from lostcloud.clock import AsyncioClock, Clock
from lostcloud.config import CONFIG
from lostcloud.connection.base import Connection, ConnectionFactory
from lostcloud.logger import get_logger
from lostcloud.sessions.errors import ConnectError
from lostcloud.sessions.models import (
    ConnectionParams,
    RegistryEntry,
    SessionIdentity,
    SessionState,
)
from lostcloud.sessions.registry import SessionRegistry
from lostcloud.sessions.scheduler import BehaviorScheduler

logger = get_logger(__name__)

RECONNECT_DELAY = 10.0  # seconds


class SessionSupervisor:
    """
    Owns the connection, the behavior scheduler and the reconnect timer of
    one session.

    Args:
        identity: The session's id/key pair.
        params: Immutable connection target.
        connection_factory: Builds a fresh Connection for every attempt.
        registry: Registry the session is entered into while live.
        clock: Time source for the reconnect delay and the scheduler.
        rng: Randomness handed to the behavior scheduler.
    """

    def __init__(
        self,
        identity: SessionIdentity,
        params: ConnectionParams,
        connection_factory: ConnectionFactory,
        registry: SessionRegistry,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
    ):
        self.identity = identity
        self.params = params
        self.username = params.display_name or f"{CONFIG.name_prefix}{identity.id}"
        self._connection_factory = connection_factory
        self._registry = registry
        self._clock = clock or AsyncioClock()
        self._rng = rng or random.Random()

        self._state = SessionState.CONNECTING
        self._generation = 0
        self._connection: Optional[Connection] = None
        self._scheduler: Optional[BehaviorScheduler] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        self.attempts = 0
        self.reconnects = 0
        self.last_drop_reason: Optional[str] = None

    @property
    def session_id(self) -> str:
        return self.identity.id

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def connection(self) -> Optional[Connection]:
        return self._connection

    @property
    def scheduler(self) -> Optional[BehaviorScheduler]:
        return self._scheduler

    async def start(self) -> None:
        """
        Make the first connection.

        Raises:
            ConnectError: If the first attempt fails. The session is then
                terminated; no retry is scheduled.
        """
        try:
            await self._attempt()
        except ConnectError as e:
            if self._state is not SessionState.TERMINATED:
                self._state = SessionState.TERMINATED
                logger.warning(f"Session {self.session_id} failed to start: {e}")
            raise

    async def terminate(self) -> None:
        """Stop the session for good. Safe to call repeatedly and at any time."""
        if self._state is SessionState.TERMINATED:
            return

        previous = self._state
        self._state = SessionState.TERMINATED
        self._generation += 1

        task = self._reconnect_task
        self._reconnect_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._scheduler:
            self._scheduler.detach()
            self._scheduler = None
        if self._connection:
            await self._connection.disconnect()
        self._registry.remove(self.session_id)
        logger.info(f"Session {self.session_id} terminated (was {previous.value})")

    def get_status(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "username": self.username,
            "address": self.params.address,
            "state": self._state.value,
            "live": self._registry.is_live(self.session_id),
            "attempts": self.attempts,
            "reconnects": self.reconnects,
            "last_drop_reason": self.last_drop_reason,
            "scheduler": self._scheduler.get_status() if self._scheduler else None,
        }

    # -- Transitions ---------------------------------------------------------

    async def _attempt(self) -> None:
        """One connect attempt; ends LIVE or raises ConnectError."""
        self._state = SessionState.CONNECTING
        self._generation += 1
        generation = self._generation
        self.attempts += 1

        connection = self._connection_factory(self.params, self.username)
        connection.bind(
            on_terminated=lambda reason: self._handle_terminated(generation, reason),
            on_error=self._handle_error,
        )
        self._connection = connection

        await connection.connect()

        if generation != self._generation or self._state is SessionState.TERMINATED:
            await connection.disconnect()
            raise ConnectError(f"Session {self.session_id} terminated while connecting")

        self._go_live(connection, generation)

    def _go_live(self, connection: Connection, generation: int) -> None:
        self._scheduler = BehaviorScheduler(connection, self._clock, self._rng)
        self._scheduler.attach()
        self._registry.insert(
            RegistryEntry(
                session_id=self.session_id,
                username=self.username,
                host=self.params.host,
                port=self.params.port,
                generation=generation,
            )
        )
        self._state = SessionState.LIVE
        logger.info(
            f"Session {self.session_id} live as '{self.username}' on {self.params.address}"
        )

    def _handle_terminated(self, generation: int, reason: str) -> None:
        if generation != self._generation or self._state is not SessionState.LIVE:
            logger.debug(
                f"Ignoring stale termination for session {self.session_id}: {reason}"
            )
            return

        self.last_drop_reason = reason
        if self._scheduler:
            self._scheduler.detach()
            self._scheduler = None
        self._registry.remove(self.session_id, generation)
        self._state = SessionState.DISCONNECTED
        logger.warning(
            f"Session {self.session_id} disconnected ({reason}). "
            f"Reconnecting in {RECONNECT_DELAY:g}s..."
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    def _handle_error(self, err: Exception) -> None:
        logger.warning(f"Error on session {self.session_id}: {err}")

    async def _reconnect_loop(self) -> None:
        if self._connection:
            await self._connection.disconnect()

        while self._state is not SessionState.TERMINATED:
            await self._clock.sleep(RECONNECT_DELAY)
            if self._state is SessionState.TERMINATED:
                return
            self.reconnects += 1
            try:
                await self._attempt()
                return
            except ConnectError as e:
                if self._state is SessionState.TERMINATED:
                    return
                self._state = SessionState.DISCONNECTED
                logger.warning(
                    f"Reconnect of session {self.session_id} failed: {e}. "
                    f"Retrying in {RECONNECT_DELAY:g}s..."
                )
            except Exception as e:
                if self._state is SessionState.TERMINATED:
                    return
                self._state = SessionState.DISCONNECTED
                logger.error(f"Unexpected error reconnecting {self.session_id}: {e}")
