"""
Base class for session connections.

A connection is one long-lived link to a remote endpoint. Subclasses supply
the transport by implementing the ``_open``/``_close``/``_send_*`` hooks; the
base class owns the lifecycle flags, the listener signals and the rule that
nothing is sent once the connection has terminated.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from lostcloud.logger import get_logger
from lostcloud.sessions.errors import CommandIssueError, ConnectError
from lostcloud.sessions.models import ConnectionParams

logger = get_logger(__name__)

ReadyListener = Callable[[], None]
TerminatedListener = Callable[[str], None]
ErrorListener = Callable[[Exception], None]


@dataclass
class Position:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


class Connection(ABC):
    """
    Abstract connection.

    Lifecycle signals:
        on_ready()             the remote side accepted the session
        on_terminated(reason)  kicked, ended by the server, or closed abnormally
        on_error(err)          non-fatal error; the connection may continue
    """

    def __init__(self, params: ConnectionParams, username: str):
        self.params = params
        self.username = username
        self.position = Position()
        self.yaw: float = 0.0
        self.pitch: float = 0.0
        self._ready = False
        self._terminated = False
        self._closed = False
        self._on_ready: Optional[ReadyListener] = None
        self._on_terminated: Optional[TerminatedListener] = None
        self._on_error: Optional[ErrorListener] = None

    def bind(
        self,
        on_ready: Optional[ReadyListener] = None,
        on_terminated: Optional[TerminatedListener] = None,
        on_error: Optional[ErrorListener] = None,
    ) -> None:
        """Attach the owner's lifecycle listeners."""
        self._on_ready = on_ready
        self._on_terminated = on_terminated
        self._on_error = on_error

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def orientation(self) -> tuple[float, float]:
        return self.yaw, self.pitch

    def is_ready(self) -> bool:
        return self._ready and not self._terminated

    # -- Lifecycle -----------------------------------------------------------

    async def connect(self) -> None:
        """
        Open the link and wait until the remote side spawns the session.

        Raises:
            ConnectError: On any failure before the session is ready.
        """
        if self._terminated:
            raise ConnectError(f"Connection for '{self.username}' already terminated")

        try:
            await self._open()
        except ConnectError:
            await self._release()
            raise
        except Exception as e:
            await self._release()
            raise ConnectError(
                f"Failed to connect '{self.username}' to {self.params.address}: {e}"
            ) from e

        if self._terminated:
            # disconnect() ran while _open was pending; whatever _open built
            # after that is still up.
            await self._release()
            raise ConnectError(
                f"Connection for '{self.username}' terminated while connecting"
            )

        self._ready = True
        if self._on_ready:
            self._on_ready()

    async def disconnect(self) -> None:
        """Close the link. Idempotent; never emits on_terminated."""
        self._terminated = True
        self._ready = False
        if self._closed:
            return
        await self._release()

    async def _release(self) -> None:
        """Close transport state unconditionally, even after an earlier disconnect."""
        self._terminated = True
        self._ready = False
        self._closed = True
        try:
            await self._close()
        except Exception as e:
            logger.warning(f"Error while closing connection for '{self.username}': {e}")

    # -- Commands ------------------------------------------------------------

    async def look(self, yaw: float, pitch: float) -> None:
        await self._issue("look", self._send_look, yaw, pitch)

    async def issue_navigate(self, dx: float, dy: float, dz: float) -> None:
        """Navigate to the block at the current position plus the offset."""
        goal = (
            math.floor(self.position.x + dx),
            math.floor(self.position.y + dy),
            math.floor(self.position.z + dz),
        )
        await self._issue("navigate", self._send_navigate, *goal)

    async def set_control(self, control: str, engaged: bool) -> None:
        await self._issue(f"control {control}", self._send_control, control, engaged)

    async def issue_short_action(self, kind: str) -> None:
        await self._issue(f"action {kind}", self._send_action, kind)

    async def _issue(
        self, label: str, send: Callable[..., Awaitable[None]], *args: Any
    ) -> None:
        if self._terminated:
            return
        try:
            await send(*args)
        except CommandIssueError:
            raise
        except Exception as e:
            raise CommandIssueError(
                f"{label} failed on '{self.username}': {e}"
            ) from e

    # -- Signals for subclasses ---------------------------------------------

    def _emit_terminated(self, reason: str) -> None:
        if self._terminated:
            return
        self._terminated = True
        self._ready = False
        logger.info(f"Connection for '{self.username}' terminated: {reason}")
        if self._on_terminated:
            self._on_terminated(reason)

    def _emit_error(self, err: Exception) -> None:
        logger.debug(f"Connection error on '{self.username}': {err}")
        if self._on_error:
            self._on_error(err)

    # -- Transport hooks -----------------------------------------------------

    @abstractmethod
    async def _open(self) -> None:
        """Open the transport and wait for the session to spawn."""

    @abstractmethod
    async def _close(self) -> None:
        """Release the transport. May run again after a disconnect that raced _open."""

    @abstractmethod
    async def _send_look(self, yaw: float, pitch: float) -> None: ...

    @abstractmethod
    async def _send_navigate(self, x: int, y: int, z: int) -> None: ...

    @abstractmethod
    async def _send_control(self, control: str, engaged: bool) -> None: ...

    @abstractmethod
    async def _send_action(self, kind: str) -> None: ...


ConnectionFactory = Callable[[ConnectionParams, str], Connection]
