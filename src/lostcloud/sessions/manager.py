"""
Session Manager: the create/delete facade used by the surrounding system.

The manager tracks one SessionSupervisor per session id, from the start of
its first connect until it is deleted. Liveness queries go to the registry.
"""

import asyncio
import hmac
import random
from collections import OrderedDict
from typing import Any, Callable, Iterable, Optional

from lostcloud.clock import AsyncioClock, Clock
from lostcloud.connection.base import ConnectionFactory
from lostcloud.connection.websocket import websocket_connection_factory
from lostcloud.logger import get_logger
from lostcloud.sessions.credentials import generate_identity
from lostcloud.sessions.errors import (
    AuthorizationError,
    ConnectError,
    CreationError,
    NotFoundError,
)
from lostcloud.sessions.models import ConnectionParams, LivenessEntry, SessionIdentity
from lostcloud.sessions.registry import SessionRegistry
from lostcloud.sessions.supervisor import SessionSupervisor

logger = get_logger(__name__)

MAX_ID_ATTEMPTS = 5
# Deleted and failed ids kept so a retried delete still succeeds. The oldest
# are forgotten first; a delete of a forgotten id raises NotFoundError.
MAX_RETIRED_IDS = 10_000


class SessionManager:
    """
    Central coordinator for all sessions of this process.

    Args:
        registry: The live-session registry this manager writes to.
        connection_factory: Builds connections; defaults to the bridge
            WebSocket transport.
        clock: Time source shared by all supervisors.
        identity_factory: Issues (id, key) pairs.
        rng_factory: Builds the per-session randomness source.
        retired_limit: How many deleted ids to remember.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        connection_factory: Optional[ConnectionFactory] = None,
        clock: Optional[Clock] = None,
        identity_factory: Callable[[], SessionIdentity] = generate_identity,
        rng_factory: Callable[[], random.Random] = random.Random,
        retired_limit: int = MAX_RETIRED_IDS,
    ):
        self.registry = registry
        self._connection_factory = connection_factory or websocket_connection_factory
        self._clock = clock or AsyncioClock()
        self._identity_factory = identity_factory
        self._rng_factory = rng_factory
        self._supervisors: dict[str, SessionSupervisor] = {}
        self._retired: OrderedDict[str, None] = OrderedDict()
        self._retired_limit = retired_limit

    async def create(self, params: ConnectionParams) -> SessionIdentity:
        """
        Start a session and wait for its first successful connect.

        Args:
            params: Connection target and display name.

        Returns:
            The identity of the now-live session.

        Raises:
            CreationError: If credentials cannot be issued or the first
                connect fails for any reason. The cause is chained.
        """
        identity = self._issue_identity()
        supervisor = SessionSupervisor(
            identity,
            params,
            self._connection_factory,
            self.registry,
            clock=self._clock,
            rng=self._rng_factory(),
        )
        self._supervisors[identity.id] = supervisor
        logger.info(f"Creating session {identity.id} for {params.address}")

        try:
            await supervisor.start()
        except ConnectError as e:
            self._supervisors.pop(identity.id, None)
            self._retire(identity.id)
            raise CreationError(f"Session could not connect: {e}") from e
        except Exception as e:
            self._supervisors.pop(identity.id, None)
            self._retire(identity.id)
            await supervisor.terminate()
            logger.error(f"Unexpected error creating session {identity.id}: {e}")
            raise CreationError(f"Session could not start: {e}") from e

        return identity

    async def delete(self, session_id: str, supplied_key: str, stored_key: str) -> None:
        """
        Terminate a session.

        The key check comes first so an unknown id and a wrong key are
        indistinguishable to a caller without the key.

        Raises:
            AuthorizationError: If ``supplied_key`` does not match ``stored_key``.
            NotFoundError: If no session is tracked under ``session_id``.
        """
        if not hmac.compare_digest(
            (supplied_key or "").encode(), (stored_key or "").encode()
        ):
            raise AuthorizationError("Invalid session key")

        supervisor = self._supervisors.get(session_id)
        if supervisor is None:
            if session_id in self._retired:
                logger.debug(f"Session {session_id} already deleted")
                return
            raise NotFoundError(f"Session not found: {session_id}")

        await supervisor.terminate()
        self._supervisors.pop(session_id, None)
        self._retire(session_id)
        logger.info(f"Deleted session {session_id}")

    def is_live(self, session_id: str) -> bool:
        return self.registry.is_live(session_id)

    def liveness_snapshot(self, session_ids: Iterable[str]) -> list[LivenessEntry]:
        """Return ``{id, live}`` for each requested id."""
        return self.registry.snapshot(session_ids)

    def get_supervisor(self, session_id: str) -> Optional[SessionSupervisor]:
        return self._supervisors.get(session_id)

    def list_sessions(self) -> list[dict[str, Any]]:
        return [sup.get_status() for sup in self._supervisors.values()]

    async def shutdown(self) -> None:
        """Terminate every tracked session."""
        supervisors = list(self._supervisors.values())
        self._supervisors.clear()
        await asyncio.gather(
            *(sup.terminate() for sup in supervisors), return_exceptions=True
        )
        for sup in supervisors:
            self._retire(sup.session_id)
        logger.info(f"Session manager stopped {len(supervisors)} session(s)")

    @property
    def tracked_count(self) -> int:
        return len(self._supervisors)

    # -- Internal ------------------------------------------------------------

    def _retire(self, session_id: str) -> None:
        self._retired[session_id] = None
        self._retired.move_to_end(session_id)
        while len(self._retired) > self._retired_limit:
            self._retired.popitem(last=False)

    def _issue_identity(self) -> SessionIdentity:
        for _ in range(MAX_ID_ATTEMPTS):
            try:
                identity = self._identity_factory()
            except (OSError, NotImplementedError) as e:
                raise CreationError(f"Could not generate session credentials: {e}") from e
            if identity.id not in self._supervisors and identity.id not in self._retired:
                return identity
            logger.warning(f"Generated session id {identity.id} collided; regenerating")
        raise CreationError("Could not generate a unique session id")
