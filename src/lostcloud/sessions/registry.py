"""
Registry of live sessions.

Presence of an id means the session's connection is established and its
behavior scheduler is running. The registry never owns connections; the
supervisors do.
"""

import threading
from typing import Any, Iterable

from lostcloud.logger import get_logger
from lostcloud.sessions.models import LivenessEntry, RegistryEntry

logger = get_logger(__name__)


class SessionRegistry:
    """
    Concurrency-safe map from session id to its live entry.

    Reads are lock-free dict lookups; inserts and removals are serialized.
    """

    def __init__(self):
        self._entries: dict[str, RegistryEntry] = {}
        self._lock = threading.Lock()

    def insert(self, entry: RegistryEntry) -> None:
        """
        Mark a session live.

        Args:
            entry: The entry to store; replaces any older entry for the id.
        """
        with self._lock:
            self._entries[entry.session_id] = entry
        logger.debug(
            f"Registry: {entry.session_id} live as '{entry.username}' "
            f"(generation {entry.generation})"
        )

    def remove(self, session_id: str, generation: int | None = None) -> bool:
        """
        Drop a session's entry.

        Args:
            session_id: The session to remove.
            generation: When given, only remove the entry if it was inserted
                by that connection generation.

        Returns:
            True if an entry was removed.
        """
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                return False
            if generation is not None and entry.generation != generation:
                return False
            del self._entries[session_id]
        logger.debug(f"Registry: {session_id} removed")
        return True

    def is_live(self, session_id: str) -> bool:
        return session_id in self._entries

    def get(self, session_id: str) -> RegistryEntry | None:
        return self._entries.get(session_id)

    def snapshot(self, session_ids: Iterable[str]) -> list[LivenessEntry]:
        """Liveness of each requested id, in the order given."""
        with self._lock:
            live = set(self._entries)
        return [LivenessEntry(id=sid, live=sid in live) for sid in session_ids]

    def list_entries(self) -> list[dict[str, Any]]:
        with self._lock:
            entries = list(self._entries.values())
        return [entry.to_dict() for entry in entries]

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
