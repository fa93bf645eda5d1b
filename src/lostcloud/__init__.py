"""
lostcloud: supervised, self-reconnecting client sessions.

A session is created with a generated (id, key) pair, kept connected to its
remote server indefinitely, and runs a periodic behavior schedule while live.
"""

from lostcloud.sessions.broadcaster import LivenessBroadcaster
from lostcloud.sessions.credentials import generate_identity
from lostcloud.sessions.errors import (
    AuthorizationError,
    CommandIssueError,
    ConnectError,
    CreationError,
    DeleteError,
    NotFoundError,
    SessionError,
)
from lostcloud.sessions.manager import SessionManager
from lostcloud.sessions.models import (
    ConnectionParams,
    LivenessEntry,
    SessionIdentity,
    SessionState,
)
from lostcloud.sessions.registry import SessionRegistry

__version__ = "0.1.0"

__all__ = [
    "AuthorizationError",
    "CommandIssueError",
    "ConnectError",
    "ConnectionParams",
    "CreationError",
    "DeleteError",
    "LivenessBroadcaster",
    "LivenessEntry",
    "NotFoundError",
    "SessionError",
    "SessionIdentity",
    "SessionManager",
    "SessionRegistry",
    "SessionState",
    "generate_identity",
]
