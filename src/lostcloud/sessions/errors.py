"""
Error taxonomy for the session core.

ConnectError and CommandIssueError are contained inside the reconnect loop
and the behavior scheduler; the remaining errors surface from the
SessionManager operations.
"""


class SessionError(Exception):
    """Base class for all session errors."""


class ConnectError(SessionError):
    """A connection attempt failed (network, protocol or authentication)."""


class CommandIssueError(SessionError):
    """A command could not be issued on a live connection."""


class CreationError(SessionError):
    """Session creation failed before the first successful connect."""


class DeleteError(SessionError):
    """Base class for delete failures."""


class AuthorizationError(DeleteError):
    """The supplied access key does not match the stored key."""


class NotFoundError(DeleteError):
    """No session is tracked under the given id."""
