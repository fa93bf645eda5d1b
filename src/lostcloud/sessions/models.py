"""
Data models for the session core.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_PORT = 25565


@dataclass(frozen=True)
class SessionIdentity:
    """The (id, key) pair issued at creation.

    ``id`` is the public handle; ``key`` is the bearer secret required for
    deletion. It is kept out of ``repr`` so it does not end up in logs.
    """

    id: str
    key: str = field(repr=False)


class ConnectionParams(BaseModel):
    """Where a session connects and under which name."""

    model_config = ConfigDict(frozen=True)

    host: str
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    display_name: Optional[str] = None
    version: Optional[str] = None

    @field_validator("host")
    @classmethod
    def _host_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("host must not be empty")
        return value

    @classmethod
    def from_address(
        cls,
        address: str,
        display_name: Optional[str] = None,
        version: Optional[str] = None,
        default_port: int = DEFAULT_PORT,
    ) -> "ConnectionParams":
        """
        Parse a ``host[:port]`` address.

        Example:
            ConnectionParams.from_address("play.example.net:25570")
        """
        host, sep, port = address.strip().rpartition(":")
        if not sep:
            host, port = port, ""
        return cls(
            host=host,
            port=int(port) if port else default_port,
            display_name=display_name or None,
            version=version or None,
        )

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


class SessionState(str, Enum):
    CONNECTING = "connecting"
    LIVE = "live"
    DISCONNECTED = "disconnected"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class RegistryEntry:
    """A live session as seen by the registry."""

    session_id: str
    username: str
    host: str
    port: int
    generation: int
    live_since: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "username": self.username,
            "host": self.host,
            "port": self.port,
            "generation": self.generation,
            "live_since": self.live_since.isoformat(),
        }


class LivenessEntry(BaseModel):
    """One row of a liveness snapshot."""

    id: str
    live: bool
