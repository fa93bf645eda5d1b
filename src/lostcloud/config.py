"""
Process configuration.

Values come from ``LOSTCLOUD_*`` environment variables, with ``LOG_LEVEL``
and ``LOG_FILE`` honoured as plain names. A ``.env`` file in the working
directory is loaded first; variables already set in the environment win.
"""

import os
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field

ENV_PREFIX = "LOSTCLOUD_"


class Config(BaseModel):
    bridge_url: str = "ws://localhost:3001/session"
    default_port: int = Field(default=25565, ge=1, le=65535)
    name_prefix: str = "LostCloudBot_"
    keepalive_interval: float = Field(default=30.0, gt=0)
    spawn_timeout: float = Field(default=30.0, gt=0)
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Config":
        """Build a config from the environment, falling back to defaults."""
        values = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is None and name in ("log_level", "log_file"):
                raw = os.getenv(name.upper())
            if raw is not None and raw != "":
                values[name] = raw
        return cls.model_validate(values)

    def reload(self) -> None:
        """Re-read the environment into this instance."""
        fresh = self.from_env()
        for name in type(self).model_fields:
            setattr(self, name, getattr(fresh, name))


def load_env_file(path: Optional[Union[str, Path]] = None) -> bool:
    """Load a ``.env`` file into the environment; returns True if one was read."""
    return load_dotenv(path or Path.cwd() / ".env")


load_env_file()
CONFIG = Config.from_env()
