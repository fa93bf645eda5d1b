"""
Pydantic models for the session bridge protocol.

Client -> Bridge:
    login, look, goto, control, action
Bridge -> Client:
    spawn, position, kicked, end, error
"""

from typing import Optional

from pydantic import BaseModel


# ─── Client → Bridge ─────────────────────────────────────────────────


class LoginMessage(BaseModel):
    """Open a session on the remote server."""

    type: str = "login"
    host: str
    port: int
    username: str
    version: Optional[str] = None


class LookMessage(BaseModel):
    type: str = "look"
    yaw: float
    pitch: float
    force: bool = False


class GotoMessage(BaseModel):
    """Ask the bridge's pathfinder to walk to a block."""

    type: str = "goto"
    x: int
    y: int
    z: int


class ControlMessage(BaseModel):
    """Engage or release a control state (jump, sneak, ...)."""

    type: str = "control"
    control: str
    state: bool


class ActionMessage(BaseModel):
    """A one-shot gesture such as an arm swing."""

    type: str = "action"
    kind: str


# ─── Bridge → Client ─────────────────────────────────────────────────


class SpawnMessage(BaseModel):
    """The session joined the world; carries the initial pose."""

    type: str = "spawn"
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    yaw: float = 0.0
    pitch: float = 0.0


class PositionMessage(BaseModel):
    type: str = "position"
    x: float
    y: float
    z: float
    yaw: Optional[float] = None
    pitch: Optional[float] = None


class KickedMessage(BaseModel):
    type: str = "kicked"
    reason: str = ""


class EndMessage(BaseModel):
    type: str = "end"
    reason: str = ""


class ErrorMessage(BaseModel):
    type: str = "error"
    message: str = ""
