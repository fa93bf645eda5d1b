"""
WebSocket bridge connection.

A WebSocketConnection logs a session in through a session bridge, the
process that speaks the game protocol, and exchanges JSON messages with it.

Protocol:
    Client -> Bridge (on connect):
        {"type": "login", "host": "play.example.net", "port": 25565,
         "username": "LostCloudBot_ABC", "version": null}

    Bridge -> Client (once joined):
        {"type": "spawn", "x": 0.5, "y": 64.0, "z": 0.5, "yaw": 0.0, "pitch": 0.0}

    Bridge -> Client (session over):
        {"type": "kicked", "reason": "..."} | {"type": "end", "reason": "..."}
"""

import asyncio
import json
from typing import Any, Optional

import websockets
from pydantic import BaseModel, ValidationError

from lostcloud.config import CONFIG
from lostcloud.connection.base import Connection
from lostcloud.connection.models import (
    ActionMessage,
    ControlMessage,
    EndMessage,
    ErrorMessage,
    GotoMessage,
    KickedMessage,
    LoginMessage,
    LookMessage,
    PositionMessage,
    SpawnMessage,
)
from lostcloud.logger import get_logger
from lostcloud.sessions.errors import ConnectError
from lostcloud.sessions.models import ConnectionParams

logger = get_logger(__name__)


class BridgeError(Exception):
    """Non-fatal error reported by the bridge."""


class WebSocketConnection(Connection):
    def __init__(
        self,
        params: ConnectionParams,
        username: str,
        bridge_url: Optional[str] = None,
        keepalive_interval: Optional[float] = None,
        spawn_timeout: Optional[float] = None,
    ):
        super().__init__(params, username)
        self.bridge_url = bridge_url or CONFIG.bridge_url
        self.keepalive_interval = (
            CONFIG.keepalive_interval if keepalive_interval is None else keepalive_interval
        )
        self.spawn_timeout = CONFIG.spawn_timeout if spawn_timeout is None else spawn_timeout
        self._ws = None
        self._reader: Optional[asyncio.Task] = None

    async def _open(self) -> None:
        logger.info(
            f"🔌 Connecting '{self.username}' to {self.params.address} "
            f"via {self.bridge_url}"
        )
        try:
            self._ws = await websockets.connect(
                self.bridge_url,
                ping_interval=self.keepalive_interval,
                open_timeout=self.spawn_timeout,
            )
        except websockets.exceptions.WebSocketException as e:
            raise ConnectError(f"Bridge handshake failed: {e}") from e
        if self._terminated:
            raise ConnectError(f"'{self.username}' disconnected while opening the bridge")

        login = LoginMessage(
            host=self.params.host,
            port=self.params.port,
            username=self.username,
            version=self.params.version,
        )
        try:
            await self._ws.send(login.model_dump_json())
            spawn = await asyncio.wait_for(
                self._await_spawn(), timeout=self.spawn_timeout
            )
        except asyncio.TimeoutError:
            raise ConnectError(
                f"'{self.username}' did not spawn within {self.spawn_timeout}s"
            ) from None
        except websockets.exceptions.ConnectionClosed as e:
            raise ConnectError(f"Bridge closed during login: {e}") from e
        except ValueError as e:
            raise ConnectError(f"Malformed login response from bridge: {e}") from e

        if self._terminated:
            raise ConnectError(f"'{self.username}' disconnected while logging in")

        self.position.x, self.position.y, self.position.z = spawn.x, spawn.y, spawn.z
        self.yaw, self.pitch = spawn.yaw, spawn.pitch
        self._reader = asyncio.create_task(self._read_loop())
        logger.info(f"✅ '{self.username}' spawned on {self.params.address}")

    async def _await_spawn(self) -> SpawnMessage:
        """Consume messages until the bridge reports the spawn."""
        while True:
            data = self._parse(await self._ws.recv())
            msg_type = data.get("type")

            if msg_type == "spawn":
                return SpawnMessage(**data)
            if msg_type in ("kicked", "end"):
                reason = data.get("reason", "")
                raise ConnectError(f"'{self.username}' rejected ({msg_type}): {reason}")
            if msg_type == "error":
                raise ConnectError(
                    f"Bridge error during login: {data.get('message', '')}"
                )
            logger.debug(f"Ignoring '{msg_type}' before spawn for '{self.username}'")

    async def _read_loop(self) -> None:
        """Dispatch bridge messages until the session ends."""
        reason = "connection closed"
        try:
            async for message in self._ws:
                try:
                    data = self._parse(message)
                except ValueError as e:
                    logger.warning(f"Malformed message from bridge for '{self.username}': {e}")
                    continue
                if (ended := self.handle_message(data)) is not None:
                    reason = ended
                    break
        except websockets.exceptions.ConnectionClosed as e:
            reason = f"connection closed: {e}"
        except Exception as e:
            logger.error(f"Bridge reader for '{self.username}' failed: {e}")
            reason = f"reader failed: {e}"
        self._emit_terminated(reason)

    @staticmethod
    def _parse(message: Any) -> dict[str, Any]:
        """Decode one frame; anything but a JSON object is a ValueError."""
        data = json.loads(message)
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        return data

    def handle_message(self, data: dict[str, Any]) -> Optional[str]:
        """
        Process one bridge message.

        Returns:
            The termination reason if the message ends the session, else None.
        """
        if not isinstance(data, dict):
            logger.warning(f"Ignoring non-object bridge message for '{self.username}'")
            return None
        msg_type = data.get("type")
        try:
            if msg_type == "position":
                pos = PositionMessage(**data)
                self.position.x, self.position.y, self.position.z = pos.x, pos.y, pos.z
                if pos.yaw is not None:
                    self.yaw = pos.yaw
                if pos.pitch is not None:
                    self.pitch = pos.pitch
            elif msg_type == "kicked":
                return f"kicked: {KickedMessage(**data).reason}"
            elif msg_type == "end":
                return f"ended: {EndMessage(**data).reason}"
            elif msg_type == "error":
                self._emit_error(BridgeError(ErrorMessage(**data).message))
            else:
                logger.debug(f"Unhandled bridge message type: {msg_type}")
        except ValidationError:
            logger.warning(f"Malformed '{msg_type}' message for '{self.username}'")
        return None

    async def _close(self) -> None:
        if self._reader and not self._reader.done():
            self._reader.cancel()
        if self._ws is not None:
            await self._ws.close()

    async def _send(self, message: BaseModel) -> None:
        if self._ws is None:
            raise ConnectionError("not connected")
        await self._ws.send(message.model_dump_json())

    async def _send_look(self, yaw: float, pitch: float) -> None:
        await self._send(LookMessage(yaw=yaw, pitch=pitch))
        self.yaw, self.pitch = yaw, pitch

    async def _send_navigate(self, x: int, y: int, z: int) -> None:
        await self._send(GotoMessage(x=x, y=y, z=z))

    async def _send_control(self, control: str, engaged: bool) -> None:
        await self._send(ControlMessage(control=control, state=engaged))

    async def _send_action(self, kind: str) -> None:
        await self._send(ActionMessage(kind=kind))


def websocket_connection_factory(params: ConnectionParams, username: str) -> Connection:
    """Default factory used by the SessionManager."""
    return WebSocketConnection(params, username)
