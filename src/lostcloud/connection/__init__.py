"""
Connections for lostcloud sessions.

A Connection is the single long-lived link a session holds to its remote
endpoint. WebSocketConnection reaches the endpoint through a session bridge.
"""

from lostcloud.connection.base import Connection, ConnectionFactory, Position
from lostcloud.connection.websocket import (
    BridgeError,
    WebSocketConnection,
    websocket_connection_factory,
)

__all__ = [
    "BridgeError",
    "Connection",
    "ConnectionFactory",
    "Position",
    "WebSocketConnection",
    "websocket_connection_factory",
]
