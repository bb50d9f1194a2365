"""
TELECONSULT+ WebSocket Module
"""

from .manager import (
    ConnectionManager,
    WebSocketMessage,
    MessageType,
    ConnectedClient,
    websocket_endpoint
)

__all__ = [
    'ConnectionManager',
    'WebSocketMessage',
    'MessageType',
    'ConnectedClient',
    'websocket_endpoint'
]
