"""
TELECONSULT+ WebSocket Connection Manager

Manages WebSocket connections, room membership and broadcasting
for the realtime signaling channel.
"""

import asyncio
import logging
import json
import uuid
from typing import Dict, Set, Optional, Any, Callable, Awaitable, List, Union
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from core.config import settings

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    """WebSocket event names."""
    # System messages
    PING = "ping"
    PONG = "pong"
    CONNECTED = "connected"
    ERROR = "error"

    # Analysis session requests (client -> server)
    CREATE_SESSION = "create-session"
    JOIN_SESSION = "join-session"
    TELEMETRY = "telemetry"
    END_SESSION = "end-session"

    # Analysis session events (server -> client)
    SESSION_CREATED = "session-created"
    SESSION_ERROR = "session-error"
    SESSION_JOINED = "session-joined"
    JOIN_ERROR = "join-error"
    PATIENT_CONNECTED = "patient-connected"
    PATIENT_DISCONNECTED = "patient-disconnected"
    TELEMETRY_UPDATE = "telemetry-update"
    SESSION_ENDED = "session-ended"


@dataclass
class WebSocketMessage:
    """Structured WebSocket message."""
    type: Union[MessageType, str]
    payload: Any = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_json(self) -> str:
        return json.dumps({
            "type": self.type.value if isinstance(self.type, MessageType) else self.type,
            "payload": self.payload,
            "timestamp": self.timestamp
        })

    @classmethod
    def from_json(cls, data: str) -> "WebSocketMessage":
        parsed = json.loads(data)
        if not isinstance(parsed, dict):
            raise ValueError("Message must be a JSON object")

        raw_type = parsed.get("type", "")
        try:
            message_type = MessageType(raw_type)
        except ValueError:
            message_type = raw_type

        return cls(
            type=message_type,
            payload=parsed.get("payload"),
            timestamp=parsed.get("timestamp") or datetime.now(timezone.utc).isoformat()
        )


@dataclass
class ConnectedClient:
    """Represents a connected WebSocket client."""
    websocket: WebSocket
    client_id: str
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    subscriptions: Set[str] = field(default_factory=set)

    def is_connected(self) -> bool:
        return self.websocket.client_state == WebSocketState.CONNECTED


DisconnectListener = Callable[[str], Awaitable[Any]]
MessageHandler = Callable[[str, WebSocketMessage], Awaitable[Any]]


class ConnectionManager:
    """
    Manages all WebSocket connections of one channel.

    Features:
    - Connection registry by connection ID
    - Room-based subscriptions (one room per analysis session)
    - Sending to one connection or broadcasting to a room
    - Heartbeat that drops dead sockets
    - Disconnect listeners, fired once per connection after it is removed
    """

    def __init__(self, max_connections: int = None):
        self.max_connections = max_connections or settings.WS_MAX_CONNECTIONS

        # Active connections: client_id -> ConnectedClient
        self._connections: Dict[str, ConnectedClient] = {}

        # Room subscriptions: room_id -> set of client_ids
        self._rooms: Dict[str, Set[str]] = {}

        self._lock = asyncio.Lock()
        self._disconnect_listeners: List[DisconnectListener] = []
        self._heartbeat_task: Optional[asyncio.Task] = None

        logger.info(f"🔌 ConnectionManager initialized (max: {self.max_connections})")

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def add_disconnect_listener(self, listener: DisconnectListener):
        self._disconnect_listeners.append(listener)

    def room_members(self, room_id: str) -> Set[str]:
        return set(self._rooms.get(room_id, set()))

    async def connect(self, websocket: WebSocket, client_id: str = None) -> ConnectedClient:
        """
        Accept a new WebSocket connection.
        """
        if self.connection_count >= self.max_connections:
            await websocket.close(code=1013, reason="Server at capacity")
            raise ConnectionError("Maximum connections reached")

        await websocket.accept()

        client_id = client_id or uuid.uuid4().hex
        client = ConnectedClient(websocket=websocket, client_id=client_id)

        async with self._lock:
            self._connections[client_id] = client

        logger.info(f"✅ Client connected: {client_id}")

        await self.send_to_client(client_id, WebSocketMessage(
            type=MessageType.CONNECTED,
            payload={"connectionId": client_id}
        ))

        return client

    async def disconnect(self, client_id: str):
        """Disconnect and cleanup a client, then notify listeners."""
        async with self._lock:
            client = self._connections.pop(client_id, None)

            if client:
                for room_id in list(client.subscriptions):
                    if room_id in self._rooms:
                        self._rooms[room_id].discard(client_id)
                        if not self._rooms[room_id]:
                            del self._rooms[room_id]

        if not client:
            return

        logger.info(f"👋 Client disconnected: {client_id}")

        for listener in self._disconnect_listeners:
            try:
                await listener(client_id)
            except Exception as e:
                logger.error(f"Disconnect listener failed for {client_id}: {e}")

    async def subscribe(self, client_id: str, room_id: str):
        """Subscribe a client to a room."""
        async with self._lock:
            client = self._connections.get(client_id)
            if not client:
                return

            client.subscriptions.add(room_id)
            self._rooms.setdefault(room_id, set()).add(client_id)

            logger.debug(f"Client {client_id} subscribed to {room_id}")

    async def unsubscribe(self, client_id: str, room_id: str):
        """Unsubscribe a client from a room."""
        async with self._lock:
            client = self._connections.get(client_id)
            if client:
                client.subscriptions.discard(room_id)

            if room_id in self._rooms:
                self._rooms[room_id].discard(client_id)
                if not self._rooms[room_id]:
                    del self._rooms[room_id]

    async def send_to_client(self, client_id: str, message: WebSocketMessage) -> bool:
        """Send a message to a specific client."""
        client = self._connections.get(client_id)

        if not client or not client.is_connected():
            return False

        try:
            await client.websocket.send_text(message.to_json())
            client.last_activity = datetime.now(timezone.utc)
            return True
        except Exception as e:
            logger.error(f"Failed to send to {client_id}: {e}")
            await self.disconnect(client_id)
            return False

    async def broadcast_to_room(
        self,
        room_id: str,
        message: WebSocketMessage,
        exclude: Optional[str] = None
    ) -> int:
        """Broadcast a message to all clients in a room, optionally skipping one."""
        sent_count = 0

        for client_id in self.room_members(room_id):
            if client_id == exclude:
                continue
            if await self.send_to_client(client_id, message):
                sent_count += 1

        return sent_count

    async def handle_message(
        self,
        client_id: str,
        raw_message: str,
        handler: MessageHandler = None
    ):
        """Process an incoming message from a client."""
        try:
            message = WebSocketMessage.from_json(raw_message)
        except ValueError:
            # json.JSONDecodeError is a ValueError
            await self.send_to_client(client_id, WebSocketMessage(
                type=MessageType.ERROR,
                payload={"error": "Invalid JSON"}
            ))
            return

        client = self._connections.get(client_id)
        if client:
            client.last_activity = datetime.now(timezone.utc)

        if message.type == MessageType.PING:
            await self.send_to_client(client_id, WebSocketMessage(type=MessageType.PONG))
            return

        if handler:
            try:
                await handler(client_id, message)
            except Exception as e:
                logger.error(f"Error handling message from {client_id}: {e}")

    async def start_heartbeat(self, interval: int = None):
        """Start heartbeat task to check connection health."""
        interval = interval or settings.WS_HEARTBEAT_INTERVAL

        async def heartbeat_loop():
            while True:
                await asyncio.sleep(interval)
                await self._check_connections()

        self._heartbeat_task = asyncio.create_task(heartbeat_loop())
        logger.info(f"💓 Heartbeat started (interval: {interval}s)")

    async def stop_heartbeat(self):
        """Stop the heartbeat task."""
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None

    async def _check_connections(self):
        """Check all connections and disconnect dead ones."""
        for client_id in list(self._connections.keys()):
            client = self._connections.get(client_id)
            if client and not client.is_connected():
                await self.disconnect(client_id)

    def get_stats(self) -> dict:
        """Get connection statistics."""
        return {
            "total_connections": self.connection_count,
            "rooms": len(self._rooms),
            "max_connections": self.max_connections
        }


async def websocket_endpoint(
    websocket: WebSocket,
    manager: ConnectionManager,
    handler: MessageHandler = None
):
    """
    Reusable WebSocket endpoint handler.

    Usage in router:
        @router.websocket("/ws")
        async def ws_route(websocket: WebSocket):
            await websocket_endpoint(websocket, manager, my_handler)
    """
    try:
        client = await manager.connect(websocket)
    except ConnectionError as e:
        logger.warning(f"Connection refused: {e}")
        return

    try:
        while True:
            data = await websocket.receive_text()
            await manager.handle_message(client.client_id, data, handler)

    except WebSocketDisconnect:
        await manager.disconnect(client.client_id)

    except Exception as e:
        logger.error(f"WebSocket error for {client.client_id}: {e}")
        await manager.disconnect(client.client_id)
