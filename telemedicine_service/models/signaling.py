"""
TELECONSULT+ Telemedicine Service - Analysis Session Relay

Pairs the doctor's and the patient's realtime connections under the
video room name and forwards the patient's pose telemetry to the doctor.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Any

from core.config import settings
from core.scheduler import PeriodicTask
from core.websocket import ConnectionManager, MessageType, WebSocketMessage
from shared.utils import Clock, get_now

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Analysis session states (a missing record is the implicit 'absent')."""
    CREATED_WAITING = "created-waiting"
    PAIRED_ACTIVE = "paired-active"
    ENDED_INACTIVE = "ended-inactive"


@dataclass
class AnalysisSession:
    """One doctor / patient pairing, keyed by room name."""
    room_name: str
    creator_connection_id: str
    creator_identity: str
    created_at: datetime
    state: SessionState = SessionState.CREATED_WAITING
    joiner_connection_id: Optional[str] = None
    joiner_identity: Optional[str] = None

    @property
    def is_active(self) -> bool:
        if self.state is SessionState.CREATED_WAITING:
            return True
        if self.state is SessionState.PAIRED_ACTIVE:
            return True
        if self.state is SessionState.ENDED_INACTIVE:
            return False
        raise ValueError(f"Unknown session state: {self.state}")

    @property
    def has_joiner(self) -> bool:
        return self.joiner_connection_id is not None

    def attach_joiner(self, connection_id: str, identity: str):
        self.joiner_connection_id = connection_id
        self.joiner_identity = identity
        self.state = SessionState.PAIRED_ACTIVE

    def detach_joiner(self):
        self.joiner_connection_id = None
        self.joiner_identity = None
        if self.state is SessionState.PAIRED_ACTIVE:
            self.state = SessionState.CREATED_WAITING

    def reactivate(self, connection_id: str):
        self.creator_connection_id = connection_id
        self.state = SessionState.PAIRED_ACTIVE if self.has_joiner else SessionState.CREATED_WAITING

    def deactivate(self):
        self.state = SessionState.ENDED_INACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "room_name": self.room_name,
            "state": self.state.value,
            "is_active": self.is_active,
            "creator_identity": self.creator_identity,
            "joiner_identity": self.joiner_identity,
            "patient_connected": self.has_joiner,
            "created_at": self.created_at.isoformat(),
        }


class TelemedicineRelay:
    """
    Realtime signaling for doctor / patient analysis sessions.

    Every handler finishes its registry change before its first await, so
    each incoming event is applied atomically on the event loop. Errors go
    back to the requesting connection only; nothing here raises to the
    transport.
    """

    def __init__(
        self,
        connections: ConnectionManager,
        clock: Clock = get_now,
        retention: Optional[timedelta] = None,
        sweep_interval: Optional[float] = None
    ):
        self.connections = connections
        self.clock = clock
        self.retention = retention or timedelta(hours=settings.SESSION_RETENTION_HOURS)

        self._sessions: Dict[str, AnalysisSession] = {}
        self._sweeper = PeriodicTask(
            "analysis-session-sweep",
            sweep_interval or settings.SESSION_SWEEP_INTERVAL,
            self.cleanup_old_sessions
        )

        connections.add_disconnect_listener(self.handle_disconnect)

    # ------------------------------------------------------------------
    # Client requests
    # ------------------------------------------------------------------

    async def create_session(self, connection_id: str, room_name: str, doctor_identity: str):
        logger.info(f"🩺 Creating session {room_name} by {doctor_identity}")

        session = self._sessions.get(room_name)

        if session is not None and session.is_active:
            logger.warning(f"⚠️ Session {room_name} already active")
            await self._reply(connection_id, MessageType.SESSION_ERROR, {"message": "Session already active"})
            return

        previous_creator = None

        if session is None:
            session = AnalysisSession(
                room_name=room_name,
                creator_connection_id=connection_id,
                creator_identity=doctor_identity,
                created_at=self.clock(),
            )
            self._sessions[room_name] = session
            logger.info(f"✅ Session created: {room_name}")
        else:
            # Doctor coming back to an ended session (e.g. after a dropped connection)
            previous_creator = session.creator_connection_id
            session.reactivate(connection_id)
            logger.info(f"🔁 Session reactivated: {room_name} (patient connected: {session.has_joiner})")

        patient_connected = session.has_joiner

        if previous_creator and previous_creator != connection_id:
            await self.connections.unsubscribe(previous_creator, room_name)
        await self.connections.subscribe(connection_id, room_name)
        await self._reply(connection_id, MessageType.SESSION_CREATED, {
            "roomName": room_name,
            "sessionCode": room_name,
            "patientConnected": patient_connected,
        })

    async def join_session(self, connection_id: str, room_name: str, patient_identity: str):
        logger.info(f"🧍 Patient {patient_identity} joining {room_name}")

        session = self._sessions.get(room_name)

        if session is None:
            await self._reply(connection_id, MessageType.JOIN_ERROR, {"message": "Session not found"})
            return

        if not session.is_active:
            await self._reply(connection_id, MessageType.JOIN_ERROR, {"message": "Session not active"})
            return

        previous_joiner = session.joiner_connection_id
        session.attach_joiner(connection_id, patient_identity)
        doctor_identity = session.creator_identity

        if previous_joiner and previous_joiner != connection_id:
            logger.info(f"Replacing patient connection {previous_joiner} in {room_name}")
            await self.connections.unsubscribe(previous_joiner, room_name)

        await self.connections.subscribe(connection_id, room_name)
        await self._reply(connection_id, MessageType.SESSION_JOINED, {
            "roomName": room_name,
            "doctorIdentity": doctor_identity,
        })
        await self.connections.broadcast_to_room(
            room_name,
            WebSocketMessage(type=MessageType.PATIENT_CONNECTED, payload={"patientIdentity": patient_identity}),
            exclude=connection_id
        )

        logger.info(f"🤝 Patient {patient_identity} joined session {room_name}")

    async def relay_telemetry(self, connection_id: str, room_name: str, payload: Any) -> int:
        """
        Forward one telemetry sample from the patient to the rest of the room.

        Samples for unknown or inactive rooms, or from anyone but the attached
        patient, are dropped. Returns the number of receivers.
        """
        session = self._sessions.get(room_name)

        if session is None or not session.is_active:
            return 0
        if session.joiner_connection_id != connection_id:
            return 0

        return await self.connections.broadcast_to_room(
            room_name,
            WebSocketMessage(type=MessageType.TELEMETRY_UPDATE, payload=payload),
            exclude=connection_id
        )

    async def end_session(self, room_name: str):
        """Mark the session inactive; the record stays so the doctor can resume."""
        session = self._sessions.get(room_name)

        if session is None:
            logger.warning(f"⚠️ End requested for unknown session {room_name}")
            return

        session.deactivate()
        logger.info(f"🔚 Session {room_name} ended")

        await self._broadcast_ended(room_name)

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    async def handle_disconnect(self, connection_id: str):
        """Called by the connection manager once a connection is gone."""
        notices = []

        for room_name, session in self._sessions.items():
            if session.creator_connection_id == connection_id:
                logger.info(f"👋 Doctor disconnected from {room_name}")
                session.deactivate()
                notices.append((room_name, MessageType.SESSION_ENDED))
            elif session.joiner_connection_id == connection_id:
                logger.info(f"👋 Patient disconnected from {room_name}")
                session.detach_joiner()
                notices.append((room_name, MessageType.PATIENT_DISCONNECTED))

        for room_name, message_type in notices:
            await self.connections.broadcast_to_room(
                room_name,
                WebSocketMessage(type=message_type, payload={"roomName": room_name})
            )

    # ------------------------------------------------------------------
    # Housekeeping & accessors
    # ------------------------------------------------------------------

    def cleanup_old_sessions(self) -> int:
        """Remove inactive sessions created before the retention window."""
        cutoff = self.clock() - self.retention
        stale = [
            name for name, s in self._sessions.items()
            if not s.is_active and s.created_at < cutoff
        ]

        for room_name in stale:
            logger.info(f"🧹 Cleaning up old session: {room_name}")
            del self._sessions[room_name]

        return len(stale)

    def get_session(self, room_name: str) -> Optional[AnalysisSession]:
        return self._sessions.get(room_name)

    def get_active_sessions(self) -> List[AnalysisSession]:
        return [s for s in self._sessions.values() if s.is_active]

    def start(self):
        self._sweeper.start()

    async def stop(self):
        await self._sweeper.stop()

    def get_stats(self) -> dict:
        return {
            "sessions": len(self._sessions),
            "active_sessions": len(self.get_active_sessions()),
            "sweeper_running": self._sweeper.is_running,
        }

    async def _reply(self, connection_id: str, message_type: MessageType, payload: dict):
        await self.connections.send_to_client(connection_id, WebSocketMessage(type=message_type, payload=payload))

    async def _broadcast_ended(self, room_name: str):
        await self.connections.broadcast_to_room(
            room_name,
            WebSocketMessage(type=MessageType.SESSION_ENDED, payload={"roomName": room_name})
        )
