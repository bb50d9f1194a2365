"""
TELECONSULT+ Telemedicine Service Router

Realtime channel for doctor / patient analysis sessions and the
read-only session endpoints used by reporting.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.websocket import (
    ConnectionManager,
    MessageType,
    WebSocketMessage,
    websocket_endpoint
)
from shared.utils import success_response

from .models import TelemedicineRelay

logger = logging.getLogger(__name__)

router = APIRouter()


_relay: Optional[TelemedicineRelay] = None


def get_telemedicine_relay() -> TelemedicineRelay:
    """Get or initialize the relay and its dedicated connection manager."""
    global _relay
    if _relay is None:
        _relay = TelemedicineRelay(ConnectionManager())
    return _relay


# ============= Event Payloads =============

class EventPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    room_name: str = Field(alias="roomName", min_length=1)


class CreateSessionPayload(EventPayload):
    doctor_identity: str = Field(alias="doctorIdentity", min_length=1)


class JoinSessionPayload(EventPayload):
    patient_identity: str = Field(alias="patientIdentity", min_length=1)


class TelemetryPayload(EventPayload):
    payload: Any = None


async def dispatch_event(relay: TelemedicineRelay, connection_id: str, message: WebSocketMessage):
    """Validate one client event and hand it to the relay."""
    data = message.payload if isinstance(message.payload, dict) else {}

    if message.type == MessageType.CREATE_SESSION:
        try:
            request = CreateSessionPayload.model_validate(data)
        except ValidationError:
            await relay.connections.send_to_client(connection_id, WebSocketMessage(
                type=MessageType.SESSION_ERROR,
                payload={"message": "roomName and doctorIdentity are required"}
            ))
            return
        await relay.create_session(connection_id, request.room_name, request.doctor_identity)

    elif message.type == MessageType.JOIN_SESSION:
        try:
            request = JoinSessionPayload.model_validate(data)
        except ValidationError:
            await relay.connections.send_to_client(connection_id, WebSocketMessage(
                type=MessageType.JOIN_ERROR,
                payload={"message": "roomName and patientIdentity are required"}
            ))
            return
        await relay.join_session(connection_id, request.room_name, request.patient_identity)

    elif message.type == MessageType.TELEMETRY:
        try:
            request = TelemetryPayload.model_validate(data)
        except ValidationError:
            return
        await relay.relay_telemetry(connection_id, request.room_name, request.payload)

    elif message.type == MessageType.END_SESSION:
        try:
            request = EventPayload.model_validate(data)
        except ValidationError:
            logger.warning(f"⚠️ end-session without roomName from {connection_id}")
            return
        await relay.end_session(request.room_name)

    else:
        await relay.connections.send_to_client(connection_id, WebSocketMessage(
            type=MessageType.ERROR,
            payload={"error": f"Unknown event: {getattr(message.type, 'value', message.type)}"}
        ))


# ============= WebSocket =============

@router.websocket("/ws")
async def telemedicine_socket(
    websocket: WebSocket,
    relay: TelemedicineRelay = Depends(get_telemedicine_relay)
):
    """
    Analysis session channel.

    Doctor sends create-session / end-session, patient sends join-session
    and a stream of telemetry frames; the server pushes the counterpart's
    lifecycle events.
    """
    async def handler(connection_id: str, message: WebSocketMessage):
        await dispatch_event(relay, connection_id, message)

    await websocket_endpoint(websocket, relay.connections, handler)


# ============= REST Endpoints =============

@router.get("/sessions")
async def list_active_sessions(relay: TelemedicineRelay = Depends(get_telemedicine_relay)):
    """All analysis sessions with a doctor attached."""
    sessions = [s.to_dict() for s in relay.get_active_sessions()]
    return success_response(sessions)


@router.get("/sessions/{room_name}")
async def get_session(room_name: str, relay: TelemedicineRelay = Depends(get_telemedicine_relay)):
    session = relay.get_session(room_name)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")

    return success_response(session.to_dict())
