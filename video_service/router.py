"""
TELECONSULT+ Video Service Router

Endpoints for video access tokens, room management, participant
presence events and the WhatsApp relay used by the front office.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from core.notifications import WhatsAppService, whatsapp_service
from core.video_provider import LiveKitVideoProvider, VideoProviderError, get_video_provider
from shared.utils import success_response

from .models import ParticipantRole, SessionTracker

logger = logging.getLogger(__name__)

router = APIRouter()


# Service instance (singleton pattern)
_session_tracker: Optional[SessionTracker] = None


def get_session_tracker() -> SessionTracker:
    """Get or initialize the presence tracker."""
    global _session_tracker
    if _session_tracker is None:
        _session_tracker = SessionTracker(notifier=whatsapp_service)
    return _session_tracker


def get_whatsapp_service() -> WhatsAppService:
    return whatsapp_service


# ============= Pydantic Models =============

class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class TokenRequest(CamelModel):
    identity: str = Field(min_length=1)
    room_name: str = Field(alias="roomName", min_length=1)


class CreateRoomRequest(CamelModel):
    room_name: str = Field(alias="roomName", min_length=1)
    max_participants: Optional[int] = Field(default=None, alias="maxParticipants", ge=1)


class ParticipantConnectedEvent(CamelModel):
    room_name: str = Field(alias="roomName", min_length=1)
    identity: str = Field(min_length=1)
    role: str = Field(min_length=1)


class ParticipantDisconnectedEvent(CamelModel):
    room_name: str = Field(alias="roomName", min_length=1)
    identity: str = Field(min_length=1)


class WhatsAppRequest(CamelModel):
    phone: str = Field(min_length=1)
    message: str = Field(min_length=1)


def provider_failure(action: str, error: Exception) -> HTTPException:
    logger.error(f"❌ Failed to {action}: {error}")
    return HTTPException(status_code=500, detail=f"Failed to {action}: {error}")


# ============= Tokens & Rooms =============

@router.post("/token")
async def generate_token(
    request: TokenRequest,
    provider: LiveKitVideoProvider = Depends(get_video_provider)
):
    """Issue an access token so the browser can join the video room."""
    try:
        token_data = provider.issue_access_token(request.identity, request.room_name)
    except VideoProviderError as e:
        raise provider_failure("generate token", e)

    return success_response(token_data, message="Token generated")


@router.post("/rooms", status_code=201)
async def create_room(
    request: CreateRoomRequest,
    provider: LiveKitVideoProvider = Depends(get_video_provider)
):
    try:
        room = await provider.create_room(request.room_name, request.max_participants)
    except VideoProviderError as e:
        raise provider_failure("create room", e)

    return success_response(room, message="Room created")


@router.get("/rooms/{room_name}")
async def get_room(room_name: str, provider: LiveKitVideoProvider = Depends(get_video_provider)):
    try:
        room = await provider.get_room(room_name)
    except VideoProviderError as e:
        raise provider_failure("fetch room", e)

    return success_response(room)


@router.post("/rooms/{room_name}/end")
async def end_room(room_name: str, provider: LiveKitVideoProvider = Depends(get_video_provider)):
    try:
        room = await provider.end_room(room_name)
    except VideoProviderError as e:
        raise provider_failure("end room", e)

    return success_response(room, message="Room ended")


@router.get("/rooms/{room_name}/participants")
async def list_participants(room_name: str, provider: LiveKitVideoProvider = Depends(get_video_provider)):
    try:
        participants = await provider.list_participants(room_name)
    except VideoProviderError as e:
        raise provider_failure("list participants", e)

    return success_response(participants)


@router.post("/rooms/{room_name}/participants/{identity}/disconnect")
async def disconnect_participant(
    room_name: str,
    identity: str,
    provider: LiveKitVideoProvider = Depends(get_video_provider)
):
    try:
        result = await provider.disconnect_participant(room_name, identity)
    except VideoProviderError as e:
        raise provider_failure("disconnect participant", e)

    return success_response(result, message="Participant disconnected")


# ============= Presence Events =============

@router.post("/events/participant-connected")
async def participant_connected(
    event: ParticipantConnectedEvent,
    tracker: SessionTracker = Depends(get_session_tracker)
):
    """Called by the video client when a participant joins the room."""
    try:
        role = ParticipantRole(event.role)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid role. Valid roles: {[r.value for r in ParticipantRole]}"
        )

    tracker.track_connected(event.room_name, event.identity, role)
    return success_response(message="Participant connection tracked")


@router.post("/events/participant-disconnected")
async def participant_disconnected(
    event: ParticipantDisconnectedEvent,
    tracker: SessionTracker = Depends(get_session_tracker)
):
    """Called by the video client when a participant leaves the room."""
    dispatch = tracker.track_disconnected(event.room_name, event.identity)
    return success_response(
        {"sessionCompleted": dispatch is not None},
        message="Participant disconnection tracked"
    )


@router.get("/sessions/{room_name}")
async def get_presence_session(room_name: str, tracker: SessionTracker = Depends(get_session_tracker)):
    """Current presence record of a room."""
    session = tracker.get_session(room_name)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")

    return success_response(session.to_dict())


# ============= WhatsApp =============

@router.post("/whatsapp/send")
async def send_whatsapp(
    request: WhatsAppRequest,
    service: WhatsAppService = Depends(get_whatsapp_service)
):
    result = await service.send_text(request.phone, request.message)
    if not result.success:
        raise HTTPException(status_code=502, detail=result.error or "Failed to send WhatsApp message")

    return success_response(message="WhatsApp message sent")
