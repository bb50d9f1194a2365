"""
TELECONSULT+ Video Provider

Thin wrapper over the LiveKit server API: access tokens for the
browser SDK plus the handful of room operations the video router exposes.
"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional, Dict, Any, List

from livekit import api

from core.config import settings

logger = logging.getLogger(__name__)


class VideoProviderError(Exception):
    """Raised when the video provider is misconfigured or a call fails."""


def _room_to_dict(room) -> Dict[str, Any]:
    return {
        "sid": room.sid,
        "name": room.name,
        "num_participants": room.num_participants,
        "max_participants": room.max_participants,
        "empty_timeout": room.empty_timeout,
        "creation_time": room.creation_time,
    }


def _participant_to_dict(participant) -> Dict[str, Any]:
    return {
        "sid": participant.sid,
        "identity": participant.identity,
        "name": participant.name,
        "state": participant.state,
        "joined_at": participant.joined_at,
    }


class LiveKitVideoProvider:
    """
    Issues LiveKit access tokens and manages rooms.

    Credential signing is done by the LiveKit SDK; this class only decides
    which grants a participant gets.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        token_ttl: Optional[timedelta] = None
    ):
        self.url = url if url is not None else settings.LIVEKIT_URL
        self.api_key = api_key if api_key is not None else settings.LIVEKIT_API_KEY
        self.api_secret = api_secret if api_secret is not None else settings.LIVEKIT_API_SECRET
        self.token_ttl = token_ttl or timedelta(minutes=settings.VIDEO_TOKEN_TTL_MINUTES)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_secret)

    def _require_credentials(self):
        if not self.is_configured:
            raise VideoProviderError("LiveKit credentials are not configured")

    def issue_access_token(self, identity: str, room_name: str) -> Dict[str, str]:
        """
        Create a room-scoped access token for one participant.

        Returns:
            {"token", "identity", "roomName"}
        """
        self._require_credentials()

        grants = api.VideoGrants(
            room_join=True,
            room=room_name,
            can_publish=True,
            can_subscribe=True,
            can_publish_data=True
        )
        token = (
            api.AccessToken(self.api_key, self.api_secret)
            .with_identity(identity)
            .with_name(identity)
            .with_ttl(self.token_ttl)
            .with_grants(grants)
            .to_jwt()
        )

        logger.info(f"🎟️ Access token issued for {identity} in room {room_name}")
        return {"token": token, "identity": identity, "roomName": room_name}

    @asynccontextmanager
    async def _client(self):
        self._require_credentials()
        if not self.url:
            raise VideoProviderError("LIVEKIT_URL is not configured")

        lkapi = api.LiveKitAPI(self.url, self.api_key, self.api_secret)
        try:
            yield lkapi
        except VideoProviderError:
            raise
        except Exception as e:
            raise VideoProviderError(str(e)) from e
        finally:
            await lkapi.aclose()

    async def create_room(self, room_name: str, max_participants: Optional[int] = None) -> Dict[str, Any]:
        async with self._client() as lkapi:
            room = await lkapi.room.create_room(api.CreateRoomRequest(
                name=room_name,
                max_participants=max_participants or settings.VIDEO_ROOM_MAX_PARTICIPANTS,
            ))
        logger.info(f"🏥 Room created: {room_name}")
        return _room_to_dict(room)

    async def get_room(self, room_name: str) -> Dict[str, Any]:
        async with self._client() as lkapi:
            response = await lkapi.room.list_rooms(api.ListRoomsRequest(names=[room_name]))
        if not response.rooms:
            raise VideoProviderError(f"Room {room_name} not found")
        return _room_to_dict(response.rooms[0])

    async def end_room(self, room_name: str) -> Dict[str, Any]:
        """Close the room for everyone connected to it."""
        async with self._client() as lkapi:
            await lkapi.room.delete_room(api.DeleteRoomRequest(room=room_name))
        logger.info(f"🔚 Room ended: {room_name}")
        return {"name": room_name, "status": "completed"}

    async def list_participants(self, room_name: str) -> List[Dict[str, Any]]:
        async with self._client() as lkapi:
            response = await lkapi.room.list_participants(api.ListParticipantsRequest(room=room_name))
        return [_participant_to_dict(p) for p in response.participants]

    async def disconnect_participant(self, room_name: str, identity: str) -> Dict[str, Any]:
        async with self._client() as lkapi:
            await lkapi.room.remove_participant(api.RoomParticipantIdentity(
                room=room_name,
                identity=identity,
            ))
        logger.info(f"👋 Participant {identity} removed from {room_name}")
        return {"room": room_name, "identity": identity, "status": "disconnected"}


_provider_instance: Optional[LiveKitVideoProvider] = None


def get_video_provider() -> LiveKitVideoProvider:
    """Get or create the global video provider instance."""
    global _provider_instance
    if _provider_instance is None:
        _provider_instance = LiveKitVideoProvider()
    return _provider_instance
