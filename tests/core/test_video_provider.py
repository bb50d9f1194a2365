import asyncio
import base64
import json

import pytest

from core.video_provider import LiveKitVideoProvider, VideoProviderError


def decode_claims(token: str) -> dict:
    payload = token.split(".")[1]
    payload += "=" * (-len(payload) % 4)
    return json.loads(base64.urlsafe_b64decode(payload))


def test_token_is_scoped_to_identity_and_room() -> None:
    provider = LiveKitVideoProvider(url="wss://video.test", api_key="key", api_secret="a-long-enough-secret")

    issued = provider.issue_access_token("Dr. D1", "R1")

    assert issued["identity"] == "Dr. D1"
    assert issued["roomName"] == "R1"
    assert len(issued["token"].split(".")) == 3
    claims = decode_claims(issued["token"])
    assert claims["sub"] == "Dr. D1"
    assert claims["video"]["room"] == "R1"


def test_missing_credentials_raise_provider_error() -> None:
    provider = LiveKitVideoProvider(url="", api_key="", api_secret="")

    assert not provider.is_configured
    with pytest.raises(VideoProviderError):
        provider.issue_access_token("Dr. D1", "R1")
    with pytest.raises(VideoProviderError):
        asyncio.run(provider.end_room("R1"))


def test_room_calls_require_server_url() -> None:
    provider = LiveKitVideoProvider(url="", api_key="key", api_secret="secret")

    with pytest.raises(VideoProviderError, match="LIVEKIT_URL"):
        asyncio.run(provider.create_room("R1"))
