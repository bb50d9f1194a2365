import asyncio

import aiohttp

from core.notifications import WhatsAppService


class FakeResponse:
    def __init__(self, status: int, data):
        self.status = status
        self.data = data

    async def json(self, content_type=None):
        return self.data

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, response: FakeResponse = None, error: Exception = None):
        self.response = response
        self.error = error
        self.calls = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def post(self, url, json=None, headers=None):
        self.calls.append({"url": url, "json": json, "headers": headers})
        if self.error:
            raise self.error
        return self.response


def make_service(session: FakeSession, token: str = "secret") -> WhatsAppService:
    return WhatsAppService(token=token, api_url="https://whapi.test/messages/text", session_factory=lambda: session)


def test_send_text_posts_to_gateway() -> None:
    session = FakeSession(FakeResponse(200, {"sent": True}))
    service = make_service(session)

    result = asyncio.run(service.send_text("+573001234567", "hello"))

    assert result.success
    assert result.error is None
    call = session.calls[0]
    assert call["url"] == "https://whapi.test/messages/text"
    assert call["json"] == {"typing_time": 0, "to": "573001234567", "body": "hello"}
    assert call["headers"]["authorization"] == "Bearer secret"
    assert service.get_stats()["sent_count"] == 1


def test_gateway_error_is_reported_not_raised() -> None:
    session = FakeSession(FakeResponse(401, {"error": {"code": 401, "message": "Unauthorized"}}))
    service = make_service(session)

    result = asyncio.run(service.send_text("573001234567", "hello"))

    assert not result.success
    assert result.error == "Unauthorized"
    assert service.get_stats()["failed_count"] == 1


def test_gateway_error_without_body_uses_status() -> None:
    service = make_service(FakeSession(FakeResponse(503, None)))

    result = asyncio.run(service.send_text("573001234567", "hello"))

    assert result.error == "WHAPI error: 503"


def test_network_error_is_reported() -> None:
    service = make_service(FakeSession(error=aiohttp.ClientConnectionError("refused")))

    result = asyncio.run(service.send_text("573001234567", "hello"))

    assert not result.success
    assert "refused" in result.error


def test_missing_token_or_recipient_short_circuits() -> None:
    session = FakeSession(FakeResponse(200, {}))

    no_token = asyncio.run(make_service(session, token="").send_text("573001234567", "hello"))
    no_recipient = asyncio.run(make_service(session).send_text("  ", "hello"))

    assert no_token.error == "WhatsApp token not configured"
    assert no_recipient.error == "Recipient not configured"
    assert session.calls == []
