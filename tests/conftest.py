"""
Shared fixtures: fake sockets, a controllable clock and a recording notifier.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest
from starlette.websockets import WebSocketState

from core.notifications import NotificationResult


class FakeWebSocket:
    """Just enough of a Starlette WebSocket for the connection manager."""

    def __init__(self, fail_sends: bool = False):
        self.client_state = WebSocketState.CONNECTING
        self.sent = []
        self.close_code = None
        self.fail_sends = fail_sends

    async def accept(self):
        self.client_state = WebSocketState.CONNECTED

    async def send_text(self, data: str):
        if self.fail_sends:
            raise RuntimeError("socket is gone")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: str = None):
        self.client_state = WebSocketState.DISCONNECTED
        self.close_code = code

    def events(self, event_type: str = None):
        return [m for m in self.sent if event_type is None or m["type"] == event_type]

    def last(self, event_type: str):
        events = self.events(event_type)
        return events[-1]["payload"] if events else None


class FakeClock:
    def __init__(self, start: datetime = None):
        self.now = start or datetime(2026, 3, 2, 15, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingNotifier:
    def __init__(self, result: NotificationResult = None, error: Exception = None):
        self.result = result or NotificationResult(success=True)
        self.error = error
        self.messages = []

    async def send_text(self, recipient: str, body: str) -> NotificationResult:
        self.messages.append((recipient, body))
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_socket():
    return FakeWebSocket


@pytest.fixture
def make_notifier():
    return RecordingNotifier
