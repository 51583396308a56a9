"""Tests for the SSE and WebSocket notification endpoints."""

import json

from fastapi.testclient import TestClient

from models import UploadEvent, UploadOutcome
from services.notification_bus import NotificationBus
from services.notification_router import event_stream, format_sse

from conftest import PREFIX


class FakeRequest:
    def __init__(self):
        self.disconnected = False

    async def is_disconnected(self):
        return self.disconnected


def success(note_id="n1"):
    return UploadEvent(id=note_id, outcome=UploadOutcome.SUCCESS, note_name="Clip")


def test_format_sse_frame():
    frame = format_sse(
        UploadEvent(id="n9", outcome=UploadOutcome.ERROR, note_name="Clip", detail="corrupted")
    )

    header, data_line = frame.rstrip("\n").rsplit("\n", 1)
    assert header == "id: n9\nevent: uploaderror"
    assert json.loads(data_line[len("data: "):]) == {
        "id": "n9",
        "outcome": "error",
        "note": "Clip",
        "detail": "corrupted",
    }
    assert frame.endswith("\n\n")


class TestEventStream:
    async def test_streams_events_and_keepalives(self):
        bus = NotificationBus()
        request = FakeRequest()
        stream = event_stream(request, bus, keepalive_seconds=0.01)

        assert await stream.__anext__() == ": connected\n\n"
        assert bus.subscriber_count == 1

        bus.publish(success("n1"))
        frame = await stream.__anext__()
        assert frame.startswith("id: n1\nevent: uploadsuccess\n")

        assert await stream.__anext__() == ": keep-alive\n\n"

        request.disconnected = True
        try:
            await stream.__anext__()
        except StopAsyncIteration:
            pass
        else:
            raise AssertionError("stream kept going after disconnect")
        assert bus.subscriber_count == 0

    async def test_closing_stream_unsubscribes(self):
        bus = NotificationBus()
        stream = event_stream(FakeRequest(), bus, keepalive_seconds=1)

        await stream.__anext__()
        await stream.aclose()

        assert bus.subscriber_count == 0

    async def test_late_subscriber_sees_no_history(self):
        bus = NotificationBus()
        bus.publish(success("before"))
        stream = event_stream(FakeRequest(), bus, keepalive_seconds=0.01)

        await stream.__anext__()
        assert await stream.__anext__() == ": keep-alive\n\n"
        await stream.aclose()


class TestWebSocket:
    def test_upload_outcome_is_pushed(self, app, container):
        with TestClient(app) as client:
            with client.websocket_connect(f"{PREFIX}/notifications/ws") as websocket:
                greeting = websocket.receive_json()
                assert greeting["type"] == "connected"

                client.post(
                    f"{PREFIX}/mongo/add/",
                    data={"id": "ws1", "name": "Live", "type": "video"},
                    files={"content": ("clip.webm", b"frames", "video/webm")},
                )
                message = websocket.receive_json()

        assert message["type"] == "uploadsuccess"
        assert message["data"]["id"] == "ws1"
        assert message["data"]["note"] == "Live"
        assert container.bus.subscriber_count == 0
