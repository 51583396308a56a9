"""Tests for the upload event bus and the background task supervisor."""

import asyncio
import threading

import pytest

from models import UploadEvent, UploadOutcome
from services.notification_bus import NotificationBus
from tasks import TaskSupervisor


def event(note_id="n1", outcome=UploadOutcome.SUCCESS):
    return UploadEvent(id=note_id, outcome=outcome, note_name="Note")


class TestNotificationBus:
    def test_publish_reaches_every_registered_callback(self):
        bus = NotificationBus()
        first, second = [], []
        bus.register(first.append)
        bus.register(second.append)

        assert bus.publish(event()) == 2
        assert [e.id for e in first] == ["n1"]
        assert [e.id for e in second] == ["n1"]

    def test_unregistered_callback_receives_nothing(self):
        bus = NotificationBus()
        received = []
        handle = bus.register(received.append)

        assert bus.unregister(handle) is True
        assert bus.unregister(handle) is False
        assert bus.publish(event()) == 0
        assert received == []

    def test_failing_callback_is_dropped(self):
        bus = NotificationBus()
        received = []

        def broken(_event):
            raise ConnectionError("socket closed")

        bus.register(broken)
        bus.register(received.append)

        assert bus.publish(event("a")) == 1
        assert bus.subscriber_count == 1
        assert bus.publish(event("b")) == 1
        assert [e.id for e in received] == ["a", "b"]

    def test_publish_with_no_subscribers(self):
        assert NotificationBus().publish(event()) == 0

    async def test_subscription_receives_events_in_order(self):
        bus = NotificationBus()
        with bus.subscribe() as subscription:
            bus.publish(event("a"))
            bus.publish(event("b", UploadOutcome.ERROR))

            first = await subscription.get(timeout=1)
            second = await subscription.get(timeout=1)

        assert (first.id, second.id) == ("a", "b")
        assert second.outcome.event_name == "uploaderror"
        assert bus.subscriber_count == 0

    async def test_slow_subscriber_drops_instead_of_blocking(self):
        bus = NotificationBus(max_queue=2)
        subscription = bus.subscribe()

        for i in range(5):
            bus.publish(event(f"n{i}"))

        assert subscription.dropped == 3
        assert (await subscription.get(timeout=1)).id == "n0"
        assert (await subscription.get(timeout=1)).id == "n1"
        assert await subscription.get(timeout=0.01) is None
        subscription.close()

    async def test_publish_from_another_thread(self):
        bus = NotificationBus()
        subscription = bus.subscribe()

        worker = threading.Thread(target=bus.publish, args=(event("threaded"),))
        worker.start()
        worker.join()

        received = await subscription.get(timeout=1)
        assert received.id == "threaded"
        subscription.close()

    def test_event_payload(self):
        payload = UploadEvent(
            id="x", outcome=UploadOutcome.ERROR, note_name="Clip", detail="corrupted"
        ).to_api()
        assert payload == {"id": "x", "outcome": "error", "note": "Clip", "detail": "corrupted"}


class TestTaskSupervisor:
    async def test_tasks_outlive_their_spawner(self):
        supervisor = TaskSupervisor()
        done = asyncio.Event()

        async def work():
            await asyncio.sleep(0.01)
            done.set()

        supervisor.spawn("job", work())
        assert supervisor.in_flight == 1

        assert await supervisor.wait_idle(timeout=1)
        assert done.is_set()
        assert supervisor.in_flight == 0

    async def test_crashing_task_is_released(self):
        supervisor = TaskSupervisor()

        async def crash():
            raise RuntimeError("boom")

        supervisor.spawn("crash", crash())

        assert await supervisor.wait_idle(timeout=1)
        assert supervisor.in_flight == 0

    async def test_shutdown_cancels_stragglers(self):
        supervisor = TaskSupervisor()
        cancelled = asyncio.Event()

        async def forever():
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        supervisor.spawn("slow", forever())
        await asyncio.sleep(0)

        await supervisor.shutdown(timeout=0.05)

        assert cancelled.is_set()
        assert supervisor.in_flight == 0

    async def test_wait_idle_times_out(self):
        supervisor = TaskSupervisor()
        supervisor.spawn("slow", asyncio.sleep(1))

        assert await supervisor.wait_idle(timeout=0.01) is False
        await supervisor.shutdown(timeout=0)


@pytest.mark.parametrize("outcome,name", [
    (UploadOutcome.SUCCESS, "uploadsuccess"),
    (UploadOutcome.ERROR, "uploaderror"),
])
def test_event_names(outcome, name):
    assert outcome.event_name == name
