"""Unit tests for the per-connection queue sink."""

import asyncio
from threading import Thread

import pytest

from feedback_app.core.events import RatingRecorded
from feedback_app.server.websocket_transport import QueueSink

EVENT = RatingRecorded(topic_id=1, new_score=7, average=7.0, count=1)


@pytest.fixture
def loop():
    event_loop = asyncio.new_event_loop()
    yield event_loop
    event_loop.close()


def _drain_callbacks(loop):
    loop.run_until_complete(asyncio.sleep(0))


def test_delivery_from_another_thread(loop):
    sink = QueueSink(loop)

    worker = Thread(target=sink.deliver, args=(EVENT,))
    worker.start()
    worker.join()
    _drain_callbacks(loop)

    frame = loop.run_until_complete(sink.next_frame())
    assert frame == {"event": "rating-updated", "data": EVENT.to_payload()}


def test_full_queue_drops_events_instead_of_blocking(loop):
    sink = QueueSink(loop, maxsize=2)

    for _ in range(5):
        sink.deliver(EVENT)
    _drain_callbacks(loop)

    assert sink.dropped == 3


def test_close_wakes_reader_and_ignores_later_events(loop):
    sink = QueueSink(loop, maxsize=1)
    sink.deliver(EVENT)
    _drain_callbacks(loop)

    sink.close()
    sink.deliver(EVENT)
    _drain_callbacks(loop)

    assert loop.run_until_complete(sink.next_frame()) is None


def test_delivery_after_loop_closed_is_ignored():
    event_loop = asyncio.new_event_loop()
    sink = QueueSink(event_loop)
    event_loop.close()

    sink.deliver(EVENT)
    sink.close()
