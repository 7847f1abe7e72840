"""WebSocket transport: maps class rooms onto live connections."""

from __future__ import annotations

import asyncio
from contextlib import suppress
import json
import logging

from fastapi import WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from feedback_app.constants.feedback_constants import SUBSCRIBER_QUEUE_SIZE
from feedback_app.constants.network_constants import WEBSOCKET_POLICY_VIOLATION
from feedback_app.core.errors import FeedbackError
from feedback_app.core.events import FeedbackEvent, to_wire
from feedback_app.core.models import ParticipantRole
from feedback_app.core.session_coordinator import SessionCoordinator

logger = logging.getLogger(__name__)

_CLOSED = None


class QueueSink:
    """Per-connection sink; hands events to the connection's loop without blocking.

    When the bounded queue is full the event is dropped: live delivery is
    at-most-once and the summary endpoint remains the source of truth.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, maxsize: int = SUBSCRIBER_QUEUE_SIZE) -> None:
        self._loop = loop
        self._queue: asyncio.Queue[dict[str, object] | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    def deliver(self, event: FeedbackEvent) -> None:
        self.send_frame(to_wire(event))

    def send_frame(self, frame: dict[str, object]) -> None:
        if self._closed:
            return
        try:
            self._loop.call_soon_threadsafe(self._offer, frame)
        except RuntimeError:
            # Event loop already closed
            self._closed = True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with suppress(RuntimeError):
            self._loop.call_soon_threadsafe(self._offer_sentinel)

    async def next_frame(self) -> dict[str, object] | None:
        return await self._queue.get()

    def _offer(self, frame: dict[str, object]) -> None:
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Subscriber queue full, dropping %s event", frame.get("event"))

    def _offer_sentinel(self) -> None:
        if self._queue.full():
            # Make room so the sender task wakes up and stops
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)


def _error_frame(detail: str) -> dict[str, object]:
    return {"event": "error", "data": {"detail": detail}}


async def _pump(websocket: WebSocket, sink: QueueSink) -> None:
    while True:
        frame = await sink.next_frame()
        if frame is _CLOSED:
            return
        try:
            await websocket.send_json(frame)
        except (WebSocketDisconnect, RuntimeError):
            logger.info("Stopped sending to closed websocket")
            return


async def _handle_message(
    coordinator: SessionCoordinator,
    class_id: str,
    token: str,
    sink: QueueSink,
    raw_message: str,
) -> None:
    try:
        message = json.loads(raw_message)
    except json.JSONDecodeError:
        sink.send_frame(_error_frame("Messages must be JSON objects."))
        return
    if not isinstance(message, dict):
        sink.send_frame(_error_frame("Messages must be JSON objects."))
        return

    message_type = message.get("type")
    try:
        if message_type == "live-rating":
            stats = await run_in_threadpool(
                coordinator.submit_live_rating,
                class_id,
                message.get("topic_id"),
                message.get("score"),
                token,
            )
            sink.send_frame({"event": "live-rating-ack", "data": {"average": stats.average, "count": stats.count}})
        elif message_type == "comment":
            await run_in_threadpool(coordinator.submit_comment, class_id, message.get("text"), token)
        else:
            sink.send_frame(_error_frame(f"Unknown message type: {message_type!r}."))
    except FeedbackError as exc:
        sink.send_frame(_error_frame(str(exc)))


async def serve_connection(
    websocket: WebSocket,
    coordinator: SessionCoordinator,
    class_id: str,
    role: str,
) -> None:
    """Run one client connection until it disconnects."""
    await websocket.accept()
    try:
        ParticipantRole(role)
    except ValueError:
        await websocket.close(code=WEBSOCKET_POLICY_VIOLATION, reason=f"Unknown role '{role}'.")
        return

    sink = QueueSink(asyncio.get_running_loop())
    try:
        token = coordinator.connect(class_id, role, sink)
    except FeedbackError as exc:
        await websocket.close(code=WEBSOCKET_POLICY_VIOLATION, reason=str(exc))
        return
    room = coordinator.class_of(token) or class_id

    sender = asyncio.create_task(_pump(websocket, sink))
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw_message = message.get("text")
            if raw_message is None:
                sink.send_frame(_error_frame("Binary frames are not supported."))
                continue
            await _handle_message(coordinator, room, token, sink, raw_message)
    finally:
        coordinator.disconnect(token)
        sink.close()
        sender.cancel()
        with suppress(asyncio.CancelledError):
            await sender
