"""Service for fanning out events to the subscribers of a class room."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Protocol

from feedback_app.core.events import FeedbackEvent

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    """Delivery endpoint for one connection. ``deliver`` must not block."""

    def deliver(self, event: FeedbackEvent) -> None:
        ...


class BroadcastDispatcher:
    """Registry of room -> {token: sink}; publish iterates a copy of the room."""

    def __init__(self) -> None:
        self._rooms: dict[str, dict[str, EventSink]] = {}
        self._token_rooms: dict[str, str] = {}
        self._lock = Lock()

    def subscribe(self, class_id: str, token: str, sink: EventSink) -> None:
        with self._lock:
            previous_room = self._token_rooms.get(token)
            if previous_room is not None and previous_room != class_id:
                self._discard_locked(previous_room, token)
            self._rooms.setdefault(class_id, {})[token] = sink
            self._token_rooms[token] = class_id

    def unsubscribe(self, token: str) -> bool:
        with self._lock:
            class_id = self._token_rooms.pop(token, None)
            if class_id is None:
                return False
            self._discard_locked(class_id, token)
            return True

    def subscriber_count(self, class_id: str) -> int:
        with self._lock:
            return len(self._rooms.get(class_id, {}))

    def publish(self, class_id: str, event: FeedbackEvent, exclude: str | None = None) -> int:
        """Deliver ``event`` to the room, skipping ``exclude`` if given.

        Returns the number of sinks that accepted the event.
        """
        with self._lock:
            targets = [
                (token, sink)
                for token, sink in self._rooms.get(class_id, {}).items()
                if token != exclude
            ]
        delivered = 0
        for token, sink in targets:
            try:
                sink.deliver(event)
            except Exception:
                logger.exception(
                    "Dropping %s for connection %s in room %s", event.wire_name, token, class_id
                )
                continue
            delivered += 1
        return delivered

    def _discard_locked(self, class_id: str, token: str) -> None:
        room = self._rooms.get(class_id)
        if room is None:
            return
        room.pop(token, None)
        if not room:
            del self._rooms[class_id]
