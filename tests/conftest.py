"""Shared fixtures for the feedback server tests."""

from __future__ import annotations

from threading import Lock

import pytest

from feedback_app.core.session_coordinator import SessionCoordinator
from feedback_app.persistence.store import FeedbackStore


class RecordingSink:
    """Event sink that remembers everything delivered to it."""

    def __init__(self) -> None:
        self.events = []
        self._lock = Lock()

    def deliver(self, event) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type):
        with self._lock:
            return [event for event in self.events if isinstance(event, event_type)]


@pytest.fixture
def store():
    feedback_store = FeedbackStore.from_url("sqlite://")
    feedback_store.create_schema()
    yield feedback_store
    feedback_store.dispose()


@pytest.fixture
def coordinator(store):
    return SessionCoordinator(store)


@pytest.fixture
def make_sink():
    return RecordingSink
