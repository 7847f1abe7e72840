"""Service for managing the set of live class sessions and their topics."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from threading import Lock

from feedback_app.core.errors import InvalidInput, NotFound
from feedback_app.core.models import ClassSession, Topic, utc_now


class SessionRegistry:
    """Owns the live class sessions keyed by class id."""

    def __init__(self) -> None:
        self._sessions: dict[str, ClassSession] = {}
        self._lock = Lock()

    def create_or_replace(
        self,
        class_id: str,
        topic_names: Sequence[str],
        created_at: datetime | None = None,
    ) -> ClassSession:
        """Build a session with topic ids 1..N and replace any prior one."""
        session = self.build_session(class_id, topic_names, created_at)
        self.install(session)
        return session

    def install(self, session: ClassSession) -> None:
        """Register an already-built session, discarding the previous one."""
        with self._lock:
            self._sessions[session.class_id] = self._copy(session)

    def get_session(self, class_id: str) -> ClassSession:
        with self._lock:
            session = self._sessions.get(class_id)
            if session is None:
                raise NotFound(f"Feedback session for class '{class_id}' has not been set up yet.")
            return self._copy(session)

    def get_topics(self, class_id: str) -> list[Topic]:
        return self.get_session(class_id).topics

    def exists(self, class_id: str) -> bool:
        with self._lock:
            return class_id in self._sessions

    def remove(self, class_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(class_id, None) is not None

    def class_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    @classmethod
    def build_session(
        cls,
        class_id: str,
        topic_names: Sequence[str],
        created_at: datetime | None = None,
    ) -> ClassSession:
        cleaned_id = cls.validate_class_id(class_id)
        names = cls.validate_topic_names(topic_names)
        topics = [Topic(id=index, name=name) for index, name in enumerate(names, start=1)]
        return ClassSession(
            class_id=cleaned_id,
            topics=topics,
            created_at=created_at or utc_now(),
        )

    @staticmethod
    def validate_class_id(class_id: str) -> str:
        if not isinstance(class_id, str) or not class_id.strip():
            raise InvalidInput("Class id must be a non-empty string.")
        return class_id.strip()

    @staticmethod
    def validate_topic_names(topic_names: Sequence[str]) -> list[str]:
        if isinstance(topic_names, str) or not isinstance(topic_names, Sequence):
            raise InvalidInput("Topics must be provided as a list of names.")
        if not topic_names:
            raise InvalidInput("An array of topics is required.")
        cleaned: list[str] = []
        for name in topic_names:
            if not isinstance(name, str):
                raise InvalidInput("Topic names must be strings.")
            stripped = name.strip()
            if not stripped:
                raise InvalidInput("Topic names cannot be empty.")
            cleaned.append(stripped)
        return cleaned

    @staticmethod
    def _copy(session: ClassSession) -> ClassSession:
        return ClassSession(
            class_id=session.class_id,
            topics=list(session.topics),
            created_at=session.created_at,
        )
