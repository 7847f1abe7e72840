"""Service for tracking who is connected to each class room."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from uuid import uuid4

from feedback_app.core.errors import InternalInvariantViolation, InvalidInput
from feedback_app.core.models import ParticipantRole, PresenceCounts, PresenceEntry


@dataclass(slots=True)
class _RoleCounter:
    students: int = 0
    teachers: int = 0


class PresenceTracker:
    """Counts connected participants per class, broken down by role."""

    def __init__(self) -> None:
        self._entries: dict[str, PresenceEntry] = {}
        self._counters: dict[str, _RoleCounter] = {}
        self._lock = Lock()

    def join(self, class_id: str, role: ParticipantRole | str) -> str:
        """Register a connection and return its token."""
        parsed_role = self._parse_role(role)
        token = uuid4().hex
        with self._lock:
            self._entries[token] = PresenceEntry(token=token, class_id=class_id, role=parsed_role)
            counter = self._counters.setdefault(class_id, _RoleCounter())
            if parsed_role is ParticipantRole.STUDENT:
                counter.students += 1
            else:
                counter.teachers += 1
        return token

    def leave(self, token: str) -> PresenceEntry | None:
        """Remove a connection. Unknown or already-removed tokens are a no-op."""
        with self._lock:
            entry = self._entries.pop(token, None)
            if entry is None:
                return None
            counter = self._counters.get(entry.class_id)
            if counter is None:
                raise InternalInvariantViolation(
                    f"Presence entry for class '{entry.class_id}' has no counter."
                )
            if entry.role is ParticipantRole.STUDENT:
                counter.students -= 1
            else:
                counter.teachers -= 1
            if counter.students < 0 or counter.teachers < 0:
                raise InternalInvariantViolation(
                    f"Presence count for class '{entry.class_id}' went negative."
                )
            if counter.students == 0 and counter.teachers == 0:
                del self._counters[entry.class_id]
            return entry

    def counts(self, class_id: str) -> PresenceCounts:
        with self._lock:
            counter = self._counters.get(class_id)
            if counter is None:
                return PresenceCounts()
            return PresenceCounts(student_count=counter.students, teacher_count=counter.teachers)

    def get_entry(self, token: str) -> PresenceEntry | None:
        with self._lock:
            return self._entries.get(token)

    @staticmethod
    def _parse_role(role: ParticipantRole | str) -> ParticipantRole:
        try:
            return ParticipantRole(role)
        except ValueError as exc:
            raise InvalidInput(f"Unknown participant role: {role!r}.") from exc
