"""Unit tests for the presence tracker."""

from concurrent.futures import ThreadPoolExecutor
import random

import pytest

from feedback_app.core.errors import InternalInvariantViolation, InvalidInput
from feedback_app.core.models import ParticipantRole, PresenceCounts
from feedback_app.core.services import PresenceTracker


def test_unknown_class_has_zero_counts():
    assert PresenceTracker().counts("CS101") == PresenceCounts(0, 0)


def test_join_counts_by_role():
    tracker = PresenceTracker()
    tracker.join("CS101", ParticipantRole.STUDENT)
    tracker.join("CS101", "student")
    tracker.join("CS101", "teacher")
    tracker.join("MA201", "student")

    assert tracker.counts("CS101") == PresenceCounts(student_count=2, teacher_count=1)
    assert tracker.counts("MA201") == PresenceCounts(student_count=1, teacher_count=0)


def test_join_rejects_unknown_role():
    with pytest.raises(InvalidInput):
        PresenceTracker().join("CS101", "parent")


def test_leave_is_idempotent():
    tracker = PresenceTracker()
    token = tracker.join("CS101", "student")
    other = tracker.join("CS101", "student")

    entry = tracker.leave(token)
    assert entry is not None and entry.class_id == "CS101"
    assert tracker.leave(token) is None
    assert tracker.leave("never-issued") is None
    assert tracker.counts("CS101") == PresenceCounts(student_count=1, teacher_count=0)

    tracker.leave(other)
    assert tracker.counts("CS101") == PresenceCounts(0, 0)


def test_interleaved_join_leave_never_goes_negative():
    tracker = PresenceTracker()
    rng = random.Random(7)
    roles = [rng.choice(["student", "teacher"]) for _ in range(200)]

    def join_and_leave(role):
        token = tracker.join("CS101", role)
        tracker.leave(token)
        tracker.leave(token)
        counts = tracker.counts("CS101")
        assert counts.student_count >= 0 and counts.teacher_count >= 0

    with ThreadPoolExecutor(max_workers=20) as pool:
        list(pool.map(join_and_leave, roles))

    assert tracker.counts("CS101") == PresenceCounts(0, 0)


def test_corrupted_counter_fails_loudly():
    tracker = PresenceTracker()
    token = tracker.join("CS101", "student")
    tracker._counters["CS101"].students = 0

    with pytest.raises(InternalInvariantViolation):
        tracker.leave(token)
