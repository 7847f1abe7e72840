"""Domain models for the feedback application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ParticipantRole(str, Enum):
    """Role of a connected participant."""

    TEACHER = "teacher"
    STUDENT = "student"


@dataclass(slots=True, frozen=True)
class Topic:
    """One gradable discussion item; ids are 1-based within a session."""

    id: int
    name: str


@dataclass(slots=True)
class ClassSession:
    """Feedback context for one class meeting."""

    class_id: str
    topics: list[Topic]
    created_at: datetime = field(default_factory=utc_now)

    def topic_ids(self) -> set[int]:
        return {topic.id for topic in self.topics}


@dataclass(slots=True, frozen=True)
class RatingInput:
    """A single rating inside a feedback submission. Carries no identity."""

    topic_id: int
    score: int


@dataclass(slots=True, frozen=True)
class Comment:
    """Anonymous free-text comment attached to a class session."""

    text: str
    created_at: datetime


@dataclass(slots=True, frozen=True)
class TopicStats:
    """Running statistics returned after a rating is applied."""

    count: int
    average: float


@dataclass(slots=True, frozen=True)
class TopicSummary:
    """Immutable per-topic snapshot returned to consumers."""

    id: int
    name: str
    average: float
    count: int


@dataclass(slots=True, frozen=True)
class PresenceEntry:
    """A connected participant; lives only as long as its connection."""

    token: str
    class_id: str
    role: ParticipantRole


@dataclass(slots=True, frozen=True)
class PresenceCounts:
    student_count: int = 0
    teacher_count: int = 0


@dataclass(slots=True, frozen=True)
class ClassSummary:
    """Aggregated view of a class session for the instructor."""

    class_id: str
    created_at: datetime
    topics: list[TopicSummary]
    comments: list[Comment]
    total_ratings: int
    overall_average: float
    total_comments: int


@dataclass(slots=True, frozen=True)
class SubmissionReceipt:
    """Acknowledgement for an accepted feedback submission."""

    class_id: str
    ratings_recorded: int
    comment_recorded: bool
