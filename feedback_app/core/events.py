"""Domain events fanned out to the subscribers of a class room."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import ClassVar


def _iso_utc(value: datetime) -> str:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc).isoformat()
    return value.astimezone(timezone.utc).isoformat()


@dataclass(slots=True, frozen=True)
class PresenceChanged:
    wire_name: ClassVar[str] = "user-count-updated"

    student_count: int
    teacher_count: int

    def to_payload(self) -> dict[str, object]:
        return {"student_count": self.student_count, "teacher_count": self.teacher_count}


@dataclass(slots=True, frozen=True)
class RatingRecorded:
    wire_name: ClassVar[str] = "rating-updated"

    topic_id: int
    new_score: int
    average: float
    count: int

    def to_payload(self) -> dict[str, object]:
        return {
            "topic_id": self.topic_id,
            "new_score": self.new_score,
            "average": self.average,
            "count": self.count,
        }


@dataclass(slots=True, frozen=True)
class LiveRatingSubmitted:
    """Raw live rating, echoed to the other connections of the room."""

    wire_name: ClassVar[str] = "live-rating-update"

    topic_id: int
    score: int

    def to_payload(self) -> dict[str, object]:
        return {"topic_id": self.topic_id, "score": self.score}


@dataclass(slots=True, frozen=True)
class CommentRecorded:
    wire_name: ClassVar[str] = "new-comment"

    text: str
    timestamp: datetime

    def to_payload(self) -> dict[str, object]:
        return {"text": self.text, "timestamp": _iso_utc(self.timestamp)}


@dataclass(slots=True, frozen=True)
class StatsChanged:
    wire_name: ClassVar[str] = "stats-updated"

    total_ratings: int
    overall_average: float
    total_comments: int

    def to_payload(self) -> dict[str, object]:
        return {
            "total_ratings": self.total_ratings,
            "overall_average": self.overall_average,
            "total_comments": self.total_comments,
        }


FeedbackEvent = PresenceChanged | RatingRecorded | LiveRatingSubmitted | CommentRecorded | StatsChanged


def to_wire(event: FeedbackEvent) -> dict[str, object]:
    """Serialize an event into the frame sent to connected clients."""
    return {"event": event.wire_name, "data": event.to_payload()}
