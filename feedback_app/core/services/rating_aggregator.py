"""Service for tracking running rating statistics per topic."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from threading import Lock

from feedback_app.constants.feedback_constants import AVERAGE_DECIMAL_PLACES, MAX_SCORE, MIN_SCORE
from feedback_app.core.errors import InvalidInput
from feedback_app.core.models import Topic, TopicStats, TopicSummary

_QUANTUM = Decimal(1).scaleb(-AVERAGE_DECIMAL_PLACES)


def round_half_away(total: int, count: int) -> float:
    """Return total/count rounded half-away-from-zero, or 0.0 when count is 0."""
    if count == 0:
        return 0.0
    exact = Decimal(total) / Decimal(count)
    return float(exact.quantize(_QUANTUM, rounding=ROUND_HALF_UP))


def validate_score(score: object) -> int:
    if isinstance(score, bool) or not isinstance(score, int):
        raise InvalidInput("Score must be an integer.")
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise InvalidInput(f"Score must be between {MIN_SCORE} and {MAX_SCORE}.")
    return score


@dataclass(slots=True)
class _TopicCell:
    """Mutable per-topic counters guarded by their own lock."""

    total: int = 0
    count: int = 0
    lock: Lock = field(default_factory=Lock)


@dataclass(slots=True)
class _CommentTally:
    count: int = 0
    lock: Lock = field(default_factory=Lock)


class RatingAggregator:
    """Keeps exact integer sums and counts per (class, topic).

    The map lock only guards cell lookup and insertion. Updates take the
    cell's own lock, so ratings for different topics never contend.
    """

    def __init__(self) -> None:
        self._cells: dict[tuple[str, int], _TopicCell] = {}
        self._comments: dict[str, _CommentTally] = {}
        self._map_lock = Lock()

    def reset_class(self, class_id: str, topic_ids: Iterable[int], comment_count: int = 0) -> None:
        """Discard every cell of the class and start zeroed cells for the new topics."""
        with self._map_lock:
            self._drop_locked(class_id)
            for topic_id in topic_ids:
                self._cells[(class_id, topic_id)] = _TopicCell()
            self._comments[class_id] = _CommentTally(count=comment_count)

    def load_topic(self, class_id: str, topic_id: int, total: int, count: int) -> None:
        if total < 0 or count < 0:
            raise InvalidInput("Stored aggregates cannot be negative.")
        with self._map_lock:
            self._cells[(class_id, topic_id)] = _TopicCell(total=total, count=count)

    def drop_class(self, class_id: str) -> None:
        with self._map_lock:
            self._drop_locked(class_id)

    def add_rating(self, class_id: str, topic_id: int, score: int) -> TopicStats:
        validate_score(score)
        cell = self._cell(class_id, topic_id)
        with cell.lock:
            cell.total += score
            cell.count += 1
            total, count = cell.total, cell.count
        return TopicStats(count=count, average=round_half_away(total, count))

    def stats(self, class_id: str, topic_id: int) -> TopicStats:
        total, count = self._read(self._cell(class_id, topic_id))
        return TopicStats(count=count, average=round_half_away(total, count))

    def snapshot(self, class_id: str, topics: Iterable[Topic]) -> list[TopicSummary]:
        """Return per-topic summaries in the given topic order."""
        rows: list[TopicSummary] = []
        for topic in topics:
            with self._map_lock:
                cell = self._cells.get((class_id, topic.id))
            total, count = self._read(cell) if cell is not None else (0, 0)
            rows.append(
                TopicSummary(
                    id=topic.id,
                    name=topic.name,
                    average=round_half_away(total, count),
                    count=count,
                )
            )
        return rows

    def totals(self, class_id: str) -> tuple[int, float]:
        """Return (total ratings, overall average) across every topic of the class."""
        with self._map_lock:
            cells = [cell for (owner, _), cell in self._cells.items() if owner == class_id]
        grand_total = 0
        grand_count = 0
        for cell in cells:
            total, count = self._read(cell)
            grand_total += total
            grand_count += count
        return grand_count, round_half_away(grand_total, grand_count)

    def record_comment(self, class_id: str) -> int:
        with self._map_lock:
            tally = self._comments.setdefault(class_id, _CommentTally())
        with tally.lock:
            tally.count += 1
            return tally.count

    def comment_count(self, class_id: str) -> int:
        with self._map_lock:
            tally = self._comments.get(class_id)
        if tally is None:
            return 0
        with tally.lock:
            return tally.count

    def _cell(self, class_id: str, topic_id: int) -> _TopicCell:
        with self._map_lock:
            cell = self._cells.get((class_id, topic_id))
        if cell is None:
            raise InvalidInput(f"Topic {topic_id} does not exist in class '{class_id}'.")
        return cell

    def _drop_locked(self, class_id: str) -> None:
        for key in [key for key in self._cells if key[0] == class_id]:
            del self._cells[key]
        self._comments.pop(class_id, None)

    @staticmethod
    def _read(cell: _TopicCell) -> tuple[int, int]:
        with cell.lock:
            return cell.total, cell.count
