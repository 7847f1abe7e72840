"""Business logic for feedback sessions shared between the HTTP API and live transport."""

from __future__ import annotations

from collections.abc import Sequence
import logging
from threading import Lock

from feedback_app.core.errors import InvalidInput, NotFound
from feedback_app.core.events import (
    CommentRecorded,
    FeedbackEvent,
    LiveRatingSubmitted,
    PresenceChanged,
    RatingRecorded,
    StatsChanged,
)
from feedback_app.core.models import (
    ClassSession,
    ClassSummary,
    Comment,
    ParticipantRole,
    PresenceCounts,
    RatingInput,
    SubmissionReceipt,
    Topic,
    TopicStats,
)
from feedback_app.core.services import (
    BroadcastDispatcher,
    EventSink,
    PresenceTracker,
    RatingAggregator,
    SessionRegistry,
    validate_score,
)
from feedback_app.persistence.store import FeedbackStore

logger = logging.getLogger(__name__)


class SessionCoordinator:
    """Facade over registry, aggregator, presence, dispatcher and the durable store."""

    def __init__(
        self,
        store: FeedbackStore,
        registry: SessionRegistry | None = None,
        aggregator: RatingAggregator | None = None,
        presence: PresenceTracker | None = None,
        dispatcher: BroadcastDispatcher | None = None,
    ) -> None:
        self._store = store
        self._registry = registry or SessionRegistry()
        self._aggregator = aggregator or RatingAggregator()
        self._presence = presence or PresenceTracker()
        self._dispatcher = dispatcher or BroadcastDispatcher()
        self._class_locks: dict[str, Lock] = {}
        self._locks_guard = Lock()

    @property
    def store(self) -> FeedbackStore:
        return self._store

    # --- Startup ---

    def restore(self) -> int:
        """Load persisted sessions and their aggregates into memory."""
        with self._store.transaction() as tx:
            sessions = tx.read_sessions()
            restored = []
            for session in sessions:
                aggregates = tx.read_aggregates(session.class_id)
                comment_count = tx.count_comments(session.class_id)
                restored.append((session, aggregates, comment_count))
        for session, aggregates, comment_count in restored:
            self._aggregator.reset_class(session.class_id, session.topic_ids(), comment_count)
            for topic_id, (total, count) in aggregates.items():
                self._aggregator.load_topic(session.class_id, topic_id, total, count)
            self._registry.install(session)
        logger.info("Restored %d class session(s) from the store", len(restored))
        return len(restored)

    # --- Session lifecycle ---

    def setup(self, class_id: str, topic_names: Sequence[str]) -> ClassSession:
        """Create the session or destructively replace an existing one."""
        session = SessionRegistry.build_session(class_id, topic_names)
        names = [topic.name for topic in session.topics]
        with self._class_lock(session.class_id):
            with self._store.transaction() as tx:
                tx.replace_topics(session.class_id, names, session.created_at)
            self._aggregator.reset_class(session.class_id, session.topic_ids())
            self._registry.install(session)
            logger.info("Class session %s configured with %d topic(s)", session.class_id, len(names))
            self._dispatcher.publish(session.class_id, self._stats_event(session.class_id))
        return session

    def get_topics(self, class_id: str) -> list[Topic]:
        return self._registry.get_topics(SessionRegistry.validate_class_id(class_id))

    def has_session(self, class_id: str) -> bool:
        return self._registry.exists(SessionRegistry.validate_class_id(class_id))

    def delete_session(self, class_id: str) -> None:
        class_id = SessionRegistry.validate_class_id(class_id)
        with self._class_lock(class_id):
            if not self._registry.exists(class_id):
                raise NotFound(f"Class session '{class_id}' not found.")
            with self._store.transaction() as tx:
                tx.delete_session(class_id)
            self._registry.remove(class_id)
            self._aggregator.drop_class(class_id)
        logger.info("Class session %s deleted", class_id)

    # --- Feedback ---

    def submit_feedback(
        self,
        class_id: str,
        ratings: Sequence[RatingInput],
        comment: str | None = None,
    ) -> SubmissionReceipt:
        """All-or-nothing final submission: validate, persist in one transaction, then apply.

        The class lock is held from validation to the last broadcast, so a
        concurrent setup or delete never sees half of a submission and the
        ratings always land on the topics they were validated against.
        """
        class_id = SessionRegistry.validate_class_id(class_id)
        comment_text = self._normalize_comment(comment, required=False)
        with self._class_lock(class_id):
            session = self._registry.get_session(class_id)
            accepted = self._validate_ratings(session, ratings)

            stored_comment: Comment | None = None
            with self._store.transaction() as tx:
                for rating in accepted:
                    tx.insert_rating(class_id, rating.topic_id, rating.score)
                if comment_text is not None:
                    stored_comment = tx.insert_comment(class_id, comment_text)

            for rating in accepted:
                self._apply_rating(class_id, rating.topic_id, rating.score)
            if stored_comment is not None:
                self._aggregator.record_comment(class_id)
                self._dispatcher.publish(
                    class_id,
                    CommentRecorded(text=stored_comment.text, timestamp=stored_comment.created_at),
                )
            self._dispatcher.publish(class_id, self._stats_event(class_id))
        return SubmissionReceipt(
            class_id=class_id,
            ratings_recorded=len(accepted),
            comment_recorded=stored_comment is not None,
        )

    def submit_live_rating(
        self,
        class_id: str,
        topic_id: int,
        score: int,
        origin: str | None = None,
    ) -> TopicStats:
        """Single-topic rating outside the final submission; its own unit of work.

        The raw submission is echoed to everyone except ``origin``; the
        recomputed aggregate goes to the whole room.
        """
        class_id = SessionRegistry.validate_class_id(class_id)
        with self._class_lock(class_id):
            session = self._registry.get_session(class_id)
            (rating,) = self._validate_ratings(session, [RatingInput(topic_id=topic_id, score=score)])
            with self._store.transaction() as tx:
                tx.insert_rating(class_id, rating.topic_id, rating.score)
            self._dispatcher.publish(
                class_id,
                LiveRatingSubmitted(topic_id=rating.topic_id, score=rating.score),
                exclude=origin,
            )
            stats = self._apply_rating(class_id, rating.topic_id, rating.score)
            self._dispatcher.publish(class_id, self._stats_event(class_id))
        return stats

    def submit_comment(self, class_id: str, text: str, origin: str | None = None) -> Comment:
        """Comment-only path. ``origin`` is skipped when broadcasting the comment itself."""
        class_id = SessionRegistry.validate_class_id(class_id)
        comment_text = self._normalize_comment(text, required=True)
        with self._class_lock(class_id):
            self._registry.get_session(class_id)
            with self._store.transaction() as tx:
                stored = tx.insert_comment(class_id, comment_text)
            self._aggregator.record_comment(class_id)
            self._dispatcher.publish(
                class_id,
                CommentRecorded(text=stored.text, timestamp=stored.created_at),
                exclude=origin,
            )
            self._dispatcher.publish(class_id, self._stats_event(class_id))
        return stored

    def get_summary(self, class_id: str) -> ClassSummary:
        class_id = SessionRegistry.validate_class_id(class_id)
        with self._class_lock(class_id):
            session = self._registry.get_session(class_id)
            topics = self._aggregator.snapshot(class_id, session.topics)
            with self._store.transaction() as tx:
                comments = tx.read_comments(class_id)
            total_ratings, overall_average = self._aggregator.totals(class_id)
        return ClassSummary(
            class_id=class_id,
            created_at=session.created_at,
            topics=topics,
            comments=comments,
            total_ratings=total_ratings,
            overall_average=overall_average,
            total_comments=len(comments),
        )

    # --- Presence & transport ---

    def connect(self, class_id: str, role: ParticipantRole | str, sink: EventSink) -> str:
        cleaned_id = SessionRegistry.validate_class_id(class_id)
        token = self._presence.join(cleaned_id, role)
        self._dispatcher.subscribe(cleaned_id, token, sink)
        logger.info("Connection %s joined class %s as %s", token, cleaned_id, ParticipantRole(role).value)
        self._publish_presence(cleaned_id)
        return token

    def disconnect(self, token: str) -> None:
        """Idempotent: drop presence and room subscription for ``token``."""
        entry = self._presence.leave(token)
        self._dispatcher.unsubscribe(token)
        if entry is None:
            return
        logger.info("Connection %s left class %s", token, entry.class_id)
        self._publish_presence(entry.class_id)

    def presence(self, class_id: str) -> PresenceCounts:
        return self._presence.counts(SessionRegistry.validate_class_id(class_id))

    def class_of(self, token: str) -> str | None:
        entry = self._presence.get_entry(token)
        return entry.class_id if entry is not None else None

    def publish(self, class_id: str, event: FeedbackEvent, exclude: str | None = None) -> int:
        return self._dispatcher.publish(class_id, event, exclude=exclude)

    # --- Helpers ---

    def _class_lock(self, class_id: str) -> Lock:
        # Serializes writers of one class; different classes never contend
        with self._locks_guard:
            lock = self._class_locks.get(class_id)
            if lock is None:
                lock = self._class_locks[class_id] = Lock()
            return lock

    def _apply_rating(self, class_id: str, topic_id: int, score: int) -> TopicStats:
        stats = self._aggregator.add_rating(class_id, topic_id, score)
        self._dispatcher.publish(
            class_id,
            RatingRecorded(topic_id=topic_id, new_score=score, average=stats.average, count=stats.count),
        )
        return stats

    def _publish_presence(self, class_id: str) -> None:
        counts = self._presence.counts(class_id)
        self._dispatcher.publish(
            class_id,
            PresenceChanged(student_count=counts.student_count, teacher_count=counts.teacher_count),
        )

    def _stats_event(self, class_id: str) -> StatsChanged:
        total_ratings, overall_average = self._aggregator.totals(class_id)
        return StatsChanged(
            total_ratings=total_ratings,
            overall_average=overall_average,
            total_comments=self._aggregator.comment_count(class_id),
        )

    @staticmethod
    def _validate_ratings(session: ClassSession, ratings: Sequence[RatingInput]) -> list[RatingInput]:
        if isinstance(ratings, (str, bytes)) or not isinstance(ratings, Sequence):
            raise InvalidInput("An array of ratings is required.")
        known_ids = session.topic_ids()
        seen: set[int] = set()
        accepted: list[RatingInput] = []
        for rating in ratings:
            if not isinstance(rating, RatingInput):
                raise InvalidInput("Each rating must provide a topic id and a score.")
            topic_id = rating.topic_id
            if isinstance(topic_id, bool) or not isinstance(topic_id, int):
                raise InvalidInput("Topic id must be an integer.")
            if topic_id not in known_ids:
                raise InvalidInput(f"Topic {topic_id} does not belong to class '{session.class_id}'.")
            if topic_id in seen:
                raise InvalidInput(f"Topic {topic_id} was rated more than once.")
            validate_score(rating.score)
            seen.add(topic_id)
            accepted.append(rating)
        return accepted

    @staticmethod
    def _normalize_comment(comment: str | None, required: bool) -> str | None:
        if comment is None:
            if required:
                raise InvalidInput("Comment text is required.")
            return None
        if not isinstance(comment, str):
            raise InvalidInput("Comment must be a string.")
        stripped = comment.strip()
        if not stripped:
            if required:
                raise InvalidInput("Comment text cannot be empty.")
            return None
        return stripped
