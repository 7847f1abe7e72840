"""Durable, transactional storage for feedback sessions using SQLAlchemy."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from functools import wraps
import logging
from threading import Lock
from typing import Callable, TypeVar

from sqlalchemy import create_engine, delete, func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from feedback_app.core.errors import NotFound, PersistenceError
from feedback_app.core.models import ClassSession, Comment, Topic, utc_now
from feedback_app.persistence.schema import Base, ClassSessionRow, CommentRow, RatingRow, TopicRow

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _guard(operation: Callable[..., T]) -> Callable[..., T]:
    """Re-raise SQLAlchemy failures as PersistenceError."""

    @wraps(operation)
    def wrapper(*args, **kwargs):
        try:
            return operation(*args, **kwargs)
        except SQLAlchemyError as exc:
            logger.exception("Store operation %s failed", operation.__name__)
            raise PersistenceError(f"Store operation '{operation.__name__}' failed.") from exc

    return wrapper


def create_store_engine(database_url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(database_url, future=True, connect_args=connect_args, poolclass=StaticPool)
        return create_engine(database_url, future=True, connect_args=connect_args)
    return create_engine(database_url, future=True, pool_pre_ping=True)


class StoreTransaction:
    """One unit of work against the store; obtained from ``FeedbackStore.transaction``."""

    def __init__(self, db: Session) -> None:
        self._db = db
        self._topic_keys: dict[str, dict[int, int]] = {}
        self._finished = False

    @_guard
    def replace_topics(self, class_id: str, names: Sequence[str], created_at: datetime | None = None) -> list[Topic]:
        """Drop everything stored for ``class_id`` and store the new topic list."""
        self._delete_class(class_id)
        self._db.add(ClassSessionRow(class_id=class_id, created_at=created_at or utc_now()))
        self._db.flush()
        topics: list[Topic] = []
        rows: list[TopicRow] = []
        for position, name in enumerate(names, start=1):
            rows.append(TopicRow(class_id=class_id, position=position, name=name))
            topics.append(Topic(id=position, name=name))
        self._db.add_all(rows)
        self._db.flush()
        self._topic_keys[class_id] = {row.position: row.id for row in rows}
        return topics

    @_guard
    def insert_rating(self, class_id: str, topic_id: int, score: int) -> None:
        topic_key = self._topic_key_map(class_id).get(topic_id)
        if topic_key is None:
            raise NotFound(f"Topic {topic_id} is not stored for class '{class_id}'.")
        self._db.add(RatingRow(topic_id=topic_key, score=score, created_at=utc_now()))
        self._db.flush()

    @_guard
    def insert_comment(self, class_id: str, text_value: str) -> Comment:
        created_at = utc_now()
        self._db.add(CommentRow(class_id=class_id, text=text_value, created_at=created_at))
        self._db.flush()
        return Comment(text=text_value, created_at=created_at)

    @_guard
    def read_aggregates(self, class_id: str) -> dict[int, tuple[int, int]]:
        """Return {topic id: (score total, rating count)} for every topic of the class."""
        statement = (
            select(
                TopicRow.position,
                func.coalesce(func.sum(RatingRow.score), 0),
                func.count(RatingRow.id),
            )
            .outerjoin(RatingRow, RatingRow.topic_id == TopicRow.id)
            .where(TopicRow.class_id == class_id)
            .group_by(TopicRow.id, TopicRow.position)
            .order_by(TopicRow.position)
        )
        return {position: (int(total), int(count)) for position, total, count in self._db.execute(statement)}

    @_guard
    def read_comments(self, class_id: str) -> list[Comment]:
        statement = (
            select(CommentRow.text, CommentRow.created_at)
            .where(CommentRow.class_id == class_id)
            .order_by(CommentRow.created_at, CommentRow.id)
        )
        return [Comment(text=value, created_at=_as_utc(created)) for value, created in self._db.execute(statement)]

    @_guard
    def count_comments(self, class_id: str) -> int:
        statement = select(func.count(CommentRow.id)).where(CommentRow.class_id == class_id)
        return int(self._db.execute(statement).scalar_one())

    @_guard
    def read_sessions(self) -> list[ClassSession]:
        sessions: dict[str, ClassSession] = {}
        for row in self._db.execute(select(ClassSessionRow).order_by(ClassSessionRow.created_at)).scalars():
            sessions[row.class_id] = ClassSession(
                class_id=row.class_id,
                topics=[],
                created_at=_as_utc(row.created_at),
            )
        topic_rows = self._db.execute(
            select(TopicRow.class_id, TopicRow.position, TopicRow.name).order_by(TopicRow.class_id, TopicRow.position)
        )
        for class_id, position, name in topic_rows:
            session = sessions.get(class_id)
            if session is not None:
                session.topics.append(Topic(id=position, name=name))
        return list(sessions.values())

    @_guard
    def delete_session(self, class_id: str) -> bool:
        return self._delete_class(class_id)

    @_guard
    def commit(self) -> None:
        if self._finished:
            return
        self._db.commit()
        self._finished = True

    def rollback(self) -> None:
        if self._finished:
            return
        self._finished = True
        try:
            self._db.rollback()
        except SQLAlchemyError:
            logger.exception("Rollback failed")

    def _topic_key_map(self, class_id: str) -> dict[int, int]:
        keys = self._topic_keys.get(class_id)
        if keys is None:
            rows = self._db.execute(select(TopicRow.position, TopicRow.id).where(TopicRow.class_id == class_id))
            keys = {position: key for position, key in rows}
            self._topic_keys[class_id] = keys
        return keys

    def _delete_class(self, class_id: str) -> bool:
        # Explicit deletes: SQLite does not enforce ON DELETE CASCADE by default
        options = {"synchronize_session": False}
        topic_keys = select(TopicRow.id).where(TopicRow.class_id == class_id)
        self._db.execute(delete(RatingRow).where(RatingRow.topic_id.in_(topic_keys)), execution_options=options)
        self._db.execute(delete(TopicRow).where(TopicRow.class_id == class_id), execution_options=options)
        self._db.execute(delete(CommentRow).where(CommentRow.class_id == class_id), execution_options=options)
        result = self._db.execute(
            delete(ClassSessionRow).where(ClassSessionRow.class_id == class_id),
            execution_options=options,
        )
        self._topic_keys.pop(class_id, None)
        return bool(result.rowcount)


class FeedbackStore:
    """Persistence adapter: a transactional row store for feedback data."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._session_factory = sessionmaker(
            bind=engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
        # A StaticPool hands every session the same DBAPI connection, so
        # transactions on it must not overlap
        self._serial_lock = Lock() if isinstance(engine.pool, StaticPool) else None

    @classmethod
    def from_url(cls, database_url: str) -> "FeedbackStore":
        return cls(create_store_engine(database_url))

    @_guard
    def create_schema(self) -> None:
        Base.metadata.create_all(self._engine)

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """Commit on clean exit, roll back on any exception."""
        with self._serial_lock or nullcontext():
            db = self._session_factory()
            transaction = StoreTransaction(db)
            try:
                yield transaction
                transaction.commit()
            except Exception:
                transaction.rollback()
                raise
            finally:
                db.close()

    def ping(self) -> bool:
        try:
            with self._serial_lock or nullcontext(), self._engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Database health check failed")
            return False
        return True

    def dispose(self) -> None:
        self._engine.dispose()
