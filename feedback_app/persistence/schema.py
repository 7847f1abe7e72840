"""ORM tables backing class sessions, topics, ratings and comments.

Ratings and comments deliberately have no column that could identify the
submitter.
"""

from __future__ import annotations

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase

from feedback_app.constants.feedback_constants import MAX_SCORE, MIN_SCORE
from feedback_app.core.models import utc_now


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class ClassSessionRow(Base):
    __tablename__ = "class_sessions"

    class_id = Column(String(255), primary_key=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class TopicRow(Base):
    __tablename__ = "topics"
    __table_args__ = (UniqueConstraint("class_id", "position", name="uq_topics_class_position"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    class_id = Column(
        String(255),
        ForeignKey("class_sessions.class_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # 1-based id exposed to clients
    position = Column(Integer, nullable=False)
    name = Column(String(500), nullable=False)


class RatingRow(Base):
    __tablename__ = "ratings"
    __table_args__ = (
        CheckConstraint(f"score >= {MIN_SCORE} AND score <= {MAX_SCORE}", name="ck_ratings_score_range"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    topic_id = Column(Integer, ForeignKey("topics.id", ondelete="CASCADE"), nullable=False, index=True)
    score = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class CommentRow(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    class_id = Column(
        String(255),
        ForeignKey("class_sessions.class_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    text = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
