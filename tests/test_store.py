"""Tests for the SQLAlchemy-backed feedback store."""

from threading import Event, Thread

import pytest
from sqlalchemy.exc import OperationalError

from feedback_app.core.errors import NotFound, PersistenceError
from feedback_app.core.models import Topic


def test_replace_topics_and_read_back(store):
    with store.transaction() as tx:
        topics = tx.replace_topics("CS101", ["Recursion", "Pointers"])

    assert topics == [Topic(1, "Recursion"), Topic(2, "Pointers")]
    with store.transaction() as tx:
        sessions = tx.read_sessions()
        aggregates = tx.read_aggregates("CS101")

    assert [(s.class_id, s.topics) for s in sessions] == [("CS101", topics)]
    assert sessions[0].created_at.tzinfo is not None
    assert aggregates == {1: (0, 0), 2: (0, 0)}


def test_ratings_and_comments_are_aggregated(store):
    with store.transaction() as tx:
        tx.replace_topics("CS101", ["Recursion", "Pointers"])
        tx.insert_rating("CS101", 1, 8)
        tx.insert_rating("CS101", 1, 6)
        tx.insert_rating("CS101", 2, 4)
        tx.insert_comment("CS101", "good pace")
        tx.insert_comment("CS101", "more examples")

    with store.transaction() as tx:
        assert tx.read_aggregates("CS101") == {1: (14, 2), 2: (4, 1)}
        assert [c.text for c in tx.read_comments("CS101")] == ["good pace", "more examples"]
        assert tx.count_comments("CS101") == 2


def test_replace_discards_old_rows(store):
    with store.transaction() as tx:
        tx.replace_topics("CS101", ["A", "B"])
        tx.insert_rating("CS101", 2, 9)
        tx.insert_comment("CS101", "old")
    with store.transaction() as tx:
        tx.replace_topics("CS101", ["C"])

    with store.transaction() as tx:
        assert tx.read_aggregates("CS101") == {1: (0, 0)}
        assert tx.read_comments("CS101") == []


def test_exception_rolls_back_whole_transaction(store):
    with store.transaction() as tx:
        tx.replace_topics("CS101", ["A"])

    with pytest.raises(RuntimeError):
        with store.transaction() as tx:
            tx.insert_rating("CS101", 1, 5)
            tx.insert_comment("CS101", "partial")
            raise RuntimeError("boom")

    with store.transaction() as tx:
        assert tx.read_aggregates("CS101") == {1: (0, 0)}
        assert tx.read_comments("CS101") == []


def test_unknown_topic_is_not_found(store):
    with store.transaction() as tx:
        tx.replace_topics("CS101", ["A"])

    with pytest.raises(NotFound):
        with store.transaction() as tx:
            tx.insert_rating("CS101", 2, 5)


def test_database_errors_become_persistence_errors(store, monkeypatch):
    with store.transaction() as tx:
        tx.replace_topics("CS101", ["A"])

    def broken_flush(self, *args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    monkeypatch.setattr("sqlalchemy.orm.Session.flush", broken_flush)
    with pytest.raises(PersistenceError):
        with store.transaction() as tx:
            tx.insert_comment("CS101", "lost")
    monkeypatch.undo()

    with store.transaction() as tx:
        assert tx.read_comments("CS101") == []


def test_delete_session(store):
    with store.transaction() as tx:
        tx.replace_topics("CS101", ["A"])
        tx.insert_rating("CS101", 1, 3)

    with store.transaction() as tx:
        assert tx.delete_session("CS101") is True
        assert tx.delete_session("CS101") is False

    with store.transaction() as tx:
        assert tx.read_sessions() == []
        assert tx.read_aggregates("CS101") == {}


def test_ping(store):
    assert store.ping() is True


def test_in_memory_transactions_do_not_commit_each_others_rows(store):
    with store.transaction() as tx:
        tx.replace_topics("CS101", ["A"])
    flushed, committed = Event(), Event()
    outcome = []

    def aborted_submission():
        try:
            with store.transaction() as tx:
                tx.insert_rating("CS101", 1, 3)
                flushed.set()
                committed.wait(timeout=0.5)
                raise RuntimeError("abort")
        except RuntimeError as exc:
            outcome.append(str(exc))

    worker = Thread(target=aborted_submission)
    worker.start()
    assert flushed.wait(timeout=5)
    with store.transaction() as tx:
        tx.insert_comment("CS101", "meanwhile")
    committed.set()
    worker.join()

    assert outcome == ["abort"]
    with store.transaction() as tx:
        assert tx.read_aggregates("CS101") == {1: (0, 0)}
        assert tx.count_comments("CS101") == 1
