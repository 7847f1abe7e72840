"""Unit tests for the rating aggregator."""

from concurrent.futures import ThreadPoolExecutor
import random
from statistics import mean
from threading import Barrier

import pytest

from feedback_app.core.errors import InvalidInput
from feedback_app.core.models import Topic
from feedback_app.core.services import RatingAggregator, round_half_away


@pytest.fixture
def aggregator():
    agg = RatingAggregator()
    agg.reset_class("CS101", [1, 2])
    return agg


class TestRounding:
    def test_zero_count_is_zero(self):
        assert round_half_away(0, 0) == 0.0

    def test_rounds_half_away_from_zero(self):
        # 1/8 = 0.125 would round to 0.12 with banker's rounding
        assert round_half_away(1, 8) == 0.13
        assert round_half_away(20, 3) == 6.67
        assert round_half_away(8, 1) == 8.0


class TestAddRating:
    @pytest.mark.parametrize("score", [1, 10])
    def test_accepts_boundary_scores(self, aggregator, score):
        stats = aggregator.add_rating("CS101", 1, score)
        assert stats.count == 1
        assert stats.average == float(score)

    @pytest.mark.parametrize("score", [0, 11, -3, 7.5, "7", True])
    def test_rejects_invalid_scores(self, aggregator, score):
        with pytest.raises(InvalidInput):
            aggregator.add_rating("CS101", 1, score)
        assert aggregator.stats("CS101", 1).count == 0

    def test_rejects_unknown_topic(self, aggregator):
        with pytest.raises(InvalidInput):
            aggregator.add_rating("CS101", 3, 5)
        with pytest.raises(InvalidInput):
            aggregator.add_rating("OTHER", 1, 5)

    def test_running_average(self, aggregator):
        aggregator.add_rating("CS101", 1, 7)
        aggregator.add_rating("CS101", 1, 8)
        stats = aggregator.add_rating("CS101", 1, 8)

        assert stats.count == 3
        assert stats.average == 7.67


class TestSnapshot:
    def test_snapshot_follows_topic_order(self, aggregator):
        aggregator.add_rating("CS101", 2, 4)
        rows = aggregator.snapshot("CS101", [Topic(1, "Recursion"), Topic(2, "Pointers")])

        assert [(row.id, row.name, row.average, row.count) for row in rows] == [
            (1, "Recursion", 0.0, 0),
            (2, "Pointers", 4.0, 1),
        ]

    def test_reset_discards_old_counts(self, aggregator):
        aggregator.add_rating("CS101", 1, 9)
        aggregator.reset_class("CS101", [1])

        assert aggregator.stats("CS101", 1).count == 0
        with pytest.raises(InvalidInput):
            aggregator.add_rating("CS101", 2, 5)

    def test_totals_use_exact_sums(self, aggregator):
        aggregator.add_rating("CS101", 1, 8)
        aggregator.add_rating("CS101", 2, 4)
        aggregator.add_rating("CS101", 2, 5)

        assert aggregator.totals("CS101") == (3, 5.67)

    def test_comment_tally(self, aggregator):
        assert aggregator.comment_count("CS101") == 0
        aggregator.record_comment("CS101")
        assert aggregator.record_comment("CS101") == 2
        aggregator.reset_class("CS101", [1])
        assert aggregator.comment_count("CS101") == 0


class TestConcurrency:
    def test_concurrent_ratings_on_one_topic_are_not_lost(self, aggregator):
        rng = random.Random(1234)
        scores = [rng.randint(1, 10) for _ in range(100)]
        barrier = Barrier(len(scores))

        def submit(score):
            barrier.wait()
            return aggregator.add_rating("CS101", 1, score)

        with ThreadPoolExecutor(max_workers=len(scores)) as pool:
            results = list(pool.map(submit, scores))

        final = aggregator.stats("CS101", 1)
        assert final.count == len(scores)
        assert final.average == round_half_away(sum(scores), len(scores))
        assert final.average == pytest.approx(mean(scores), abs=0.005)
        # every call observed a distinct intermediate count
        assert sorted(result.count for result in results) == list(range(1, len(scores) + 1))

    def test_concurrent_ratings_on_different_topics(self, aggregator):
        jobs = [(1 + (index % 2), 1 + (index % 10)) for index in range(200)]

        with ThreadPoolExecutor(max_workers=16) as pool:
            list(pool.map(lambda job: aggregator.add_rating("CS101", *job), jobs))

        for topic_id in (1, 2):
            topic_scores = [score for tid, score in jobs if tid == topic_id]
            stats = aggregator.stats("CS101", topic_id)
            assert stats.count == len(topic_scores)
            assert stats.average == round_half_away(sum(topic_scores), len(topic_scores))
