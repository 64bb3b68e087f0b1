from __future__ import annotations

import unittest
from datetime import timedelta

import pytest

from src.practice.aggregates import (
    build_daily_log,
    compute_score_status,
    measures_to_reinforce,
    session_duration_ms,
    update_aggregate,
)
from src.practice.models import MeasureAggregate, ScoreAggregate, ScoreStatus
from tests.practice_fixtures import BASE_TIME, make_session


def _aggregate(clean_counts, *, days_apart=0):
    return ScoreAggregate(
        score_id="score-1",
        first_played_at=BASE_TIME,
        last_played_at=BASE_TIME + timedelta(days=days_apart),
        measures={
            index: MeasureAggregate(total_attempts=count, clean_attempts=count)
            for index, count in enumerate(clean_counts)
        },
    )


class UpdateAggregateTests(unittest.TestCase):
    def test_measure_counters_from_clean_and_dirty_attempts(self) -> None:
        session = make_session(
            [
                (0, 0, 1000, True),
                (0, 2, 1200, True),
                (0, 4, 900, False),
                (0, 6, 1100, True),
                (0, 8, 1301, False),
            ]
        )
        aggregate = update_aggregate(None, session)
        stats = aggregate.measures[0]
        self.assertEqual(stats.total_attempts, 5)
        self.assertEqual(stats.clean_attempts, 3)
        self.assertEqual(stats.error_rate, pytest.approx(0.4))
        self.assertEqual(stats.total_duration_ms, 5501)
        self.assertEqual(stats.avg_duration_ms, 1100)
        self.assertEqual(stats.last_played_at, BASE_TIME + timedelta(seconds=8))

    def test_session_timing_uses_attempt_bounds(self) -> None:
        session = make_session([(0, 10, 1000, True), (1, 20, 2500, True)])
        aggregate = update_aggregate(None, session)
        self.assertEqual(session_duration_ms(session), 12500)
        self.assertEqual(aggregate.total_practice_time_ms, 12500)
        self.assertEqual(aggregate.first_played_at, BASE_TIME + timedelta(seconds=10))
        self.assertEqual(aggregate.last_played_at, BASE_TIME + timedelta(seconds=22.5))
        self.assertEqual(aggregate.total_sessions, 1)
        self.assertEqual(aggregate.score_title, "Etude")

    def test_folding_accumulates_without_mutating_input(self) -> None:
        first = update_aggregate(None, make_session([(0, 0, 1000, True)]))
        later = make_session(
            [(0, 0, 3000, False), (2, 5, 1000, True)],
            session_id="s-2",
            started_at=BASE_TIME + timedelta(days=1),
        )
        second = update_aggregate(first, later)
        self.assertEqual(first.total_sessions, 1)
        self.assertEqual(first.measures[0].total_attempts, 1)
        self.assertEqual(second.total_sessions, 2)
        self.assertEqual(second.measures[0].total_attempts, 2)
        self.assertEqual(second.measures[0].avg_duration_ms, 2000)
        self.assertEqual(sorted(second.measures), [0, 2])
        self.assertEqual(second.first_played_at, BASE_TIME)
        self.assertEqual(second.last_played_at, BASE_TIME + timedelta(days=1, seconds=6))


class ScoreStatusTests(unittest.TestCase):
    def test_no_measures_is_sight_reading(self) -> None:
        self.assertEqual(compute_score_status(ScoreAggregate(score_id="x")), ScoreStatus.DECHIFFRAGE)

    def test_mastered_over_three_days_is_repertoire(self) -> None:
        self.assertEqual(compute_score_status(_aggregate([5, 6], days_apart=2)), ScoreStatus.REPERTOIRE)

    def test_mastered_on_one_day_is_refining(self) -> None:
        self.assertEqual(
            compute_score_status(_aggregate([5, 6], days_apart=0)), ScoreStatus.PERFECTIONNEMENT
        )

    def test_two_days_are_not_enough(self) -> None:
        self.assertEqual(
            compute_score_status(_aggregate([5, 5], days_apart=1)), ScoreStatus.PERFECTIONNEMENT
        )

    def test_half_of_measures_with_three_clean_is_refining(self) -> None:
        self.assertEqual(compute_score_status(_aggregate([3, 0])), ScoreStatus.PERFECTIONNEMENT)

    def test_below_half_is_sight_reading(self) -> None:
        self.assertEqual(compute_score_status(_aggregate([3, 2, 1])), ScoreStatus.DECHIFFRAGE)

    def test_one_unmastered_measure_blocks_repertoire(self) -> None:
        self.assertEqual(
            compute_score_status(_aggregate([5, 4], days_apart=5)), ScoreStatus.PERFECTIONNEMENT
        )


class ReinforceAndDailyLogTests(unittest.TestCase):
    def test_measures_to_reinforce_order_and_limit(self) -> None:
        aggregate = ScoreAggregate(
            score_id="x",
            measures={
                0: MeasureAggregate(error_rate=0.2, last_played_at=BASE_TIME),
                1: MeasureAggregate(error_rate=0.5, last_played_at=BASE_TIME),
                2: MeasureAggregate(error_rate=0.2, last_played_at=BASE_TIME - timedelta(days=1)),
                3: MeasureAggregate(error_rate=0.0),
            },
        )
        ranked = measures_to_reinforce(aggregate, limit=3)
        self.assertEqual([index for index, _ in ranked], [1, 2, 0])
        self.assertEqual(measures_to_reinforce(None), [])

    def test_daily_log_groups_sessions_per_score(self) -> None:
        sessions = [
            make_session([(0, 0, 1000, True), (2, 1, 1000, True)], session_id="a"),
            make_session([(1, 0, 500, True)], session_id="b", started_at=BASE_TIME + timedelta(hours=2)),
            make_session([(0, 0, 800, True)], session_id="c", score_id="score-2"),
            make_session(
                [(5, 0, 800, True)], session_id="d", started_at=BASE_TIME + timedelta(days=1)
            ),
        ]
        log = build_daily_log(sessions, BASE_TIME.date())
        self.assertEqual([entry.score_id for entry in log], ["score-1", "score-2"])
        first = log[0]
        self.assertEqual([s.id for s in first.sessions], ["a", "b"])
        self.assertEqual(first.measures_played, [0, 1, 2])
        self.assertEqual(first.measure_count, 3)
        self.assertEqual(first.total_practice_time_ms, 2000 + 500)
