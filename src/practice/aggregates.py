from __future__ import annotations

"""Fold finished sessions into per-score aggregates and classify mastery."""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Dict, List, Optional, Sequence, Tuple
import copy

from src.practice.models import (
    AttemptRecord,
    MeasureAggregate,
    PracticeSession,
    ScoreAggregate,
    ScoreStatus,
)

REPERTOIRE_CLEAN_ATTEMPTS = 5
PERFECTIONNEMENT_CLEAN_ATTEMPTS = 3
PERFECTIONNEMENT_RATIO = 0.5
REPERTOIRE_MIN_DAYS = 3


@dataclass
class DailyScoreLog:
    score_id: str
    score_title: Optional[str] = None
    composer: Optional[str] = None
    sessions: List[PracticeSession] = field(default_factory=list)
    measures_played: List[int] = field(default_factory=list)
    total_practice_time_ms: int = 0

    @property
    def measure_count(self) -> int:
        return len(self.measures_played)


def session_duration_ms(session: PracticeSession) -> int:
    """Time from the first attempt start to the last attempt end."""
    first_start = session.first_attempt_start()
    last_end = session.last_measure_end()
    if first_start is None or last_end is None:
        return 0
    return max(0, int((last_end - first_start).total_seconds() * 1000))


def _fold_attempts(stats: MeasureAggregate, attempts: Sequence[AttemptRecord]) -> None:
    for attempt in attempts:
        stats.total_attempts += 1
        if attempt.clean:
            stats.clean_attempts += 1
        stats.total_duration_ms += attempt.duration_ms
        if stats.last_played_at is None or attempt.started_at > stats.last_played_at:
            stats.last_played_at = attempt.started_at
    if stats.total_attempts:
        stats.avg_duration_ms = round(stats.total_duration_ms / stats.total_attempts)
        stats.error_rate = (stats.total_attempts - stats.clean_attempts) / stats.total_attempts
    else:
        stats.avg_duration_ms = 0
        stats.error_rate = 0.0


def update_aggregate(
    aggregate: Optional[ScoreAggregate], session: PracticeSession
) -> ScoreAggregate:
    """Return the aggregate with one finished session folded in.

    The input aggregate is not mutated.
    """
    if aggregate is None:
        updated = ScoreAggregate(
            score_id=session.score_id,
            score_title=session.score_title,
            composer=session.composer,
        )
    else:
        updated = copy.deepcopy(aggregate)
    if session.score_title:
        updated.score_title = session.score_title
    if session.composer:
        updated.composer = session.composer

    first_start = session.first_attempt_start()
    last_end = session.last_measure_end()
    if updated.first_played_at is None:
        updated.first_played_at = first_start or session.started_at
    if last_end is not None:
        updated.last_played_at = last_end

    updated.total_sessions += 1
    updated.total_practice_time_ms += session_duration_ms(session)

    for entry in session.measures:
        stats = updated.measures.setdefault(entry.source_measure_index, MeasureAggregate())
        _fold_attempts(stats, entry.attempts)

    updated.status = compute_score_status(updated)
    return updated


def _calendar_days_spanned(first: Optional[datetime], last: Optional[datetime]) -> int:
    dates = [value.date() for value in (first, last) if value is not None]
    if not dates:
        return 0
    return (max(dates) - min(dates)).days + 1


def compute_score_status(aggregate: ScoreAggregate) -> ScoreStatus:
    """Classify mastery from clean-attempt coverage and the days played.

    Days are counted inclusively between the calendar dates of
    first_played_at and last_played_at.
    """
    measures = list(aggregate.measures.values())
    if not measures:
        return ScoreStatus.DECHIFFRAGE
    total = len(measures)
    mastered = sum(1 for m in measures if m.clean_attempts >= REPERTOIRE_CLEAN_ATTEMPTS)
    refined = sum(1 for m in measures if m.clean_attempts >= PERFECTIONNEMENT_CLEAN_ATTEMPTS)
    days = _calendar_days_spanned(aggregate.first_played_at, aggregate.last_played_at)
    if mastered == total and days >= REPERTOIRE_MIN_DAYS:
        return ScoreStatus.REPERTOIRE
    if refined / total >= PERFECTIONNEMENT_RATIO:
        return ScoreStatus.PERFECTIONNEMENT
    return ScoreStatus.DECHIFFRAGE


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def measures_to_reinforce(
    aggregate: Optional[ScoreAggregate], limit: int = 5
) -> List[Tuple[int, MeasureAggregate]]:
    """Worst measures first: highest error rate, then least recently played."""
    if aggregate is None:
        return []
    ranked = sorted(
        aggregate.measures.items(),
        key=lambda item: (-item[1].error_rate, item[1].last_played_at or _EPOCH),
    )
    return ranked[:limit]


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """UTC start and end instants of a calendar day."""
    return (
        datetime.combine(day, time.min, tzinfo=timezone.utc),
        datetime.combine(day, time.max, tzinfo=timezone.utc),
    )


def build_daily_log(sessions: Sequence[PracticeSession], day: date) -> List[DailyScoreLog]:
    """Group one day's sessions per score, in order of first appearance."""
    logs: Dict[str, DailyScoreLog] = {}
    for session in sessions:
        if session.started_at.astimezone(timezone.utc).date() != day:
            continue
        log = logs.get(session.score_id)
        if log is None:
            log = DailyScoreLog(
                score_id=session.score_id,
                score_title=session.score_title,
                composer=session.composer,
            )
            logs[session.score_id] = log
        log.sessions.append(session)
        log.total_practice_time_ms += session_duration_ms(session)
        played = set(log.measures_played)
        played.update(entry.source_measure_index for entry in session.measures)
        log.measures_played = sorted(played)
    return list(logs.values())
