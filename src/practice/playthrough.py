from __future__ import annotations

"""Detection of complete sequential run-throughs of a piece."""

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Sequence

from src.backend.logging_utils import get_logger
from src.practice.models import PracticeSession

if TYPE_CHECKING:
    from src.backend.practice_store import PracticeStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class Playthrough:
    session: PracticeSession
    duration_ms: int


@dataclass(frozen=True)
class MigrationResult:
    migrated_count: int
    total_sessions: int


def detect_sequential_playthrough(session: PracticeSession) -> Optional[datetime]:
    """Return the end of the attempt that completed an in-order run, if any.

    Attempts are walked chronologically. Measure 0 (re)starts the run; the
    next expected measure advances it; anything else is ignored.
    """
    total = session.total_measures
    if not total or not session.measures:
        return None
    timeline = sorted(
        (
            (attempt.started_at, entry.source_measure_index, attempt)
            for entry in session.measures
            for attempt in entry.attempts
        ),
        key=lambda item: item[0],
    )
    expected = 0
    for _, measure_index, attempt in timeline:
        if measure_index == 0:
            expected = 1
        elif measure_index == expected:
            expected += 1
        else:
            continue
        if expected >= total:
            return attempt.ended_at
    return None


def playthrough_duration_ms(session: PracticeSession) -> Optional[int]:
    if session.playthrough_started_at is None or session.completed_at is None:
        return None
    delta = session.completed_at - session.playthrough_started_at
    return int(delta.total_seconds() * 1000)


def full_playthroughs(sessions: Sequence[PracticeSession]) -> List[Playthrough]:
    """Sessions with both playthrough timestamps, oldest first."""
    found = []
    for session in sessions:
        duration_ms = playthrough_duration_ms(session)
        if duration_ms is not None:
            found.append(Playthrough(session=session, duration_ms=duration_ms))
    found.sort(key=lambda p: p.session.playthrough_started_at)
    return found


def best_playthrough_ms(sessions: Sequence[PracticeSession]) -> Optional[int]:
    durations = [p.duration_ms for p in full_playthroughs(sessions)]
    return min(durations) if durations else None


async def migrate_playthrough_data(store: "PracticeStore") -> MigrationResult:
    """Backfill completed_at on stored sessions that ran the whole piece."""
    sessions = await store.get_sessions()
    migrated = 0
    for session in sessions:
        if session.completed_at is not None or not session.total_measures:
            continue
        completed_at = detect_sequential_playthrough(session)
        if completed_at is None:
            continue
        session.completed_at = completed_at
        await store.save_session(session)
        migrated += 1
    logger.info("playthrough_migration migrated=%s total=%s", migrated, len(sessions))
    return MigrationResult(migrated_count=migrated, total_sessions=len(sessions))
