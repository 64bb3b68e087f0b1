from __future__ import annotations

"""Single-active-session state machine recording measure attempts."""

from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING, Callable, List, Optional, Set, Tuple
import asyncio
import copy
import uuid

from src.backend.logging_utils import clear_log_context, get_logger, set_log_context
from src.practice.aggregates import (
    DailyScoreLog,
    build_daily_log,
    day_bounds,
    measures_to_reinforce,
    update_aggregate,
)
from src.practice.models import (
    AttemptRecord,
    MeasureAggregate,
    PracticeMode,
    PracticeSession,
    ScoreAggregate,
    utcnow,
)

if TYPE_CHECKING:
    from src.backend.practice_store import PracticeStore

logger = get_logger(__name__)


@dataclass
class OpenAttempt:
    """The measure attempt currently in progress."""
    source_measure_index: int
    started_at: datetime
    wrong_notes: int = 0
    clean: bool = True


@dataclass(frozen=True)
class _ScoreInfo:
    score_id: str
    score_title: Optional[str]
    composer: Optional[str]
    total_measures: Optional[int]


def _new_session_id() -> str:
    return uuid.uuid4().hex


class PracticeSessionTracker:
    """Records attempts for one session at a time and folds it on end.

    Snapshot saves after each attempt run as background tasks; their
    failures land in ``save_errors`` and the optional ``on_save_error``
    callback instead of the attempt-ending call.
    """

    def __init__(
        self,
        store: "PracticeStore",
        *,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = _new_session_id,
        on_save_error: Optional[Callable[[BaseException], None]] = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._id_factory = id_factory
        self._on_save_error = on_save_error
        self._session: Optional[PracticeSession] = None
        self._attempt: Optional[OpenAttempt] = None
        self._score_info: Optional[_ScoreInfo] = None
        self._pending: Set[asyncio.Task] = set()
        self.save_errors: List[BaseException] = []

    @property
    def current_session(self) -> Optional[PracticeSession]:
        return self._session

    @property
    def current_attempt(self) -> Optional[OpenAttempt]:
        return self._attempt

    @property
    def store(self) -> "PracticeStore":
        return self._store

    def start_session(
        self,
        score_id: Optional[str],
        score_title: Optional[str] = None,
        composer: Optional[str] = None,
        mode: PracticeMode = PracticeMode.TRAINING,
        total_measures: Optional[int] = None,
    ) -> Optional[PracticeSession]:
        if not score_id:
            logger.warning("start_session ignored: missing score id")
            return None
        if self._session is not None:
            logger.info("start_session replacing unfinished session=%s", self._session.id)
        session = PracticeSession(
            id=self._id_factory(),
            score_id=score_id,
            score_title=score_title or None,
            composer=composer or None,
            mode=PracticeMode(mode),
            started_at=self._clock(),
            total_measures=total_measures,
        )
        self._session = session
        self._attempt = None
        self._score_info = _ScoreInfo(score_id, session.score_title, session.composer, total_measures)
        set_log_context(session_id=session.id, score_id=score_id)
        logger.info("session_started mode=%s total_measures=%s", session.mode.value, total_measures)
        return session

    def start_measure_attempt(self, source_measure_index: int) -> Optional[OpenAttempt]:
        if self._session is None:
            return None
        now = self._clock()
        if source_measure_index == 0 and self._session.playthrough_started_at is None:
            self._session.playthrough_started_at = now
        self._attempt = OpenAttempt(source_measure_index=source_measure_index, started_at=now)
        return self._attempt

    def record_wrong_note(self) -> None:
        if self._attempt is None:
            return
        self._attempt.wrong_notes += 1
        self._attempt.clean = False

    def end_measure_attempt(self, clean: Optional[bool] = None) -> Optional[AttemptRecord]:
        """Close the open attempt, store it on the session and save a snapshot."""
        if self._session is None or self._attempt is None:
            return None
        attempt = self._attempt
        elapsed = self._clock() - attempt.started_at
        record = AttemptRecord(
            started_at=attempt.started_at,
            duration_ms=max(0, int(elapsed.total_seconds() * 1000)),
            wrong_notes=attempt.wrong_notes,
            clean=attempt.clean if clean is None else clean,
        )
        self._session.measure_entry(attempt.source_measure_index).attempts.append(record)
        self._attempt = None
        self._schedule_snapshot_save()
        return record

    def complete_playthrough(self) -> Optional[datetime]:
        """Stamp completion on a session whose run started at measure 0."""
        if self._session is None or self._session.playthrough_started_at is None:
            return None
        self._session.completed_at = self._clock()
        logger.info("playthrough_completed")
        return self._session.completed_at

    def _schedule_snapshot_save(self) -> None:
        snapshot = copy.deepcopy(self._session)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("snapshot save deferred to end_session: no running loop")
            return
        task = loop.create_task(self._store.save_session(snapshot))
        self._pending.add(task)
        task.add_done_callback(self._on_snapshot_saved)

    def _on_snapshot_saved(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        self.save_errors.append(exc)
        logger.error("session_snapshot_save_failed error=%s", exc, exc_info=exc)
        if self._on_save_error is not None:
            self._on_save_error(exc)

    async def flush(self) -> None:
        """Wait for every outstanding snapshot save."""
        while self._pending:
            # Failures are recorded by the done callback.
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def end_session(self) -> Optional[PracticeSession]:
        """Persist the session and fold it into its aggregate.

        Sessions without any measure entry are discarded and None is returned.
        """
        session = self._session
        if session is None:
            return None
        if self._attempt is not None:
            self.end_measure_attempt()
        session.ended_at = self._clock()
        await self.flush()
        if not session.measures:
            logger.info("session_discarded: no measure attempts")
            self._clear()
            return None
        await self._store.save_session(session)
        aggregate = await self._store.get_aggregate(session.score_id)
        updated = update_aggregate(aggregate, session)
        await self._store.save_aggregate(updated)
        logger.info(
            "session_ended measures=%s status=%s total_sessions=%s",
            len(session.measures),
            updated.status.value,
            updated.total_sessions,
        )
        self._clear()
        return session

    def _clear(self) -> None:
        self._session = None
        self._attempt = None
        clear_log_context()

    async def toggle_mode(self, new_mode: PracticeMode) -> Optional[PracticeSession]:
        """End the current session and start a new one in another mode."""
        info = self._score_info
        await self.end_session()
        if info is None:
            return None
        return self.start_session(
            info.score_id,
            info.score_title,
            info.composer,
            new_mode,
            info.total_measures,
        )

    async def get_score_stats(self, score_id: str) -> Optional[ScoreAggregate]:
        return await self._store.get_aggregate(score_id)

    async def get_measures_to_reinforce(
        self, score_id: str, limit: int = 5
    ) -> List[Tuple[int, MeasureAggregate]]:
        aggregate = await self._store.get_aggregate(score_id)
        return measures_to_reinforce(aggregate, limit)

    async def get_daily_log(self, day: date) -> List[DailyScoreLog]:
        sessions = await self._store.get_sessions(date_range=day_bounds(day))
        return build_daily_log(sessions, day)

    async def get_all_scores(self) -> List[ScoreAggregate]:
        return await self._store.get_all_aggregates()
