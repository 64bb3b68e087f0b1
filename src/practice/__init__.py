from .aggregates import DailyScoreLog, compute_score_status, update_aggregate
from .models import (
    AttemptRecord,
    MeasureAggregate,
    MeasureEntry,
    PracticeMode,
    PracticeSession,
    ScoreAggregate,
    ScoreStatus,
)
from .playthrough import (
    MigrationResult,
    Playthrough,
    best_playthrough_ms,
    detect_sequential_playthrough,
    full_playthroughs,
    migrate_playthrough_data,
)
from .tracker import PracticeSessionTracker

__all__ = [
    "AttemptRecord",
    "DailyScoreLog",
    "MeasureAggregate",
    "MeasureEntry",
    "MigrationResult",
    "Playthrough",
    "PracticeMode",
    "PracticeSession",
    "PracticeSessionTracker",
    "ScoreAggregate",
    "ScoreStatus",
    "best_playthrough_ms",
    "compute_score_status",
    "detect_sequential_playthrough",
    "full_playthroughs",
    "migrate_playthrough_data",
    "update_aggregate",
]
