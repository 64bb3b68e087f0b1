from __future__ import annotations

"""Practice session and aggregate records with their persisted dict form."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class PracticeMode(str, Enum):
    TRAINING = "training"
    FREE = "free"


class ScoreStatus(str, Enum):
    DECHIFFRAGE = "dechiffrage"
    PERFECTIONNEMENT = "perfectionnement"
    REPERTOIRE = "repertoire"


@dataclass
class AttemptRecord:
    started_at: datetime
    duration_ms: int = 0
    wrong_notes: int = 0
    clean: bool = True

    @property
    def ended_at(self) -> datetime:
        return self.started_at + timedelta(milliseconds=self.duration_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startedAt": to_iso(self.started_at),
            "durationMs": self.duration_ms,
            "wrongNotes": self.wrong_notes,
            "clean": self.clean,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AttemptRecord":
        return cls(
            started_at=from_iso(data["startedAt"]),
            duration_ms=int(data.get("durationMs", 0)),
            wrong_notes=int(data.get("wrongNotes", 0)),
            clean=bool(data.get("clean", True)),
        )


@dataclass
class MeasureEntry:
    source_measure_index: int
    attempts: List[AttemptRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceMeasureIndex": self.source_measure_index,
            "attempts": [attempt.to_dict() for attempt in self.attempts],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MeasureEntry":
        return cls(
            source_measure_index=int(data["sourceMeasureIndex"]),
            attempts=[AttemptRecord.from_dict(a) for a in data.get("attempts", [])],
        )


@dataclass
class PracticeSession:
    id: str
    score_id: str
    mode: PracticeMode
    started_at: datetime
    score_title: Optional[str] = None
    composer: Optional[str] = None
    playthrough_started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_measures: Optional[int] = None
    measures: List[MeasureEntry] = field(default_factory=list)

    def measure_entry(self, source_measure_index: int) -> MeasureEntry:
        """Return the entry for a measure, appending a new one if absent."""
        for entry in self.measures:
            if entry.source_measure_index == source_measure_index:
                return entry
        entry = MeasureEntry(source_measure_index=source_measure_index)
        self.measures.append(entry)
        return entry

    def all_attempts(self) -> List[AttemptRecord]:
        return [attempt for entry in self.measures for attempt in entry.attempts]

    def first_attempt_start(self) -> Optional[datetime]:
        attempts = self.all_attempts()
        return min((a.started_at for a in attempts), default=None)

    def last_measure_end(self) -> Optional[datetime]:
        attempts = self.all_attempts()
        return max((a.ended_at for a in attempts), default=None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "scoreId": self.score_id,
            "scoreTitle": self.score_title,
            "composer": self.composer,
            "mode": self.mode.value,
            "startedAt": to_iso(self.started_at),
            "playthroughStartedAt": to_iso(self.playthrough_started_at),
            "endedAt": to_iso(self.ended_at),
            "completedAt": to_iso(self.completed_at),
            "totalMeasures": self.total_measures,
            "measures": [entry.to_dict() for entry in self.measures],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PracticeSession":
        total_measures = data.get("totalMeasures")
        return cls(
            id=str(data["id"]),
            score_id=str(data["scoreId"]),
            mode=PracticeMode(data.get("mode", PracticeMode.TRAINING.value)),
            started_at=from_iso(data["startedAt"]),
            score_title=data.get("scoreTitle"),
            composer=data.get("composer"),
            playthrough_started_at=from_iso(data.get("playthroughStartedAt")),
            ended_at=from_iso(data.get("endedAt")),
            completed_at=from_iso(data.get("completedAt")),
            total_measures=int(total_measures) if total_measures is not None else None,
            measures=[MeasureEntry.from_dict(m) for m in data.get("measures", [])],
        )


@dataclass
class MeasureAggregate:
    total_attempts: int = 0
    clean_attempts: int = 0
    total_duration_ms: int = 0
    avg_duration_ms: int = 0
    error_rate: float = 0.0
    last_played_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalAttempts": self.total_attempts,
            "cleanAttempts": self.clean_attempts,
            "totalDurationMs": self.total_duration_ms,
            "avgDurationMs": self.avg_duration_ms,
            "errorRate": self.error_rate,
            "lastPlayedAt": to_iso(self.last_played_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MeasureAggregate":
        return cls(
            total_attempts=int(data.get("totalAttempts", 0)),
            clean_attempts=int(data.get("cleanAttempts", 0)),
            total_duration_ms=int(data.get("totalDurationMs", 0)),
            avg_duration_ms=int(data.get("avgDurationMs", 0)),
            error_rate=float(data.get("errorRate", 0.0)),
            last_played_at=from_iso(data.get("lastPlayedAt")),
        )


@dataclass
class ScoreAggregate:
    score_id: str
    score_title: Optional[str] = None
    composer: Optional[str] = None
    status: ScoreStatus = ScoreStatus.DECHIFFRAGE
    first_played_at: Optional[datetime] = None
    last_played_at: Optional[datetime] = None
    total_sessions: int = 0
    total_practice_time_ms: int = 0
    measures: Dict[int, MeasureAggregate] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scoreId": self.score_id,
            "scoreTitle": self.score_title,
            "composer": self.composer,
            "status": self.status.value,
            "firstPlayedAt": to_iso(self.first_played_at),
            "lastPlayedAt": to_iso(self.last_played_at),
            "totalSessions": self.total_sessions,
            "totalPracticeTimeMs": self.total_practice_time_ms,
            # Document stores need string keys.
            "measures": {str(index): m.to_dict() for index, m in self.measures.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoreAggregate":
        return cls(
            score_id=str(data["scoreId"]),
            score_title=data.get("scoreTitle"),
            composer=data.get("composer"),
            status=ScoreStatus(data.get("status", ScoreStatus.DECHIFFRAGE.value)),
            first_played_at=from_iso(data.get("firstPlayedAt")),
            last_played_at=from_iso(data.get("lastPlayedAt")),
            total_sessions=int(data.get("totalSessions", 0)),
            total_practice_time_ms=int(data.get("totalPracticeTimeMs", 0)),
            measures={
                int(index): MeasureAggregate.from_dict(m)
                for index, m in (data.get("measures") or {}).items()
            },
        )
