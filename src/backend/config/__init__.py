from __future__ import annotations

"""Practice backend settings loader from environment variables."""

from dataclasses import dataclass
from pathlib import Path
import os

PROJECT_ROOT = Path(__file__).resolve().parents[3]

STORE_KINDS = {"memory", "file", "firestore"}


def _env_int(name: str, default: int) -> int:
    """Read an int env var with a default."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    """Read a float env var with a default."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _project_id() -> str | None:
    """Return the active GCP project ID if set."""
    for key in ("GOOGLE_CLOUD_PROJECT", "GCLOUD_PROJECT", "PROJECT_ID"):
        value = os.getenv(key)
        if value:
            return value
    return None


def _app_env() -> str:
    """Return the application environment name."""
    return os.getenv("APP_ENV") or os.getenv("ENV") or "dev"


@dataclass(frozen=True)
class Settings:
    """Configuration values parsed from the environment."""
    project_root: Path
    data_dir: Path
    practice_store: str
    sessions_collection: str
    aggregates_collection: str
    default_bpm: float
    playback_velocity: float
    grace_note_duration_seconds: float
    playback_end_padding_ms: float
    training_repeat_count: int
    app_env: str
    project_id: str | None
    firestore_database: str | None

    @classmethod
    def from_env(cls) -> "Settings":
        """Construct settings from environment variables."""
        data_dir_name = os.getenv("PRACTICE_DATA_DIR", "data")
        data_dir = (PROJECT_ROOT / data_dir_name).resolve()
        if data_dir != PROJECT_ROOT and PROJECT_ROOT not in data_dir.parents:
            raise ValueError("PRACTICE_DATA_DIR must stay within the project root.")
        practice_store = os.getenv("PRACTICE_STORE", "memory").strip().lower()
        if practice_store not in STORE_KINDS:
            raise ValueError(f"Unknown PRACTICE_STORE: {practice_store}")
        return cls(
            project_root=PROJECT_ROOT,
            data_dir=data_dir,
            practice_store=practice_store,
            sessions_collection=os.getenv("PRACTICE_SESSIONS_COLLECTION", "practice_sessions"),
            aggregates_collection=os.getenv("PRACTICE_AGGREGATES_COLLECTION", "practice_aggregates"),
            default_bpm=_env_float("PLAYBACK_DEFAULT_BPM", 120.0),
            playback_velocity=_env_float("PLAYBACK_VELOCITY", 0.7),
            grace_note_duration_seconds=_env_float("PLAYBACK_GRACE_NOTE_SECONDS", 0.08),
            playback_end_padding_ms=_env_float("PLAYBACK_END_PADDING_MS", 500.0),
            training_repeat_count=_env_int("TRAINING_REPEAT_COUNT", 3),
            app_env=_app_env(),
            project_id=_project_id(),
            firestore_database=os.getenv("PRACTICE_FIRESTORE_DATABASE") or None,
        )
