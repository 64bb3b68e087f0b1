from __future__ import annotations

"""Persistence for practice sessions and per-score aggregates."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote
import asyncio
import copy
import json

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions

from src.backend.config import Settings
from src.backend.firebase_app import get_firestore_client
from src.backend.logging_utils import get_logger
from src.practice.models import PracticeSession, ScoreAggregate, to_iso, utcnow

logger = get_logger(__name__)

DateRange = Tuple[datetime, datetime]

# Firestore rejects batches with more writes than this.
FIRESTORE_BATCH_LIMIT = 500


class PracticeStoreError(RuntimeError):
    """Raised when the backing store rejects a read or write."""


def _in_range(session: PracticeSession, date_range: Optional[DateRange]) -> bool:
    if date_range is None:
        return True
    start, end = date_range
    return start <= session.started_at <= end


def _filter_sessions(
    sessions: List[PracticeSession],
    score_id: Optional[str],
    date_range: Optional[DateRange],
) -> List[PracticeSession]:
    selected = [
        session
        for session in sessions
        if (score_id is None or session.score_id == score_id) and _in_range(session, date_range)
    ]
    selected.sort(key=lambda s: s.started_at)
    return selected


class PracticeStore:
    """Async key-value interface shared by every backend."""

    async def save_session(self, session: PracticeSession) -> None:
        raise NotImplementedError

    async def get_session(self, session_id: str) -> Optional[PracticeSession]:
        raise NotImplementedError

    async def get_sessions(
        self,
        score_id: Optional[str] = None,
        date_range: Optional[DateRange] = None,
    ) -> List[PracticeSession]:
        """Return sessions sorted by start time, optionally filtered."""
        raise NotImplementedError

    async def save_aggregate(self, aggregate: ScoreAggregate) -> None:
        raise NotImplementedError

    async def get_aggregate(self, score_id: str) -> Optional[ScoreAggregate]:
        raise NotImplementedError

    async def get_all_aggregates(self) -> List[ScoreAggregate]:
        raise NotImplementedError

    async def clear_all(self) -> None:
        raise NotImplementedError

    async def export_backup(self) -> Dict[str, Any]:
        sessions = await self.get_sessions()
        aggregates = await self.get_all_aggregates()
        return {
            "exportDate": to_iso(utcnow()),
            "sessions": [session.to_dict() for session in sessions],
            "aggregates": [aggregate.to_dict() for aggregate in aggregates],
        }

    async def import_backup(self, data: Dict[str, Any]) -> Dict[str, int]:
        """Restore records from an export payload, overwriting matching ids.

        Every record is decoded before anything is written, so a malformed
        payload leaves the store untouched.
        """
        if not isinstance(data, dict):
            raise ValueError("Backup payload must be an object.")
        raw_sessions = data.get("sessions")
        raw_aggregates = data.get("aggregates")
        if not isinstance(raw_sessions, list) or not isinstance(raw_aggregates, list):
            raise ValueError("Backup payload requires 'sessions' and 'aggregates' lists.")
        try:
            sessions = [PracticeSession.from_dict(item) for item in raw_sessions]
            aggregates = [ScoreAggregate.from_dict(item) for item in raw_aggregates]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Malformed backup record: {exc}") from exc
        await self._write_backup(sessions, aggregates)
        logger.info(
            "backup_imported sessions=%s aggregates=%s", len(sessions), len(aggregates)
        )
        return {"sessions": len(sessions), "aggregates": len(aggregates)}

    async def _write_backup(
        self, sessions: List[PracticeSession], aggregates: List[ScoreAggregate]
    ) -> None:
        """Write decoded backup records one at a time.

        Not atomic: a store failure can leave part of the backup written.
        Records overwrite by id, so running the same import again completes it.
        """
        for session in sessions:
            await self.save_session(session)
        for aggregate in aggregates:
            await self.save_aggregate(aggregate)


class MemoryPracticeStore(PracticeStore):
    """In-process store keeping serialized copies of every record."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self._aggregates: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def save_session(self, session: PracticeSession) -> None:
        async with self._lock:
            self._sessions[session.id] = session.to_dict()

    async def get_session(self, session_id: str) -> Optional[PracticeSession]:
        async with self._lock:
            data = self._sessions.get(session_id)
            return PracticeSession.from_dict(copy.deepcopy(data)) if data else None

    async def get_sessions(
        self,
        score_id: Optional[str] = None,
        date_range: Optional[DateRange] = None,
    ) -> List[PracticeSession]:
        async with self._lock:
            sessions = [PracticeSession.from_dict(copy.deepcopy(d)) for d in self._sessions.values()]
        return _filter_sessions(sessions, score_id, date_range)

    async def save_aggregate(self, aggregate: ScoreAggregate) -> None:
        async with self._lock:
            self._aggregates[aggregate.score_id] = aggregate.to_dict()

    async def get_aggregate(self, score_id: str) -> Optional[ScoreAggregate]:
        async with self._lock:
            data = self._aggregates.get(score_id)
            return ScoreAggregate.from_dict(copy.deepcopy(data)) if data else None

    async def get_all_aggregates(self) -> List[ScoreAggregate]:
        async with self._lock:
            return [ScoreAggregate.from_dict(copy.deepcopy(d)) for d in self._aggregates.values()]

    async def clear_all(self) -> None:
        async with self._lock:
            self._sessions.clear()
            self._aggregates.clear()

    async def _write_backup(
        self, sessions: List[PracticeSession], aggregates: List[ScoreAggregate]
    ) -> None:
        encoded_sessions = {session.id: session.to_dict() for session in sessions}
        encoded_aggregates = {aggregate.score_id: aggregate.to_dict() for aggregate in aggregates}
        async with self._lock:
            self._sessions.update(encoded_sessions)
            self._aggregates.update(encoded_aggregates)


def _record_filename(key: str) -> str:
    return f"{quote(key, safe='')}.json"


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    try:
        payload = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise PracticeStoreError(f"Failed to read {path.name}: {exc}") from exc
    try:
        return json.loads(payload)
    except json.JSONDecodeError as exc:
        raise PracticeStoreError(f"Corrupt record {path.name}: {exc}") from exc


def _write_json(path: Path, data: Dict[str, Any]) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(f"{path.suffix}.tmp")
        tmp_path.write_text(json.dumps(data), encoding="utf-8")
        tmp_path.replace(path)
    except OSError as exc:
        raise PracticeStoreError(f"Failed to write {path.name}: {exc}") from exc


def _read_dir(directory: Path) -> List[Dict[str, Any]]:
    if not directory.exists():
        return []
    records = []
    for path in sorted(directory.glob("*.json")):
        data = _read_json(path)
        if data is not None:
            records.append(data)
    return records


def _clear_dir(directory: Path) -> None:
    if not directory.exists():
        return
    for path in directory.glob("*.json"):
        path.unlink(missing_ok=True)


class FilePracticeStore(PracticeStore):
    """One JSON file per record under a data directory."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._sessions_dir = root / "sessions"
        self._aggregates_dir = root / "aggregates"

    def session_path(self, session_id: str) -> Path:
        return self._sessions_dir / _record_filename(session_id)

    def aggregate_path(self, score_id: str) -> Path:
        return self._aggregates_dir / _record_filename(score_id)

    async def save_session(self, session: PracticeSession) -> None:
        await asyncio.to_thread(_write_json, self.session_path(session.id), session.to_dict())

    async def get_session(self, session_id: str) -> Optional[PracticeSession]:
        data = await asyncio.to_thread(_read_json, self.session_path(session_id))
        return PracticeSession.from_dict(data) if data else None

    async def get_sessions(
        self,
        score_id: Optional[str] = None,
        date_range: Optional[DateRange] = None,
    ) -> List[PracticeSession]:
        records = await asyncio.to_thread(_read_dir, self._sessions_dir)
        sessions = [PracticeSession.from_dict(data) for data in records]
        return _filter_sessions(sessions, score_id, date_range)

    async def save_aggregate(self, aggregate: ScoreAggregate) -> None:
        await asyncio.to_thread(
            _write_json, self.aggregate_path(aggregate.score_id), aggregate.to_dict()
        )

    async def get_aggregate(self, score_id: str) -> Optional[ScoreAggregate]:
        data = await asyncio.to_thread(_read_json, self.aggregate_path(score_id))
        return ScoreAggregate.from_dict(data) if data else None

    async def get_all_aggregates(self) -> List[ScoreAggregate]:
        records = await asyncio.to_thread(_read_dir, self._aggregates_dir)
        return [ScoreAggregate.from_dict(data) for data in records]

    async def clear_all(self) -> None:
        await asyncio.to_thread(_clear_dir, self._sessions_dir)
        await asyncio.to_thread(_clear_dir, self._aggregates_dir)


@dataclass
class FirestorePracticeStore(PracticeStore):
    """Firestore documents keyed by session id and score id."""
    sessions_collection: str = "practice_sessions"
    aggregates_collection: str = "practice_aggregates"
    project_id: Optional[str] = None
    database_id: Optional[str] = None
    _client: Optional[firestore.Client] = field(default=None, init=False, repr=False)

    def _ensure_client(self) -> None:
        """Lazily initialize the Firestore client."""
        if self._client is None:
            self._client = get_firestore_client(self.project_id, database_id=self.database_id)

    def _set(self, collection: str, doc_id: str, payload: Dict[str, Any]) -> None:
        self._ensure_client()
        try:
            self._client.collection(collection).document(doc_id).set(payload)
        except google_exceptions.GoogleAPIError as exc:
            raise PracticeStoreError(f"Firestore write failed for {collection}/{doc_id}") from exc

    def _get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        self._ensure_client()
        try:
            snapshot = self._client.collection(collection).document(doc_id).get()
        except google_exceptions.GoogleAPIError as exc:
            raise PracticeStoreError(f"Firestore read failed for {collection}/{doc_id}") from exc
        if not snapshot.exists:
            return None
        return snapshot.to_dict() or None

    def _stream(self, collection: str, score_id: Optional[str] = None) -> List[Dict[str, Any]]:
        self._ensure_client()
        query = self._client.collection(collection)
        if score_id is not None:
            query = query.where("scoreId", "==", score_id)
        try:
            return [doc.to_dict() or {} for doc in query.stream()]
        except google_exceptions.GoogleAPIError as exc:
            raise PracticeStoreError(f"Firestore query failed for {collection}") from exc

    def _delete_all(self, collection: str) -> None:
        self._ensure_client()
        try:
            for doc in self._client.collection(collection).stream():
                doc.reference.delete()
        except google_exceptions.GoogleAPIError as exc:
            raise PracticeStoreError(f"Firestore delete failed for {collection}") from exc

    def _commit_writes(self, writes: List[Tuple[str, str, Dict[str, Any]]]) -> None:
        self._ensure_client()
        for start in range(0, len(writes), FIRESTORE_BATCH_LIMIT):
            batch = self._client.batch()
            for collection, doc_id, payload in writes[start:start + FIRESTORE_BATCH_LIMIT]:
                batch.set(self._client.collection(collection).document(doc_id), payload)
            try:
                batch.commit()
            except google_exceptions.GoogleAPIError as exc:
                raise PracticeStoreError(
                    f"Firestore batch write failed after {start} of {len(writes)} records"
                ) from exc

    async def save_session(self, session: PracticeSession) -> None:
        await asyncio.to_thread(self._set, self.sessions_collection, session.id, session.to_dict())

    async def get_session(self, session_id: str) -> Optional[PracticeSession]:
        data = await asyncio.to_thread(self._get, self.sessions_collection, session_id)
        return PracticeSession.from_dict(data) if data else None

    async def get_sessions(
        self,
        score_id: Optional[str] = None,
        date_range: Optional[DateRange] = None,
    ) -> List[PracticeSession]:
        records = await asyncio.to_thread(self._stream, self.sessions_collection, score_id)
        sessions = [PracticeSession.from_dict(data) for data in records if data]
        return _filter_sessions(sessions, score_id, date_range)

    async def save_aggregate(self, aggregate: ScoreAggregate) -> None:
        await asyncio.to_thread(
            self._set, self.aggregates_collection, aggregate.score_id, aggregate.to_dict()
        )

    async def get_aggregate(self, score_id: str) -> Optional[ScoreAggregate]:
        data = await asyncio.to_thread(self._get, self.aggregates_collection, score_id)
        return ScoreAggregate.from_dict(data) if data else None

    async def get_all_aggregates(self) -> List[ScoreAggregate]:
        records = await asyncio.to_thread(self._stream, self.aggregates_collection)
        return [ScoreAggregate.from_dict(data) for data in records if data]

    async def clear_all(self) -> None:
        await asyncio.to_thread(self._delete_all, self.sessions_collection)
        await asyncio.to_thread(self._delete_all, self.aggregates_collection)

    async def _write_backup(
        self, sessions: List[PracticeSession], aggregates: List[ScoreAggregate]
    ) -> None:
        """Write the backup in batched commits.

        A backup of up to FIRESTORE_BATCH_LIMIT records lands in one commit
        or not at all. Larger backups commit batch by batch.
        """
        writes = [(self.sessions_collection, s.id, s.to_dict()) for s in sessions]
        writes += [(self.aggregates_collection, a.score_id, a.to_dict()) for a in aggregates]
        await asyncio.to_thread(self._commit_writes, writes)


def build_practice_store(settings: Settings) -> PracticeStore:
    """Create the store selected by PRACTICE_STORE."""
    if settings.practice_store == "file":
        store: PracticeStore = FilePracticeStore(settings.data_dir / "practice")
    elif settings.practice_store == "firestore":
        store = FirestorePracticeStore(
            sessions_collection=settings.sessions_collection,
            aggregates_collection=settings.aggregates_collection,
            project_id=settings.project_id,
            database_id=settings.firestore_database,
        )
    else:
        store = MemoryPracticeStore()
    logger.info("practice_store_selected kind=%s", settings.practice_store)
    return store
