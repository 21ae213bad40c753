"""File-based JSON storage for moderation entities.

Each entity type lives in its own JSON file under ``~/.modguard/store/``
(or the configured base directory). Writes replace the file atomically and
read-modify-write cycles are serialized per file through a ``.json.lock``
file beside it, so the CLI and the web app can share one directory. Concurrent
writers see last-write-wins semantics rather than lost or torn records.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Callable, Generic, Optional, TypeVar

from filelock import FileLock, Timeout

from modguard.errors import ConflictError, DependencyUnavailable, NotFoundError, StoreCorruption
from modguard.models.alerts import SecurityAlert
from modguard.models.analysis import ModerationRule, ScanRecord, ThreatEntry, UserBehaviorAnalysis
from modguard.models.base import from_dict, to_dict
from modguard.models.cases import EvidencePreservation, LawEnforcementReport
from modguard.models.enforcement import UserSuspension
from modguard.models.flags import ContentFlag, SuspiciousActivityFlag
from modguard.models.messaging import (
    Conversation,
    Message,
    MessageDeletionLog,
    ScreenshotLog,
    UserProfile,
)
from modguard.utils.timeutil import now_iso

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOCK_TIMEOUT_SECONDS = 10.0


class _StoreLock:
    """Re-entrant lock over one store file, held across threads and processes.

    The thread lock is taken first so that only one thread per process ever
    waits on the file lock.
    """

    def __init__(self, path: Path) -> None:
        self._thread_lock = threading.RLock()
        self._file_lock = FileLock(
            str(path.with_suffix(".json.lock")), timeout=LOCK_TIMEOUT_SECONDS, thread_local=False
        )
        self._path = path

    def __enter__(self) -> "_StoreLock":
        self._thread_lock.acquire()
        try:
            self._file_lock.acquire()
        except Timeout as exc:
            self._thread_lock.release()
            raise DependencyUnavailable(
                f"timed out waiting for the lock on {self._path.name}", code="store_unavailable"
            ) from exc
        return self

    def __exit__(self, *exc_info) -> None:
        try:
            self._file_lock.release()
        finally:
            self._thread_lock.release()


_locks: dict[str, _StoreLock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: Path) -> _StoreLock:
    key = str(path.resolve())
    with _locks_guard:
        if key not in _locks:
            _locks[key] = _StoreLock(path)
        return _locks[key]


class JsonCollection(Generic[T]):
    """A typed collection of dataclass records stored as one JSON list.

    Records must carry ``id``, ``version`` and ``updated_at`` fields.
    """

    def __init__(
        self,
        path: Path,
        model: type[T],
        entity: str,
        unique: tuple[str, ...] = (),
    ) -> None:
        self._path = path
        self._model = model
        self.entity = entity
        self._unique = unique
        self._lock = _lock_for(path)

    @property
    def lock(self) -> _StoreLock:
        """The per-file lock, for callers that group several operations."""
        return self._lock

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_raw(self) -> list[dict]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            raise StoreCorruption(f"cannot read {self._path.name}: {exc}") from exc
        if not isinstance(data, list):
            raise StoreCorruption(f"{self._path.name} does not hold a list of records")
        return data

    def _write_raw(self, data: list[dict]) -> None:
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self._path.parent,
                prefix=f".{self._path.stem}.",
                suffix=".tmp",
                delete=False,
            ) as fh:
                tmp_name = fh.name
                json.dump(data, fh, indent=2, default=str)
            os.replace(tmp_name, self._path)
        except OSError as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise DependencyUnavailable(
                f"cannot write {self._path.name}: {exc}", code="store_unavailable"
            ) from exc

    def _load(self, record: dict) -> Optional[T]:
        try:
            return from_dict(self._model, record)
        except (TypeError, ValueError, KeyError) as exc:
            logger.warning(
                "Skipping malformed record",
                extra={
                    "collection": self.entity,
                    "record_id": record.get("id") if isinstance(record, dict) else None,
                    "error": str(exc),
                },
            )
            return None

    @staticmethod
    def _index_of(raw: list[dict], record_id: str) -> int:
        for i, r in enumerate(raw):
            if isinstance(r, dict) and r.get("id") == record_id:
                return i
        return -1

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def insert(self, obj: T) -> T:
        """Persist a new record. Raises ConflictError on a duplicate key."""
        with self._lock:
            raw = self._read_raw()
            if self._index_of(raw, obj.id) >= 0:  # type: ignore[attr-defined]
                raise ConflictError(f"{self.entity} '{obj.id}' already exists")  # type: ignore[attr-defined]
            for key in self._unique:
                value = getattr(obj, key)
                if any(isinstance(r, dict) and r.get(key) == value for r in raw):
                    raise ConflictError(f"{self.entity} with {key}='{value}' already exists")
            obj.version = 1  # type: ignore[attr-defined]
            obj.updated_at = now_iso()  # type: ignore[attr-defined]
            raw.append(to_dict(obj))
            self._write_raw(raw)
            return obj

    def get(self, record_id: str) -> Optional[T]:
        raw = self._read_raw()
        idx = self._index_of(raw, record_id)
        if idx < 0:
            return None
        return self._load(raw[idx])

    def require(self, record_id: str) -> T:
        obj = self.get(record_id)
        if obj is None:
            raise NotFoundError(self.entity, record_id)
        return obj

    def find(self, predicate: Optional[Callable[[T], bool]] = None) -> list[T]:
        """Return every well-formed record matching *predicate*, in insert order."""
        result: list[T] = []
        for record in self._read_raw():
            obj = self._load(record)
            if obj is None:
                continue
            if predicate is None or predicate(obj):
                result.append(obj)
        return result

    def first(self, predicate: Callable[[T], bool]) -> Optional[T]:
        for obj in self.find(predicate):
            return obj
        return None

    def count(self, predicate: Optional[Callable[[T], bool]] = None) -> int:
        return len(self.find(predicate))

    def update(
        self,
        record_id: str,
        mutate: Callable[[T], None],
        expected_version: Optional[int] = None,
    ) -> T:
        """Apply *mutate* to a record under the collection lock and persist it.

        When *expected_version* is given and differs from the stored version,
        the write is refused with ConflictError.
        """
        with self._lock:
            raw = self._read_raw()
            idx = self._index_of(raw, record_id)
            if idx < 0:
                raise NotFoundError(self.entity, record_id)
            obj = self._load(raw[idx])
            if obj is None:
                raise StoreCorruption(f"{self.entity} '{record_id}' is malformed")
            if expected_version is not None and obj.version != expected_version:  # type: ignore[attr-defined]
                raise ConflictError(
                    f"{self.entity} '{record_id}' was modified concurrently "
                    f"(expected version {expected_version}, found {obj.version})"  # type: ignore[attr-defined]
                )
            mutate(obj)
            obj.version += 1  # type: ignore[attr-defined]
            obj.updated_at = now_iso()  # type: ignore[attr-defined]
            raw[idx] = to_dict(obj)
            self._write_raw(raw)
            return obj

    def delete(self, record_id: str) -> bool:
        with self._lock:
            raw = self._read_raw()
            idx = self._index_of(raw, record_id)
            if idx < 0:
                return False
            del raw[idx]
            self._write_raw(raw)
            return True


class ModerationStore:
    """All moderation collections under one base directory.

    Storage path: ``~/.modguard/store/`` with one ``<entity>.json`` per
    collection.
    """

    def __init__(self, base_dir: str | Path | None = None) -> None:
        self._base = Path(base_dir) if base_dir else Path.home() / ".modguard" / "store"
        self._base.mkdir(parents=True, exist_ok=True)

        def coll(filename: str, model: type, entity: str, unique: tuple[str, ...] = ()):
            return JsonCollection(self._base / filename, model, entity, unique)

        self.messages: JsonCollection[Message] = coll("messages.json", Message, "Message")
        self.conversations: JsonCollection[Conversation] = coll(
            "conversations.json", Conversation, "Conversation"
        )
        self.users: JsonCollection[UserProfile] = coll("users.json", UserProfile, "User")
        self.content_flags: JsonCollection[ContentFlag] = coll(
            "content_flags.json", ContentFlag, "ContentFlag"
        )
        self.activity_flags: JsonCollection[SuspiciousActivityFlag] = coll(
            "activity_flags.json", SuspiciousActivityFlag, "SuspiciousActivityFlag"
        )
        self.alerts: JsonCollection[SecurityAlert] = coll(
            "alerts.json", SecurityAlert, "SecurityAlert"
        )
        self.suspensions: JsonCollection[UserSuspension] = coll(
            "suspensions.json", UserSuspension, "UserSuspension"
        )
        self.reports: JsonCollection[LawEnforcementReport] = coll(
            "reports.json", LawEnforcementReport, "LawEnforcementReport", unique=("case_id",)
        )
        self.holds: JsonCollection[EvidencePreservation] = coll(
            "holds.json", EvidencePreservation, "EvidencePreservation"
        )
        self.screenshot_logs: JsonCollection[ScreenshotLog] = coll(
            "screenshot_logs.json", ScreenshotLog, "ScreenshotLog"
        )
        self.deletion_logs: JsonCollection[MessageDeletionLog] = coll(
            "deletion_logs.json", MessageDeletionLog, "MessageDeletionLog"
        )
        self.behavior_analyses: JsonCollection[UserBehaviorAnalysis] = coll(
            "behavior_analyses.json", UserBehaviorAnalysis, "UserBehaviorAnalysis"
        )
        self.scans: JsonCollection[ScanRecord] = coll("scans.json", ScanRecord, "Scan")
        self.rules: JsonCollection[ModerationRule] = coll(
            "rules.json", ModerationRule, "ModerationRule"
        )
        self.threats: JsonCollection[ThreatEntry] = coll(
            "threats.json", ThreatEntry, "ThreatEntry", unique=("threat_id",)
        )

    @property
    def base_dir(self) -> Path:
        return self._base
