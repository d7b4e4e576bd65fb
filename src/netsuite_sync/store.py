"""
Sync state persistence.

The engine treats persistence as an external, transactional row store.
SyncStore is the interface it needs; two implementations ship here:

- InMemorySyncStore: for tests and embedding in a host application
- JsonFileSyncStore: single-file persistence for the CLI, written
  atomically (temp file + rename) after every mutation, or once per
  batch() when the engine groups a whole run

Both also hold simple local record tables so the CLI can run a sync
without a real system of record behind it.
"""

import json
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

import structlog

from netsuite_sync.models import (
    AuthRecord,
    RunStatus,
    SyncDirection,
    SyncMetadata,
    SyncRunLog,
    SyncStatus,
    new_id,
    utc_now_iso,
)

logger = structlog.get_logger(__name__)

UpsertLocal = Callable[[str | None, dict[str, Any]], str]
GetLocalRecord = Callable[[str], dict[str, Any] | None]


class SyncStore(ABC):
    """Point reads and writes of auth rows, sync metadata and run logs."""

    # -- auth ---------------------------------------------------------------

    @abstractmethod
    def get_auth(self, account_id: str) -> AuthRecord | None:
        ...

    @abstractmethod
    def upsert_auth(self, record: AuthRecord) -> None:
        """Insert or replace the single row for record.account_id."""

    @abstractmethod
    def delete_auth(self, account_id: str) -> bool:
        ...

    # -- sync metadata --------------------------------------------------------

    @abstractmethod
    def get_metadata(self, meta_id: str) -> SyncMetadata | None:
        ...

    @abstractmethod
    def find_metadata(self, local_table: str, remote_id: str) -> SyncMetadata | None:
        ...

    @abstractmethod
    def find_metadata_by_local(self, local_table: str, local_record_id: str) -> SyncMetadata | None:
        ...

    @abstractmethod
    def list_metadata(
        self,
        local_table: str | None = None,
        status: SyncStatus | None = None,
    ) -> list[SyncMetadata]:
        ...

    @abstractmethod
    def insert_metadata(self, meta: SyncMetadata) -> None:
        ...

    @abstractmethod
    def update_metadata(self, meta_id: str, **fields: Any) -> SyncMetadata:
        """Apply field updates, stamp updated_at, return the new row."""

    @abstractmethod
    def delete_metadata(self, meta_id: str) -> bool:
        ...

    # -- run log ------------------------------------------------------------

    @abstractmethod
    def insert_run(self, run: SyncRunLog) -> None:
        ...

    @abstractmethod
    def update_run(self, run_id: str, **fields: Any) -> SyncRunLog:
        ...

    @abstractmethod
    def list_runs(self, limit: int = 20) -> list[SyncRunLog]:
        """Most recent runs first."""

    @abstractmethod
    def last_completed_at(self, entity_type: str, direction: SyncDirection) -> str | None:
        """completed_at of the latest completed run, used as the pull watermark."""

    @contextmanager
    def batch(self) -> Iterator["SyncStore"]:
        """Group mutations so a durable store writes once when the block exits."""
        yield self


class InMemorySyncStore(SyncStore):
    """
    Thread-safe in-process SyncStore.

    Rows are copied on the way in and out, so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._auth: dict[str, AuthRecord] = {}
        self._metadata: dict[str, SyncMetadata] = {}
        self._runs: dict[str, SyncRunLog] = {}
        self._records: dict[str, dict[str, dict[str, Any]]] = {}
        self._batch_depth = 0
        self._dirty = False

    def _changed(self, immediate: bool = False) -> None:
        """
        Called after every mutation, with the lock held.

        Token rows pass immediate=True: a rotated refresh token must reach
        disk even if the surrounding batch never completes.
        """
        if self._batch_depth and not immediate:
            self._dirty = True
        else:
            self._persist()

    def _persist(self) -> None:
        """Hook: write state out. Nothing to do in memory."""

    @contextmanager
    def batch(self) -> Iterator["InMemorySyncStore"]:
        """
        Defer persistence until the outermost batch exits.

        Mutations from any thread made while a batch is open are written
        together, once, on exit (also when the block raises).
        """
        with self._lock:
            self._batch_depth += 1
        try:
            yield self
        finally:
            with self._lock:
                self._batch_depth -= 1
                if self._batch_depth == 0 and self._dirty:
                    self._dirty = False
                    self._persist()

    # -- auth ---------------------------------------------------------------

    def get_auth(self, account_id: str) -> AuthRecord | None:
        with self._lock:
            record = self._auth.get(account_id)
            return record.model_copy() if record else None

    def upsert_auth(self, record: AuthRecord) -> None:
        with self._lock:
            existing = self._auth.get(record.account_id)
            if existing:
                record = record.model_copy(update={
                    "id": existing.id,
                    "created_at": existing.created_at,
                    "updated_at": utc_now_iso(),
                })
            self._auth[record.account_id] = record.model_copy()
            self._changed(immediate=True)

    def delete_auth(self, account_id: str) -> bool:
        with self._lock:
            removed = self._auth.pop(account_id, None) is not None
            if removed:
                self._changed(immediate=True)
            return removed

    # -- sync metadata --------------------------------------------------------

    def get_metadata(self, meta_id: str) -> SyncMetadata | None:
        with self._lock:
            meta = self._metadata.get(meta_id)
            return meta.model_copy(deep=True) if meta else None

    def find_metadata(self, local_table: str, remote_id: str) -> SyncMetadata | None:
        with self._lock:
            for meta in self._metadata.values():
                if meta.local_table == local_table and meta.remote_id == remote_id:
                    return meta.model_copy(deep=True)
            return None

    def find_metadata_by_local(self, local_table: str, local_record_id: str) -> SyncMetadata | None:
        with self._lock:
            for meta in self._metadata.values():
                if meta.local_table == local_table and meta.local_record_id == local_record_id:
                    return meta.model_copy(deep=True)
            return None

    def list_metadata(
        self,
        local_table: str | None = None,
        status: SyncStatus | None = None,
    ) -> list[SyncMetadata]:
        with self._lock:
            return [
                meta.model_copy(deep=True)
                for meta in self._metadata.values()
                if (local_table is None or meta.local_table == local_table)
                and (status is None or meta.sync_status == status)
            ]

    def insert_metadata(self, meta: SyncMetadata) -> None:
        with self._lock:
            if meta.id in self._metadata:
                raise KeyError(f"Sync metadata {meta.id} already exists")
            self._metadata[meta.id] = meta.model_copy(deep=True)
            self._changed()

    def update_metadata(self, meta_id: str, **fields: Any) -> SyncMetadata:
        with self._lock:
            meta = self._metadata.get(meta_id)
            if meta is None:
                raise KeyError(f"Sync metadata {meta_id} not found")
            fields.setdefault("updated_at", utc_now_iso())
            updated = SyncMetadata.model_validate({**meta.model_dump(), **fields})
            self._metadata[meta_id] = updated
            self._changed()
            return updated.model_copy(deep=True)

    def delete_metadata(self, meta_id: str) -> bool:
        with self._lock:
            removed = self._metadata.pop(meta_id, None) is not None
            if removed:
                self._changed()
            return removed

    # -- run log ------------------------------------------------------------

    def insert_run(self, run: SyncRunLog) -> None:
        with self._lock:
            self._runs[run.id] = run.model_copy()
            self._changed()

    def update_run(self, run_id: str, **fields: Any) -> SyncRunLog:
        with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                raise KeyError(f"Sync run {run_id} not found")
            updated = SyncRunLog.model_validate({**run.model_dump(), **fields})
            self._runs[run_id] = updated
            self._changed()
            return updated.model_copy()

    def list_runs(self, limit: int = 20) -> list[SyncRunLog]:
        with self._lock:
            # newest insert first on identical timestamps
            runs = sorted(reversed(list(self._runs.values())), key=lambda r: r.started_at, reverse=True)
            return [run.model_copy() for run in runs[:limit]]

    def last_completed_at(self, entity_type: str, direction: SyncDirection) -> str | None:
        with self._lock:
            completed = [
                run.completed_at
                for run in self._runs.values()
                if run.entity_type == entity_type
                and run.direction == direction
                and run.status == RunStatus.COMPLETED
                and run.completed_at
            ]
            return max(completed) if completed else None

    # -- local record tables ---------------------------------------------------

    def upsert_local_record(self, table: str, local_id: str | None, data: dict[str, Any]) -> str:
        """Create (local_id=None) or merge-update a local record, returning its id."""
        with self._lock:
            rows = self._records.setdefault(table, {})
            if local_id is None:
                local_id = new_id()
                rows[local_id] = {"id": local_id, "created_at": utc_now_iso()}
            row = rows.setdefault(local_id, {"id": local_id, "created_at": utc_now_iso()})
            row.update(data)
            row["updated_at"] = utc_now_iso()
            self._changed()
            return local_id

    def get_local_record(self, table: str, local_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._records.get(table, {}).get(local_id)
            return dict(row) if row is not None else None

    def list_local_records(self, table: str) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(row) for row in self._records.get(table, {}).values()]

    def local_callbacks(self, table: str) -> tuple[UpsertLocal, GetLocalRecord]:
        """(upsert_local, get_local_record) callbacks bound to one table."""

        def upsert_local(local_id: str | None, data: dict[str, Any]) -> str:
            return self.upsert_local_record(table, local_id, data)

        def get_local_record(local_id: str) -> dict[str, Any] | None:
            return self.get_local_record(table, local_id)

        return upsert_local, get_local_record

    # -- serialization ----------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        with self._lock:
            return {
                "auth": [r.model_dump(mode="json") for r in self._auth.values()],
                "metadata": [m.model_dump(mode="json") for m in self._metadata.values()],
                "runs": [r.model_dump(mode="json") for r in self._runs.values()],
                "records": self._records,
            }

    def load_dict(self, data: dict[str, Any]) -> None:
        """Replace contents from a to_dict() snapshot."""
        with self._lock:
            self._auth = {
                r.account_id: r
                for r in (AuthRecord.model_validate(x) for x in data.get("auth", []))
            }
            self._metadata = {
                m.id: m
                for m in (SyncMetadata.model_validate(x) for x in data.get("metadata", []))
            }
            self._runs = {
                r.id: r
                for r in (SyncRunLog.model_validate(x) for x in data.get("runs", []))
            }
            self._records = data.get("records", {})


class JsonFileSyncStore(InMemorySyncStore):
    """
    SyncStore persisted to a JSON file.

    Usage:
        store = JsonFileSyncStore("~/.netsuite-sync/state.json")
        engine = SyncEngine(config, store)
    """

    def __init__(self, state_file: str | Path | None = None):
        """
        Initialize and load existing state.

        Args:
            state_file: Path to state file. If None, uses default location.
        """
        super().__init__()

        if state_file is None:
            state_dir = Path.home() / ".netsuite-sync"
            state_dir.mkdir(exist_ok=True)
            state_file = state_dir / "state.json"

        self.state_file = Path(state_file).expanduser()
        self._log = logger.bind(state_file=str(self.state_file))
        self._load()

    def _load(self) -> None:
        if not self.state_file.exists():
            self._log.info("No existing state file, starting fresh")
            return

        with open(self.state_file, "r") as f:
            data = json.load(f)
        self.load_dict(data)
        self._log.info(
            "Loaded existing state",
            metadata_rows=len(self._metadata),
            runs=len(self._runs),
        )

    def _persist(self) -> None:
        self.save()

    def save(self) -> None:
        """
        Save state to disk.

        Uses atomic write (write to temp, then rename) to prevent corruption.
        """
        temp_file = self.state_file.with_suffix(".tmp")
        with open(temp_file, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

        # Atomic rename
        temp_file.replace(self.state_file)
        self._log.debug("Saved state")

    def clear(self) -> None:
        """Delete state file and in-memory rows (for testing or reset)."""
        with self._lock:
            self.load_dict({})
            if self.state_file.exists():
                self.state_file.unlink()
                self._log.info("Cleared state file")
