"""
Push pending local changes to NetSuite.

Creates carry a deterministic idempotency key so a retried create does
not produce a duplicate remote record.
"""

import time
from dataclasses import dataclass, field
from typing import Any

import structlog

from netsuite_sync.errors import NetSuiteError
from netsuite_sync.mappers import EntityMapper
from netsuite_sync.models import SyncMetadata, SyncStatus, utc_now_iso
from netsuite_sync.resources import RecordClient
from netsuite_sync.store import GetLocalRecord, SyncStore

logger = structlog.get_logger(__name__)

# retryable failures allowed before a row is parked in `error`
MAX_PUSH_RETRIES = 3

IDEMPOTENCY_WINDOW_MS = 3_600_000


@dataclass
class PushResult:
    pushed: int = 0
    failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"pushed": self.pushed, "failed": self.failed, "errors": list(self.errors)}


def generate_idempotency_key(
    operation: str,
    remote_type: str,
    local_id: str,
    timestamp_ms: int | None = None,
) -> str:
    """
    Deterministic key for one operation on one record.

    The key includes a one-hour bucket: retries within the hour reuse
    the key so NetSuite can deduplicate, later attempts get a fresh one.
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    bucket = timestamp_ms // IDEMPOTENCY_WINDOW_MS
    return f"{operation}:{remote_type}:{local_id}:{bucket}"


def push_pending_changes(
    store: SyncStore,
    records: RecordClient,
    mapper: EntityMapper,
    get_local_record: GetLocalRecord,
) -> PushResult:
    """Push every pending_push row for the mapper's table."""
    result = PushResult()
    log = logger.bind(remote_type=mapper.remote_type)

    pending = store.list_metadata(mapper.local_table, SyncStatus.PENDING_PUSH)
    log.info("Pushing pending changes", count=len(pending))

    for meta in pending:
        try:
            local = get_local_record(meta.local_record_id)
            if local is None:
                _mark_error(store, meta, "Local record not found")
                result.failed += 1
                result.errors.append({
                    "local_id": meta.local_record_id,
                    "error": "Local record not found",
                })
                continue

            _push_one(store, records, mapper, meta, local)
            result.pushed += 1

        except Exception as e:
            message = str(e) if isinstance(e, NetSuiteError) else f"Unknown error: {e}"
            retryable = isinstance(e, NetSuiteError) and e.retryable

            if retryable and meta.retry_count < MAX_PUSH_RETRIES:
                store.update_metadata(
                    meta.id,
                    retry_count=meta.retry_count + 1,
                    error_message=message,
                )
            else:
                _mark_error(store, meta, message)

            result.failed += 1
            result.errors.append({"local_id": meta.local_record_id, "error": message})
            log.warning(
                "Failed to push record",
                local_id=meta.local_record_id,
                retryable=retryable,
                error=message,
            )

    log.info("Push complete", pushed=result.pushed, failed=result.failed)
    return result


def _push_one(
    store: SyncStore,
    records: RecordClient,
    mapper: EntityMapper,
    meta: SyncMetadata,
    local: dict[str, Any],
) -> None:
    remote_data = mapper.to_remote(local)

    if meta.remote_id:
        records.update(mapper.remote_type, meta.remote_id, remote_data)
    else:
        key = generate_idempotency_key("create", mapper.remote_type, meta.local_record_id)
        created = records.create(mapper.remote_type, remote_data, idempotency_key=key)
        # recorded before the status flip so a failed update never re-creates
        store.update_metadata(meta.id, remote_id=created["id"])

    store.update_metadata(
        meta.id,
        sync_status=SyncStatus.SYNCED,
        last_synced_at=utc_now_iso(),
        error_message=None,
        retry_count=0,
    )


def _mark_error(store: SyncStore, meta: SyncMetadata, message: str) -> None:
    store.update_metadata(meta.id, sync_status=SyncStatus.ERROR, error_message=message)
