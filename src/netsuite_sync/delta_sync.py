"""
Delta sync: pull NetSuite records changed since the last completed pull.

Rows are fetched in bulk through SuiteQL, translated by the entity
mapper and written through the host's `upsert_local` callback. Sync
metadata tracks which local row each remote id maps to, and rows with
unpushed local changes go through the conflict resolver first.
"""

from dataclasses import dataclass, field as dataclass_field
from typing import Any

import structlog

from netsuite_sync.conflict import Resolution, resolve_conflict
from netsuite_sync.mappers import EntityMapper, field
from netsuite_sync.models import ConflictStrategy, SyncMetadata, SyncStatus, utc_now_iso
from netsuite_sync.resources import SuiteQLClient
from netsuite_sync.store import SyncStore, UpsertLocal

logger = structlog.get_logger(__name__)


@dataclass
class DeltaSyncResult:
    pulled: int = 0
    created: int = 0
    updated: int = 0
    conflicts: int = 0
    errors: list[dict[str, str]] = dataclass_field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pulled": self.pulled,
            "created": self.created,
            "updated": self.updated,
            "conflicts": self.conflicts,
            "errors": list(self.errors),
        }


def pull_delta(
    store: SyncStore,
    suiteql: SuiteQLClient,
    mapper: EntityMapper,
    last_sync_time: str | None,
    conflict_strategy: ConflictStrategy | str,
    upsert_local: UpsertLocal,
) -> DeltaSyncResult:
    """
    Pull remote changes for one entity type.

    Without a watermark every record is selected. A failure on one
    record is logged and collected in `errors`; the rest of the batch
    still runs.
    """
    result = DeltaSyncResult()
    log = logger.bind(remote_type=mapper.remote_type, since=last_sync_time)

    query = (
        mapper.build_delta_query(last_sync_time)
        if last_sync_time
        else mapper.build_select_query()
    )
    remote_records = suiteql.query_all(query)
    result.pulled = len(remote_records)

    log.info("Pulled remote records", count=result.pulled)

    for remote in remote_records:
        remote_id = str(remote.get("id"))
        try:
            _apply_remote(store, mapper, remote, remote_id, conflict_strategy, upsert_local, result)
        except Exception as e:
            result.errors.append({"remote_id": remote_id, "error": str(e) or type(e).__name__})
            log.warning("Failed to apply remote record", remote_id=remote_id, error=str(e))

    log.info(
        "Delta pull complete",
        created=result.created,
        updated=result.updated,
        conflicts=result.conflicts,
        errors=len(result.errors),
    )
    return result


def _apply_remote(
    store: SyncStore,
    mapper: EntityMapper,
    remote: dict[str, Any],
    remote_id: str,
    conflict_strategy: ConflictStrategy | str,
    upsert_local: UpsertLocal,
    result: DeltaSyncResult,
) -> None:
    local_data = mapper.to_local(remote)
    remote_modified = field(remote, mapper.last_modified_field)
    remote_modified = str(remote_modified) if remote_modified else None

    meta = store.find_metadata(mapper.local_table, remote_id)

    if meta is None:
        local_id = upsert_local(None, local_data)
        now = utc_now_iso()
        store.insert_metadata(SyncMetadata(
            local_table=mapper.local_table,
            local_record_id=local_id,
            remote_record_type=mapper.remote_type,
            remote_id=remote_id,
            last_synced_at=now,
            last_modified_remote=remote_modified,
            sync_status=SyncStatus.SYNCED,
        ))
        result.created += 1
        return

    if meta.sync_status == SyncStatus.CONFLICT:
        # still awaiting manual resolution: keep the newest remote side
        payload = dict(meta.conflict_payload or {})
        payload.update(remote=local_data, remote_modified=remote_modified)
        store.update_metadata(
            meta.id,
            conflict_payload=payload,
            last_modified_remote=remote_modified,
        )
        result.conflicts += 1
        return

    if meta.sync_status == SyncStatus.PENDING_PUSH:
        conflict = resolve_conflict(conflict_strategy, meta.last_modified_local, remote_modified)

        if conflict.resolution == Resolution.FLAG_MANUAL:
            store.update_metadata(
                meta.id,
                sync_status=SyncStatus.CONFLICT,
                conflict_payload={
                    "remote": local_data,
                    "reason": conflict.reason,
                    "remote_modified": remote_modified,
                },
                last_modified_remote=remote_modified,
            )
            result.conflicts += 1
            return

        if conflict.resolution == Resolution.USE_LOCAL:
            logger.debug("Keeping local changes", remote_id=remote_id, reason=conflict.reason)
            return

    upsert_local(meta.local_record_id, local_data)
    store.update_metadata(
        meta.id,
        sync_status=SyncStatus.SYNCED,
        last_synced_at=utc_now_iso(),
        last_modified_remote=remote_modified,
        error_message=None,
        retry_count=0,
    )
    result.updated += 1
