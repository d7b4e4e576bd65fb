"""
Sync engine: orchestrates pulls and pushes for one NetSuite account.

Each engine builds its own token manager, limiter, transport and typed
clients, so two engines (two accounts, or a test and production) never
share state.
"""

import random
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

import httpx
import structlog

from netsuite_sync.conflict import Resolution
from netsuite_sync.client import BaseClient
from netsuite_sync.config import NetSuiteConfig
from netsuite_sync.delta_sync import DeltaSyncResult, pull_delta
from netsuite_sync.errors import ConflictResolutionError, SyncStateError
from netsuite_sync.mappers import EntityMapper
from netsuite_sync.models import (
    ConflictStrategy,
    RunStatus,
    SyncDirection,
    SyncMetadata,
    SyncRunLog,
    SyncStatus,
    TokenSet,
    utc_now_iso,
)
from netsuite_sync.oauth import build_authorize_url, exchange_code, generate_state
from netsuite_sync.push import PushResult, push_pending_changes
from netsuite_sync.rate_limiter import ConcurrencyLimiter, RequestPriority
from netsuite_sync.resources import RecordClient, SuiteQLClient
from netsuite_sync.store import GetLocalRecord, SyncStore, UpsertLocal
from netsuite_sync.token_manager import TokenManager

logger = structlog.get_logger(__name__)

# per-record errors copied into a run's error_summary
ERROR_SUMMARY_LIMIT = 5


@dataclass
class SyncRunResult:
    direction: SyncDirection
    record_type: str
    run_id: str
    duration_ms: int
    pull: DeltaSyncResult | None = None
    push: PushResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "direction": self.direction.value,
            "record_type": self.record_type,
            "run_id": self.run_id,
            "duration_ms": self.duration_ms,
            "pull": self.pull.to_dict() if self.pull else None,
            "push": self.push.to_dict() if self.push else None,
        }


def _summarize_errors(errors: list[dict[str, str]]) -> str | None:
    if not errors:
        return None
    lines = [
        f"{e.get('remote_id') or e.get('local_id')}: {e['error']}"
        for e in errors[:ERROR_SUMMARY_LIMIT]
    ]
    if len(errors) > ERROR_SUMMARY_LIMIT:
        lines.append(f"... and {len(errors) - ERROR_SUMMARY_LIMIT} more")
    return "\n".join(lines)


class SyncEngine:
    """
    Pull/push orchestration with run history and conflict handling.

    The engine is entity-agnostic: callers pass an EntityMapper plus the
    callbacks that read and write their local tables.

    Example:
        store = JsonFileSyncStore()
        upsert_local, get_local = store.local_callbacks("customers")

        with SyncEngine(NetSuiteConfig.from_env(), store) as engine:
            result = engine.full_sync(CustomerMapper(), upsert_local, get_local)
    """

    def __init__(
        self,
        config: NetSuiteConfig,
        store: SyncStore,
        *,
        conflict_strategy: ConflictStrategy | str | None = None,
        http_client: httpx.Client | None = None,
        token_manager: TokenManager | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        """
        Initialize the engine.

        Args:
            config: Account configuration
            store: Persistence for tokens, sync metadata and run logs
            conflict_strategy: Overrides config.conflict_strategy
            http_client: Shared httpx client for API and token calls
            token_manager: Pre-built token manager (defaults to one over `store`)
            sleep: Blocking sleep between retries (seconds)
            clock: Monotonic clock for the circuit breaker (seconds)
        """
        self.config = config
        self.store = store
        self.conflict_strategy = ConflictStrategy(conflict_strategy or config.conflict_strategy)
        self._http_client = http_client

        self.token_manager = token_manager or TokenManager(config, store, http_client=http_client)
        self.limiter = ConcurrencyLimiter(config.concurrency_limit)
        self.client = BaseClient(
            self.token_manager,
            self.limiter,
            http_client=http_client,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
            sleep=sleep,
            clock=clock,
            rng=rng,
        )

        # batch sync yields to interactive requests
        self.records = RecordClient(self.client, config, priority=RequestPriority.LOW)
        self.suiteql = SuiteQLClient(self.client, config, priority=RequestPriority.LOW)

        self._log = logger.bind(account_id=config.account_id)

    def __enter__(self) -> "SyncEngine":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        self.client.close()

    # -------------------------------------------------------------------------
    # Sync runs
    # -------------------------------------------------------------------------

    def pull(self, mapper: EntityMapper, upsert_local: UpsertLocal) -> SyncRunResult:
        """
        Pull records changed since the last completed pull of this entity.

        Raises whatever aborted the run (after marking the run failed);
        per-record errors are reported in the result instead.
        """
        start = time.monotonic()

        # one state write per run, not per record
        with self.store.batch():
            run = self._start_run(mapper, SyncDirection.PULL)

            try:
                last_sync = self.store.last_completed_at(mapper.remote_type, SyncDirection.PULL)
                result = pull_delta(
                    self.store,
                    self.suiteql,
                    mapper,
                    last_sync,
                    self.conflict_strategy,
                    upsert_local,
                )
            except Exception as e:
                self._fail_run(run, e)
                raise

            # records in result.errors are not retried until they change remotely again
            self._complete_run(run, result.pulled, len(result.errors), result.errors)

        return SyncRunResult(
            direction=SyncDirection.PULL,
            record_type=mapper.remote_type,
            run_id=run.id,
            duration_ms=round((time.monotonic() - start) * 1000),
            pull=result,
        )

    def push(self, mapper: EntityMapper, get_local_record: GetLocalRecord) -> SyncRunResult:
        """Push every pending local change for this entity."""
        start = time.monotonic()

        with self.store.batch():
            run = self._start_run(mapper, SyncDirection.PUSH)

            try:
                result = push_pending_changes(self.store, self.records, mapper, get_local_record)
            except Exception as e:
                self._fail_run(run, e)
                raise

            self._complete_run(run, result.pushed, result.failed, result.errors)

        return SyncRunResult(
            direction=SyncDirection.PUSH,
            record_type=mapper.remote_type,
            run_id=run.id,
            duration_ms=round((time.monotonic() - start) * 1000),
            push=result,
        )

    def full_sync(
        self,
        mapper: EntityMapper,
        upsert_local: UpsertLocal,
        get_local_record: GetLocalRecord,
    ) -> dict[str, SyncRunResult]:
        """Pull, then push. Pull always runs first."""
        pull_result = self.pull(mapper, upsert_local)
        push_result = self.push(mapper, get_local_record)
        return {"pull": pull_result, "push": push_result}

    def _start_run(self, mapper: EntityMapper, direction: SyncDirection) -> SyncRunLog:
        run = SyncRunLog(entity_type=mapper.remote_type, direction=direction)
        self.store.insert_run(run)
        self._log.info("Sync run started", run_id=run.id, entity=mapper.remote_type, direction=direction.value)
        return run

    def _complete_run(
        self,
        run: SyncRunLog,
        processed: int,
        failed: int,
        errors: list[dict[str, str]],
    ) -> None:
        self.store.update_run(
            run.id,
            status=RunStatus.COMPLETED,
            records_processed=processed,
            records_failed=failed,
            error_summary=_summarize_errors(errors),
            completed_at=utc_now_iso(),
        )
        self._log.info(
            "Sync run completed",
            run_id=run.id,
            entity=run.entity_type,
            direction=run.direction.value,
            processed=processed,
            failed=failed,
        )

    def _fail_run(self, run: SyncRunLog, error: Exception) -> None:
        self.store.update_run(
            run.id,
            status=RunStatus.FAILED,
            error_summary=str(error) or type(error).__name__,
            completed_at=utc_now_iso(),
        )
        self._log.error(
            "Sync run failed",
            run_id=run.id,
            entity=run.entity_type,
            direction=run.direction.value,
            error=str(error),
        )

    # -------------------------------------------------------------------------
    # History and record state
    # -------------------------------------------------------------------------

    def get_sync_history(self, limit: int = 20) -> list[SyncRunLog]:
        return self.store.list_runs(limit)

    def get_conflicts(self) -> list[SyncMetadata]:
        return self.store.list_metadata(status=SyncStatus.CONFLICT)

    def resolve_conflict(
        self,
        meta_id: str,
        resolution: Resolution | str,
        upsert_local: UpsertLocal | None = None,
    ) -> SyncMetadata:
        """
        Settle a flagged conflict.

        use_local queues the local copy for the next push. use_remote writes
        the stored remote data through `upsert_local` and marks the row
        synced. Either way the conflict payload is cleared.

        Raises:
            ConflictResolutionError: Unknown id, or the row is not in conflict
            ValueError: Bad resolution, or use_remote without upsert_local
                while remote data is stored
        """
        resolution = Resolution(resolution)
        if resolution == Resolution.FLAG_MANUAL:
            raise ValueError("Resolution must be use_local or use_remote")

        meta = self.store.get_metadata(meta_id)
        if meta is None:
            raise ConflictResolutionError(f"Sync metadata {meta_id} not found")
        if not meta.is_conflict:
            raise ConflictResolutionError(
                f"Sync metadata {meta_id} is not in conflict (status: {meta.sync_status.value})"
            )

        if resolution == Resolution.USE_LOCAL:
            updated = self.store.update_metadata(
                meta_id,
                sync_status=SyncStatus.PENDING_PUSH,
                conflict_payload=None,
            )
        else:
            remote_data = (meta.conflict_payload or {}).get("remote")
            if remote_data:
                if upsert_local is None:
                    raise ValueError("upsert_local is required to apply the stored remote data")
                upsert_local(meta.local_record_id, remote_data)

            updated = self.store.update_metadata(
                meta_id,
                sync_status=SyncStatus.SYNCED,
                conflict_payload=None,
                last_synced_at=utc_now_iso(),
                error_message=None,
                retry_count=0,
            )

        self._log.info("Resolved conflict", meta_id=meta_id, resolution=resolution.value)
        return updated

    def mark_pending_push(
        self,
        mapper: EntityMapper,
        local_record_id: str,
        modified_at: str | datetime | None = None,
    ) -> SyncMetadata:
        """
        Record a local change so the next push sends it.

        Rows in conflict keep their status; only the local timestamp moves.
        """
        if isinstance(modified_at, datetime):
            modified_at = modified_at.isoformat()
        modified_at = modified_at or utc_now_iso()

        meta = self.store.find_metadata_by_local(mapper.local_table, local_record_id)
        if meta is None:
            meta = SyncMetadata(
                local_table=mapper.local_table,
                local_record_id=local_record_id,
                remote_record_type=mapper.remote_type,
                last_modified_local=modified_at,
                sync_status=SyncStatus.PENDING_PUSH,
            )
            self.store.insert_metadata(meta)
            return meta

        if meta.is_conflict:
            return self.store.update_metadata(meta.id, last_modified_local=modified_at)

        return self.store.update_metadata(
            meta.id,
            sync_status=SyncStatus.PENDING_PUSH,
            last_modified_local=modified_at,
            error_message=None,
            retry_count=0,
        )

    def requeue(self, meta_id: str) -> SyncMetadata:
        """Move a row parked in `error` back to pending_push."""
        meta = self.store.get_metadata(meta_id)
        if meta is None:
            raise SyncStateError(f"Sync metadata {meta_id} not found")
        if meta.sync_status != SyncStatus.ERROR:
            raise SyncStateError(
                f"Sync metadata {meta_id} is not in error (status: {meta.sync_status.value})"
            )
        return self.store.update_metadata(
            meta_id,
            sync_status=SyncStatus.PENDING_PUSH,
            retry_count=0,
            error_message=None,
        )

    def unlink(self, meta_id: str) -> bool:
        """Forget the link between a local record and its NetSuite record."""
        removed = self.store.delete_metadata(meta_id)
        if removed:
            self._log.info("Unlinked record", meta_id=meta_id)
        return removed

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    def connection_status(self) -> dict[str, Any]:
        return {
            "configured": True,
            "connected": self.token_manager.has_tokens(),
            "account_id": self.config.account_id,
        }

    def authorize_url(self, state: str | None = None) -> tuple[str, str]:
        """Return (authorize URL, state) for the OAuth redirect."""
        state = state or generate_state()
        return build_authorize_url(self.config, state), state

    def complete_authorization(self, code: str) -> TokenSet:
        tokens = exchange_code(self.config, code, self._http_client)
        self.token_manager.store_tokens(tokens)
        self.client.reset_circuit_breaker()
        return tokens

    def disconnect(self) -> None:
        self.token_manager.clear_tokens()

    def health_check(self) -> dict[str, Any]:
        return self.client.health_check(self.config.suiteql_url)

    def check_connection(self) -> int:
        """Cheap authenticated round trip; returns the customer count."""
        suiteql = SuiteQLClient(self.client, self.config, priority=RequestPriority.HIGH)
        count = suiteql.query_scalar("SELECT COUNT(*) AS total FROM customer")
        return int(count or 0)

    def get_stats(self) -> dict[str, Any]:
        """Get engine statistics for monitoring."""
        by_status = {
            status.value: len(self.store.list_metadata(status=status))
            for status in SyncStatus
        }
        return {
            "client": self.client.get_stats(),
            "token_refreshes": self.token_manager.refresh_count,
            "sync_status": by_status,
        }
