"""
Pydantic models for NetSuite sync state and API responses.

These models cover the three kinds of data the engine handles:
- OAuth tokens (in memory and encrypted at rest)
- Sync bookkeeping rows (per-record metadata and run history)
- Paged responses from the REST record and SuiteQL APIs
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


class SyncStatus(str, Enum):
    """Per-record synchronization state."""

    SYNCED = "synced"
    PENDING_PUSH = "pending_push"
    CONFLICT = "conflict"
    ERROR = "error"


class SyncDirection(str, Enum):
    PULL = "pull"
    PUSH = "push"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ConflictStrategy(str, Enum):
    """Which side wins when both copies changed since the last sync."""

    NEWEST_WINS = "newest_wins"
    REMOTE_WINS = "remote_wins"
    LOCAL_WINS = "local_wins"
    MANUAL = "manual"


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


class TokenSet(BaseModel):
    """OAuth credentials for one NetSuite account."""

    access_token: str
    refresh_token: str
    expires_in: int = 3600
    token_type: str = "Bearer"
    issued_at_ms: int

    def elapsed_fraction(self, now_ms: int) -> float:
        """Fraction of the token lifetime already used."""
        lifetime_ms = self.expires_in * 1000
        if lifetime_ms <= 0:
            return 1.0
        return (now_ms - self.issued_at_ms) / lifetime_ms


class AuthRecord(BaseModel):
    """Encrypted token row, one per account."""

    id: str = Field(default_factory=new_id)
    account_id: str
    access_token_encrypted: str
    refresh_token_encrypted: str
    expires_in: int
    token_type: str
    issued_at_ms: int
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)


# ---------------------------------------------------------------------------
# Sync bookkeeping
# ---------------------------------------------------------------------------


class SyncMetadata(BaseModel):
    """Links one local record to its NetSuite counterpart."""

    id: str = Field(default_factory=new_id)
    local_table: str
    local_record_id: str
    remote_record_type: str
    remote_id: str | None = None
    last_synced_at: str | None = None
    last_modified_remote: str | None = None
    last_modified_local: str | None = None
    sync_status: SyncStatus = SyncStatus.SYNCED
    conflict_payload: dict[str, Any] | None = None
    error_message: str | None = None
    retry_count: int = 0
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)

    @property
    def is_conflict(self) -> bool:
        return self.sync_status == SyncStatus.CONFLICT


class SyncRunLog(BaseModel):
    """One pull or push run for one entity type."""

    id: str = Field(default_factory=new_id)
    sync_type: str = "delta"
    entity_type: str
    direction: SyncDirection
    status: RunStatus = RunStatus.RUNNING
    records_processed: int = 0
    records_failed: int = 0
    started_at: str = Field(default_factory=utc_now_iso)
    completed_at: str | None = None
    error_summary: str | None = None


# ---------------------------------------------------------------------------
# API response wrappers
# ---------------------------------------------------------------------------


class NSLink(BaseModel):
    rel: str
    href: str


class NSPagedResponse(BaseModel):
    """Common shape of paged NetSuite responses."""

    model_config = ConfigDict(populate_by_name=True)

    links: list[NSLink] = Field(default_factory=list)
    count: int = 0
    has_more: bool = Field(False, alias="hasMore")
    total_results: int | None = Field(None, alias="totalResults")
    offset: int = 0
    items: list[dict[str, Any]] = Field(default_factory=list)


class NSListResponse(NSPagedResponse):
    """Response from GET /record/v1/{type}"""


class SuiteQLResponse(NSPagedResponse):
    """Response from POST /query/v1/suiteql"""
