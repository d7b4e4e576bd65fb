"""
NetSuite Sync - two-way delta sync between a local system of record and NetSuite

Keeps local customers, vendors, projects, invoices and vendor bills
consistent with a NetSuite account over its rate-limited REST and
SuiteQL APIs.

Features:
- OAuth 2.0 with encrypted token storage and proactive refresh
- Shared, adaptive concurrency budget with request priorities
- Retries with backoff, error classification and a circuit breaker
- Delta pulls, idempotent pushes and explicit conflict resolution

Quick Start:
    pip install netsuite-sync
    netsuite-sync setup              # Interactive configuration
    netsuite-sync authorize          # Connect your account
    netsuite-sync sync customer      # Pull then push customers
"""

from netsuite_sync.engine import SyncEngine, SyncRunResult
from netsuite_sync.config import NetSuiteConfig
from netsuite_sync.client import BaseClient
from netsuite_sync.resources import RecordClient, SuiteQLClient
from netsuite_sync.errors import (
    CircuitOpenError,
    ConfigurationError,
    ConflictResolutionError,
    ErrorCategory,
    NetSuiteError,
    NetSuiteSyncError,
    NoTokensError,
    OAuthError,
    SyncStateError,
    classify_error,
)
from netsuite_sync.models import (
    ConflictStrategy,
    SyncMetadata,
    SyncRunLog,
    SyncStatus,
    TokenSet,
)
from netsuite_sync.mappers import (
    MAPPERS,
    CustomerMapper,
    EntityMapper,
    InvoiceMapper,
    ProjectMapper,
    VendorBillMapper,
    VendorMapper,
    get_mapper,
)
from netsuite_sync.conflict import ConflictResult, Resolution, resolve_conflict
from netsuite_sync.delta_sync import DeltaSyncResult, pull_delta
from netsuite_sync.push import PushResult, generate_idempotency_key, push_pending_changes
from netsuite_sync.store import InMemorySyncStore, JsonFileSyncStore, SyncStore
from netsuite_sync.token_manager import TokenManager
from netsuite_sync.rate_limiter import ConcurrencyLimiter, RequestPriority, RequestQueue

__version__ = "1.0.0"
__all__ = [
    # Engine
    "SyncEngine",
    "SyncRunResult",
    "NetSuiteConfig",

    # API clients
    "BaseClient",
    "RecordClient",
    "SuiteQLClient",

    # Errors
    "CircuitOpenError",
    "ConfigurationError",
    "ConflictResolutionError",
    "ErrorCategory",
    "NetSuiteError",
    "NetSuiteSyncError",
    "NoTokensError",
    "OAuthError",
    "SyncStateError",
    "classify_error",

    # Models
    "ConflictStrategy",
    "SyncMetadata",
    "SyncRunLog",
    "SyncStatus",
    "TokenSet",

    # Mapping
    "MAPPERS",
    "CustomerMapper",
    "EntityMapper",
    "InvoiceMapper",
    "ProjectMapper",
    "VendorBillMapper",
    "VendorMapper",
    "get_mapper",

    # Sync
    "ConflictResult",
    "Resolution",
    "resolve_conflict",
    "DeltaSyncResult",
    "pull_delta",
    "PushResult",
    "generate_idempotency_key",
    "push_pending_changes",

    # State
    "InMemorySyncStore",
    "JsonFileSyncStore",
    "SyncStore",
    "TokenManager",

    # Rate limiting
    "ConcurrencyLimiter",
    "RequestPriority",
    "RequestQueue",
]
