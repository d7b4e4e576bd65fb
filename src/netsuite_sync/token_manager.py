"""
OAuth token lifecycle for one NetSuite account.

Tokens are cached in memory for the lifetime of the engine and persisted
encrypted in the SyncStore. Access tokens are refreshed proactively at
80% of their lifetime so they never expire mid-request.
"""

import threading
import time
from typing import Callable

import httpx
import structlog

from netsuite_sync import crypto
from netsuite_sync.config import NetSuiteConfig
from netsuite_sync.errors import NoTokensError
from netsuite_sync.models import AuthRecord, TokenSet
from netsuite_sync.oauth import refresh_access_token
from netsuite_sync.store import SyncStore

logger = structlog.get_logger(__name__)

REFRESH_THRESHOLD = 0.8

Encryptor = Callable[[str, str, bytes], str]
Refresher = Callable[[NetSuiteConfig, str, httpx.Client | None], TokenSet]


def _now_ms() -> int:
    return int(time.time() * 1000)


class TokenManager:
    """
    Loads, caches, refreshes and persists OAuth tokens.

    Refreshes are serialized: when several threads find the token due at
    the same time, one refreshes and the others wait and reuse the result.

    Example:
        manager = TokenManager(config, store)
        manager.store_tokens(exchange_code(config, code))
        token = manager.get_access_token()
    """

    def __init__(
        self,
        config: NetSuiteConfig,
        store: SyncStore,
        http_client: httpx.Client | None = None,
        clock: Callable[[], int] = _now_ms,
        encryptor: Encryptor = crypto.encrypt,
        decryptor: Encryptor = crypto.decrypt,
        refresher: Refresher = refresh_access_token,
        salt: bytes = crypto.TOKEN_SALT,
    ):
        self.config = config
        self.store = store
        self._http_client = http_client
        self._clock = clock
        self._encrypt = encryptor
        self._decrypt = decryptor
        self._refresher = refresher
        self._salt = salt

        self._cached: TokenSet | None = None
        self._stale = False
        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()

        self.refresh_count = 0
        self._log = logger.bind(account_id=config.account_id)

    def get_access_token(self) -> str:
        """
        Return a valid access token, refreshing first if it is due.

        Raises:
            NoTokensError: If OAuth setup was never completed
            OAuthError: If the refresh is rejected
        """
        tokens = self._require_tokens()
        if not self._should_refresh(tokens):
            return tokens.access_token

        with self._refresh_lock:
            # Another thread may have refreshed while we waited
            tokens = self._require_tokens()
            if self._should_refresh(tokens):
                tokens = self._refresh(tokens.refresh_token)
            return tokens.access_token

    def store_tokens(self, tokens: TokenSet) -> None:
        """Encrypt and persist a token set, replacing any previous one."""
        key = self.config.token_encryption_key
        record = AuthRecord(
            account_id=self.config.account_id,
            access_token_encrypted=self._encrypt(tokens.access_token, key, self._salt),
            refresh_token_encrypted=self._encrypt(tokens.refresh_token, key, self._salt),
            expires_in=tokens.expires_in,
            token_type=tokens.token_type,
            issued_at_ms=tokens.issued_at_ms,
        )
        self.store.upsert_auth(record)

        with self._lock:
            self._cached = tokens
            self._stale = False

        self._log.info("Stored tokens", expires_in=tokens.expires_in)

    def has_tokens(self) -> bool:
        with self._lock:
            if self._cached is not None:
                return True
        return self.store.get_auth(self.config.account_id) is not None

    def clear_tokens(self) -> None:
        self.store.delete_auth(self.config.account_id)
        with self._lock:
            self._cached = None
            self._stale = False
        self._log.info("Cleared tokens")

    def mark_stale(self) -> None:
        """Force a refresh on the next get_access_token() (e.g. after a 401)."""
        with self._lock:
            self._stale = True

    def should_refresh(self) -> bool:
        tokens = self._load_tokens()
        return tokens is not None and self._should_refresh(tokens)

    def _should_refresh(self, tokens: TokenSet) -> bool:
        with self._lock:
            if self._stale:
                return True
        return tokens.elapsed_fraction(self._clock()) >= REFRESH_THRESHOLD

    def _refresh(self, refresh_token: str) -> TokenSet:
        self._log.info("Refreshing access token")
        tokens = self._refresher(self.config, refresh_token, self._http_client)
        self.store_tokens(tokens)
        self.refresh_count += 1
        return tokens

    def _require_tokens(self) -> TokenSet:
        tokens = self._load_tokens()
        if tokens is None:
            raise NoTokensError(
                "No NetSuite tokens found. Complete OAuth setup first "
                "(netsuite-sync authorize)."
            )
        return tokens

    def _load_tokens(self) -> TokenSet | None:
        with self._lock:
            if self._cached is not None:
                return self._cached

        record = self.store.get_auth(self.config.account_id)
        if record is None:
            return None

        key = self.config.token_encryption_key
        tokens = TokenSet(
            access_token=self._decrypt(record.access_token_encrypted, key, self._salt),
            refresh_token=self._decrypt(record.refresh_token_encrypted, key, self._salt),
            expires_in=record.expires_in,
            token_type=record.token_type,
            issued_at_ms=record.issued_at_ms,
        )

        with self._lock:
            if self._cached is None:
                self._cached = tokens
            return self._cached
