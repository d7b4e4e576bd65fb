"""
Pytest configuration and fixtures for NetSuite sync tests.
"""

import json
import re
import time
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from netsuite_sync.config import NetSuiteConfig
from netsuite_sync.conflict import parse_timestamp
from netsuite_sync.engine import SyncEngine
from netsuite_sync.models import TokenSet
from netsuite_sync.store import InMemorySyncStore
from netsuite_sync.token_manager import TokenManager


def now_ms() -> int:
    return int(time.time() * 1000)


def future_iso(seconds: int = 5) -> str:
    """A timestamp safely after any watermark written so far."""
    return (datetime.now(timezone.utc) + timedelta(seconds=seconds)).isoformat()


def plain(text: str, key: str, salt: bytes) -> str:
    """Identity cipher so tests don't pay for PBKDF2."""
    return text


class FakeNetSuite:
    """
    Scripted NetSuite account for httpx.MockTransport.

    Serves the token endpoint, SuiteQL (with lastmodifieddate filtering
    and limit/offset paging) and REST record CRUD over in-memory tables.
    Responses queued in `queued` are returned first, in order.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.queued: list[httpx.Response] = []
        self.rows: dict[str, list[dict]] = {}
        self.records: dict[str, dict[str, dict]] = {}
        self.token_calls = 0
        self._next_id = 1000

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    def add_row(self, table: str, row: dict) -> None:
        self.rows.setdefault(table, []).append(dict(row))

    def touch(self, table: str, row_id: str, **fields) -> None:
        """Edit a row remotely, bumping lastmodifieddate."""
        for row in self.rows.get(table, []):
            if str(row["id"]) == str(row_id):
                row.update(fields)
                row["lastmodifieddate"] = future_iso()
                return
        raise KeyError(row_id)

    def requests_to(self, fragment: str) -> list[httpx.Request]:
        return [r for r in self.requests if fragment in r.url.path]

    # -- transport ------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.queued:
            return self.queued.pop(0)

        path = request.url.path
        if path.endswith("/oauth2/token.nl"):
            return self._token()
        if path.endswith("/query/v1/suiteql"):
            return self._suiteql(request)
        if "/record/v1/" in path:
            return self._record(request)
        return httpx.Response(404, json={"title": "Not Found"})

    def _token(self) -> httpx.Response:
        self.token_calls += 1
        return httpx.Response(200, json={
            "access_token": f"access-{self.token_calls + 1}",
            "refresh_token": f"refresh-{self.token_calls + 1}",
            "expires_in": 3600,
            "token_type": "Bearer",
        })

    def _suiteql(self, request: httpx.Request) -> httpx.Response:
        sql = json.loads(request.content)["q"]
        table = re.search(r"FROM (\w+)", sql).group(1)
        rows = self.rows.get(table, [])

        since = re.search(r"lastmodifieddate > '([^']*)'", sql)
        if since:
            cutoff = parse_timestamp(since.group(1))
            rows = [r for r in rows if parse_timestamp(r.get("lastmodifieddate")) > cutoff]

        limit = int(request.url.params.get("limit", 1000))
        offset = int(request.url.params.get("offset", 0))
        page = rows[offset:offset + limit]
        return httpx.Response(200, json={
            "links": [],
            "count": len(page),
            "hasMore": offset + limit < len(rows),
            "offset": offset,
            "totalResults": len(rows),
            "items": [dict(r, links=[]) for r in page],
        })

    def _record(self, request: httpx.Request) -> httpx.Response:
        parts = request.url.path.split("/record/v1/", 1)[1].split("/")
        record_type = parts[0]
        record_id = parts[1] if len(parts) > 1 else None
        table = self.records.setdefault(record_type, {})

        if request.method == "POST" and record_id is None:
            self._next_id += 1
            new_id = str(self._next_id)
            table[new_id] = json.loads(request.content)
            location = f"{request.url.scheme}://{request.url.host}{request.url.path}/{new_id}"
            return httpx.Response(204, headers={"Location": location})

        if record_id not in table:
            return httpx.Response(404, json={"title": f"Record {record_id} not found"})

        if request.method == "PATCH":
            table[record_id].update(json.loads(request.content))
            return httpx.Response(204)
        if request.method == "DELETE":
            del table[record_id]
            return httpx.Response(204)
        return httpx.Response(200, json=dict(table[record_id], id=record_id))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config():
    """Config for a sandbox account."""
    return NetSuiteConfig(
        account_id="1234567_SB1",
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri="https://localhost/callback",
        token_encryption_key="test-encryption-key",
    )


@pytest.fixture
def store():
    return InMemorySyncStore()


@pytest.fixture
def fake_netsuite():
    return FakeNetSuite()


@pytest.fixture
def http_client(fake_netsuite):
    client = fake_netsuite.client()
    yield client
    client.close()


@pytest.fixture
def fresh_tokens():
    return TokenSet(
        access_token="access-1",
        refresh_token="refresh-1",
        expires_in=3600,
        issued_at_ms=now_ms(),
    )


@pytest.fixture
def token_manager(config, store, http_client, fresh_tokens):
    """Token manager holding a freshly issued token set."""
    manager = TokenManager(
        config,
        store,
        http_client=http_client,
        encryptor=plain,
        decryptor=plain,
    )
    manager.store_tokens(fresh_tokens)
    return manager


@pytest.fixture
def engine(config, store, http_client, token_manager):
    """Engine wired to the fake NetSuite, with retries that never sleep."""
    with SyncEngine(
        config,
        store,
        http_client=http_client,
        token_manager=token_manager,
        sleep=lambda seconds: None,
    ) as engine:
        yield engine


@pytest.fixture
def sample_customer_row():
    """Customer row as returned by SuiteQL (lowercase columns)."""
    return {
        "id": "101",
        "companyname": "Acme Construction",
        "email": "ap@acme.example",
        "phone": "555-0100",
        "entityid": "CUST-101",
        "isinactive": "F",
        "datecreated": "2024-01-02T09:00:00Z",
        "lastmodifieddate": "2024-01-15T10:30:00Z",
    }


@pytest.fixture
def sample_customer_rows(sample_customer_row):
    second = dict(
        sample_customer_row,
        id="102",
        companyname="Birch Supply",
        email="orders@birch.example",
        phone="555-0101",
        entityid="CUST-102",
        lastmodifieddate="2024-01-16T08:00:00Z",
    )
    return [sample_customer_row, second]


@pytest.fixture
def sample_invoice_record():
    """Invoice as returned by the REST record API (camelCase, references)."""
    return {
        "id": "5001",
        "tranId": "INV-5001",
        "entity": {"id": "101", "refName": "Acme Construction"},
        "tranDate": "2024-02-01",
        "dueDate": "2024-03-02",
        "status": {"id": "A", "refName": "Open"},
        "total": 1250.0,
        "amountRemaining": 500.0,
        "memo": "Phase 1 framing",
        "lastModifiedDate": "2024-02-03T12:00:00Z",
    }


@pytest.fixture
def sample_vendor_record():
    return {
        "id": "301",
        "companyName": "Ridge Electric",
        "email": "billing@ridge.example",
        "phone": "555-0199",
        "defaultAddress": "12 Ridge Rd\nSpringfield IL 62701",
        "category": {"id": "3", "refName": "Electrical"},
    }
