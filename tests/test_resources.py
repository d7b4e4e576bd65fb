"""
Tests for the REST record and SuiteQL clients.
"""

import json

import httpx
import pytest

from netsuite_sync.client import BaseClient
from netsuite_sync.errors import NetSuiteError
from netsuite_sync.rate_limiter import ConcurrencyLimiter
from netsuite_sync.resources import IDEMPOTENCY_HEADER, MAX_QUERY_ROWS, RecordClient, SuiteQLClient


@pytest.fixture
def base_client(token_manager, http_client):
    return BaseClient(token_manager, ConcurrencyLimiter(15), http_client=http_client, sleep=lambda s: None)


@pytest.fixture
def records(base_client, config):
    return RecordClient(base_client, config)


@pytest.fixture
def suiteql(base_client, config):
    return SuiteQLClient(base_client, config)


class TestRecordClient:
    """Tests for record CRUD."""

    def test_create_sends_idempotency_key(self, records, fake_netsuite):
        created = records.create("customer", {"companyName": "Acme"}, idempotency_key="create:customer:abc:1")

        assert created == {"id": "1001"}
        sent = fake_netsuite.requests[-1]
        assert sent.method == "POST"
        assert sent.headers[IDEMPOTENCY_HEADER] == "create:customer:abc:1"
        assert json.loads(sent.content) == {"companyName": "Acme"}

    def test_create_without_key(self, records, fake_netsuite):
        records.create("vendor", {"companyName": "Ridge"})
        assert IDEMPOTENCY_HEADER not in fake_netsuite.requests[-1].headers

    def test_create_without_id_fails(self, records, fake_netsuite):
        fake_netsuite.queued = [httpx.Response(204)]
        with pytest.raises(NetSuiteError, match="did not include a record id"):
            records.create("customer", {})

    def test_get_with_fields(self, records, fake_netsuite):
        fake_netsuite.records["customer"] = {"9": {"companyName": "Acme"}}

        record = records.get("customer", "9", fields=["companyName", "email"], expand_sub_resources=True)

        assert record["companyName"] == "Acme"
        params = fake_netsuite.requests[-1].url.params
        assert params["fields"] == "companyName,email"
        assert params["expandSubResources"] == "true"

    def test_get_missing_is_not_found(self, records):
        with pytest.raises(NetSuiteError) as exc_info:
            records.get("customer", "404")
        assert exc_info.value.category.value == "not_found"

    def test_update_and_delete(self, records, fake_netsuite):
        fake_netsuite.records["customer"] = {"9": {"companyName": "Acme"}}

        records.update("customer", "9", {"phone": "555"})
        assert fake_netsuite.records["customer"]["9"]["phone"] == "555"
        assert fake_netsuite.requests[-1].method == "PATCH"

        records.delete("customer", "9")
        assert "9" not in fake_netsuite.records["customer"]

    def test_list_all_pages_until_has_more_false(self, records, fake_netsuite):
        pages = [
            httpx.Response(200, json={"items": [{"id": "1"}, {"id": "2"}], "hasMore": True}),
            httpx.Response(200, json={"items": [{"id": "3"}], "hasMore": False}),
        ]
        fake_netsuite.queued = pages

        items = records.list_all("customer", limit=2)

        assert [i["id"] for i in items] == ["1", "2", "3"]
        offsets = [r.url.params.get("offset") for r in fake_netsuite.requests]
        assert offsets == [None, "2"]

    def test_list_page_with_fields_and_query(self, records, fake_netsuite):
        fake_netsuite.queued = [
            httpx.Response(200, json={"items": [{"id": "1"}], "hasMore": False, "totalResults": 1})
        ]

        page = records.list("customer", fields=["companyName"], query='email START_WITH "ap"', limit=50)

        assert page.items == [{"id": "1"}]
        assert page.total_results == 1
        params = fake_netsuite.requests[-1].url.params
        assert params["fields"] == "companyName"
        assert params["q"] == 'email START_WITH "ap"'
        assert params["limit"] == "50"

    def test_list_all_forwards_fields(self, records, fake_netsuite):
        fake_netsuite.queued = [httpx.Response(200, json={"items": [{"id": "1"}], "hasMore": False})]

        items = records.list_all("customer", fields=["companyName", "email"], limit=25)

        assert items == [{"id": "1"}]
        params = fake_netsuite.requests[-1].url.params
        assert params["fields"] == "companyName,email"
        assert params["limit"] == "25"

    def test_transform(self, records, fake_netsuite):
        fake_netsuite.queued = [
            httpx.Response(204, headers={"Location": "https://x/record/v1/invoice/77"})
        ]

        result = records.transform("salesOrder", "5", "invoice")

        assert result == {"id": "77"}
        assert fake_netsuite.requests[-1].url.path.endswith("/salesOrder/5/!transform/invoice")


class TestSuiteQLClient:
    """Tests for paginated queries."""

    def test_query_sends_prefer_transient(self, suiteql, fake_netsuite, sample_customer_rows):
        for row in sample_customer_rows:
            fake_netsuite.add_row("customer", row)

        response = suiteql.query("SELECT id FROM customer", limit=10)

        assert len(response.items) == 2
        assert response.has_more is False
        sent = fake_netsuite.requests[-1]
        assert sent.headers["Prefer"] == "transient"
        assert sent.url.params["limit"] == "10"
        assert json.loads(sent.content) == {"q": "SELECT id FROM customer"}

    def test_query_all_pages(self, suiteql, fake_netsuite):
        for i in range(5):
            fake_netsuite.add_row("customer", {"id": str(i), "lastmodifieddate": "2024-01-01T00:00:00Z"})

        rows = suiteql.query_all("SELECT id FROM customer", page_size=2)

        assert [r["id"] for r in rows] == ["0", "1", "2", "3", "4"]
        assert len(fake_netsuite.requests_to("suiteql")) == 3

    def test_query_all_stops_at_row_cap(self, suiteql, fake_netsuite):
        page = {"items": [{"id": "x"}], "hasMore": True}
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            return httpx.Response(200, json=page)

        suiteql.client._client = httpx.Client(transport=httpx.MockTransport(handler))

        rows = suiteql.query_all("SELECT id FROM customer", page_size=MAX_QUERY_ROWS // 4)

        assert calls["n"] == 4
        assert len(rows) == 4

    def test_query_scalar_skips_links(self, suiteql, fake_netsuite):
        fake_netsuite.queued = [
            httpx.Response(200, json={"items": [{"links": [], "total": 42}], "hasMore": False})
        ]
        assert suiteql.query_scalar("SELECT COUNT(*) AS total FROM customer") == 42

    def test_query_scalar_empty(self, suiteql, fake_netsuite):
        fake_netsuite.queued = [httpx.Response(200, json={"items": [], "hasMore": False})]
        assert suiteql.query_scalar("SELECT COUNT(*) FROM customer") is None
