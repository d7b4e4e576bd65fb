"""
Typed NetSuite APIs on top of BaseClient.

- RecordClient: REST record CRUD plus server-side transforms
- SuiteQLClient: paginated SQL-like bulk reads (one call per page
  instead of one per record)
"""

from __future__ import annotations

from typing import Any

import structlog

from netsuite_sync.client import BaseClient
from netsuite_sync.config import NetSuiteConfig
from netsuite_sync.errors import ErrorCategory, NetSuiteError
from netsuite_sync.models import NSListResponse, SuiteQLResponse
from netsuite_sync.rate_limiter import RequestPriority

logger = structlog.get_logger(__name__)

IDEMPOTENCY_HEADER = "X-NetSuite-Idempotency-Key"

DEFAULT_PAGE_SIZE = 1000
MAX_QUERY_ROWS = 100_000


def _require_id(result: Any, action: str) -> dict[str, str]:
    if isinstance(result, dict) and result.get("id") is not None:
        return {"id": str(result["id"])}
    raise NetSuiteError(
        f"{action} response did not include a record id",
        ErrorCategory.UNKNOWN,
        raw=result,
    )


class RecordClient:
    """
    REST record API (/services/rest/record/v1).

    Example:
        records = RecordClient(base_client, config)
        created = records.create("customer", {"companyName": "Acme"}, idempotency_key=key)
        records.update("customer", created["id"], {"phone": "555-0100"})
    """

    def __init__(
        self,
        client: BaseClient,
        config: NetSuiteConfig,
        priority: RequestPriority = RequestPriority.NORMAL,
    ):
        self.client = client
        self.config = config
        self.priority = priority

    def get(
        self,
        record_type: str,
        record_id: str,
        fields: list[str] | None = None,
        expand_sub_resources: bool = False,
    ) -> dict[str, Any]:
        """Get a single record by internal id."""
        params = self._build_params(fields=fields, expand_sub_resources=expand_sub_resources)
        return self.client.request(
            "GET",
            self.config.record_url(record_type, record_id),
            params=params or None,
            priority=self.priority,
        )

    def list(
        self,
        record_type: str,
        *,
        fields: list[str] | None = None,
        query: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> NSListResponse:
        """Get one page of records."""
        params = self._build_params(fields=fields, query=query, limit=limit, offset=offset)
        data = self.client.request(
            "GET",
            self.config.record_url(record_type),
            params=params or None,
            priority=self.priority,
        )
        return NSListResponse.model_validate(data or {})

    def list_all(
        self,
        record_type: str,
        *,
        fields: list[str] | None = None,
        query: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> list[dict[str, Any]]:
        """Page through every record until hasMore is false."""
        items: list[dict[str, Any]] = []
        offset = 0

        while True:
            response = self.list(
                record_type, fields=fields, query=query, limit=limit, offset=offset
            )
            items.extend(response.items)

            logger.debug(
                "Fetched record page",
                record_type=record_type,
                offset=offset,
                count=len(response.items),
            )

            if not response.has_more:
                break
            offset += limit

        return items

    def create(
        self,
        record_type: str,
        data: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> dict[str, str]:
        """Create a record; the idempotency key lets NetSuite dedupe retries."""
        headers = {IDEMPOTENCY_HEADER: idempotency_key} if idempotency_key else None
        result = self.client.request(
            "POST",
            self.config.record_url(record_type),
            json_body=data,
            headers=headers,
            priority=self.priority,
        )
        return _require_id(result, f"Create {record_type}")

    def update(self, record_type: str, record_id: str, data: dict[str, Any]) -> None:
        self.client.request(
            "PATCH",
            self.config.record_url(record_type, record_id),
            json_body=data,
            priority=self.priority,
        )

    def delete(self, record_type: str, record_id: str) -> None:
        self.client.request(
            "DELETE",
            self.config.record_url(record_type, record_id),
            priority=self.priority,
        )

    def transform(
        self,
        source_type: str,
        source_id: str,
        target_type: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, str]:
        """Server-side conversion, e.g. sales order -> invoice."""
        url = f"{self.config.record_url(source_type, source_id)}/!transform/{target_type}"
        result = self.client.request(
            "POST",
            url,
            json_body=data,
            priority=self.priority,
        )
        return _require_id(result, f"Transform {source_type} -> {target_type}")

    @staticmethod
    def _build_params(
        fields: list[str] | None = None,
        query: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
        expand_sub_resources: bool = False,
    ) -> dict[str, str]:
        params: dict[str, str] = {}
        if fields:
            params["fields"] = ",".join(fields)
        if query:
            params["q"] = query
        if limit:
            params["limit"] = str(limit)
        if offset:
            params["offset"] = str(offset)
        if expand_sub_resources:
            params["expandSubResources"] = "true"
        return params


class SuiteQLClient:
    """SuiteQL query API (/services/rest/query/v1/suiteql)."""

    def __init__(
        self,
        client: BaseClient,
        config: NetSuiteConfig,
        priority: RequestPriority = RequestPriority.NORMAL,
    ):
        self.client = client
        self.config = config
        self.priority = priority

    def query(self, sql: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> SuiteQLResponse:
        data = self.client.request(
            "POST",
            self.config.suiteql_url,
            params={"limit": str(limit), "offset": str(offset)},
            headers={"Prefer": "transient"},
            json_body={"q": sql},
            priority=self.priority,
        )
        return SuiteQLResponse.model_validate(data or {})

    def query_all(self, sql: str, page_size: int = DEFAULT_PAGE_SIZE) -> list[dict[str, Any]]:
        """All rows for a query, stopping at hasMore=false or 100,000 rows."""
        items: list[dict[str, Any]] = []
        offset = 0

        while offset < MAX_QUERY_ROWS:
            response = self.query(sql, page_size, offset)
            items.extend(response.items)

            if not response.has_more:
                break
            offset += page_size

        if offset >= MAX_QUERY_ROWS:
            logger.warning("SuiteQL row cap reached", max_rows=MAX_QUERY_ROWS, sql=sql[:200])

        return items

    def query_scalar(self, sql: str) -> Any | None:
        """First column of the first row, e.g. for COUNT(*) queries."""
        response = self.query(sql, 1)
        if not response.items:
            return None

        row = response.items[0]
        for key, value in row.items():
            # SuiteQL rows carry a "links" array alongside the columns
            if key != "links":
                return value
        return None
