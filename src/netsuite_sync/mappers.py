"""
Bidirectional field mapping between local records and NetSuite records.

Each entity gets one small mapper object implementing EntityMapper. The
per-entity knowledge (field names, status heuristics) lives in the
mapper; SuiteQL query construction is shared through SuiteQLQuery.

Local records are plain snake_case dicts. Remote records may arrive from
the REST record API (camelCase, references as {"id", "refName"}) or from
SuiteQL (lowercase column names, references as bare ids), so readers
accept both.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

LAST_MODIFIED_FIELD = "lastmodifieddate"


@runtime_checkable
class EntityMapper(Protocol):
    """What the sync engine needs to know about one entity type."""

    remote_type: str
    local_table: str
    query_fields: tuple[str, ...]
    last_modified_field: str

    def to_remote(self, local: dict[str, Any]) -> dict[str, Any]:
        ...

    def to_local(self, remote: dict[str, Any]) -> dict[str, Any]:
        ...

    def build_select_query(
        self,
        where: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> str:
        ...

    def build_delta_query(self, since: str | datetime) -> str:
        ...


@dataclass(frozen=True)
class SuiteQLQuery:
    """SuiteQL SELECT builder shared by all mappers."""

    table: str
    fields: tuple[str, ...]
    last_modified_field: str = LAST_MODIFIED_FIELD

    def select(
        self,
        where: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> str:
        sql = f"SELECT {', '.join(self.fields)} FROM {self.table}"
        if where:
            sql += f" WHERE {where}"
        if limit:
            sql += f" FETCH NEXT {limit} ROWS ONLY"
        if offset:
            sql += f" OFFSET {offset} ROWS"
        return sql

    def delta(self, since: str | datetime) -> str:
        """Rows modified strictly after `since`."""
        if isinstance(since, datetime):
            since = since.isoformat()
        escaped = since.replace("'", "''")
        return self.select(f"{self.last_modified_field} > '{escaped}'")


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def field(remote: dict[str, Any], name: str) -> Any:
    """Read a REST camelCase field, falling back to its SuiteQL lowercase column."""
    if name in remote:
        return remote[name]
    return remote.get(name.lower())


def ref_name(value: Any) -> str | None:
    """Display name of a reference field ({"id", "refName"} or a bare value)."""
    if value is None:
        return None
    if isinstance(value, dict):
        name = value.get("refName")
        return str(name) if name else None
    return str(value)


def ref_id(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, dict):
        ref = value.get("id")
        return str(ref) if ref is not None else None
    return str(value)


def to_float(value: Any) -> float:
    if value in (None, ""):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def compact(data: dict[str, Any]) -> dict[str, Any]:
    """Drop None values so partial updates don't blank remote fields."""
    return {k: v for k, v in data.items() if v is not None}


def _paid_open_voided(status: str | None, open_value: str, default: str) -> str:
    if not status:
        return default
    normalized = status.lower()
    if "paid" in normalized and "not" not in normalized:
        return "paid"
    if "open" in normalized:
        return open_value
    if "voided" in normalized:
        return "voided"
    return default


def map_invoice_status(status: str | None) -> str:
    """'Paid In Full' -> paid, 'Open' -> sent, 'Voided' -> voided, else draft."""
    return _paid_open_voided(status, open_value="sent", default="draft")


def map_bill_status(status: str | None) -> str:
    return _paid_open_voided(status, open_value="approved", default="pending")


def map_job_status(status: str | None) -> str:
    if not status:
        return "OPEN"
    normalized = status.lower()
    if "closed" in normalized or "complete" in normalized:
        return "CLOSED"
    if "progress" in normalized or "active" in normalized:
        return "IN_PROGRESS"
    return "OPEN"


# ---------------------------------------------------------------------------
# Entity mappers
# ---------------------------------------------------------------------------

class CustomerMapper:
    remote_type = "customer"
    local_table = "customers"
    last_modified_field = LAST_MODIFIED_FIELD
    query_fields = (
        "id",
        "companyname",
        "email",
        "phone",
        "entityid",
        "isinactive",
        "datecreated",
        "lastmodifieddate",
    )

    def __init__(self) -> None:
        self.query = SuiteQLQuery(self.remote_type, self.query_fields)

    def to_remote(self, local: dict[str, Any]) -> dict[str, Any]:
        return compact({
            "companyName": local.get("name"),
            "email": local.get("email"),
            "phone": local.get("phone"),
        })

    def to_local(self, remote: dict[str, Any]) -> dict[str, Any]:
        return {
            "name": field(remote, "companyName"),
            "email": field(remote, "email"),
            "phone": field(remote, "phone"),
            "netsuite_id": ref_id(remote.get("id")),
        }

    def build_select_query(self, where=None, limit=None, offset=None) -> str:
        return self.query.select(where, limit, offset)

    def build_delta_query(self, since: str | datetime) -> str:
        return self.query.delta(since)


class VendorMapper:
    remote_type = "vendor"
    local_table = "vendors"
    last_modified_field = LAST_MODIFIED_FIELD
    query_fields = (
        "id",
        "companyname",
        "email",
        "phone",
        "entityid",
        "isinactive",
        "category",
        "datecreated",
        "lastmodifieddate",
    )

    DEFAULT_CATEGORY = "Subcontractor"

    def __init__(self) -> None:
        self.query = SuiteQLQuery(self.remote_type, self.query_fields)

    def to_remote(self, local: dict[str, Any]) -> dict[str, Any]:
        return compact({
            "companyName": local.get("name"),
            "email": local.get("email"),
            "phone": local.get("phone"),
        })

    def to_local(self, remote: dict[str, Any]) -> dict[str, Any]:
        return {
            "name": field(remote, "companyName"),
            "email": field(remote, "email"),
            "phone": field(remote, "phone"),
            "address": field(remote, "defaultAddress"),
            "category": ref_name(field(remote, "category")) or self.DEFAULT_CATEGORY,
            "netsuite_id": ref_id(remote.get("id")),
        }

    def build_select_query(self, where=None, limit=None, offset=None) -> str:
        return self.query.select(where, limit, offset)

    def build_delta_query(self, since: str | datetime) -> str:
        return self.query.delta(since)


class ProjectMapper:
    """Local projects are NetSuite jobs."""

    remote_type = "job"
    local_table = "projects"
    last_modified_field = LAST_MODIFIED_FIELD
    query_fields = (
        "id",
        "entityid",
        "companyname",
        "jobstatus",
        "startdate",
        "projectedenddate",
        "datecreated",
        "lastmodifieddate",
    )

    def __init__(self) -> None:
        self.query = SuiteQLQuery(self.remote_type, self.query_fields)

    def to_remote(self, local: dict[str, Any]) -> dict[str, Any]:
        return compact({"companyName": local.get("name")})

    def to_local(self, remote: dict[str, Any]) -> dict[str, Any]:
        return {
            "name": field(remote, "companyName"),
            "netsuite_job_id": ref_id(remote.get("id")),
            "status": map_job_status(ref_name(field(remote, "jobStatus"))),
        }

    def build_select_query(self, where=None, limit=None, offset=None) -> str:
        return self.query.select(where, limit, offset)

    def build_delta_query(self, since: str | datetime) -> str:
        return self.query.delta(since)


_TRANSACTION_FIELDS = (
    "id",
    "tranid",
    "entity",
    "trandate",
    "duedate",
    "status",
    "total",
    "amountremaining",
    "memo",
    "job",
    "lastmodifieddate",
)


class InvoiceMapper:
    remote_type = "invoice"
    local_table = "invoices"
    last_modified_field = LAST_MODIFIED_FIELD
    query_fields = _TRANSACTION_FIELDS

    def __init__(self) -> None:
        self.query = SuiteQLQuery(self.remote_type, self.query_fields)

    def to_remote(self, local: dict[str, Any]) -> dict[str, Any]:
        result = compact({
            "tranDate": local.get("issue_date"),
            "memo": local.get("memo"),
            "dueDate": local.get("due_date"),
        })
        if local.get("customer_id"):
            result["entity"] = {"id": local["customer_id"]}
        return result

    def to_local(self, remote: dict[str, Any]) -> dict[str, Any]:
        total = to_float(field(remote, "total"))
        remaining = to_float(field(remote, "amountRemaining"))
        return {
            "netsuite_id": ref_id(remote.get("id")),
            "invoice_number": field(remote, "tranId"),
            "status": map_invoice_status(ref_name(field(remote, "status"))),
            "issue_date": field(remote, "tranDate"),
            "due_date": field(remote, "dueDate"),
            "total": total,
            "amount_due": remaining,
            "amount_paid": total - remaining,
            "memo": field(remote, "memo"),
        }

    def build_select_query(self, where=None, limit=None, offset=None) -> str:
        return self.query.select(where, limit, offset)

    def build_delta_query(self, since: str | datetime) -> str:
        return self.query.delta(since)


class VendorBillMapper:
    remote_type = "vendorBill"
    local_table = "vendor_bills"
    last_modified_field = LAST_MODIFIED_FIELD
    query_fields = _TRANSACTION_FIELDS

    def __init__(self) -> None:
        self.query = SuiteQLQuery(self.remote_type, self.query_fields)

    def to_remote(self, local: dict[str, Any]) -> dict[str, Any]:
        result = compact({
            "tranDate": local.get("bill_date"),
            "memo": local.get("memo"),
            "dueDate": local.get("due_date"),
        })
        if local.get("vendor_id"):
            result["entity"] = {"id": local["vendor_id"]}
        return result

    def to_local(self, remote: dict[str, Any]) -> dict[str, Any]:
        total = to_float(field(remote, "total"))
        remaining = to_float(field(remote, "amountRemaining"))
        return {
            "netsuite_id": ref_id(remote.get("id")),
            "bill_number": field(remote, "tranId"),
            "status": map_bill_status(ref_name(field(remote, "status"))),
            "bill_date": field(remote, "tranDate"),
            "due_date": field(remote, "dueDate"),
            "total": total,
            "amount_due": remaining,
            "amount_paid": total - remaining,
            "memo": field(remote, "memo"),
        }

    def build_select_query(self, where=None, limit=None, offset=None) -> str:
        return self.query.select(where, limit, offset)

    def build_delta_query(self, since: str | datetime) -> str:
        return self.query.delta(since)


MAPPERS: dict[str, type] = {
    "customer": CustomerMapper,
    "vendor": VendorMapper,
    "project": ProjectMapper,
    "invoice": InvoiceMapper,
    "vendor_bill": VendorBillMapper,
}


def get_mapper(entity: str) -> EntityMapper:
    """Instantiate the mapper registered for an entity name."""
    try:
        return MAPPERS[entity]()
    except KeyError:
        raise ValueError(
            f"Unknown entity '{entity}'. Choose from: {', '.join(MAPPERS)}"
        ) from None
