"""
Tests for entity mappers and SuiteQL query construction.
"""

from datetime import datetime, timezone

import pytest

from netsuite_sync.mappers import (
    MAPPERS,
    CustomerMapper,
    EntityMapper,
    InvoiceMapper,
    ProjectMapper,
    SuiteQLQuery,
    VendorBillMapper,
    VendorMapper,
    get_mapper,
    map_bill_status,
    map_invoice_status,
    map_job_status,
)


class TestSuiteQLQuery:
    """Tests for the shared query builder."""

    def test_select(self):
        query = SuiteQLQuery("customer", ("id", "companyname"))
        assert query.select() == "SELECT id, companyname FROM customer"

    def test_select_with_clauses(self):
        query = SuiteQLQuery("customer", ("id",))
        sql = query.select(where="isinactive = 'F'", limit=50, offset=100)
        assert sql == (
            "SELECT id FROM customer WHERE isinactive = 'F' "
            "FETCH NEXT 50 ROWS ONLY OFFSET 100 ROWS"
        )

    def test_delta(self):
        query = SuiteQLQuery("vendor", ("id",))
        assert query.delta("2024-01-15T10:00:00Z") == (
            "SELECT id FROM vendor WHERE lastmodifieddate > '2024-01-15T10:00:00Z'"
        )

    def test_delta_escapes_quotes(self):
        query = SuiteQLQuery("vendor", ("id",))
        assert "'x'' OR 1=1'" in query.delta("x' OR 1=1")

    def test_delta_accepts_datetime(self):
        since = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
        assert "'2024-01-15T10:00:00+00:00'" in CustomerMapper().build_delta_query(since)


class TestRegistry:
    """Tests for the mapper registry."""

    @pytest.mark.parametrize("name", sorted(MAPPERS))
    def test_mappers_satisfy_protocol(self, name):
        mapper = get_mapper(name)
        assert isinstance(mapper, EntityMapper)
        assert mapper.last_modified_field == "lastmodifieddate"
        assert "id" in mapper.query_fields
        assert mapper.build_select_query().startswith("SELECT id, ")
        assert mapper.build_select_query().endswith(f" FROM {mapper.remote_type}")

    def test_unknown_entity(self):
        with pytest.raises(ValueError, match="Unknown entity"):
            get_mapper("timesheet")

    def test_table_names(self):
        assert {m().local_table for m in MAPPERS.values()} == {
            "customers", "vendors", "projects", "invoices", "vendor_bills",
        }


class TestCustomerMapper:
    """Tests for customer mapping."""

    def test_to_local_from_suiteql_row(self, sample_customer_row):
        local = CustomerMapper().to_local(sample_customer_row)
        assert local == {
            "name": "Acme Construction",
            "email": "ap@acme.example",
            "phone": "555-0100",
            "netsuite_id": "101",
        }

    def test_to_local_from_rest_record(self):
        local = CustomerMapper().to_local({"id": 5, "companyName": "Acme", "email": None})
        assert local["name"] == "Acme"
        assert local["netsuite_id"] == "5"

    def test_to_remote_drops_missing_fields(self):
        remote = CustomerMapper().to_remote({"name": "Acme", "email": None, "phone": "555"})
        assert remote == {"companyName": "Acme", "phone": "555"}


class TestVendorMapper:
    """Tests for vendor mapping."""

    def test_to_local(self, sample_vendor_record):
        local = VendorMapper().to_local(sample_vendor_record)
        assert local["name"] == "Ridge Electric"
        assert local["address"].startswith("12 Ridge Rd")
        assert local["category"] == "Electrical"

    def test_default_category(self):
        assert VendorMapper().to_local({"id": "1"})["category"] == "Subcontractor"

    def test_to_remote(self):
        remote = VendorMapper().to_remote({"name": "Ridge", "email": "a@b.c"})
        assert remote == {"companyName": "Ridge", "email": "a@b.c"}


class TestProjectMapper:
    """Tests for job mapping."""

    def test_to_local(self):
        local = ProjectMapper().to_local({
            "id": "88",
            "companyName": "Main St Remodel",
            "jobStatus": {"id": "2", "refName": "In Progress"},
        })
        assert local == {"name": "Main St Remodel", "netsuite_job_id": "88", "status": "IN_PROGRESS"}

    def test_remote_type_is_job(self):
        assert ProjectMapper().remote_type == "job"

    @pytest.mark.parametrize("status, expected", [
        ("Closed", "CLOSED"),
        ("Complete", "CLOSED"),
        ("In Progress", "IN_PROGRESS"),
        ("Active", "IN_PROGRESS"),
        ("Awarded", "OPEN"),
        (None, "OPEN"),
    ])
    def test_status(self, status, expected):
        assert map_job_status(status) == expected


class TestInvoiceMapper:
    """Tests for invoice mapping."""

    def test_to_local(self, sample_invoice_record):
        local = InvoiceMapper().to_local(sample_invoice_record)
        assert local["netsuite_id"] == "5001"
        assert local["invoice_number"] == "INV-5001"
        assert local["status"] == "sent"
        assert local["issue_date"] == "2024-02-01"
        assert local["total"] == 1250.0
        assert local["amount_due"] == 500.0
        assert local["amount_paid"] == 750.0

    def test_numeric_strings_from_suiteql(self):
        local = InvoiceMapper().to_local({"id": "1", "total": "100.50", "amountremaining": ""})
        assert local["total"] == 100.5
        assert local["amount_paid"] == 100.5

    def test_to_remote(self):
        remote = InvoiceMapper().to_remote({
            "customer_id": "101",
            "issue_date": "2024-02-01",
            "due_date": "2024-03-01",
            "memo": None,
        })
        assert remote == {
            "tranDate": "2024-02-01",
            "dueDate": "2024-03-01",
            "entity": {"id": "101"},
        }

    @pytest.mark.parametrize("status, expected", [
        ("Paid In Full", "paid"),
        ("Not Paid", "draft"),
        ("Open", "sent"),
        ("Voided", "voided"),
        ("Pending Approval", "draft"),
        (None, "draft"),
    ])
    def test_status(self, status, expected):
        assert map_invoice_status(status) == expected


class TestVendorBillMapper:
    """Tests for vendor bill mapping."""

    def test_to_local(self, sample_invoice_record):
        record = dict(sample_invoice_record, tranId="BILL-9", status={"refName": "Paid In Full"})
        local = VendorBillMapper().to_local(record)
        assert local["bill_number"] == "BILL-9"
        assert local["bill_date"] == "2024-02-01"
        assert local["status"] == "paid"

    def test_to_remote(self):
        remote = VendorBillMapper().to_remote({"vendor_id": "301", "bill_date": "2024-02-01"})
        assert remote == {"tranDate": "2024-02-01", "entity": {"id": "301"}}

    @pytest.mark.parametrize("status, expected", [
        ("Paid In Full", "paid"),
        ("Open", "approved"),
        ("Voided", "voided"),
        ("Pending Approval", "pending"),
    ])
    def test_status(self, status, expected):
        assert map_bill_status(status) == expected
