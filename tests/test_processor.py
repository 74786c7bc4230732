"""
Tests for BillingProcessor

Run with: python -m pytest tests/ -v
"""

import threading

import pytest
from decimal import Decimal

from studio_billing import BillingProcessor
from studio_billing.errors import NotFoundError, StateConflictError, ValidationError
from studio_billing.models import (
    Invoice,
    InvoiceRequest,
    InvoiceStatus,
    InvoiceType,
    Quote,
    StandaloneInvoiceRequest,
)


@pytest.fixture
def quote_data():
    """One FIXED item, qty 2 x 100, optional 50 extra, default taxes."""
    return {
        "id": "q1",
        "quote_number": "S-2025-014",
        "status": "DRAFT",
        "client_code": "ACME",
        "project_number": 7,
        "sections": [
            {
                "id": "s1",
                "title": "Website",
                "items": [
                    {"id": "base", "name": "Build", "quantity": 2, "unit_price": 100},
                    {
                        "id": "extra",
                        "name": "SEO audit",
                        "unit_price": 50,
                        "item_types": ["A_LA_CARTE"],
                        "is_selected": False,
                    },
                ],
            }
        ],
    }


@pytest.fixture
def accepted_quote_data(quote_data):
    return {**quote_data, "status": "ACCEPTED", "total": 1000}


class TestBillingProcessor:
    """Test the dict API end to end."""

    @pytest.fixture
    def processor(self):
        return BillingProcessor()

    def test_quote_totals(self, processor, quote_data):
        result = processor.quote_totals_from_dict({"quote": quote_data})
        totals = result["totals"]

        assert totals["subtotal"] == 200.0
        assert totals["tps_amount"] == 10.0
        assert totals["tvq_amount"] == 19.95
        assert totals["total"] == 229.95
        assert totals["deposit_amount"] == 114.98

    def test_client_totals(self, processor, quote_data):
        result = processor.quote_totals_from_dict({"quote": quote_data, "selections": {"extra": True}})
        assert result["totals"]["subtotal"] == 250.0

    def test_quote_required(self, processor):
        with pytest.raises(ValidationError):
            processor.quote_totals_from_dict({})

    def test_send_view_approve(self, processor, quote_data):
        sent = processor.send_from_dict({"quote": quote_data})["quote"]
        token = sent["public_token"]
        assert sent["status"] == "SENT"
        assert sent["total"] == 229.95

        viewed = processor.view_from_dict({"quote": sent, "token": token})
        assert viewed["status_changed"]
        assert viewed["quote"]["status"] == "VIEWED"

        approved = processor.approve_from_dict(
            {"quote": viewed["quote"], "token": token, "selections": {"extra": True}}
        )
        assert approved["quote"]["status"] == "ACCEPTED"
        assert approved["totals"]["subtotal"] == 250.0
        assert approved["quote"]["subtotal"] == 250.0

    def test_wrong_token(self, processor, quote_data):
        sent = processor.send_from_dict({"quote": quote_data})["quote"]
        with pytest.raises(NotFoundError):
            processor.view_from_dict({"quote": sent, "token": "0" * 32})

    def test_unsent_quote_has_no_public_view(self, processor, quote_data):
        with pytest.raises(NotFoundError):
            processor.view_from_dict({"quote": quote_data, "token": "anything"})

    def test_balance(self, processor, accepted_quote_data):
        data = {
            **accepted_quote_data,
            "invoices": [{"id": "i1", "invoice_type": "DEPOSIT", "status": "SENT", "total": 500}],
        }
        balance = processor.balance_from_dict({"quote": data})["balance"]

        assert balance["remaining_balance"] == 500.0
        assert balance["has_deposit"]
        assert balance["permitted_types"] == ["FINAL"]

    def test_create_deposit(self, processor, accepted_quote_data):
        result = processor.create_invoice_from_dict({
            "quote": accepted_quote_data,
            "request": {"invoice_type": "DEPOSIT"},
            "issue_date": "2025-03-01",
        })
        invoice = result["invoice"]

        assert invoice["invoice_type"] == "DEPOSIT"
        assert invoice["total"] == 500.0
        assert invoice["subtotal"] == 434.88
        assert invoice["due_date"] == "2025-03-31"
        assert invoice["invoice_number"] == "F-ACME-007-01"
        assert result["balance"]["has_deposit"]
        assert result["balance"]["remaining_balance"] == 500.0

    def test_create_invoice_bills_expenses(self, processor, accepted_quote_data):
        result = processor.create_invoice_from_dict({
            "quote": accepted_quote_data,
            "request": {"invoice_type": "FINAL", "expense_ids": ["e1"]},
            "expenses": [{"id": "e1", "amount": 100, "description": "Hosting"}],
        })

        assert result["invoice"]["total"] == 1114.98
        assert result["billed_expenses"][0]["is_billed"]
        assert result["billed_expenses"][0]["invoice_id"] == result["invoice"]["id"]

    def test_invalid_percentage(self, processor, accepted_quote_data):
        with pytest.raises(ValidationError):
            processor.create_invoice_from_dict({
                "quote": accepted_quote_data,
                "request": {"invoice_type": "FINAL", "percentage": 150},
            })

    def test_record_payment(self, processor):
        invoice = {"id": "inv-1", "status": "SENT", "subtotal": 100, "total": 114.98}
        result = processor.record_payment_from_dict({
            "invoice": invoice,
            "payment": {"amount": 114.98, "date": "2025-04-01", "method": "cheque"},
        })

        assert result["invoice"]["status"] == "PAID"
        assert result["invoice"]["balance_due"] == 0.0
        assert result["invoice"]["payment_date"] == "2025-04-01"
        assert result["invoice"]["payment_method"] == "cheque"

    def test_late_fee_actions(self, processor):
        invoice = {
            "id": "inv-1",
            "status": "SENT",
            "subtotal": 1000,
            "total": 1149.75,
            "due_date": "2025-05-30",
        }
        status = processor.late_fee_from_dict({"invoice": invoice, "today": "2025-06-30"})
        assert status["late_fee"]["is_eligible"]
        assert status["late_fee"]["days_overdue"] == 31
        assert status["invoice"]["status"] == "OVERDUE"

        applied = processor.late_fee_from_dict({"invoice": invoice, "action": "apply", "today": "2025-06-30"})
        assert applied["invoice"]["total"] == 1169.75
        assert applied["late_fee"]["late_fee_amount"] == 20.0

        removed = processor.late_fee_from_dict({"invoice": applied["invoice"], "action": "remove"})
        assert removed["invoice"]["total"] == 1149.75
        assert not removed["invoice"]["late_fee_applied"]

    def test_late_fee_unknown_action(self, processor):
        with pytest.raises(ValidationError):
            processor.late_fee_from_dict({"invoice": {"id": "x"}, "action": "waive"})

    def test_invoice_status(self, processor):
        result = processor.invoice_status_from_dict({
            "invoice": {"id": "inv-1", "status": "SENT", "total": 100},
            "status": "cancelled",
        })
        assert result["invoice"]["status"] == "CANCELLED"
        assert result["invoice"]["is_number_reusable"]

    def test_paid_invoice_cannot_be_cancelled(self, processor):
        with pytest.raises(StateConflictError):
            processor.invoice_status_from_dict({
                "invoice": {"id": "inv-1", "status": "PAID", "total": 100},
                "status": "CANCELLED",
            })

    def test_output_round_trips(self, processor, accepted_quote_data):
        """Returned records can be fed back as input."""
        result = processor.create_invoice_from_dict({
            "quote": accepted_quote_data,
            "request": {"invoice_type": "DEPOSIT"},
        })
        again = processor.late_fee_from_dict({"invoice": result["invoice"]})
        assert again["invoice"] == result["invoice"]


class TestWriteBoundary:
    """Concurrent writers on shared records."""

    @pytest.fixture
    def processor(self):
        return BillingProcessor()

    def test_concurrent_deposits_create_one(self, processor, accepted_quote_data):
        quote = Quote.from_dict(accepted_quote_data)
        barrier = threading.Barrier(8)
        outcomes = []

        def create_deposit():
            barrier.wait()
            try:
                processor.create_invoice(quote, InvoiceRequest(invoice_type=InvoiceType.DEPOSIT))
                outcomes.append("created")
            except StateConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=create_deposit) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("created") == 1
        assert outcomes.count("conflict") == 7
        assert [inv.invoice_type for inv in quote.invoices] == [InvoiceType.DEPOSIT]

    def test_concurrent_late_fee_applies_once(self, processor):
        invoice = Invoice.from_dict({
            "id": "inv-1",
            "status": "SENT",
            "subtotal": 1000,
            "total": 1149.75,
            "due_date": "2025-01-01",
        })
        barrier = threading.Barrier(8)
        conflicts = []

        def apply_fee():
            barrier.wait()
            try:
                processor.late_fee(invoice, "apply")
            except StateConflictError:
                conflicts.append(True)

        threads = [threading.Thread(target=apply_fee) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(conflicts) == 7
        assert invoice.total == Decimal('1169.75')
        assert invoice.status == InvoiceStatus.OVERDUE

    def test_lock_table_does_not_grow(self, processor):
        for index in range(500):
            processor.late_fee_from_dict({
                "invoice": {"id": f"inv-{index}", "status": "SENT", "total": 100, "due_date": "2025-01-01"},
                "today": "2025-01-15",
            })
        assert len(processor.locks) == 0

    def test_lock_released_after_error(self, processor):
        with pytest.raises(StateConflictError):
            processor.invoice_status_from_dict({
                "invoice": {"id": "inv-1", "status": "PAID", "total": 100},
                "status": "CANCELLED",
            })
        assert "invoice:inv-1" not in processor.locks

    def test_lock_is_reentrant(self, processor):
        with processor.locks.hold("quote:q1"):
            with processor.locks.hold("quote:q1"):
                assert len(processor.locks) == 1
            assert "quote:q1" in processor.locks
        assert len(processor.locks) == 0

    def test_concurrent_standalone_get_distinct_numbers(self, processor):
        invoices = []
        barrier = threading.Barrier(8)

        def create():
            barrier.wait()
            processor.create_standalone_invoice(
                StandaloneInvoiceRequest(client_code="ACME", project_number=7), invoices
            )

        threads = [threading.Thread(target=create) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        numbers = sorted(inv.invoice_number for inv in invoices)
        assert numbers == [f"F-ACME-007-{n:02d}" for n in range(1, 9)]
        assert len(processor.locks) == 0


class TestStandaloneAndPreconditions:
    """Standalone invoices and the record state echoed back for compare-and-set saves."""

    @pytest.fixture
    def processor(self):
        return BillingProcessor()

    def test_create_standalone(self, processor):
        result = processor.create_standalone_from_dict({
            "request": {
                "client_code": "ACME",
                "project_number": 7,
                "items": [{"description": "Maintenance", "quantity": 2, "unit_price": 150}],
                "expense_ids": ["e1"],
            },
            "invoices": [
                {"id": "a", "invoice_number": "F-ACME-007-01", "status": "SENT", "total": 100},
                {
                    "id": "b",
                    "invoice_number": "F-ACME-007-02",
                    "status": "CANCELLED",
                    "is_number_reusable": True,
                    "total": 50,
                },
            ],
            "expenses": [{"id": "e1", "amount": 100, "description": "Hosting"}],
            "issue_date": "2025-03-01",
        })
        invoice = result["invoice"]

        assert invoice["invoice_number"] == "F-ACME-007-02"
        assert invoice["invoice_type"] == "STANDALONE"
        assert invoice["status"] == "DRAFT"
        assert invoice["quote_id"] is None
        assert invoice["total"] == 459.9
        assert invoice["due_date"] == "2025-03-31"
        assert result["billed_expenses"][0]["invoice_id"] == invoice["id"]
        assert result["reclaimed_invoice"]["id"] == "b"
        assert not result["reclaimed_invoice"]["is_number_reusable"]
        assert result["precondition"] == {
            "prefix": "F-ACME-007",
            "invoice_count": 2,
            "invoice_numbers": ["F-ACME-007-01", "F-ACME-007-02"],
        }

    def test_standalone_request_required(self, processor):
        with pytest.raises(ValidationError):
            processor.create_standalone_from_dict({"invoices": []})

    def test_create_invoice_precondition(self, processor, accepted_quote_data):
        data = {
            **accepted_quote_data,
            "invoices": [{"id": "d1", "invoice_type": "DEPOSIT", "status": "SENT", "total": 500}],
        }
        result = processor.create_invoice_from_dict({"quote": data, "request": {"invoice_type": "FINAL"}})

        assert result["precondition"] == {
            "quote_id": "q1",
            "status": "ACCEPTED",
            "invoice_count": 1,
            "has_deposit": True,
        }
        assert result["reclaimed_invoice"] is None

    def test_invoice_precondition_is_state_before_write(self, processor):
        invoice = {
            "id": "inv-1",
            "status": "SENT",
            "subtotal": 1000,
            "total": 1149.75,
            "due_date": "2025-05-30",
        }
        result = processor.late_fee_from_dict({"invoice": invoice, "action": "apply", "today": "2025-06-30"})

        assert result["invoice"]["late_fee_applied"]
        assert result["precondition"] == {
            "invoice_id": "inv-1",
            "status": "SENT",
            "total": 1149.75,
            "amount_paid": 0.0,
            "late_fee_applied": False,
        }

    def test_payment_precondition(self, processor):
        result = processor.record_payment_from_dict({
            "invoice": {"id": "inv-1", "status": "SENT", "total": 100},
            "payment": {"amount": 40},
        })
        assert result["invoice"]["amount_paid"] == 40.0
        assert result["precondition"]["amount_paid"] == 0.0
        assert result["precondition"]["status"] == "SENT"

    def test_quote_precondition(self, processor, quote_data):
        result = processor.send_from_dict({"quote": quote_data})
        assert result["quote"]["status"] == "SENT"
        assert result["precondition"]["status"] == "DRAFT"
        assert result["precondition"]["invoice_count"] == 0
