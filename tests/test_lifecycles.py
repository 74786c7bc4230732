"""Tests for QuoteLifecycle and InvoiceLifecycle."""

import re

import pytest
from datetime import date
from decimal import Decimal

from studio_billing.errors import NotFoundError, StateConflictError, ValidationError
from studio_billing.lifecycles import InvoiceLifecycle, QuoteLifecycle
from studio_billing.models import (
    ApprovalSubmission,
    Invoice,
    InvoiceItem,
    InvoiceStatus,
    ItemChange,
    ItemType,
    Payment,
    PriceVariant,
    Quote,
    QuoteItem,
    QuoteSection,
    QuoteStatus,
)


def build_quote(status=QuoteStatus.DRAFT):
    items = [
        QuoteItem(id="base", name="Website", quantity=Decimal('2'), unit_price=Decimal('100')),
        QuoteItem(
            id="extra",
            name="SEO audit",
            unit_price=Decimal('50'),
            item_types=frozenset({ItemType.A_LA_CARTE}),
            is_selected=False,
        ),
        QuoteItem(
            id="hosting",
            name="Hosting",
            variants=[PriceVariant("Basic", Decimal('10')), PriceVariant("Pro", Decimal('30'))],
        ),
    ]
    return Quote(id="q1", quote_number="S-2025-014", status=status, sections=[QuoteSection(id="s1", items=items)])


class TestQuoteLifecycle:
    """Test quote transitions and guarded edits."""

    @pytest.fixture
    def lifecycle(self):
        return QuoteLifecycle()

    def test_send_issues_token(self, lifecycle):
        quote = lifecycle.send(build_quote())

        assert quote.status == QuoteStatus.SENT
        assert re.fullmatch(r"[0-9a-f]{32}", quote.public_token)

    def test_resend_keeps_token(self, lifecycle):
        quote = lifecycle.send(build_quote())
        token = quote.public_token

        lifecycle.send(quote)
        assert quote.public_token == token

    def test_resend_keeps_viewed(self, lifecycle):
        quote = lifecycle.send(build_quote())
        lifecycle.record_view(quote)

        lifecycle.send(quote)
        assert quote.status == QuoteStatus.VIEWED

    def test_send_accepted_rejected(self, lifecycle):
        with pytest.raises(StateConflictError):
            lifecycle.send(build_quote(QuoteStatus.ACCEPTED))

    def test_view_only_moves_sent(self, lifecycle):
        quote = build_quote(QuoteStatus.SENT)
        assert lifecycle.record_view(quote)
        assert quote.status == QuoteStatus.VIEWED
        assert not lifecycle.record_view(quote)

        accepted = build_quote(QuoteStatus.ACCEPTED)
        assert not lifecycle.record_view(accepted)
        assert accepted.status == QuoteStatus.ACCEPTED

    def test_approve_persists_client_choices(self, lifecycle):
        quote = build_quote(QuoteStatus.VIEWED)
        submission = ApprovalSubmission(selections={"extra": True}, variant_selections={"hosting": 1})

        result = lifecycle.approve(quote, submission)

        assert quote.status == QuoteStatus.ACCEPTED
        assert quote.find_item("extra").is_selected
        assert quote.find_item("hosting").selected_variant == 1
        # 200 + 50 + 30
        assert result.subtotal == Decimal('280')
        assert quote.subtotal == Decimal('280')
        assert quote.total == result.total

    def test_approve_defaults_variant_and_leaves_optional_out(self, lifecycle):
        quote = build_quote(QuoteStatus.SENT)
        result = lifecycle.approve(quote, ApprovalSubmission())

        assert not quote.find_item("extra").is_selected
        assert quote.find_item("hosting").selected_variant == 0
        assert result.subtotal == Decimal('210')

    def test_approve_draft_rejected(self, lifecycle):
        with pytest.raises(StateConflictError):
            lifecycle.approve(build_quote(), ApprovalSubmission())

    def test_approve_bad_variant_leaves_quote_untouched(self, lifecycle):
        quote = build_quote(QuoteStatus.SENT)
        submission = ApprovalSubmission(selections={"extra": True}, variant_selections={"hosting": 9})

        with pytest.raises(ValidationError):
            lifecycle.approve(quote, submission)
        assert quote.status == QuoteStatus.SENT
        assert not quote.find_item("extra").is_selected

    def test_approve_unknown_item_rejected(self, lifecycle):
        with pytest.raises(ValidationError):
            lifecycle.approve(build_quote(QuoteStatus.SENT), ApprovalSubmission(selections={"nope": True}))

    def test_refuse_and_expire(self, lifecycle):
        quote = lifecycle.refuse(build_quote(QuoteStatus.SENT))
        assert quote.status == QuoteStatus.REFUSED
        with pytest.raises(StateConflictError):
            lifecycle.expire(quote)

        assert lifecycle.expire(build_quote()).status == QuoteStatus.EXPIRED

    def test_is_past_validity(self, lifecycle):
        quote = build_quote(QuoteStatus.SENT)
        quote.valid_until = date(2025, 1, 31)
        assert lifecycle.is_past_validity(quote, date(2025, 2, 1))
        assert not lifecycle.is_past_validity(quote, date(2025, 1, 31))

    def test_item_change_recomputes_totals(self, lifecycle):
        quote = build_quote()
        lifecycle.apply_item_change(quote, "base", ItemChange("quantity", 3))

        assert quote.find_item("base").quantity == Decimal('3')
        assert quote.subtotal == Decimal('310')

    def test_negative_change_rejected(self, lifecycle):
        quote = build_quote()
        with pytest.raises(ValidationError):
            lifecycle.apply_item_change(quote, "base", ItemChange("unit_price", -5))
        assert quote.find_item("base").unit_price == Decimal('100')

    def test_unknown_field_rejected(self, lifecycle):
        with pytest.raises(ValidationError):
            lifecycle.apply_item_change(build_quote(), "base", ItemChange("id", "x"))

    def test_unknown_item(self, lifecycle):
        with pytest.raises(NotFoundError):
            lifecycle.apply_item_change(build_quote(), "missing", ItemChange("quantity", 1))

    def test_accepted_quote_not_editable(self, lifecycle):
        with pytest.raises(StateConflictError):
            lifecycle.apply_item_change(build_quote(QuoteStatus.ACCEPTED), "base", ItemChange("quantity", 1))

    def test_duplicate(self, lifecycle):
        quote = lifecycle.send(build_quote())
        quote.find_item("hosting").selected_variant = 1

        clone = lifecycle.duplicate(quote, "q2", today=date(2025, 3, 1))

        assert clone.id == "q2"
        assert clone.status == QuoteStatus.DRAFT
        assert clone.public_token is None
        assert clone.invoices == []
        assert clone.valid_until == date(2025, 3, 31)
        assert clone.find_item("hosting").selected_variant == 1
        assert clone.sections[0] is not quote.sections[0]


class TestInvoiceLifecycle:
    """Test invoice transitions, payments and edits."""

    @pytest.fixture
    def paid_events(self):
        return []

    @pytest.fixture
    def lifecycle(self, paid_events):
        return InvoiceLifecycle(notifier=paid_events.append)

    @pytest.fixture
    def invoice(self):
        item = InvoiceItem(description="Design", quantity=Decimal('1'), unit_price=Decimal('1000'), id="it1")
        item.recompute()
        inv = Invoice(id="inv-1", invoice_number="F-ACME-007-01", status=InvoiceStatus.SENT, items=[item])
        InvoiceLifecycle().recalculate(inv)
        return inv

    def test_recalculate(self, invoice):
        assert invoice.subtotal == Decimal('1000.00')
        assert invoice.tps_amount == Decimal('50.00')
        assert invoice.tvq_amount == Decimal('99.75')
        assert invoice.total == Decimal('1149.75')

    def test_recalculate_keeps_late_fee(self, lifecycle, invoice):
        invoice.late_fee_applied = True
        invoice.late_fee_amount = Decimal('20.00')
        lifecycle.recalculate(invoice)
        assert invoice.total == Decimal('1169.75')

    def test_mark_paid(self, lifecycle, invoice, paid_events):
        lifecycle.transition(invoice, InvoiceStatus.PAID, today=date(2025, 4, 2))

        assert invoice.status == InvoiceStatus.PAID
        assert invoice.payment_date == date(2025, 4, 2)
        assert invoice.amount_paid == invoice.total
        assert paid_events == [invoice]

    def test_paid_is_final(self, lifecycle, invoice):
        lifecycle.mark_paid(invoice)
        for status in (InvoiceStatus.CANCELLED, InvoiceStatus.SENT, InvoiceStatus.OVERDUE):
            with pytest.raises(StateConflictError):
                lifecycle.transition(invoice, status)

    def test_cancel_frees_number(self, lifecycle, invoice):
        lifecycle.transition(invoice, InvoiceStatus.CANCELLED)
        assert invoice.status == InvoiceStatus.CANCELLED
        assert invoice.is_number_reusable

    def test_overdue_back_to_sent(self, lifecycle, invoice):
        lifecycle.transition(invoice, InvoiceStatus.OVERDUE)
        lifecycle.transition(invoice, InvoiceStatus.SENT)
        assert invoice.status == InvoiceStatus.SENT

    def test_partial_then_full_payment(self, lifecycle, invoice, paid_events):
        lifecycle.record_payment(invoice, Payment(amount=Decimal('500'), method="transfer"))
        assert invoice.status == InvoiceStatus.SENT
        assert invoice.balance_due == Decimal('649.75')
        assert paid_events == []

        lifecycle.record_payment(invoice, Payment(amount=Decimal('649.75'), payment_date=date(2025, 5, 1)))
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.amount_paid == Decimal('1149.75')
        assert invoice.payment_date == date(2025, 5, 1)
        assert len(paid_events) == 1

    def test_non_positive_payment_rejected(self, lifecycle, invoice):
        with pytest.raises(ValidationError):
            lifecycle.record_payment(invoice, Payment(amount=Decimal('0')))

    def test_closed_invoice_accepts_notes_only(self, lifecycle, invoice):
        lifecycle.mark_paid(invoice)

        lifecycle.update_fields(invoice, {"notes": "Thanks!"})
        assert invoice.notes == "Thanks!"

        with pytest.raises(StateConflictError):
            lifecycle.update_fields(invoice, {"due_date": "2025-12-31"})
        with pytest.raises(StateConflictError):
            lifecycle.add_item(invoice, "Extra", 1, 10)

    def test_update_fields_is_all_or_nothing(self, lifecycle, invoice):
        with pytest.raises(ValidationError):
            lifecycle.update_fields(invoice, {"notes": "changed", "due_date": "not-a-date"})
        assert invoice.notes == ""

    def test_item_edits_recompute(self, lifecycle, invoice):
        added = lifecycle.add_item(invoice, "Extra", quantity=2, unit_price=50)
        assert added.total == Decimal('100')
        assert invoice.subtotal == Decimal('1100.00')

        lifecycle.update_item(invoice, added.id, quantity=1)
        assert invoice.subtotal == Decimal('1050.00')

        lifecycle.remove_item(invoice, added.id)
        assert invoice.total == Decimal('1149.75')

    def test_ensure_deletable(self, lifecycle, invoice):
        lifecycle.ensure_deletable(invoice)
        invoice.amount_paid = Decimal('1')
        with pytest.raises(StateConflictError):
            lifecycle.ensure_deletable(invoice)

    def test_refresh_overdue(self, lifecycle, invoice):
        invoice.due_date = date(2025, 4, 1)
        lifecycle.refresh_overdue(invoice, date(2025, 4, 1))
        assert invoice.status == InvoiceStatus.SENT

        lifecycle.refresh_overdue(invoice, date(2025, 4, 2))
        assert invoice.status == InvoiceStatus.OVERDUE
