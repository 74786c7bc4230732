"""
Invoice Lifecycle

Statuses: DRAFT, SENT, PAID, OVERDUE, CANCELLED.

DRAFT / SENT / OVERDUE invoices are editable. PAID and CANCELLED are closed:
only notes (and a no-op status write) are accepted. OVERDUE is informational
and does not block any transition.
"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Callable

from ..calculators import PricingCalculator, quantize_money
from ..errors import StateConflictError, ValidationError
from ..models import (
    Invoice,
    InvoiceItem,
    InvoiceStatus,
    Payment,
    parse_date,
    parse_enum,
    to_decimal,
)

logger = logging.getLogger(__name__)


TRANSITIONS = {
    InvoiceStatus.DRAFT: {InvoiceStatus.SENT, InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED},
    InvoiceStatus.SENT: {InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED},
    InvoiceStatus.OVERDUE: {InvoiceStatus.SENT, InvoiceStatus.PAID, InvoiceStatus.CANCELLED},
    InvoiceStatus.PAID: set(),
    InvoiceStatus.CANCELLED: set(),
}


class InvoiceLifecycle:
    """Status machine and guarded mutations for invoices."""

    CLOSED_STATUSES = (InvoiceStatus.PAID, InvoiceStatus.CANCELLED)
    CLOSED_WRITABLE_FIELDS = {"notes", "status"}
    EDITABLE_FIELDS = {"notes", "status", "issue_date", "due_date", "payment_method"}

    def __init__(self, notifier: Callable[[Invoice], None] | None = None):
        # Called once when an invoice becomes PAID ("payment received")
        self.notifier = notifier

    # -------------------------------------------------------------------------
    # Status transitions
    # -------------------------------------------------------------------------

    def transition(self, invoice: Invoice, status: InvoiceStatus, today: date | None = None) -> Invoice:
        if status == invoice.status:
            return invoice
        if status not in TRANSITIONS[invoice.status]:
            raise StateConflictError(
                f"Invoice {invoice.invoice_number} cannot go from {invoice.status.value} to {status.value}"
            )

        if status == InvoiceStatus.PAID:
            return self.mark_paid(invoice, today=today)
        if status == InvoiceStatus.CANCELLED:
            return self.cancel(invoice)

        invoice.status = status
        logger.info(f"Invoice {invoice.invoice_number} is now {status.value}")
        return invoice

    def mark_paid(self, invoice: Invoice, payment_date: date | None = None, today: date | None = None) -> Invoice:
        """
        Close the invoice as paid.

        - payment_date: the one supplied, else the one already recorded, else today
        - amount_paid: the total, unless a partial payment was already recorded
        """
        if invoice.status == InvoiceStatus.PAID:
            return invoice
        if invoice.status == InvoiceStatus.CANCELLED:
            raise StateConflictError(f"Invoice {invoice.invoice_number} is cancelled and cannot be paid")

        invoice.payment_date = payment_date or invoice.payment_date or today or date.today()
        if invoice.amount_paid == 0:
            invoice.amount_paid = invoice.total
        invoice.status = InvoiceStatus.PAID

        logger.info(f"Invoice {invoice.invoice_number} paid on {invoice.payment_date}")
        if self.notifier is not None:
            self.notifier(invoice)
        return invoice

    def cancel(self, invoice: Invoice) -> Invoice:
        """Cancel the invoice and free its number for reuse."""
        if invoice.status == InvoiceStatus.PAID:
            raise StateConflictError(f"Invoice {invoice.invoice_number} is paid and cannot be cancelled")
        if invoice.status == InvoiceStatus.CANCELLED:
            return invoice

        invoice.status = InvoiceStatus.CANCELLED
        invoice.is_number_reusable = True
        logger.info(f"Invoice {invoice.invoice_number} cancelled; number marked reusable")
        return invoice

    def record_payment(self, invoice: Invoice, payment: Payment) -> Invoice:
        """Add a payment. A payment covering the balance due closes the invoice."""
        if payment.amount <= 0:
            raise ValidationError(f"Payment amount must be positive, got: {payment.amount}")
        if invoice.status in self.CLOSED_STATUSES:
            raise StateConflictError(
                f"Cannot record a payment on a {invoice.status.value.lower()} invoice"
            )

        covers_balance = payment.amount >= invoice.balance_due
        invoice.amount_paid += payment.amount
        if payment.method:
            invoice.payment_method = payment.method
        if payment.payment_date:
            invoice.payment_date = payment.payment_date

        logger.info(f"Payment of {payment.amount} recorded on invoice {invoice.invoice_number}")
        if covers_balance:
            self.mark_paid(invoice, payment_date=payment.payment_date)
        return invoice

    def is_overdue(self, invoice: Invoice, today: date | None = None) -> bool:
        if invoice.status not in (InvoiceStatus.SENT, InvoiceStatus.OVERDUE) or invoice.due_date is None:
            return False
        return (today or date.today()) > invoice.due_date

    def refresh_overdue(self, invoice: Invoice, today: date | None = None) -> Invoice:
        """Report a SENT invoice past its due date as OVERDUE (computed on read)."""
        if invoice.status == InvoiceStatus.SENT and self.is_overdue(invoice, today):
            invoice.status = InvoiceStatus.OVERDUE
        return invoice

    # -------------------------------------------------------------------------
    # Field and item edits
    # -------------------------------------------------------------------------

    def ensure_open(self, invoice: Invoice) -> None:
        if invoice.status in self.CLOSED_STATUSES:
            raise StateConflictError(
                f"Cannot modify a {invoice.status.value.lower()} invoice ({invoice.invoice_number})"
            )

    def update_fields(self, invoice: Invoice, changes: dict, today: date | None = None) -> Invoice:
        """Apply a partial update. Everything is checked before the first write."""
        unknown = set(changes) - self.EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        if invoice.status in self.CLOSED_STATUSES and set(changes) - self.CLOSED_WRITABLE_FIELDS:
            raise StateConflictError(
                f"Cannot modify a {invoice.status.value.lower()} invoice ({invoice.invoice_number})"
            )

        status = parse_enum(InvoiceStatus, changes.get("status"))
        if status is not None and status != invoice.status and status not in TRANSITIONS[invoice.status]:
            raise StateConflictError(
                f"Invoice {invoice.invoice_number} cannot go from {invoice.status.value} to {status.value}"
            )
        issue_date = parse_date(changes["issue_date"]) if "issue_date" in changes else invoice.issue_date
        due_date = parse_date(changes["due_date"]) if "due_date" in changes else invoice.due_date

        if "notes" in changes:
            invoice.notes = changes["notes"] or ""
        if "payment_method" in changes:
            invoice.payment_method = changes["payment_method"]
        invoice.issue_date, invoice.due_date = issue_date, due_date
        if status is not None:
            self.transition(invoice, status, today=today)
        return invoice

    def add_item(self, invoice: Invoice, description: str, quantity=1, unit_price=0) -> InvoiceItem:
        self.ensure_open(invoice)
        item = InvoiceItem(
            description=description or "New item",
            quantity=self._non_negative("quantity", quantity),
            unit_price=to_decimal(unit_price),
            sort_order=max((i.sort_order for i in invoice.items), default=-1) + 1,
            id=uuid.uuid4().hex,
        )
        item.recompute()
        invoice.items.append(item)
        self.recalculate(invoice)
        return item

    def update_item(self, invoice: Invoice, item_id: str, description: str | None = None,
                    quantity=None, unit_price=None) -> InvoiceItem:
        self.ensure_open(invoice)
        item = invoice.find_item(item_id)
        new_quantity = self._non_negative("quantity", quantity) if quantity is not None else item.quantity
        new_price = to_decimal(unit_price) if unit_price is not None else item.unit_price

        if description is not None:
            item.description = description
        item.quantity, item.unit_price = new_quantity, new_price
        item.recompute()
        self.recalculate(invoice)
        return item

    def remove_item(self, invoice: Invoice, item_id: str) -> None:
        self.ensure_open(invoice)
        item = invoice.find_item(item_id)
        invoice.items.remove(item)
        self.recalculate(invoice)

    def recalculate(self, invoice: Invoice) -> Invoice:
        """Recompute (subtotal, taxes, total) from the items and store them together."""
        subtotal = quantize_money(sum((item.total for item in invoice.items), Decimal('0')))
        tps_amount, tvq_amount, _ = PricingCalculator.apply_taxes(subtotal, invoice.tps_rate, invoice.tvq_rate)
        tps_amount, tvq_amount = quantize_money(tps_amount), quantize_money(tvq_amount)
        total = subtotal + tps_amount + tvq_amount
        if invoice.late_fee_applied:
            total += invoice.late_fee_amount

        invoice.subtotal, invoice.tps_amount, invoice.tvq_amount, invoice.total = (
            subtotal, tps_amount, tvq_amount, total
        )
        return invoice

    def ensure_deletable(self, invoice: Invoice) -> None:
        if invoice.amount_paid > 0:
            raise StateConflictError(
                f"Invoice {invoice.invoice_number} has recorded payments and cannot be deleted"
            )

    @staticmethod
    def _non_negative(name: str, value) -> Decimal:
        coerced = to_decimal(value)
        if coerced < 0:
            raise ValidationError(f"{name} cannot be negative, got: {coerced}")
        return coerced
