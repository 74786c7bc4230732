"""
Late Fee Policy

Time-based eligibility for the one-time late fee, and the explicit
apply / remove transitions on an invoice. Nothing here runs on a clock:
overdue days are computed on read for the day passed in.
"""

import logging
from datetime import date
from decimal import Decimal

from ..errors import StateConflictError, ValidationError
from ..models import Invoice, InvoiceStatus, LateFeeStatus
from .pricing import quantize_money

logger = logging.getLogger(__name__)


class LateFeePolicy:
    """2% of the invoice subtotal, once the invoice is 30 days past due."""

    LATE_FEE_RATE = Decimal('0.02')
    LATE_FEE_DAYS = 30

    CLOSED_STATUSES = (InvoiceStatus.PAID, InvoiceStatus.CANCELLED)

    def days_overdue(self, invoice: Invoice, today: date | None = None) -> int:
        if invoice.status in self.CLOSED_STATUSES or invoice.due_date is None:
            return 0
        today = today or date.today()
        return max(0, (today - invoice.due_date).days)

    def fee_amount(self, invoice: Invoice) -> Decimal:
        return quantize_money(invoice.subtotal * self.LATE_FEE_RATE)

    def is_eligible(self, invoice: Invoice, today: date | None = None) -> bool:
        return (
            self.days_overdue(invoice, today) >= self.LATE_FEE_DAYS
            and not invoice.late_fee_applied
            and invoice.status != InvoiceStatus.PAID
        )

    def evaluate(self, invoice: Invoice, today: date | None = None) -> LateFeeStatus:
        return LateFeeStatus(
            days_overdue=self.days_overdue(invoice, today),
            is_eligible=self.is_eligible(invoice, today),
            fee_amount=self.fee_amount(invoice),
            late_fee_applied=invoice.late_fee_applied,
            late_fee_amount=invoice.late_fee_amount,
        )

    def apply(self, invoice: Invoice, today: date | None = None) -> Invoice:
        """Add the fee to the invoice total. Refused if already applied."""
        if invoice.late_fee_applied:
            raise StateConflictError(f"A late fee is already applied to invoice {invoice.invoice_number}")
        if invoice.status in self.CLOSED_STATUSES:
            raise StateConflictError(
                f"Cannot apply a late fee to a {invoice.status.value.lower()} invoice"
            )

        days = self.days_overdue(invoice, today)
        if days < self.LATE_FEE_DAYS:
            raise ValidationError(
                f"Invoice is {days} days overdue; a late fee requires {self.LATE_FEE_DAYS}"
            )

        fee = self.fee_amount(invoice)
        invoice.late_fee_applied = True
        invoice.late_fee_amount = fee
        invoice.total += fee

        logger.info(f"Late fee of {fee} applied to invoice {invoice.invoice_number} ({days} days overdue)")
        return invoice

    def remove(self, invoice: Invoice) -> Invoice:
        """Take the applied fee back out of the total. No-op if none is applied."""
        if not invoice.late_fee_applied:
            return invoice
        if invoice.status in self.CLOSED_STATUSES:
            raise StateConflictError(
                f"Cannot remove a late fee from a {invoice.status.value.lower()} invoice"
            )

        invoice.total -= invoice.late_fee_amount
        invoice.late_fee_applied = False
        invoice.late_fee_amount = Decimal('0')

        logger.info(f"Late fee removed from invoice {invoice.invoice_number}")
        return invoice
