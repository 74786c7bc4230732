"""
Balance Tracker

Tracks how much of a quote's total has already been invoiced and which
invoice types may be raised next.
"""

from decimal import Decimal
from typing import Iterable

from ..models import BalanceSummary, BillableExpense, Invoice, InvoiceType, Quote


class BalanceTracker:
    """Computes the invoicing balance of a quote."""

    MONEY_EPSILON = Decimal('0.01')

    def summarize(
        self,
        quote_total: Decimal,
        invoices: list[Invoice],
        expenses: Iterable[BillableExpense] = (),
    ) -> BalanceSummary:
        """
        Summarize the balance against a quote.

        NOTE: every invoice counts toward total_invoiced, CANCELLED ones
        included. This mirrors how invoices are fetched for a quote today and
        can understate the remaining balance after a cancellation.
        """
        total_invoiced = sum((inv.total for inv in invoices), Decimal('0'))
        remaining = max(Decimal('0'), quote_total - total_invoiced)
        has_deposit = any(inv.invoice_type == InvoiceType.DEPOSIT for inv in invoices)
        is_fully_invoiced = remaining < self.MONEY_EPSILON
        has_pending_expenses = any(e.is_pending for e in expenses)
        expenses_only = is_fully_invoiced and has_pending_expenses

        return BalanceSummary(
            quote_total=quote_total,
            total_invoiced=total_invoiced,
            remaining_balance=remaining,
            has_deposit=has_deposit,
            is_fully_invoiced=is_fully_invoiced,
            expenses_only_mode=expenses_only,
            permitted_types=self._permitted_types(has_deposit, is_fully_invoiced, expenses_only),
            existing_invoices=list(invoices),
        )

    def summarize_quote(self, quote: Quote, expenses: Iterable[BillableExpense] = ()) -> BalanceSummary:
        return self.summarize(quote.total, quote.invoices, expenses)

    @staticmethod
    def _permitted_types(has_deposit: bool, is_fully_invoiced: bool, expenses_only: bool) -> list[InvoiceType]:
        permitted = []
        if not has_deposit and not is_fully_invoiced:
            permitted.append(InvoiceType.DEPOSIT)
        # FINAL with a zero base amount bills leftover expenses
        if not is_fully_invoiced or expenses_only:
            permitted.append(InvoiceType.FINAL)
        return permitted
