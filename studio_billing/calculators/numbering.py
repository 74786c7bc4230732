"""
Invoice Numbering

Invoice numbers read ``F-<CLIENT>-<PROJECT>-NN``. A cancelled invoice frees
its number, and the lowest freed number is handed out before a new one.
"""

import re

from ..models import Invoice, InvoiceStatus


class InvoiceNumberer:
    """Suggests and claims the next invoice number for a prefix."""

    def prefix_for(self, client_code: str | None, project_number: int | None) -> str:
        if not client_code:
            return "F"
        if project_number is None:
            return f"F-{client_code}"
        return f"F-{client_code}-{project_number:03d}"

    def next_number(self, prefix: str, invoices: list[Invoice]) -> str:
        pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")
        used = set()
        reusable = set()

        for invoice in invoices:
            match = pattern.match(invoice.invoice_number or "")
            if not match:
                continue
            sequence = int(match.group(1))
            if invoice.status == InvoiceStatus.CANCELLED and invoice.is_number_reusable:
                reusable.add(sequence)
            else:
                used.add(sequence)

        freed = sorted(reusable - used)
        if freed:
            sequence = freed[0]
        else:
            sequence = max(used | reusable, default=0) + 1

        return f"{prefix}-{sequence:02d}"

    def claim_number(self, prefix: str, invoices: list[Invoice]) -> tuple[str, Invoice | None]:
        """
        Take the next number for a new invoice.

        When the number is a freed one, the cancelled invoice that held it
        stops being reusable, so the number is never handed out twice.
        Returns the number and that cancelled invoice (or None).
        """
        number = self.next_number(prefix, invoices)
        for invoice in invoices:
            if (
                invoice.invoice_number == number
                and invoice.status == InvoiceStatus.CANCELLED
                and invoice.is_number_reusable
            ):
                invoice.is_number_reusable = False
                return number, invoice
        return number, None
