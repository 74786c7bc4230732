"""
Output Builder

Turns engine results and mutated records into JSON-ready dicts. Record dicts
use the same keys the models' from_dict methods read, so a caller can persist
them and feed them back unchanged.
"""

from datetime import date
from decimal import Decimal

from .calculators import quantize_money
from .models import (
    BalanceSummary,
    BillableExpense,
    GeneratedInvoice,
    Invoice,
    InvoiceItem,
    InvoiceType,
    LateFeeStatus,
    PricingResult,
    Quote,
    QuoteItem,
)


def to_money(value: Decimal | None) -> float | None:
    """Convert Decimal to float with 2 decimal places (ROUND_HALF_UP)."""
    if value is None:
        return None
    return float(quantize_money(value))


def to_number(value: Decimal | None) -> float | None:
    """Rates, quantities and hours keep their precision."""
    if value is None:
        return None
    return float(value)


def to_iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


class OutputBuilder:
    """Builds API response payloads."""

    def pricing(self, result: PricingResult) -> dict:
        return {
            "subtotal": to_money(result.subtotal),
            "discounts": [
                {
                    "type": detail.discount.type.value,
                    "value": to_number(detail.discount.value),
                    "label": detail.discount.label,
                    "amount": to_money(detail.amount),
                }
                for detail in result.discount_details
            ],
            "total_discount": to_money(result.total_discount),
            "after_discount": to_money(result.after_discount),
            "tps_amount": to_money(result.tps_amount),
            "tvq_amount": to_money(result.tvq_amount),
            "total": to_money(result.total),
            "deposit_amount": to_money(result.deposit_amount),
            "warnings": list(result.warnings),
        }

    def balance(self, summary: BalanceSummary) -> dict:
        return {
            "quote_total": to_money(summary.quote_total),
            "total_invoiced": to_money(summary.total_invoiced),
            "remaining_balance": to_money(summary.remaining_balance),
            "has_deposit": summary.has_deposit,
            "is_fully_invoiced": summary.is_fully_invoiced,
            "expenses_only_mode": summary.expenses_only_mode,
            "permitted_types": [t.value for t in summary.permitted_types],
            "existing_invoices": [
                {
                    "id": inv.id,
                    "invoice_number": inv.invoice_number,
                    "invoice_type": inv.invoice_type.value,
                    "status": inv.status.value,
                    "total": to_money(inv.total),
                }
                for inv in summary.existing_invoices
            ],
        }

    def generated_invoice(self, generated: GeneratedInvoice) -> dict:
        return {
            "invoice": self.invoice(generated.invoice),
            "base_amount": to_money(generated.base_amount),
            "expenses_total": to_money(generated.expenses_total),
            "billed_expenses": [self.expense(e) for e in generated.billed_expenses],
            "reclaimed_invoice": (
                self.invoice(generated.reclaimed_from) if generated.reclaimed_from else None
            ),
        }

    def late_fee(self, status: LateFeeStatus) -> dict:
        return {
            "days_overdue": status.days_overdue,
            "is_eligible": status.is_eligible,
            "fee_amount": to_money(status.fee_amount),
            "late_fee_applied": status.late_fee_applied,
            "late_fee_amount": to_money(status.late_fee_amount),
        }

    # -------------------------------------------------------------------------
    # Preconditions (record state as read, for compare-and-set saves)
    # -------------------------------------------------------------------------

    def quote_precondition(self, quote: Quote) -> dict:
        return {
            "quote_id": quote.id,
            "status": quote.status.value,
            "invoice_count": len(quote.invoices),
            "has_deposit": any(inv.invoice_type == InvoiceType.DEPOSIT for inv in quote.invoices),
        }

    def invoice_precondition(self, invoice: Invoice) -> dict:
        return {
            "invoice_id": invoice.id,
            "status": invoice.status.value,
            "total": to_money(invoice.total),
            "amount_paid": to_money(invoice.amount_paid),
            "late_fee_applied": invoice.late_fee_applied,
        }

    def numbering_precondition(self, prefix: str, invoices: list[Invoice]) -> dict:
        return {
            "prefix": prefix,
            "invoice_count": len(invoices),
            "invoice_numbers": sorted(inv.invoice_number for inv in invoices if inv.invoice_number),
        }

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    def quote(self, quote: Quote) -> dict:
        return {
            "id": quote.id,
            "quote_number": quote.quote_number,
            "status": quote.status.value,
            "tps_rate": to_number(quote.tps_rate),
            "tvq_rate": to_number(quote.tvq_rate),
            "deposit_percent": to_number(quote.deposit_percent),
            "discounts": [
                {
                    "type": d.type.value,
                    "value": to_number(d.value),
                    "label": d.label,
                    "reason": d.reason,
                }
                for d in quote.discounts
            ],
            "sections": [
                {
                    "id": section.id,
                    "title": section.title,
                    "items": [self.quote_item(item) for item in section.items],
                }
                for section in quote.sections
            ],
            "subtotal": to_money(quote.subtotal),
            "total": to_money(quote.total),
            "public_token": quote.public_token,
            "end_notes": [{"title": n.title, "content": n.content} for n in quote.end_notes],
            "valid_until": to_iso(quote.valid_until),
            "client_code": quote.client_code,
            "project_number": quote.project_number,
            "invoices": [self.invoice(inv) for inv in quote.invoices],
        }

    def quote_item(self, item: QuoteItem) -> dict:
        return {
            "id": item.id,
            "name": item.name,
            "item_types": sorted(t.value for t in item.item_types),
            "billing_mode": item.billing_mode.value,
            "quantity": to_number(item.quantity),
            "unit_price": to_number(item.unit_price),
            "hourly_rate": to_number(item.hourly_rate),
            "hours": to_number(item.hours),
            "include_in_total": item.include_in_total,
            "is_selected": item.is_selected,
            "variants": [{"label": v.label, "price": to_number(v.price)} for v in item.variants],
            "selected_variant": item.selected_variant,
            "collaborator_type": item.collaborator_type.value if item.collaborator_type else None,
            "collaborator_name": item.collaborator_name,
            "collaborator_amount": to_money(item.collaborator_amount),
        }

    def invoice(self, invoice: Invoice) -> dict:
        return {
            "id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "invoice_type": invoice.invoice_type.value,
            "status": invoice.status.value,
            "subtotal": to_money(invoice.subtotal),
            "tps_amount": to_money(invoice.tps_amount),
            "tvq_amount": to_money(invoice.tvq_amount),
            "total": to_money(invoice.total),
            "amount_paid": to_money(invoice.amount_paid),
            "balance_due": to_money(invoice.balance_due),
            "tps_rate": to_number(invoice.tps_rate),
            "tvq_rate": to_number(invoice.tvq_rate),
            "late_fee_applied": invoice.late_fee_applied,
            "late_fee_amount": to_money(invoice.late_fee_amount),
            "issue_date": to_iso(invoice.issue_date),
            "due_date": to_iso(invoice.due_date),
            "payment_date": to_iso(invoice.payment_date),
            "payment_method": invoice.payment_method,
            "notes": invoice.notes,
            "quote_id": invoice.quote_id,
            "is_number_reusable": invoice.is_number_reusable,
            "items": [self.invoice_item(item) for item in invoice.items],
        }

    def invoice_item(self, item: InvoiceItem) -> dict:
        return {
            "id": item.id,
            "description": item.description,
            "quantity": to_number(item.quantity),
            "unit_price": to_money(item.unit_price),
            "total": to_money(item.total),
            "sort_order": item.sort_order,
        }

    def expense(self, expense: BillableExpense) -> dict:
        return {
            "id": expense.id,
            "amount": to_money(expense.amount),
            "description": expense.description,
            "vendor": expense.vendor,
            "is_billable": expense.is_billable,
            "is_billed": expense.is_billed,
            "invoice_id": expense.invoice_id,
        }
