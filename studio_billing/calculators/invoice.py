"""
Invoice Generator

Materialises an invoice from an accepted quote: base amount by invoice type,
billable-expense roll-up, taxes, line items, type and number. Also raises
standalone invoices directly on a project.
"""

import logging
import uuid
from datetime import date, timedelta
from decimal import Decimal

from .. import settings
from ..errors import StateConflictError, ValidationError
from ..models import (
    AmountMode,
    BalanceSummary,
    BillableExpense,
    GeneratedInvoice,
    Invoice,
    InvoiceItem,
    InvoiceRequest,
    InvoiceStatus,
    InvoiceType,
    Quote,
    QuoteStatus,
    StandaloneInvoiceRequest,
)
from .balance import BalanceTracker
from .numbering import InvoiceNumberer
from .pricing import PricingCalculator, quantize_money
from .selection import AuthorSelection, is_included

logger = logging.getLogger(__name__)


class InvoiceGenerator:
    """Builds a new invoice against a quote, or a standalone one."""

    # A payment invoice leaving less than this on the quote is the FINAL one
    FINAL_TOLERANCE = Decimal('0.10')

    def __init__(
        self,
        balance_tracker: BalanceTracker | None = None,
        numberer: InvoiceNumberer | None = None,
        due_days: int | None = None,
    ):
        self.balance_tracker = balance_tracker or BalanceTracker()
        self.numberer = numberer or InvoiceNumberer()
        self.due_days = settings.INVOICE_DUE_DAYS if due_days is None else due_days

    def generate(
        self,
        quote: Quote | None,
        request: InvoiceRequest,
        expenses: list[BillableExpense] = (),
        issue_date: date | None = None,
        numbered_invoices: list[Invoice] | None = None,
    ) -> GeneratedInvoice:
        """
        Generate the invoice and mark the folded-in expenses as billed.

        Args:
            quote: the accepted quote, with the invoices already raised against it
            request: type, amount mode and selected expense ids
            expenses: the project's expenses; only billable, unbilled ones are used
            issue_date: defaults to today
            numbered_invoices: invoices sharing the number prefix (defaults to quote.invoices)

        The base amount is a tax-inclusive share of the quote total. The
        invoice total carries exactly that amount (rounded to the cent), so
        invoicing 100% of the remaining balance always closes the quote. The
        pre-tax subtotal is derived from it and the last tax absorbs the
        rounding. Expenses are pre-tax and are added on top (never on a deposit).
        """
        if quote is None:
            raise ValidationError("A quote must be selected to create an invoice")
        if quote.status != QuoteStatus.ACCEPTED:
            raise StateConflictError("Only an accepted quote can be converted into an invoice")
        self._check_request(request)

        balance = self.balance_tracker.summarize(quote.total, quote.invoices, expenses)
        is_deposit = request.invoice_type == InvoiceType.DEPOSIT

        if is_deposit and balance.has_deposit:
            raise StateConflictError("A deposit invoice already exists for this quote")

        selected = [] if is_deposit else self._select_expenses(request.expense_ids, expenses)
        expenses_total = sum((e.amount for e in selected), Decimal('0'))
        expenses_only = balance.is_fully_invoiced and expenses_total > 0

        base_amount = self.base_amount(quote, request, balance)
        multiplier = PricingCalculator.tax_multiplier(quote.tps_rate, quote.tvq_rate)
        base_total = quantize_money(base_amount)
        base_subtotal = quantize_money(base_total / multiplier)
        subtotal = quantize_money(base_subtotal + expenses_total)

        if subtotal <= 0 and not expenses_only:
            if balance.is_fully_invoiced:
                raise ValidationError("The quote is fully invoiced and no billable expense was selected")
            raise ValidationError("Invoice amount must be greater than zero")

        total = base_total + quantize_money(expenses_total * multiplier)
        tps_amount, tvq_amount = self.split_taxes(subtotal, total, quote.tps_rate, quote.tvq_rate)
        issued = issue_date or date.today()

        invoice_number, reclaimed = self.numberer.claim_number(
            self.numberer.prefix_for(quote.client_code, quote.project_number),
            quote.invoices if numbered_invoices is None else numbered_invoices,
        )
        invoice = Invoice(
            id=uuid.uuid4().hex,
            invoice_number=invoice_number,
            invoice_type=self._invoice_type(request, balance, base_amount, expenses_only),
            status=InvoiceStatus.DRAFT,
            subtotal=subtotal,
            tps_amount=tps_amount,
            tvq_amount=tvq_amount,
            total=total,
            tps_rate=quote.tps_rate,
            tvq_rate=quote.tvq_rate,
            issue_date=issued,
            due_date=issued + timedelta(days=self.due_days),
            quote_id=quote.id,
        )
        invoice.items = self._build_items(quote, invoice.invoice_type, base_subtotal, selected)
        self._mark_billed(invoice, selected)

        logger.info(
            f"Generated {invoice.invoice_type.value} invoice {invoice.invoice_number} "
            f"for quote {quote.quote_number or quote.id}: total {invoice.total}"
        )

        return GeneratedInvoice(
            invoice=invoice,
            base_amount=base_amount,
            expenses_total=expenses_total,
            billed_expenses=selected,
            reclaimed_from=reclaimed,
        )

    def generate_standalone(
        self,
        request: StandaloneInvoiceRequest,
        expenses: list[BillableExpense] = (),
        numbered_invoices: list[Invoice] = (),
        issue_date: date | None = None,
    ) -> GeneratedInvoice:
        """
        Raise a DRAFT invoice on a project without a quote.

        Lines are taken as given (an empty invoice is allowed and edited
        later); selected billable expenses become extra lines. Taxes apply
        to the whole pre-tax subtotal.
        """
        if any(item.quantity < 0 or item.unit_price < 0 for item in request.items):
            raise ValidationError("Invoice lines must have a non-negative quantity and unit price")
        if request.tps_rate < 0 or request.tvq_rate < 0:
            raise ValidationError("Tax rates must not be negative")

        selected = self._select_expenses(request.expense_ids, expenses)
        expenses_total = sum((e.amount for e in selected), Decimal('0'))
        lines_total = sum((item.quantity * item.unit_price for item in request.items), Decimal('0'))
        subtotal = quantize_money(lines_total + expenses_total)
        tps_amount = quantize_money(subtotal * request.tps_rate)
        tvq_amount = quantize_money(subtotal * request.tvq_rate)
        issued = issue_date or date.today()

        invoice_number, reclaimed = self.numberer.claim_number(
            self.numberer.prefix_for(request.client_code, request.project_number),
            list(numbered_invoices),
        )
        invoice = Invoice(
            id=uuid.uuid4().hex,
            invoice_number=invoice_number,
            invoice_type=InvoiceType.STANDALONE,
            status=InvoiceStatus.DRAFT,
            subtotal=subtotal,
            tps_amount=tps_amount,
            tvq_amount=tvq_amount,
            total=subtotal + tps_amount + tvq_amount,
            tps_rate=request.tps_rate,
            tvq_rate=request.tvq_rate,
            issue_date=issued,
            due_date=issued + timedelta(days=self.due_days),
            notes=request.notes,
        )

        items = []
        for index, line in enumerate(request.items):
            items.append(InvoiceItem(
                description=line.description,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total=line.quantity * line.unit_price,
                sort_order=index,
                id=uuid.uuid4().hex,
            ))
        for index, expense in enumerate(selected, start=len(items)):
            items.append(self._line(f"Expense: {self._expense_label(expense)}", expense.amount, index))
        invoice.items = items
        self._mark_billed(invoice, selected)

        logger.info(f"Generated standalone invoice {invoice.invoice_number}: total {invoice.total}")

        return GeneratedInvoice(
            invoice=invoice,
            base_amount=lines_total,
            expenses_total=expenses_total,
            billed_expenses=selected,
            reclaimed_from=reclaimed,
        )

    def base_amount(self, quote: Quote, request: InvoiceRequest, balance: BalanceSummary) -> Decimal:
        """
        Tax-inclusive amount taken from the quote.

        Priority order:
        1. Fully invoiced: 0 (expenses-only invoice)
        2. DEPOSIT: quote total x deposit_percent
        3. FINAL, percentage mode: remaining balance x percentage
        4. FINAL, fixed mode: entered amount
        Never more than the remaining balance.
        """
        if balance.is_fully_invoiced:
            return Decimal('0')

        if request.invoice_type == InvoiceType.DEPOSIT:
            return PricingCalculator.deposit_amount(quote.total, quote.deposit_percent)

        if request.amount_mode == AmountMode.PERCENTAGE:
            amount = balance.remaining_balance * request.percentage / Decimal('100')
        elif request.fixed_amount is None:
            raise ValidationError("fixed_amount is required when amount_mode='fixed'")
        else:
            amount = request.fixed_amount
        return min(amount, balance.remaining_balance)

    @staticmethod
    def split_taxes(
        subtotal: Decimal, total: Decimal, tps_rate: Decimal, tvq_rate: Decimal
    ) -> tuple[Decimal, Decimal]:
        """
        TPS and TVQ on ``subtotal`` such that ``subtotal + tps + tvq == total``.

        TPS is rounded normally; TVQ (or TPS when there is no TVQ) takes the
        cent left over from rounding the subtotal out of a tax-inclusive total.
        """
        tps_amount = quantize_money(subtotal * tps_rate)
        tvq_amount = quantize_money(subtotal * tvq_rate)
        residual = total - subtotal - tps_amount - tvq_amount
        if tvq_rate:
            tvq_amount += residual
        else:
            tps_amount += residual
        return tps_amount, tvq_amount

    @staticmethod
    def _check_request(request: InvoiceRequest) -> None:
        """Reject requests the generator cannot honour, whoever built them."""
        if request.invoice_type not in (InvoiceType.DEPOSIT, InvoiceType.FINAL):
            raise ValidationError(
                f"invoice_type must be DEPOSIT or FINAL, got: {request.invoice_type.value}"
            )
        if request.invoice_type == InvoiceType.DEPOSIT:
            return
        if request.amount_mode == AmountMode.PERCENTAGE and not 0 <= request.percentage <= 100:
            raise ValidationError(f"percentage must be between 0 and 100, got: {request.percentage}")
        if request.fixed_amount is not None and request.fixed_amount < 0:
            raise ValidationError(f"fixed_amount must not be negative, got: {request.fixed_amount}")

    def _invoice_type(
        self,
        request: InvoiceRequest,
        balance: BalanceSummary,
        base_amount: Decimal,
        expenses_only: bool,
    ) -> InvoiceType:
        if expenses_only:
            return InvoiceType.STANDALONE
        if request.invoice_type == InvoiceType.DEPOSIT:
            return InvoiceType.DEPOSIT
        if balance.remaining_balance - base_amount < self.FINAL_TOLERANCE:
            return InvoiceType.FINAL
        return InvoiceType.PARTIAL

    @staticmethod
    def _select_expenses(expense_ids: list[str], expenses: list[BillableExpense]) -> list[BillableExpense]:
        """Keep requested expenses that are still billable and unbilled."""
        wanted = set(expense_ids)
        return [e for e in expenses if e.id in wanted and e.is_pending]

    @staticmethod
    def _mark_billed(invoice: Invoice, expenses: list[BillableExpense]) -> None:
        # Expenses are only touched once the invoice is fully built, and never
        # released again: cancelling or deleting the invoice leaves them billed
        for expense in expenses:
            expense.is_billed = True
            expense.invoice_id = invoice.id

    def _build_items(
        self,
        quote: Quote,
        invoice_type: InvoiceType,
        base_subtotal: Decimal,
        expenses: list[BillableExpense],
    ) -> list[InvoiceItem]:
        reference = quote.quote_number or quote.id

        if invoice_type == InvoiceType.DEPOSIT:
            percent = f"{quote.deposit_percent.normalize():f}"
            return [self._line(f"Deposit ({percent}%) - Quote {reference}", base_subtotal, 0)]

        if invoice_type == InvoiceType.STANDALONE:
            return [
                self._line(self._expense_label(e), e.amount, index)
                for index, e in enumerate(expenses)
            ]

        source = AuthorSelection()
        titles = "\n".join(f"• {item.name}" for item in quote.items if is_included(item, source))
        description = f"Payment - Quote {reference}"
        if titles:
            description = f"{description}\n\n{titles}"

        items = [self._line(description, base_subtotal, 0)]
        for index, expense in enumerate(expenses, start=1):
            items.append(self._line(f"Expense: {self._expense_label(expense)}", expense.amount, index))
        return items

    @staticmethod
    def _expense_label(expense: BillableExpense) -> str:
        if expense.vendor:
            return f"{expense.description} ({expense.vendor})"
        return expense.description

    @staticmethod
    def _line(description: str, amount: Decimal, sort_order: int) -> InvoiceItem:
        return InvoiceItem(
            description=description,
            quantity=Decimal('1'),
            unit_price=amount,
            total=amount,
            sort_order=sort_order,
            id=uuid.uuid4().hex,
        )
