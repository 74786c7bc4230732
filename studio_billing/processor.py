"""
Billing Processor - Main Orchestrator

Coordinates validation, the calculators and the lifecycles for each billing
operation, and exposes a dict-in / dict-out API for the HTTP entry points.

Records arrive as plain dicts from the persistence collaborator; the mutated
records are returned in the response for it to save.

Each dict call works on its own copy of the records, so the keyed locks only
serialise writers sharing the same objects (the object API). Across requests
the collaborator serialises instead: every mutating response carries a
"precondition" block describing the record as it was read (status, invoice
count, late-fee flag...). Saving is a compare-and-set against it, and a
mismatch means another writer got there first and the call must be retried.
"""

import logging
import secrets
from datetime import date
from typing import Any, Dict

from .calculators import (
    AuthorSelection,
    BalanceTracker,
    ClientSelection,
    InvoiceGenerator,
    LateFeePolicy,
    PricingCalculator,
)
from .errors import NotFoundError, ValidationError
from .lifecycles import InvoiceLifecycle, QuoteLifecycle
from .locks import KeyedLocks
from .models import (
    ApprovalSubmission,
    BalanceSummary,
    BillableExpense,
    GeneratedInvoice,
    Invoice,
    InvoiceRequest,
    InvoiceStatus,
    LateFeeStatus,
    Payment,
    PricingResult,
    Quote,
    StandaloneInvoiceRequest,
    parse_date,
    parse_enum,
)
from .output import OutputBuilder
from .validators import InputValidator

logger = logging.getLogger(__name__)


class BillingProcessor:
    """
    Main orchestrator for quoting and invoicing.

    Object API (shared records, guarded by keyed locks):
    - quote_totals / balance
    - send_quote / view_quote / approve_quote
    - create_invoice / create_standalone_invoice
    - record_payment / late_fee / set_invoice_status

    Dict API: the same operations as *_from_dict methods.
    """

    LATE_FEE_ACTIONS = ("status", "apply", "remove")

    def __init__(self, payment_notifier=None):
        self.validator = InputValidator()
        self.pricing = PricingCalculator()
        self.balance_tracker = BalanceTracker()
        self.invoice_generator = InvoiceGenerator(balance_tracker=self.balance_tracker)
        self.late_fee_policy = LateFeePolicy()
        self.quote_lifecycle = QuoteLifecycle(pricing=self.pricing)
        self.invoice_lifecycle = InvoiceLifecycle(notifier=payment_notifier)
        self.output_builder = OutputBuilder()
        self.locks = KeyedLocks()

    # -------------------------------------------------------------------------
    # Quotes
    # -------------------------------------------------------------------------

    def quote_totals(self, quote: Quote, submission: ApprovalSubmission | None = None) -> PricingResult:
        """Author totals, or client totals when the client's choices are given."""
        self.validator.validate_quote(quote)
        if submission is None:
            return self.pricing.calculate_quote(quote, AuthorSelection())
        return self.pricing.calculate_quote(
            quote, ClientSelection(submission.selections, submission.variant_selections)
        )

    def balance(self, quote: Quote, expenses: list[BillableExpense] = ()) -> BalanceSummary:
        return self.balance_tracker.summarize_quote(quote, expenses)

    def send_quote(self, quote: Quote) -> Quote:
        self.validator.validate_quote(quote)
        with self.locks.hold(f"quote:{quote.id}"):
            self.quote_lifecycle.send(quote)
            self.quote_lifecycle.recompute_totals(quote)
        return quote

    def view_quote(self, quote: Quote, token: str,
                   submission: ApprovalSubmission | None = None) -> tuple[PricingResult, bool]:
        """Public read by token. Returns the client totals and whether the quote moved to VIEWED."""
        self._check_token(quote, token)
        with self.locks.hold(f"quote:{quote.id}"):
            changed = self.quote_lifecycle.record_view(quote)
        return self.quote_totals(quote, submission or ApprovalSubmission()), changed

    def approve_quote(self, quote: Quote, token: str, submission: ApprovalSubmission) -> PricingResult:
        self._check_token(quote, token)
        self.validator.validate_quote(quote)
        with self.locks.hold(f"quote:{quote.id}"):
            return self.quote_lifecycle.approve(quote, submission)

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    def create_invoice(
        self,
        quote: Quote,
        request: InvoiceRequest,
        expenses: list[BillableExpense] = (),
        issue_date: date | None = None,
    ) -> GeneratedInvoice:
        """
        Create an invoice against a quote.

        The quote lock is held from reading quote.invoices to appending the new
        invoice, so two concurrent deposit requests cannot both pass the
        one-deposit check. The number prefix lock is taken after it.
        """
        self.validator.validate_invoice_request(request)
        prefix = self.invoice_generator.numberer.prefix_for(quote.client_code, quote.project_number)
        with self.locks.hold(f"quote:{quote.id}"), self.locks.hold(f"numbers:{prefix}"):
            generated = self.invoice_generator.generate(quote, request, expenses, issue_date=issue_date)
            quote.invoices.append(generated.invoice)
        return generated

    def create_standalone_invoice(
        self,
        request: StandaloneInvoiceRequest,
        invoices: list[Invoice],
        expenses: list[BillableExpense] = (),
        issue_date: date | None = None,
    ) -> GeneratedInvoice:
        """
        Create an invoice on a project without a quote.

        ``invoices`` are the invoices already numbered under the project's
        prefix; the new one is appended to it while the prefix lock is held.
        """
        prefix = self.invoice_generator.numberer.prefix_for(request.client_code, request.project_number)
        with self.locks.hold(f"numbers:{prefix}"):
            generated = self.invoice_generator.generate_standalone(
                request, expenses, invoices, issue_date=issue_date
            )
            invoices.append(generated.invoice)
        return generated

    def record_payment(self, invoice: Invoice, payment: Payment) -> Invoice:
        self.validator.validate_payment(payment)
        with self.locks.hold(f"invoice:{invoice.id}"):
            return self.invoice_lifecycle.record_payment(invoice, payment)

    def late_fee(self, invoice: Invoice, action: str = "status", today: date | None = None) -> LateFeeStatus:
        if action not in self.LATE_FEE_ACTIONS:
            raise ValidationError(
                f"Invalid late fee action: {action}. Must be one of: {', '.join(self.LATE_FEE_ACTIONS)}"
            )
        with self.locks.hold(f"invoice:{invoice.id}"):
            self.invoice_lifecycle.refresh_overdue(invoice, today)
            if action == "apply":
                self.late_fee_policy.apply(invoice, today)
            elif action == "remove":
                self.late_fee_policy.remove(invoice)
            return self.late_fee_policy.evaluate(invoice, today)

    def set_invoice_status(self, invoice: Invoice, status: InvoiceStatus, today: date | None = None) -> Invoice:
        with self.locks.hold(f"invoice:{invoice.id}"):
            return self.invoice_lifecycle.transition(invoice, status, today)

    # -------------------------------------------------------------------------
    # Dict API
    # -------------------------------------------------------------------------

    def quote_totals_from_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Totals for a quote.

        Input: {"quote": {...}} for the author view, plus "selections" /
        "variant_selections" for the client view.
        """
        quote = Quote.from_dict(self._require(data, "quote"))
        submission = None
        if "selections" in data or "variant_selections" in data:
            submission = ApprovalSubmission.from_dict(data)
        result = self.quote_totals(quote, submission)
        return {"quote_id": quote.id, "totals": self.output_builder.pricing(result)}

    def balance_from_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        quote = Quote.from_dict(self._require(data, "quote"))
        expenses = [BillableExpense.from_dict(e) for e in data.get("expenses") or []]
        return {"quote_id": quote.id, "balance": self.output_builder.balance(self.balance(quote, expenses))}

    def send_from_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        quote = Quote.from_dict(self._require(data, "quote"))
        precondition = self.output_builder.quote_precondition(quote)
        self.send_quote(quote)
        return {"quote": self.output_builder.quote(quote), "precondition": precondition}

    def view_from_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        quote = Quote.from_dict(self._require(data, "quote"))
        precondition = self.output_builder.quote_precondition(quote)
        result, changed = self.view_quote(
            quote, data.get("token"), ApprovalSubmission.from_dict(data)
        )
        return {
            "quote": self.output_builder.quote(quote),
            "totals": self.output_builder.pricing(result),
            "status_changed": changed,
            "precondition": precondition,
        }

    def approve_from_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        quote = Quote.from_dict(self._require(data, "quote"))
        precondition = self.output_builder.quote_precondition(quote)
        result = self.approve_quote(quote, data.get("token"), ApprovalSubmission.from_dict(data))
        return {
            "quote": self.output_builder.quote(quote),
            "totals": self.output_builder.pricing(result),
            "precondition": precondition,
        }

    def create_invoice_from_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Input: {"quote": {...}, "request": {...}, "expenses": [...], "issue_date": "YYYY-MM-DD"}

        Returns the new invoice, the expenses it billed, the balance after it
        and the quote's invoice count / deposit flag as read.
        """
        quote = Quote.from_dict(self._require(data, "quote"))
        request = InvoiceRequest.from_dict(data.get("request") or {})
        expenses = [BillableExpense.from_dict(e) for e in data.get("expenses") or []]
        precondition = self.output_builder.quote_precondition(quote)

        generated = self.create_invoice(quote, request, expenses, issue_date=parse_date(data.get("issue_date")))

        output = self.output_builder.generated_invoice(generated)
        output["balance"] = self.output_builder.balance(self.balance(quote, expenses))
        output["precondition"] = precondition
        return output

    def create_standalone_from_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Input: {"request": {...}, "invoices": [...], "expenses": [...], "issue_date": "YYYY-MM-DD"}

        "invoices" are the invoices already numbered for the client/project.
        A cancelled one whose number is taken over comes back as
        "reclaimed_invoice" with its reusable flag cleared.
        """
        request = StandaloneInvoiceRequest.from_dict(self._require(data, "request"))
        invoices = [Invoice.from_dict(i) for i in data.get("invoices") or []]
        expenses = [BillableExpense.from_dict(e) for e in data.get("expenses") or []]
        prefix = self.invoice_generator.numberer.prefix_for(request.client_code, request.project_number)
        precondition = self.output_builder.numbering_precondition(prefix, invoices)

        generated = self.create_standalone_invoice(
            request, invoices, expenses, issue_date=parse_date(data.get("issue_date"))
        )

        output = self.output_builder.generated_invoice(generated)
        output["precondition"] = precondition
        return output

    def record_payment_from_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        invoice = Invoice.from_dict(self._require(data, "invoice"))
        payment = Payment.from_dict(self._require(data, "payment"))
        precondition = self.output_builder.invoice_precondition(invoice)
        self.record_payment(invoice, payment)
        return {"invoice": self.output_builder.invoice(invoice), "precondition": precondition}

    def late_fee_from_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        invoice = Invoice.from_dict(self._require(data, "invoice"))
        precondition = self.output_builder.invoice_precondition(invoice)
        status = self.late_fee(invoice, data.get("action", "status"), parse_date(data.get("today")))
        return {
            "invoice": self.output_builder.invoice(invoice),
            "late_fee": self.output_builder.late_fee(status),
            "precondition": precondition,
        }

    def invoice_status_from_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        invoice = Invoice.from_dict(self._require(data, "invoice"))
        status = parse_enum(InvoiceStatus, self._require(data, "status"))
        precondition = self.output_builder.invoice_precondition(invoice)
        self.set_invoice_status(invoice, status, parse_date(data.get("today")))
        return {"invoice": self.output_builder.invoice(invoice), "precondition": precondition}

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _check_token(quote: Quote, token: str | None) -> None:
        # An unknown token and an unsent quote look the same to the public
        if not token or not quote.public_token:
            raise NotFoundError("Quote not found")
        if not secrets.compare_digest(quote.public_token.encode(), str(token).encode()):
            raise NotFoundError("Quote not found")

    @staticmethod
    def _require(data: Dict[str, Any], key: str):
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        value = data.get(key)
        if value is None:
            raise ValidationError(f"'{key}' is required")
        return value
