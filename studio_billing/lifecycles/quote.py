"""
Quote Lifecycle

DRAFT -> SENT -> VIEWED -> ACCEPTED | REFUSED | EXPIRED

Governs which quote mutations are allowed in which state and the side effects
of each transition (public token issuance, persisting the client's choices).
"""

import copy
import logging
import secrets
from datetime import date, timedelta
from typing import Callable

from .. import settings
from ..calculators import ClientSelection, PricingCalculator
from ..errors import StateConflictError, ValidationError
from ..models import (
    ApprovalSubmission,
    BillingMode,
    ItemChange,
    PricingResult,
    Quote,
    QuoteItem,
    QuoteStatus,
    optional_decimal,
    parse_enum,
    to_decimal,
)

logger = logging.getLogger(__name__)


def generate_public_token() -> str:
    return secrets.token_hex(16)


class QuoteLifecycle:
    """Status machine and guarded mutations for quotes."""

    APPROVABLE = (QuoteStatus.SENT, QuoteStatus.VIEWED)
    TERMINAL = (QuoteStatus.ACCEPTED, QuoteStatus.REFUSED, QuoteStatus.EXPIRED)

    MONEY_FIELDS = ("quantity", "unit_price")
    OPTIONAL_MONEY_FIELDS = ("hourly_rate", "hours")
    FLAG_FIELDS = ("include_in_total", "is_selected")

    def __init__(
        self,
        pricing: PricingCalculator | None = None,
        token_factory: Callable[[], str] = generate_public_token,
    ):
        self.pricing = pricing or PricingCalculator()
        self.token_factory = token_factory

    # -------------------------------------------------------------------------
    # Totals
    # -------------------------------------------------------------------------

    def recompute_totals(self, quote: Quote) -> PricingResult:
        """Recompute and store subtotal and total together."""
        result = self.pricing.calculate_quote(quote)
        quote.subtotal, quote.total = result.subtotal, result.total
        return result

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def send(self, quote: Quote) -> Quote:
        """
        Explicit send action.

        The first send moves DRAFT to SENT and issues the public token. Resending
        keeps the existing token and never moves a VIEWED quote back to SENT.
        """
        if quote.status in self.TERMINAL:
            raise StateConflictError(f"Cannot send a quote that is {quote.status.value}")

        if not quote.public_token:
            quote.public_token = self.token_factory()
        if quote.status == QuoteStatus.DRAFT:
            quote.status = QuoteStatus.SENT
            logger.info(f"Quote {quote.quote_number or quote.id} sent")
        return quote

    def record_view(self, quote: Quote) -> bool:
        """A public read. Returns True only for the SENT -> VIEWED transition."""
        if quote.status != QuoteStatus.SENT:
            return False
        quote.status = QuoteStatus.VIEWED
        logger.info(f"Quote {quote.quote_number or quote.id} viewed by client")
        return True

    def approve(self, quote: Quote, submission: ApprovalSubmission) -> PricingResult:
        """
        Client approval.

        The client's toggles and variant choices become the items' persisted
        is_selected / selected_variant, so editor reads show exactly what was
        approved. Everything is validated before the first write.
        """
        if quote.status not in self.APPROVABLE:
            raise StateConflictError(
                f"Quote cannot be approved in its current state ({quote.status.value})"
            )
        self._validate_submission(quote, submission)

        source = ClientSelection(submission.selections, submission.variant_selections)
        for item in quote.items:
            if item.is_a_la_carte:
                item.is_selected = source.is_selected(item)
            else:
                item.is_selected = True
            if item.variants:
                explicit = source.explicit_variant(item)
                item.selected_variant = explicit if explicit is not None else 0

        quote.status = QuoteStatus.ACCEPTED
        result = self.recompute_totals(quote)
        logger.info(f"Quote {quote.quote_number or quote.id} accepted: total {result.total}")
        return result

    def refuse(self, quote: Quote) -> Quote:
        if quote.status not in self.APPROVABLE:
            raise StateConflictError(f"Cannot refuse a quote that is {quote.status.value}")
        quote.status = QuoteStatus.REFUSED
        return quote

    def expire(self, quote: Quote) -> Quote:
        if quote.status in self.TERMINAL:
            raise StateConflictError(f"Cannot expire a quote that is {quote.status.value}")
        quote.status = QuoteStatus.EXPIRED
        return quote

    def is_past_validity(self, quote: Quote, today: date | None = None) -> bool:
        if quote.valid_until is None or quote.status in self.TERMINAL:
            return False
        return (today or date.today()) > quote.valid_until

    # -------------------------------------------------------------------------
    # Editing
    # -------------------------------------------------------------------------

    def ensure_editable(self, quote: Quote) -> None:
        if quote.status in self.TERMINAL:
            raise StateConflictError(
                f"Quote {quote.quote_number or quote.id} is {quote.status.value}; "
                "duplicate it to make changes"
            )

    def apply_item_change(self, quote: Quote, item_id: str, change: ItemChange) -> PricingResult:
        """
        Apply a single-field edit to an item and recompute the quote totals.

        The value is coerced and checked before the item is touched, so a
        rejected change leaves the quote as it was.
        """
        self.ensure_editable(quote)
        item = quote.find_item(item_id)
        value = self._coerce(item, change)
        setattr(item, change.field, value)
        return self.recompute_totals(quote)

    def duplicate(self, quote: Quote, new_id: str, quote_number: str = "", today: date | None = None) -> Quote:
        """A fresh DRAFT copy: no token, no invoices, a new validity window."""
        clone = copy.deepcopy(quote)
        clone.id = new_id
        clone.quote_number = quote_number
        clone.status = QuoteStatus.DRAFT
        clone.public_token = None
        clone.invoices = []
        clone.valid_until = (today or date.today()) + timedelta(days=settings.QUOTE_VALIDITY_DAYS)
        self.recompute_totals(clone)
        return clone

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _validate_submission(self, quote: Quote, submission: ApprovalSubmission) -> None:
        items = {item.id: item for item in quote.items}

        for item_id in submission.selections:
            if item_id not in items:
                raise ValidationError(f"Selection refers to an unknown item: {item_id}")

        for item_id, index in submission.variant_selections.items():
            item = items.get(item_id)
            if item is None:
                raise ValidationError(f"Variant selection refers to an unknown item: {item_id}")
            self._check_variant_index(item, index)

    @staticmethod
    def _check_variant_index(item: QuoteItem, index: int | None) -> None:
        if index is None:
            return
        if not item.variants:
            raise ValidationError(f"Item '{item.name}' has no price variants")
        if not 0 <= index < len(item.variants):
            raise ValidationError(
                f"Variant index {index} out of range for item '{item.name}' "
                f"({len(item.variants)} variants)"
            )

    def _coerce(self, item: QuoteItem, change: ItemChange):
        field_name, value = change.field, change.value

        if field_name in self.MONEY_FIELDS:
            coerced = to_decimal(value)
            if coerced < 0:
                raise ValidationError(f"{field_name} cannot be negative, got: {coerced}")
            return coerced
        if field_name in self.OPTIONAL_MONEY_FIELDS:
            coerced = optional_decimal(value)
            if coerced is not None and coerced < 0:
                raise ValidationError(f"{field_name} cannot be negative, got: {coerced}")
            return coerced
        if field_name in self.FLAG_FIELDS:
            if not isinstance(value, bool):
                raise ValidationError(f"{field_name} must be true or false, got: {value!r}")
            return value
        if field_name == "billing_mode":
            return parse_enum(BillingMode, value)
        if field_name == "selected_variant":
            index = int(value) if value is not None else None
            self._check_variant_index(item, index)
            return index
        if field_name == "item_types":
            types = QuoteItem.parse_item_types({"item_types": value})
            if not types:
                raise ValidationError("item_types cannot be empty")
            return types
        if field_name == "name":
            return str(value)

        raise ValidationError(f"Field cannot be edited: {field_name}")
