"""
Input Validation for the Studio Billing Engine

Validates records and requests before any computation or mutation begins.
Raises ValidationError (a ValueError) with clear messages for any constraint
violation.
"""

from decimal import Decimal

from .errors import ValidationError
from .models import AmountMode, Discount, DiscountType, InvoiceRequest, Payment, Quote, QuoteItem


class InputValidator:
    """Validates quotes and invoicing requests according to business rules."""

    def validate_quote(self, quote: Quote) -> None:
        """
        Run all quote validations. Raises ValidationError if any check fails.
        """
        self._validate_rates(quote)
        for discount in quote.discounts:
            self._validate_discount(discount)
        for item in quote.items:
            self._validate_item(item)

    def validate_invoice_request(self, request: InvoiceRequest) -> None:
        if not (0 <= request.percentage <= 100):
            raise ValidationError(f"percentage must be between 0 and 100, got: {request.percentage}")

        if request.amount_mode == AmountMode.FIXED:
            if request.fixed_amount is None:
                raise ValidationError("fixed_amount is required when amount_mode='fixed'")
            if request.fixed_amount < 0:
                raise ValidationError(f"fixed_amount cannot be negative, got: {request.fixed_amount}")

    def validate_payment(self, payment: Payment) -> None:
        if payment.amount <= 0:
            raise ValidationError(f"Payment amount must be positive, got: {payment.amount}")

    def _validate_rates(self, quote: Quote) -> None:
        """Tax rates are fractions; the deposit is a percentage."""
        if not (0 <= quote.tps_rate <= 1):
            raise ValidationError(f"tps_rate must be between 0 and 1, got: {quote.tps_rate}")

        if not (0 <= quote.tvq_rate <= 1):
            raise ValidationError(f"tvq_rate must be between 0 and 1, got: {quote.tvq_rate}")

        if not (0 <= quote.deposit_percent <= 100):
            raise ValidationError(
                f"deposit_percent must be between 0 and 100, got: {quote.deposit_percent}"
            )

    def _validate_discount(self, discount: Discount) -> None:
        if discount.value < 0:
            raise ValidationError(f"Discount value cannot be negative, got: {discount.value}")

        # A FIXED discount larger than the subtotal is allowed (negative totals are reported, not rejected)
        if discount.type == DiscountType.PERCENTAGE and discount.value > Decimal('100'):
            raise ValidationError(f"Percentage discount cannot exceed 100, got: {discount.value}")

    def _validate_item(self, item: QuoteItem) -> None:
        if not item.item_types:
            raise ValidationError(f"Item '{item.name}' must have at least one type")

        for name in ("quantity", "unit_price", "hourly_rate", "hours"):
            value = getattr(item, name)
            if value is not None and value < 0:
                raise ValidationError(f"{name} cannot be negative on item '{item.name}', got: {value}")

        for variant in item.variants:
            if variant.price < 0:
                raise ValidationError(
                    f"Variant '{variant.label}' of item '{item.name}' has a negative price: {variant.price}"
                )
