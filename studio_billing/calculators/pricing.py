"""
Pricing Calculator

Computes quote totals: subtotal from included items, independent discounts,
the two taxes and the grand total. Pure; nothing here rounds, so totals stay
reproducible. Rounding to cents happens only when invoice money is
materialised (quantize_money) and when results are serialised.
"""

from decimal import ROUND_HALF_UP, Decimal

from ..models import (
    Discount,
    DiscountDetail,
    DiscountType,
    PricingResult,
    Quote,
    QuoteSection,
)
from .selection import AuthorSelection, SelectionSource, is_included
from .variants import VariantResolver


def quantize_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places using ROUND_HALF_UP."""
    return value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


class PricingCalculator:
    """Calculates quote totals for a given selection context."""

    def __init__(self, resolver: VariantResolver | None = None):
        self.resolver = resolver or VariantResolver()

    def calculate(
        self,
        sections: list[QuoteSection],
        discounts: list[Discount],
        tps_rate: Decimal,
        tvq_rate: Decimal,
        source: SelectionSource | None = None,
        deposit_percent: Decimal = Decimal('0'),
    ) -> PricingResult:
        """
        Calculate all totals and return a PricingResult.

        Steps:
        1. Subtotal of included items (SelectionPolicy + VariantResolver)
        2. Each discount computed against that same subtotal
        3. Taxes on the after-discount amount, which may be negative
        """
        source = source or AuthorSelection()
        subtotal = Decimal('0')
        warnings = []

        for section in sections:
            for item in section.items:
                if item.is_free:
                    continue
                explicit = source.explicit_variant(item)
                if self.resolver.needs_selection(item, explicit):
                    warnings.append(
                        f"Item '{item.name}' has price variants but none is selected; "
                        f"using '{item.variants[0].label}'"
                    )
                if not is_included(item, source):
                    continue
                subtotal += self.resolver.line_amount(item, explicit)

        details = [DiscountDetail(discount=d, amount=self.discount_amount(d, subtotal)) for d in discounts]
        total_discount = sum((d.amount for d in details), Decimal('0'))
        after_discount = subtotal - total_discount
        tps_amount, tvq_amount, total = self.apply_taxes(after_discount, tps_rate, tvq_rate)

        return PricingResult(
            subtotal=subtotal,
            discount_details=details,
            total_discount=total_discount,
            after_discount=after_discount,
            tps_amount=tps_amount,
            tvq_amount=tvq_amount,
            total=total,
            deposit_amount=self.deposit_amount(total, deposit_percent),
            warnings=warnings,
        )

    def calculate_quote(self, quote: Quote, source: SelectionSource | None = None) -> PricingResult:
        return self.calculate(
            quote.sections,
            quote.discounts,
            quote.tps_rate,
            quote.tvq_rate,
            source=source,
            deposit_percent=quote.deposit_percent,
        )

    @staticmethod
    def discount_amount(discount: Discount, subtotal: Decimal) -> Decimal:
        """PERCENTAGE takes value% of the original subtotal; FIXED takes value."""
        if discount.type == DiscountType.PERCENTAGE:
            return subtotal * discount.value / Decimal('100')
        return discount.value

    @staticmethod
    def apply_taxes(amount: Decimal, tps_rate: Decimal, tvq_rate: Decimal) -> tuple[Decimal, Decimal, Decimal]:
        """Return (tps, tvq, amount + both taxes)."""
        tps_amount = amount * tps_rate
        tvq_amount = amount * tvq_rate
        return tps_amount, tvq_amount, amount + tps_amount + tvq_amount

    @staticmethod
    def tax_multiplier(tps_rate: Decimal, tvq_rate: Decimal) -> Decimal:
        return Decimal('1') + tps_rate + tvq_rate

    @staticmethod
    def deposit_amount(total: Decimal, deposit_percent: Decimal) -> Decimal:
        return total * deposit_percent / Decimal('100')
