"""
Variant Resolver

Resolves the amount a single item contributes, according to its billing mode
and its optional price variants.
"""

from decimal import Decimal

from ..models import BillingMode, QuoteItem


class VariantResolver:
    """Computes an item's effective unit price and line amount."""

    def resolve_index(self, item: QuoteItem, explicit: int | None) -> int | None:
        """
        Concrete variant index used for calculation.

        Items with variants always resolve to an index: the explicit choice if
        any, otherwise the first variant. Items without variants resolve to None.
        """
        if not item.variants:
            return None
        return explicit if explicit is not None else 0

    def unit_price(self, item: QuoteItem, explicit: int | None = None) -> Decimal:
        index = self.resolve_index(item, explicit)
        if index is not None and 0 <= index < len(item.variants):
            return item.variants[index].price
        return item.unit_price

    def line_amount(self, item: QuoteItem, explicit: int | None = None) -> Decimal:
        """
        Contribution of the item before discounts and taxes.

        HOURLY: hourly_rate x hours (quantity, unit_price and variants ignored)
        FIXED:  quantity x (selected variant price, else unit_price)
        """
        if item.billing_mode == BillingMode.HOURLY:
            return self.hourly_amount(item)
        return self.unit_price(item, explicit) * item.quantity

    @staticmethod
    def hourly_amount(item: QuoteItem) -> Decimal:
        if item.hourly_rate is None or item.hours is None:
            return Decimal("0")
        return item.hourly_rate * item.hours

    def needs_selection(self, item: QuoteItem, explicit: int | None) -> bool:
        """True when variants exist but nobody picked one (warning, not an error)."""
        return item.billing_mode == BillingMode.FIXED and bool(item.variants) and explicit is None
