"""
Selection Policy

Decides whether a quote item contributes to a total. The rule is the same for
the internal editor and the public client view; only the source of the
selection flags differs, so each context is a SelectionSource strategy.
"""

from abc import ABC, abstractmethod

from ..models import QuoteItem


class SelectionSource(ABC):
    """Where inclusion flags and variant choices are read from."""

    @abstractmethod
    def is_selected(self, item: QuoteItem) -> bool:
        """Whether a non-free item counts toward the total."""

    @abstractmethod
    def explicit_variant(self, item: QuoteItem) -> int | None:
        """The variant index chosen for the item, or None if nobody chose."""


class AuthorSelection(SelectionSource):
    """Server-side flags persisted on the item (editor, invoices, approval recompute)."""

    def is_selected(self, item: QuoteItem) -> bool:
        return item.include_in_total and item.is_selected

    def explicit_variant(self, item: QuoteItem) -> int | None:
        return item.selected_variant


class ClientSelection(SelectionSource):
    """
    Ephemeral toggles made by the client on the public quote page.

    A_LA_CARTE items start unselected and are included only once toggled on
    (or once a variant is picked for them). Every other displayed item follows
    its include_in_total flag.
    """

    def __init__(self, selections: dict[str, bool] | None = None,
                 variant_selections: dict[str, int] | None = None):
        self.selections = dict(selections or {})
        self.variant_selections = dict(variant_selections or {})

    def is_selected(self, item: QuoteItem) -> bool:
        if item.is_a_la_carte:
            return self.selections.get(item.id, False)
        return item.include_in_total

    def explicit_variant(self, item: QuoteItem) -> int | None:
        if item.id in self.variant_selections:
            return self.variant_selections[item.id]
        return item.selected_variant

    def toggle(self, item_id: str, selected: bool) -> None:
        self.selections[item_id] = selected

    def choose_variant(self, item_id: str, index: int) -> None:
        """Picking a variant implicitly selects the item."""
        self.variant_selections[item_id] = index
        self.selections[item_id] = True


def is_included(item: QuoteItem, source: SelectionSource) -> bool:
    """FREE items never count; everything else defers to the selection source."""
    if item.is_free:
        return False
    return source.is_selected(item)
