"""
Calculators Package

Provides the pure pricing and invoicing computations.
"""

from .balance import BalanceTracker
from .invoice import InvoiceGenerator
from .late_fee import LateFeePolicy
from .numbering import InvoiceNumberer
from .pricing import PricingCalculator, quantize_money
from .selection import AuthorSelection, ClientSelection, SelectionSource, is_included
from .variants import VariantResolver

__all__ = [
    "PricingCalculator",
    "VariantResolver",
    "SelectionSource",
    "AuthorSelection",
    "ClientSelection",
    "is_included",
    "BalanceTracker",
    "InvoiceGenerator",
    "InvoiceNumberer",
    "LateFeePolicy",
    "quantize_money",
]
