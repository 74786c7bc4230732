"""
Lifecycles Package

Status machines for quotes and invoices.
"""

from .invoice import InvoiceLifecycle
from .quote import QuoteLifecycle, generate_public_token

__all__ = ["QuoteLifecycle", "InvoiceLifecycle", "generate_public_token"]
