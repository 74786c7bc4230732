"""
STUDIO BILLING ENGINE
Quoting and invoicing core for a services studio.
"""

from .errors import BillingError, NotFoundError, StateConflictError, ValidationError
from .models import BillableExpense, Invoice, InvoiceRequest, Quote, StandaloneInvoiceRequest
from .processor import BillingProcessor

__all__ = [
    'BillingProcessor',
    'Quote',
    'Invoice',
    'InvoiceRequest',
    'StandaloneInvoiceRequest',
    'BillableExpense',
    'BillingError',
    'ValidationError',
    'StateConflictError',
    'NotFoundError',
]
