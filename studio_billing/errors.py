"""
Error Taxonomy for the Studio Billing Engine

Every rejection raised by the engine belongs to one of three families so the
HTTP layer can map them onto 400 / 409 / 404 responses. Nothing is mutated
before one of these is raised.
"""


class BillingError(Exception):
    """Base class for all engine rejections."""


class ValidationError(BillingError, ValueError):
    """Input is missing, malformed or outside its allowed range."""


class StateConflictError(BillingError):
    """The record is not in a state that permits the requested change."""


class NotFoundError(BillingError, LookupError):
    """Unknown quote, invoice, item or public token."""
