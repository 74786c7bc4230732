"""
Runtime configuration, read once from the environment.

Policy constants (late fee rate and threshold, money epsilon) live on the
classes that apply them and are not configurable.
"""

import os
from decimal import Decimal

# Environment (dev, staging, prod)
ENVIRONMENT = os.environ.get("ENVIRONMENT", "dev")

# Defaults applied when a record does not carry its own value
DEFAULT_TPS_RATE = Decimal(os.environ.get("DEFAULT_TPS_RATE", "0.05"))
DEFAULT_TVQ_RATE = Decimal(os.environ.get("DEFAULT_TVQ_RATE", "0.09975"))
DEFAULT_DEPOSIT_PERCENT = Decimal(os.environ.get("DEFAULT_DEPOSIT_PERCENT", "50"))

# Days between an invoice's issue date and its due date
INVOICE_DUE_DAYS = int(os.environ.get("INVOICE_DUE_DAYS", "30"))

# Validity window given to duplicated quotes
QUOTE_VALIDITY_DAYS = int(os.environ.get("QUOTE_VALIDITY_DAYS", "30"))

# Flask dev server port (main.py)
PORT = int(os.environ.get("PORT", "8080"))
