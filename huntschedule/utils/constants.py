"""
Constants used across the hunt schedule system.
"""

import os
from dotenv import load_dotenv

load_dotenv()

# Points charged when a request is approved, unless the respawn overrides it
DEFAULT_SLOT_COST = int(os.getenv("DEFAULT_SLOT_COST", "10"))

# Ledger reasons
REASON_SLOT_CLAIM = "slot_claim"
REASON_SLOT_REFUND = "slot_refund"
REASON_CLAIM_DEBIT = "claim_debit"
REASON_CLAIM_REFUND = "claim_refund"
REASON_MANUAL_ADJUSTMENT = "manual_adjustment"

# Rejection reason prefix for pending requests superseded by an approval
SUPERSEDED_REASON_PREFIX = "conflict_with_approved_request"

# External character lookups
TIBIADATA_API_URL = os.getenv("TIBIADATA_API_URL", "https://api.tibiadata.com/v4")
CHARACTER_CACHE_SECONDS = int(os.getenv("CHARACTER_CACHE_SECONDS", "600"))
