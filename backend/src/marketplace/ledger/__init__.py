"""Credit ledger module.

Append-only per-user balances of listing credits, featured credits and
discounts. Earned entries come from the referral engine; spends come from
credit-consuming features.
"""

from marketplace.ledger.models import CreditLedgerEntry, LedgerSource
from marketplace.ledger.service import CreditLedger, InsufficientCreditsError, SpendConflictError, SpendResult, credit_ledger

__all__ = [
    "CreditLedger",
    "CreditLedgerEntry",
    "InsufficientCreditsError",
    "LedgerSource",
    "SpendConflictError",
    "SpendResult",
    "credit_ledger",
]
