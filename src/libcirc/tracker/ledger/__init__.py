"""Borrower ledger module.

Provides functionality for:
- Counting a borrower's open loans per item type
- Enforcing concurrent-loan caps at checkout
- Checking the ledger against the loan records
"""

from .manager import BorrowerLedger, LedgerMismatch

__all__ = [
    "BorrowerLedger",
    "LedgerMismatch",
]
