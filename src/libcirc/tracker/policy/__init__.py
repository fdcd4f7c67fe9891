"""Borrowing policy module.

Provides per item-type rules for:
- Concurrent loans per borrower
- Loan period length
- Renewal eligibility and limits
"""

from .manager import PolicyBook, PolicyError, get_policies, reset_policies
from .schemas import DEFAULT_POLICIES, BorrowingPolicy

__all__ = [
    "PolicyBook",
    "PolicyError",
    "get_policies",
    "reset_policies",
    "DEFAULT_POLICIES",
    "BorrowingPolicy",
]
