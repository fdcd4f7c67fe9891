"""Pydantic schemas for borrowing policy."""

from datetime import timedelta

from pydantic import BaseModel, Field, model_validator

from ..db.schemas import ItemType


class BorrowingPolicy(BaseModel):
    """Borrowing rules for one item type. Immutable once loaded."""

    item_type: ItemType
    max_loans: int = Field(..., ge=1)  # concurrent loans per borrower
    loan_period_days: int = Field(..., ge=1)
    allow_renewal: bool = False
    max_renewals: int = Field(0, ge=0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def renewals_need_permission(self) -> "BorrowingPolicy":
        """A policy that forbids renewal carries no renewal allowance."""
        if not self.allow_renewal and self.max_renewals:
            raise ValueError("max_renewals must be 0 when allow_renewal is false")
        return self

    @property
    def loan_period(self) -> timedelta:
        return timedelta(days=self.loan_period_days)

    def can_renew(self, renewal_count: int) -> bool:
        """Check if a loan with ``renewal_count`` renewals may be renewed again."""
        return self.allow_renewal and renewal_count < self.max_renewals


DEFAULT_POLICIES: dict[ItemType, BorrowingPolicy] = {
    ItemType.BOOK: BorrowingPolicy(
        item_type=ItemType.BOOK, max_loans=3, loan_period_days=14,
        allow_renewal=True, max_renewals=2,
    ),
    ItemType.DVD: BorrowingPolicy(
        item_type=ItemType.DVD, max_loans=2, loan_period_days=7,
        allow_renewal=True, max_renewals=1,
    ),
    ItemType.EQUIPMENT: BorrowingPolicy(
        item_type=ItemType.EQUIPMENT, max_loans=1, loan_period_days=3,
    ),
    ItemType.MAGAZINE: BorrowingPolicy(
        item_type=ItemType.MAGAZINE, max_loans=5, loan_period_days=7,
    ),
    ItemType.SOFTWARE: BorrowingPolicy(
        item_type=ItemType.SOFTWARE, max_loans=1, loan_period_days=30,
        allow_renewal=True, max_renewals=1,
    ),
}
