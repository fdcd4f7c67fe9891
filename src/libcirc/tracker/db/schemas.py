"""Pydantic schemas for data validation.

These schemas define the item and loan shapes handed to callers; ORM rows
never leave the session layer.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class ItemStatus(str, Enum):
    """Circulation status of an item."""

    AVAILABLE = "available"
    CHECKED_OUT = "checked_out"
    OVERDUE = "overdue"
    MAINTENANCE = "maintenance"
    LOST = "lost"
    RETIRED = "retired"

    @property
    def label(self) -> str:
        """Human-readable label, e.g. 'Checked Out'."""
        return self.value.replace("_", " ").title()

    @property
    def is_loaned(self) -> bool:
        """Whether the status requires a borrower and a due date."""
        return self in LOANED_STATUSES


LOANED_STATUSES = frozenset({ItemStatus.CHECKED_OUT, ItemStatus.OVERDUE})

# Statuses that block every circulation operation
UNAVAILABLE_STATUSES = frozenset(
    {ItemStatus.MAINTENANCE, ItemStatus.LOST, ItemStatus.RETIRED}
)


class ItemType(str, Enum):
    """Category of library item; each has its own borrowing policy."""

    BOOK = "book"
    DVD = "dvd"
    EQUIPMENT = "equipment"
    MAGAZINE = "magazine"
    SOFTWARE = "software"


# ============================================================================
# Item Schemas
# ============================================================================


class ItemBase(BaseModel):
    """Base item fields."""

    code: str = Field(..., min_length=1, max_length=64)
    item_type: ItemType
    name: str = Field(..., min_length=1, max_length=500)
    author: Optional[str] = Field(None, max_length=500)
    category: Optional[str] = Field(None, max_length=100)

    @field_validator("code")
    @classmethod
    def strip_code(cls, v: str) -> str:
        """Barcodes are matched without surrounding whitespace."""
        v = v.strip()
        if not v:
            raise ValueError("code must not be blank")
        return v


class ItemCreate(ItemBase):
    """Schema for registering an item."""

    pass


class ItemResponse(ItemBase):
    """Item as seen by callers, with status evaluated at read time."""

    status: ItemStatus
    current_borrower: Optional[str] = None
    due_date: Optional[datetime] = None
    days_overdue: int = 0

    @property
    def is_available(self) -> bool:
        return self.status == ItemStatus.AVAILABLE

    @property
    def is_overdue(self) -> bool:
        return self.status == ItemStatus.OVERDUE
