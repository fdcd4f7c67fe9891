"""Pydantic schemas for circulation results."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel

from ..db.schemas import ItemResponse
from ..errors import CirculationError


class ScanIntent(str, Enum):
    """What a barcode scan should do."""

    CHECKOUT = "checkout"
    RETURN = "return"


class CirculationResult(BaseModel):
    """Outcome of one circulation operation, shown to the actor as-is."""

    is_success: bool
    message: str
    item: Optional[ItemResponse] = None
    error: Optional[str] = None  # CirculationError.code on failure
    retryable: bool = False

    @classmethod
    def ok(cls, message: str, item: ItemResponse) -> "CirculationResult":
        return cls(is_success=True, message=message, item=item)

    @classmethod
    def failure(
        cls, error: CirculationError, item: Optional[ItemResponse] = None
    ) -> "CirculationResult":
        return cls(
            is_success=False,
            message=error.message,
            item=item,
            error=error.code,
            retryable=error.retryable,
        )
