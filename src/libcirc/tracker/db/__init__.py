"""Database module for local SQLite storage."""

from .models import Base, Item, LedgerEntry, Loan
from .schemas import (
    ItemCreate,
    ItemResponse,
    ItemStatus,
    ItemType,
    LOANED_STATUSES,
    UNAVAILABLE_STATUSES,
)
from .sqlite import Database, get_db, reset_db

__all__ = [
    "Base",
    "Item",
    "LedgerEntry",
    "Loan",
    "ItemCreate",
    "ItemResponse",
    "ItemStatus",
    "ItemType",
    "LOANED_STATUSES",
    "UNAVAILABLE_STATUSES",
    "Database",
    "get_db",
    "reset_db",
]
