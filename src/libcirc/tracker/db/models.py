"""SQLAlchemy ORM models for the circulation database.

Tables:
- items: Physical/media items keyed by barcode
- loans: Borrowing records, never deleted
- ledger_entries: Open-loan tally per borrower and item type
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from ..clock import from_iso, is_past_due
from .schemas import ItemStatus


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def generate_uuid() -> str:
    """Generate a UUID string for primary keys."""
    return str(uuid4())


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class Item(Base):
    """Item model - one row per barcode."""

    __tablename__ = "items"

    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    item_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    author: Mapped[Optional[str]] = mapped_column(String(500))
    category: Mapped[Optional[str]] = mapped_column(String(100))

    # Circulation state
    status: Mapped[str] = mapped_column(
        String(20), default=ItemStatus.AVAILABLE.value, index=True
    )
    current_borrower: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    due_date: Mapped[Optional[str]] = mapped_column(String(32))  # ISO datetime

    # Compare-and-swap token, bumped on every status write
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Timestamps
    created_at: Mapped[str] = mapped_column(String(32), default=_timestamp)
    updated_at: Mapped[str] = mapped_column(String(32), default=_timestamp, onupdate=_timestamp)

    loans: Mapped[list["Loan"]] = relationship("Loan", back_populates="item")

    def __repr__(self) -> str:
        return f"<Item(code={self.code}, type={self.item_type}, status={self.status})>"

    @property
    def due_time(self) -> Optional[datetime]:
        return from_iso(self.due_date)

    def status_at(self, now: datetime) -> ItemStatus:
        """Status as observed at ``now``.

        A checked-out item past its due date reads as overdue whether or not
        the row has been rewritten.
        """
        status = ItemStatus(self.status)
        if status == ItemStatus.CHECKED_OUT and is_past_due(self.due_time, now):
            return ItemStatus.OVERDUE
        return status


class Loan(Base):
    """Loan model - one borrowing of one item."""

    __tablename__ = "loans"
    __table_args__ = (
        UniqueConstraint("item_code", "checked_out_at", name="uq_loans_item_checkout"),
        # At most one open loan per item
        Index(
            "ix_loans_open_item",
            "item_code",
            unique=True,
            sqlite_where=text("returned_at IS NULL"),
            postgresql_where=text("returned_at IS NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    item_code: Mapped[str] = mapped_column(
        String(64), ForeignKey("items.code"), nullable=False, index=True
    )
    borrower_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    # Copied from the item at checkout so ledger queries need no join
    item_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # Dates
    checked_out_at: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    due_at: Mapped[str] = mapped_column(String(32), nullable=False)
    returned_at: Mapped[Optional[str]] = mapped_column(String(32), index=True)

    # Renewals
    renewal_count: Mapped[int] = mapped_column(Integer, default=0)
    last_renewed_at: Mapped[Optional[str]] = mapped_column(String(32))

    # Timestamps
    created_at: Mapped[str] = mapped_column(String(32), default=_timestamp)
    updated_at: Mapped[str] = mapped_column(String(32), default=_timestamp, onupdate=_timestamp)

    item: Mapped["Item"] = relationship("Item", back_populates="loans")

    def __repr__(self) -> str:
        return (
            f"<Loan(id={self.id}, item_code={self.item_code}, "
            f"borrower={self.borrower_id}, open={self.is_open})>"
        )

    @property
    def is_open(self) -> bool:
        return self.returned_at is None

    @property
    def checkout_time(self) -> datetime:
        return from_iso(self.checked_out_at)

    @property
    def due_time(self) -> datetime:
        return from_iso(self.due_at)

    @property
    def return_time(self) -> Optional[datetime]:
        return from_iso(self.returned_at)

    def is_overdue(self, now: datetime) -> bool:
        """Check if loan is open and past due."""
        return self.is_open and is_past_due(self.due_time, now)

    def days_overdue(self, now: datetime) -> int:
        """Whole days past due (0 if not overdue)."""
        if not self.is_overdue(now):
            return 0
        return (now - self.due_time).days


class LedgerEntry(Base):
    """Open-loan tally for one borrower and one item type."""

    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint("borrower_id", "item_type", name="uq_ledger_borrower_type"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    borrower_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    item_type: Mapped[str] = mapped_column(String(20), nullable=False)
    active_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    updated_at: Mapped[str] = mapped_column(String(32), default=_timestamp, onupdate=_timestamp)

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry(borrower={self.borrower_id}, type={self.item_type}, "
            f"active={self.active_count})>"
        )
