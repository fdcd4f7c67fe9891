"""Borrower ledger: open loans indexed by borrower and item type."""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.models import LedgerEntry, Loan
from ..db.schemas import ItemType
from ..db.sqlite import Database, get_db
from ..errors import BorrowingLimitExceeded, ConcurrentModification, LedgerDivergence

logger = logging.getLogger(__name__)


@dataclass
class LedgerMismatch:
    """A tally that disagrees with the open loans it counts."""

    borrower_id: str
    item_type: str
    recorded: int
    actual: int


class BorrowerLedger:
    """Tracks active loans per borrower for the concurrent-loan cap.

    Open loans are authoritative for counts. Each (borrower, item type) pair
    also has a tally row, changed in the same transaction as the loan, which
    is where the cap is enforced so that two checkouts racing for the last
    slot cannot both win.
    """

    def __init__(self, db: Optional[Database] = None):
        """Initialize borrower ledger.

        Args:
            db: Database instance
        """
        self.db = db or get_db()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def active_loan_count(
        self,
        borrower_id: str,
        item_type: Union[ItemType, str],
        session: Optional[Session] = None,
    ) -> int:
        """Count a borrower's open loans of one item type."""
        item_type = ItemType(item_type)

        def _count(s: Session) -> int:
            stmt = select(func.count()).select_from(Loan).where(
                Loan.borrower_id == borrower_id,
                Loan.item_type == item_type.value,
                Loan.returned_at.is_(None),
            )
            return s.execute(stmt).scalar() or 0

        if session:
            return _count(session)
        with self.db.get_session() as s:
            return _count(s)

    def open_loan_for_item(self, item_code: str, session: Optional[Session] = None) -> Optional[Loan]:
        """Get the open loan on an item, if any."""

        def _get(s: Session) -> Optional[Loan]:
            stmt = select(Loan).where(Loan.item_code == item_code, Loan.returned_at.is_(None))
            return s.execute(stmt).scalar_one_or_none()

        if session:
            return _get(session)
        with self.db.get_session() as s:
            loan = _get(s)
            if loan:
                s.expunge(loan)
            return loan

    def latest_checkout(self, item_code: str, session: Optional[Session] = None) -> Optional[str]:
        """Stored checkout time of the item's most recent loan, if any."""

        def _get(s: Session) -> Optional[str]:
            stmt = select(func.max(Loan.checked_out_at)).where(Loan.item_code == item_code)
            return s.execute(stmt).scalar()

        if session:
            return _get(session)
        with self.db.get_session() as s:
            return _get(s)

    def open_loans(
        self, borrower_id: Optional[str] = None, session: Optional[Session] = None
    ) -> list[Loan]:
        """List open loans, optionally for one borrower, soonest due first."""

        def _get(s: Session) -> list[Loan]:
            stmt = select(Loan).where(Loan.returned_at.is_(None))
            if borrower_id:
                stmt = stmt.where(Loan.borrower_id == borrower_id)
            stmt = stmt.order_by(Loan.due_at, Loan.item_code)
            return list(s.execute(stmt).scalars().all())

        if session:
            return _get(session)
        with self.db.get_session() as s:
            loans = _get(s)
            for loan in loans:
                s.expunge(loan)
            return loans

    def loan_history(self, item_code: str) -> list[Loan]:
        """All loans of an item, newest first."""
        with self.db.get_session() as s:
            stmt = select(Loan).where(Loan.item_code == item_code).order_by(
                Loan.checked_out_at.desc()
            )
            loans = list(s.execute(stmt).scalars().all())
            for loan in loans:
                s.expunge(loan)
            return loans

    # -------------------------------------------------------------------------
    # Updates (always inside the caller's transaction)
    # -------------------------------------------------------------------------

    def add(
        self,
        borrower_id: str,
        loan: Loan,
        session: Session,
        limit: Optional[int] = None,
    ) -> None:
        """Record a new open loan for a borrower.

        Args:
            borrower_id: Borrower taking the loan
            loan: The loan being opened
            session: The checkout transaction
            limit: Concurrent-loan cap; the tally is only incremented while
                   it is below this value

        Raises:
            BorrowingLimitExceeded: If the tally is already at ``limit``
            ConcurrentModification: If another transaction created the tally
                                    row first
        """
        if loan.borrower_id != borrower_id:
            raise LedgerDivergence(
                f"Loan on {loan.item_code} belongs to {loan.borrower_id}, not {borrower_id}"
            )

        stmt = update(LedgerEntry).where(
            LedgerEntry.borrower_id == borrower_id,
            LedgerEntry.item_type == loan.item_type,
        )
        if limit is not None:
            stmt = stmt.where(LedgerEntry.active_count < limit)
        stmt = stmt.values(active_count=LedgerEntry.active_count + 1).execution_options(
            synchronize_session=False
        )
        if session.execute(stmt).rowcount == 1:
            return

        entry = self._get_entry(session, borrower_id, loan.item_type)
        if entry is not None:
            # Row exists, so the guard rejected the increment
            raise BorrowingLimitExceeded(borrower_id, loan.item_type, limit, loan.item_code)
        if limit is not None and limit < 1:
            raise BorrowingLimitExceeded(borrower_id, loan.item_type, limit, loan.item_code)

        session.add(LedgerEntry(borrower_id=borrower_id, item_type=loan.item_type, active_count=1))
        try:
            session.flush()
        except IntegrityError as e:
            raise ConcurrentModification(loan.item_code) from e

    def remove(self, borrower_id: str, loan: Loan, session: Session) -> None:
        """Remove a closed loan from a borrower's tally.

        Raises:
            LedgerDivergence: If the borrower has no open loans of this type
                              on record
        """
        stmt = (
            update(LedgerEntry)
            .where(
                LedgerEntry.borrower_id == borrower_id,
                LedgerEntry.item_type == loan.item_type,
                LedgerEntry.active_count > 0,
            )
            .values(active_count=LedgerEntry.active_count - 1)
            .execution_options(synchronize_session=False)
        )
        if session.execute(stmt).rowcount != 1:
            raise LedgerDivergence(
                f"Ledger has no open {loan.item_type} loan for {borrower_id} "
                f"(closing loan on {loan.item_code})"
            )

    def _get_entry(self, session: Session, borrower_id: str, item_type: str) -> Optional[LedgerEntry]:
        stmt = select(LedgerEntry).where(
            LedgerEntry.borrower_id == borrower_id,
            LedgerEntry.item_type == item_type,
        )
        return session.execute(stmt).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Consistency
    # -------------------------------------------------------------------------

    def verify(self) -> list[LedgerMismatch]:
        """Compare every tally against the open loans.

        Returns:
            Mismatches; empty when the ledger is consistent
        """
        with self.db.get_session() as session:
            actual = Counter(
                (loan.borrower_id, loan.item_type)
                for loan in self.open_loans(session=session)
            )
            recorded = {
                (entry.borrower_id, entry.item_type): entry.active_count
                for entry in self.db.get_ledger_entries(session=session)
            }

        mismatches = []
        for key in sorted(set(actual) | set(recorded)):
            if actual.get(key, 0) != recorded.get(key, 0):
                mismatches.append(
                    LedgerMismatch(
                        borrower_id=key[0],
                        item_type=key[1],
                        recorded=recorded.get(key, 0),
                        actual=actual.get(key, 0),
                    )
                )

        for m in mismatches:
            logger.error(
                "Ledger mismatch for %s/%s: recorded %d, open loans %d",
                m.borrower_id, m.item_type, m.recorded, m.actual,
            )
        return mismatches
