"""Circulation engine: checkout, return and renewal of items."""

import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ..clock import Clock, from_iso, to_iso, utcnow
from ..config import get_config
from ..db.models import Item, Loan
from ..db.schemas import UNAVAILABLE_STATUSES, ItemResponse, ItemStatus
from ..db.sqlite import Database, get_db
from ..errors import (
    BorrowerMismatch,
    BorrowingLimitExceeded,
    CirculationBug,
    CirculationError,
    ConcurrentModification,
    ItemUnavailable,
    LedgerDivergence,
    NoOpenLoan,
    NotFound,
    RenewalLimitExceeded,
    RenewalNotAllowed,
    StorageUnavailable,
)
from ..ledger.manager import BorrowerLedger
from ..policy.manager import PolicyBook, get_policies
from ..registry.manager import ItemRegistry
from .schemas import CirculationResult, ScanIntent

logger = logging.getLogger(__name__)

# A transition runs inside one transaction and returns the updated item and a
# confirmation message.
Transition = Callable[[Session, datetime], tuple[Item, str]]


def _hit_open_loan_index(error: IntegrityError) -> bool:
    """Whether a loan insert failed on the one-open-loan-per-item index."""
    detail = str(error.orig)
    # SQLite names the indexed columns, PostgreSQL the index
    return "ix_loans_open_item" in detail or detail.rstrip().endswith("loans.item_code")


class CirculationEngine:
    """Runs the item lending state machine.

    Every operation is one transaction covering the item row, its loan and
    the borrower's ledger tally, and returns a ``CirculationResult`` instead
    of raising for failures the actor should see.
    """

    def __init__(
        self,
        db: Optional[Database] = None,
        policies: Optional[PolicyBook] = None,
        registry: Optional[ItemRegistry] = None,
        ledger: Optional[BorrowerLedger] = None,
        clock: Optional[Clock] = None,
        max_retries: Optional[int] = None,
        initial_backoff: Optional[float] = None,
    ):
        """Initialize circulation engine.

        Args:
            db: Database instance
            policies: Borrowing policies (global policy book if not provided)
            registry: Item registry (built on ``db`` if not provided)
            ledger: Borrower ledger (built on ``db`` if not provided)
            clock: Callable returning the current UTC time
            max_retries: Attempts per operation on lost races or a busy store
            initial_backoff: First delay in seconds after a busy store
        """
        self.db = db or get_db()
        self.clock = clock or utcnow
        self.policies = policies or get_policies()
        self.registry = registry or ItemRegistry(self.db, clock=self.clock)
        self.ledger = ledger or BorrowerLedger(self.db)

        if max_retries is None or initial_backoff is None:
            config = get_config()
            max_retries = config.retry_max if max_retries is None else max_retries
            initial_backoff = config.retry_base_delay if initial_backoff is None else initial_backoff
        self.max_retries = max(1, max_retries)
        self.initial_backoff = initial_backoff

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    def list_items(self) -> list[ItemResponse]:
        """List all items ordered by code."""
        return self.registry.list_items()

    def checkout(self, item_code: str, borrower_id: str) -> CirculationResult:
        """Lend an available item to a borrower.

        Args:
            item_code: Scanned barcode
            borrower_id: Borrower taking the item

        Returns:
            Result with the checked-out item on success
        """
        if not borrower_id or not borrower_id.strip():
            raise ValueError("borrower_id is required for checkout")
        item_code = item_code.strip()
        borrower_id = borrower_id.strip()
        return self._transact(
            "checkout",
            item_code,
            lambda s, now: self._checkout(s, item_code, borrower_id, now),
        )

    def return_item(self, item_code: str) -> CirculationResult:
        """Close the open loan on an item and make it available.

        Safe to retry: a repeated return fails with ``no_open_loan``.
        """
        item_code = item_code.strip()
        return self._transact(
            "return",
            item_code,
            lambda s, now: self._return(s, item_code, now),
        )

    def renew(self, item_code: str, borrower_id: str) -> CirculationResult:
        """Extend the current borrower's loan by one loan period from now."""
        item_code = item_code.strip()
        borrower_id = (borrower_id or "").strip()
        return self._transact(
            "renew",
            item_code,
            lambda s, now: self._renew(s, item_code, borrower_id, now),
        )

    def process_scan(
        self,
        code: str,
        intent: Union[ScanIntent, str],
        borrower_id: Optional[str] = None,
    ) -> CirculationResult:
        """Handle one barcode scan.

        Args:
            code: Raw scanned text
            intent: Checkout or return
            borrower_id: The scanning borrower (checkout only)

        Returns:
            Result of the checkout or return
        """
        intent = ScanIntent(intent)
        code = (code or "").strip()
        if not code:
            return CirculationResult.failure(NotFound(code))

        if intent == ScanIntent.CHECKOUT:
            return self.checkout(code, borrower_id or "")
        return self.return_item(code)

    # -------------------------------------------------------------------------
    # Transaction handling
    # -------------------------------------------------------------------------

    def _transact(self, operation: str, item_code: str, transition: Transition) -> CirculationResult:
        """Run a transition in its own transaction, retrying transient failures.

        A lost compare-and-swap is re-evaluated at once against fresh state;
        a busy store is retried with exponential backoff. Policy failures are
        returned as they are.
        """
        backoff = self.initial_backoff
        reason = "no attempts made"

        for attempt in range(1, self.max_retries + 1):
            try:
                with self.db.get_session() as session:
                    now = self.clock()
                    item, message = transition(session, now)
                    response = self.registry.describe(item, now)
            except ConcurrentModification:
                reason = "item kept changing"
                logger.debug(
                    "%s on %s lost a race (attempt %d), re-evaluating",
                    operation, item_code, attempt,
                )
                continue
            except OperationalError as e:
                reason = str(e.orig)
                if attempt < self.max_retries:
                    logger.warning(
                        "Storage busy during %s on %s, retrying in %.2fs: %s",
                        operation, item_code, backoff, e.orig,
                    )
                    time.sleep(backoff)
                    backoff *= 2
                continue
            except CirculationError as e:
                logger.info("%s on %s refused: %s", operation, item_code, e.message)
                return CirculationResult.failure(e)
            except CirculationBug:
                logger.exception("Invariant broken during %s on %s", operation, item_code)
                raise

            logger.info("%s on %s: %s", operation, item_code, message)
            return CirculationResult.ok(message, response)

        return self._storage_failure(operation, item_code, reason)

    def _storage_failure(self, operation: str, item_code: str, reason: str) -> CirculationResult:
        logger.error(
            "Giving up on %s of %s after %d attempts: %s",
            operation, item_code, self.max_retries, reason,
        )
        error = StorageUnavailable(
            f"Could not {operation} '{item_code}' right now, please try again", item_code
        )
        return CirculationResult.failure(error)

    def _checkout_stamp(self, session: Session, item_code: str, now: datetime) -> str:
        """Checkout time for a new loan, strictly after the item's previous loan."""
        stamp = to_iso(now)
        previous = self.ledger.latest_checkout(item_code, session=session)
        if previous is not None and previous >= stamp:
            # Same clock reading as the last checkout (coarse or frozen clock)
            stamp = to_iso(from_iso(previous) + timedelta(microseconds=1))
        return stamp

    def _open_loan(self, session: Session, item: Item, status: ItemStatus) -> Loan:
        """Get the item's open loan, checking it agrees with the item row."""
        loan = self.ledger.open_loan_for_item(item.code, session=session)
        if loan is None:
            if status.is_loaned:
                raise LedgerDivergence(f"Item '{item.code}' is {status.value} with no open loan")
            raise NoOpenLoan(item.code)
        if not status.is_loaned or loan.borrower_id != item.current_borrower:
            raise LedgerDivergence(
                f"Item '{item.code}' ({status.value}, borrower {item.current_borrower}) "
                f"disagrees with its open loan held by {loan.borrower_id}"
            )
        return loan

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _checkout(
        self, session: Session, item_code: str, borrower_id: str, now: datetime
    ) -> tuple[Item, str]:
        item = self.registry.get_item(item_code, session=session)
        status = item.status_at(now)
        if status != ItemStatus.AVAILABLE:
            raise ItemUnavailable(item_code, status.value)

        policy = self.policies.for_type(item.item_type)
        active = self.ledger.active_loan_count(borrower_id, item.item_type, session=session)
        if active >= policy.max_loans:
            raise BorrowingLimitExceeded(borrower_id, item.item_type, policy.max_loans, item_code)

        due = now + policy.loan_period
        item = self.registry.set_status(
            item_code,
            ItemStatus.CHECKED_OUT,
            borrower=borrower_id,
            due_date=due,
            expected_version=item.version,
            session=session,
        )

        loan = Loan(
            item_code=item_code,
            borrower_id=borrower_id,
            item_type=item.item_type,
            checked_out_at=self._checkout_stamp(session, item_code, now),
            due_at=to_iso(due),
        )
        self.ledger.add(borrower_id, loan, session, limit=policy.max_loans)
        session.add(loan)
        try:
            session.flush()
        except IntegrityError as e:
            if _hit_open_loan_index(e):
                # Another transaction opened a loan on this item first
                raise ConcurrentModification(item_code) from e
            raise LedgerDivergence(
                f"Loan on '{item_code}' at {loan.checked_out_at} collides with an existing loan"
            ) from e

        return item, f"'{item.name}' checked out to {borrower_id}, due {due:%Y-%m-%d}"

    def _return(self, session: Session, item_code: str, now: datetime) -> tuple[Item, str]:
        item = self.registry.get_item(item_code, session=session)
        status = item.status_at(now)
        if status in UNAVAILABLE_STATUSES:
            raise ItemUnavailable(item_code, status.value)

        loan = self._open_loan(session, item, status)
        days_late = loan.days_overdue(now)

        item = self.registry.set_status(
            item_code,
            ItemStatus.AVAILABLE,
            expected_version=item.version,
            session=session,
        )
        loan.returned_at = to_iso(now)
        self.ledger.remove(loan.borrower_id, loan, session)

        message = f"'{item.name}' returned by {loan.borrower_id}"
        if days_late:
            message += f" ({days_late} day(s) late)"
        return item, message

    def _renew(
        self, session: Session, item_code: str, borrower_id: str, now: datetime
    ) -> tuple[Item, str]:
        item = self.registry.get_item(item_code, session=session)
        status = item.status_at(now)
        if status in UNAVAILABLE_STATUSES:
            raise ItemUnavailable(item_code, status.value)

        loan = self._open_loan(session, item, status)
        if loan.borrower_id != borrower_id:
            logger.warning(
                "Renewal of %s requested by %s refused: on loan to %s",
                item_code, borrower_id, loan.borrower_id,
            )
            raise BorrowerMismatch(item_code, borrower_id)

        policy = self.policies.for_type(item.item_type)
        if not policy.allow_renewal:
            raise RenewalNotAllowed(item_code, item.item_type)
        if loan.renewal_count >= policy.max_renewals:
            raise RenewalLimitExceeded(item_code, policy.max_renewals)

        # Measured from now, never moving the due date backwards
        due = max(now + policy.loan_period, loan.due_time)
        loan.due_at = to_iso(due)
        loan.renewal_count += 1
        loan.last_renewed_at = to_iso(now)

        item = self.registry.set_status(
            item_code,
            ItemStatus.CHECKED_OUT,
            borrower=loan.borrower_id,
            due_date=due,
            expected_version=item.version,
            session=session,
        )
        return item, (
            f"'{item.name}' renewed until {due:%Y-%m-%d} "
            f"({loan.renewal_count} of {policy.max_renewals} renewals used)"
        )
