"""Tests for BorrowerLedger."""

import logging

import pytest
from sqlalchemy import update

from libcirc.tracker.clock import to_iso
from libcirc.tracker.db.models import LedgerEntry, Loan
from libcirc.tracker.db.schemas import ItemType
from libcirc.tracker.errors import BorrowingLimitExceeded, LedgerDivergence


def make_loan(code: str, when, borrower: str = "U1", item_type: str = "book") -> Loan:
    """Build an unsaved loan."""
    return Loan(
        item_code=code,
        borrower_id=borrower,
        item_type=item_type,
        checked_out_at=to_iso(when),
        due_at=to_iso(when),
    )


class TestActiveLoanCount:
    """Tests for counting open loans."""

    def test_counts_per_type(self, engine, ledger, sample_items):
        """Test counts are kept separately per item type."""
        engine.checkout("BK-001", "U1")
        engine.checkout("BK-002", "U1")
        engine.checkout("DVD-001", "U1")

        assert ledger.active_loan_count("U1", ItemType.BOOK) == 2
        assert ledger.active_loan_count("U1", "dvd") == 1
        assert ledger.active_loan_count("U1", ItemType.EQUIPMENT) == 0
        assert ledger.active_loan_count("U2", ItemType.BOOK) == 0

    def test_returned_loans_not_counted(self, engine, ledger, clock, book):
        """Test closed loans drop out of the count."""
        engine.checkout("BK-001", "U1")
        clock.advance(days=1)
        engine.return_item("BK-001")

        assert ledger.active_loan_count("U1", ItemType.BOOK) == 0

    def test_open_loans_for_borrower(self, engine, ledger, sample_items):
        """Test open loans can be filtered by borrower."""
        engine.checkout("BK-001", "U1")
        engine.checkout("BK-002", "U2")

        assert [loan.item_code for loan in ledger.open_loans("U1")] == ["BK-001"]
        assert len(ledger.open_loans()) == 2

    def test_latest_checkout(self, engine, ledger, clock, book, now):
        """Test the most recent checkout time of an item is reported."""
        assert ledger.latest_checkout("BK-001") is None

        engine.checkout("BK-001", "U1")
        engine.return_item("BK-001")
        later = clock.advance(days=2)
        engine.checkout("BK-001", "U2")

        assert ledger.latest_checkout("BK-001") == to_iso(later)


class TestAddRemove:
    """Tests for tally updates."""

    def test_add_creates_tally(self, db, ledger, book, now):
        """Test the first loan creates the borrower's tally row."""
        with db.get_session() as session:
            ledger.add("U1", make_loan("BK-001", now), session, limit=3)

        entries = db.get_ledger_entries()
        assert len(entries) == 1
        assert entries[0].active_count == 1

    def test_add_at_limit(self, db, ledger, book, now):
        """Test the tally is not incremented past the limit."""
        with db.get_session() as session:
            ledger.add("U1", make_loan("BK-001", now), session, limit=1)

        with pytest.raises(BorrowingLimitExceeded) as exc_info:
            with db.get_session() as session:
                ledger.add("U1", make_loan("BK-002", now), session, limit=1)

        assert exc_info.value.limit == 1
        assert db.get_ledger_entries()[0].active_count == 1

    def test_add_rejects_other_borrowers_loan(self, db, ledger, now):
        """Test a loan can only be added to its own borrower."""
        with pytest.raises(LedgerDivergence):
            with db.get_session() as session:
                ledger.add("U2", make_loan("BK-001", now, borrower="U1"), session)

    def test_remove_without_open_loans(self, db, ledger, now):
        """Test removing from an empty tally is a divergence."""
        with pytest.raises(LedgerDivergence):
            with db.get_session() as session:
                ledger.remove("U1", make_loan("BK-001", now), session)

    def test_failed_checkout_leaves_tally_alone(self, engine, ledger, db, make_item):
        """Test a refused checkout does not move the tally."""
        make_item("EQ-001", ItemType.EQUIPMENT)
        make_item("EQ-002", ItemType.EQUIPMENT)
        engine.checkout("EQ-001", "U1")

        engine.checkout("EQ-002", "U1")

        assert [e.active_count for e in db.get_ledger_entries()] == [1]


class TestVerify:
    """Tests for the consistency check."""

    def test_verify_clean(self, engine, ledger, clock, sample_items):
        """Test a ledger maintained by the engine verifies."""
        engine.checkout("BK-001", "U1")
        engine.checkout("DVD-001", "U2")
        clock.advance(days=1)
        engine.return_item("BK-001")

        assert ledger.verify() == []

    def test_verify_reports_mismatch(self, engine, ledger, db, book, caplog):
        """Test a tampered tally is reported and logged."""
        engine.checkout("BK-001", "U1")
        with db.get_session() as session:
            session.execute(update(LedgerEntry).values(active_count=3))

        with caplog.at_level(logging.ERROR, logger="libcirc.tracker.ledger.manager"):
            mismatches = ledger.verify()

        assert len(mismatches) == 1
        assert mismatches[0].borrower_id == "U1"
        assert mismatches[0].recorded == 3
        assert mismatches[0].actual == 1
        assert "Ledger mismatch" in caplog.text
