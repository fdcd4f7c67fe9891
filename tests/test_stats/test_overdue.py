"""Tests for overdue classification."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from libcirc.tracker.stats import OverdueBucket, OverdueSnapshot, classify_overdue, overdue_bucket

NOW = datetime(2025, 6, 1, 9, 30, tzinfo=timezone.utc)


@dataclass
class StubLoan:
    due_time: datetime
    returned: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.returned is None


def days_late(days: float) -> StubLoan:
    return StubLoan(due_time=NOW - timedelta(days=days))


class TestOverdueBucket:
    """Tests for bucket boundaries."""

    @pytest.mark.parametrize(
        "late, expected",
        [
            (timedelta(0), None),
            (-timedelta(days=3), None),
            (timedelta(seconds=1), OverdueBucket.ONE_WEEK),
            (timedelta(days=7), OverdueBucket.ONE_WEEK),
            (timedelta(days=7, seconds=1), OverdueBucket.TWO_WEEKS),
            (timedelta(days=14), OverdueBucket.TWO_WEEKS),
            (timedelta(days=14, seconds=1), OverdueBucket.MORE_THAN_TWO_WEEKS),
            (timedelta(days=90), OverdueBucket.MORE_THAN_TWO_WEEKS),
        ],
    )
    def test_boundaries(self, late, expected):
        """Test each bucket includes its upper bound."""
        assert overdue_bucket(NOW - late, NOW) == expected

    def test_no_due_date(self):
        """Test a missing due date is never overdue."""
        assert overdue_bucket(None, NOW) is None


class TestClassifyOverdue:
    """Tests for classifying a set of loans."""

    def test_empty(self):
        """Test no loans gives an all-zero snapshot."""
        snapshot = classify_overdue([], NOW)

        assert snapshot == OverdueSnapshot()
        assert snapshot.total_overdue == 0

    def test_single_loan_ten_days_late(self):
        """Test a loan ten days late lands in the two-week bucket only."""
        snapshot = classify_overdue([days_late(10)], NOW)

        assert snapshot.overdue_1_week == 0
        assert snapshot.overdue_2_weeks == 1
        assert snapshot.overdue_more_than_2_weeks == 0
        assert snapshot.total_overdue == 1

    def test_mixed_loans(self):
        """Test totals equal the sum of the buckets."""
        loans = [
            days_late(-2),
            days_late(0.5),
            days_late(3),
            days_late(8),
            days_late(20),
            days_late(45),
        ]

        snapshot = classify_overdue(loans, NOW)

        assert snapshot.count(OverdueBucket.ONE_WEEK) == 2
        assert snapshot.count(OverdueBucket.TWO_WEEKS) == 1
        assert snapshot.count(OverdueBucket.MORE_THAN_TWO_WEEKS) == 2
        assert snapshot.total_overdue == 5
        assert snapshot.total_overdue == sum(snapshot.count(b) for b in OverdueBucket)

    def test_closed_loans_ignored(self):
        """Test returned loans are not counted however late they were."""
        loans = [StubLoan(due_time=NOW - timedelta(days=30), returned=NOW)]

        assert classify_overdue(loans, NOW).total_overdue == 0

    def test_snapshot_serializes_total(self):
        """Test the computed total is part of the serialized snapshot."""
        data = classify_overdue([days_late(1)], NOW).model_dump()

        assert data == {
            "overdue_1_week": 1,
            "overdue_2_weeks": 0,
            "overdue_more_than_2_weeks": 0,
            "total_overdue": 1,
        }

    def test_classifies_engine_loans(self, engine, analytics, clock, sample_items):
        """Test loans opened by the engine are classified from their due dates."""
        engine.checkout("BK-001", "U1")
        engine.checkout("DVD-001", "U2")
        clock.advance(days=24)

        snapshot = analytics.get_overdue_snapshot()

        # Book due after 14 days is 10 days late, DVD due after 7 is 17 late
        assert snapshot.overdue_2_weeks == 1
        assert snapshot.overdue_more_than_2_weeks == 1
        assert snapshot.total_overdue == 2
