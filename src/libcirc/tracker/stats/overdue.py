"""Overdue classification of open loans.

Pure functions: nothing here reads or writes the database. An open loan is
overdue once the current time is past its due time, and is bucketed by how
long ago that was.
"""

from collections import Counter
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Optional, Protocol

from pydantic import BaseModel, computed_field

from ..clock import is_past_due

ONE_WEEK = timedelta(days=7)
TWO_WEEKS = timedelta(days=14)


class OverdueBucket(str, Enum):
    """How far past due an open loan is."""

    ONE_WEEK = "overdue_1_week"  # up to 7 days late
    TWO_WEEKS = "overdue_2_weeks"  # up to 14 days late
    MORE_THAN_TWO_WEEKS = "overdue_more_than_2_weeks"


class OpenLoanLike(Protocol):
    """Anything with a due time and an open flag (ORM loans, loan responses)."""

    @property
    def due_time(self) -> datetime: ...

    @property
    def is_open(self) -> bool: ...


class OverdueSnapshot(BaseModel):
    """Overdue counts at one instant.

    ``total_overdue`` is computed from the buckets and cannot disagree with
    them.
    """

    overdue_1_week: int = 0
    overdue_2_weeks: int = 0
    overdue_more_than_2_weeks: int = 0

    model_config = {"frozen": True}

    @computed_field
    @property
    def total_overdue(self) -> int:
        return self.overdue_1_week + self.overdue_2_weeks + self.overdue_more_than_2_weeks

    def count(self, bucket: OverdueBucket) -> int:
        return getattr(self, bucket.value)


def overdue_bucket(due: Optional[datetime], now: datetime) -> Optional[OverdueBucket]:
    """Bucket a due time, or None if it has not passed."""
    if not is_past_due(due, now):
        return None
    elapsed = now - due
    if elapsed <= ONE_WEEK:
        return OverdueBucket.ONE_WEEK
    if elapsed <= TWO_WEEKS:
        return OverdueBucket.TWO_WEEKS
    return OverdueBucket.MORE_THAN_TWO_WEEKS


def classify_overdue(loans: Iterable[OpenLoanLike], now: datetime) -> OverdueSnapshot:
    """Count open loans per overdue bucket.

    Args:
        loans: Loans to classify; closed loans are ignored
        now: Instant to classify at

    Returns:
        OverdueSnapshot for ``now``
    """
    counts: Counter[OverdueBucket] = Counter()
    for loan in loans:
        if not loan.is_open:
            continue
        bucket = overdue_bucket(loan.due_time, now)
        if bucket is not None:
            counts[bucket] += 1

    return OverdueSnapshot(**{bucket.value: counts[bucket] for bucket in OverdueBucket})
