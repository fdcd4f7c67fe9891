"""Circulation analytics for the dashboard and reports.

Provides read-only statistics, including:
- Overdue buckets
- Item counts per type and status
- Daily checkout trend
- Most borrowed items and most active borrowers
- Recent checkouts and returns

Every figure in one dashboard comes from a single session, so the parts
reconcile with each other.
"""

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..clock import Clock, from_iso, to_iso, utcnow
from ..db.models import Item, Loan
from ..db.schemas import ItemStatus
from ..db.sqlite import Database, get_db
from .overdue import OverdueSnapshot, classify_overdue


@dataclass
class ItemTypeCount:
    """Item counts for one item type."""

    item_type: str
    total_count: int = 0
    available_count: int = 0
    checked_out_count: int = 0  # includes overdue


@dataclass
class TrendPoint:
    """Checkouts on one day."""

    date: date
    checkout_count: int = 0


@dataclass
class ItemStats:
    """Headline item counts."""

    total_count: int = 0
    available_count: int = 0
    checked_out_count: int = 0  # on loan and not yet due
    overdue_count: int = 0
    unavailable_count: int = 0  # maintenance, lost or retired

    @property
    def on_loan_count(self) -> int:
        return self.checked_out_count + self.overdue_count

    @property
    def overdue_percentage(self) -> int:
        if self.total_count == 0:
            return 0
        return round(self.overdue_count / self.total_count * 100)


@dataclass
class PopularItem:
    """An item and how often it has been borrowed."""

    code: str
    name: str
    item_type: str
    checkout_count: int


@dataclass
class BorrowerActivity:
    """A borrower's loan counts."""

    borrower_id: str
    total_loans: int
    active_loans: int


@dataclass
class ActivityEntry:
    """One checkout or return event."""

    timestamp: datetime
    action: str  # "checked_out" or "returned"
    item_code: str
    item_name: str
    borrower_id: str


@dataclass
class DashboardData:
    """Everything the dashboard shows, taken at one instant."""

    generated_at: datetime
    item_stats: ItemStats
    overdue: OverdueSnapshot
    item_type_distribution: list[ItemTypeCount] = field(default_factory=list)
    borrowing_trend: list[TrendPoint] = field(default_factory=list)
    popular_items: list[PopularItem] = field(default_factory=list)
    top_borrowers: list[BorrowerActivity] = field(default_factory=list)
    recent_activity: list[ActivityEntry] = field(default_factory=list)


class CirculationAnalytics:
    """Calculates circulation statistics. Never writes."""

    def __init__(self, db: Optional[Database] = None, clock: Optional[Clock] = None):
        """Initialize analytics.

        Args:
            db: Database instance
            clock: Callable returning the current UTC time
        """
        self.db = db or get_db()
        self.clock = clock or utcnow

    # -------------------------------------------------------------------------
    # Public reports
    # -------------------------------------------------------------------------

    def get_overdue_snapshot(self) -> OverdueSnapshot:
        """Bucket all open loans by how overdue they are."""
        with self.db.get_session() as session:
            return self._overdue(session, self.clock())

    def get_item_stats(self) -> ItemStats:
        """Count items by effective status."""
        with self.db.get_session() as session:
            return self._item_stats(session, self.clock())

    def get_item_type_distribution(self) -> list[ItemTypeCount]:
        """Count items per type, with available and on-loan counts."""
        with self.db.get_session() as session:
            return self._distribution(session, self.clock())

    def get_borrowing_trend(self, days: int = 30) -> list[TrendPoint]:
        """Daily checkout counts for the last ``days`` days, oldest first.

        Days without checkouts are included with a count of zero.
        """
        if days < 1:
            raise ValueError("days must be at least 1")
        with self.db.get_session() as session:
            return self._trend(session, self.clock(), days)

    def get_popular_items(self, limit: int = 10) -> list[PopularItem]:
        """Items with the most checkouts."""
        with self.db.get_session() as session:
            return self._popular_items(session, limit)

    def get_top_borrowers(self, limit: int = 10) -> list[BorrowerActivity]:
        """Borrowers with the most checkouts."""
        with self.db.get_session() as session:
            return self._top_borrowers(session, limit)

    def get_recent_activity(self, limit: int = 10) -> list[ActivityEntry]:
        """Latest checkouts and returns, newest first."""
        with self.db.get_session() as session:
            return self._recent_activity(session, limit)

    def get_dashboard(self, trend_days: int = 30, limit: int = 5) -> DashboardData:
        """Collect all dashboard figures from one consistent read."""
        with self.db.get_session() as session:
            now = self.clock()
            overdue = self._overdue(session, now)
            return DashboardData(
                generated_at=now,
                item_stats=self._item_stats(session, now, overdue),
                overdue=overdue,
                item_type_distribution=self._distribution(session, now),
                borrowing_trend=self._trend(session, now, trend_days),
                popular_items=self._popular_items(session, limit),
                top_borrowers=self._top_borrowers(session, limit),
                recent_activity=self._recent_activity(session, limit),
            )

    # -------------------------------------------------------------------------
    # Calculations (within a session)
    # -------------------------------------------------------------------------

    def _open_loans(self, session: Session) -> list[Loan]:
        stmt = select(Loan).where(Loan.returned_at.is_(None))
        return list(session.execute(stmt).scalars().all())

    def _overdue(self, session: Session, now: datetime) -> OverdueSnapshot:
        return classify_overdue(self._open_loans(session), now)

    def _item_stats(
        self, session: Session, now: datetime, overdue: Optional[OverdueSnapshot] = None
    ) -> ItemStats:
        overdue = overdue or self._overdue(session, now)
        items = session.execute(select(Item)).scalars().all()
        statuses = Counter(item.status_at(now) for item in items)

        return ItemStats(
            total_count=len(items),
            available_count=statuses[ItemStatus.AVAILABLE],
            checked_out_count=statuses[ItemStatus.CHECKED_OUT],
            # Taken from the classifier so it always matches the buckets
            overdue_count=overdue.total_overdue,
            unavailable_count=(
                statuses[ItemStatus.MAINTENANCE]
                + statuses[ItemStatus.LOST]
                + statuses[ItemStatus.RETIRED]
            ),
        )

    def _distribution(self, session: Session, now: datetime) -> list[ItemTypeCount]:
        counts: dict[str, ItemTypeCount] = {}
        for item in session.execute(select(Item)).scalars().all():
            row = counts.setdefault(item.item_type, ItemTypeCount(item_type=item.item_type))
            row.total_count += 1
            status = item.status_at(now)
            if status == ItemStatus.AVAILABLE:
                row.available_count += 1
            elif status.is_loaned:
                row.checked_out_count += 1
        return [counts[t] for t in sorted(counts)]

    def _trend(self, session: Session, now: datetime, days: int) -> list[TrendPoint]:
        today = now.astimezone(timezone.utc).date()
        start = today - timedelta(days=days - 1)
        start_at = datetime.combine(start, time.min, tzinfo=timezone.utc)

        stmt = select(Loan.checked_out_at).where(Loan.checked_out_at >= to_iso(start_at))
        per_day: defaultdict[date, int] = defaultdict(int)
        for (checked_out_at,) in session.execute(stmt).all():
            per_day[from_iso(checked_out_at).date()] += 1

        return [
            TrendPoint(date=day, checkout_count=per_day.get(day, 0))
            for day in (start + timedelta(days=i) for i in range(days))
        ]

    def _popular_items(self, session: Session, limit: int) -> list[PopularItem]:
        checkouts = func.count(Loan.id).label("checkouts")
        stmt = (
            select(Item.code, Item.name, Item.item_type, checkouts)
            .join(Loan, Loan.item_code == Item.code)
            .group_by(Item.code, Item.name, Item.item_type)
            .order_by(checkouts.desc(), Item.code)
            .limit(limit)
        )
        return [
            PopularItem(code=code, name=name, item_type=item_type, checkout_count=count)
            for code, name, item_type, count in session.execute(stmt).all()
        ]

    def _top_borrowers(self, session: Session, limit: int) -> list[BorrowerActivity]:
        total = func.count(Loan.id).label("total")
        active = func.count(Loan.id).filter(Loan.returned_at.is_(None)).label("active")
        stmt = (
            select(Loan.borrower_id, total, active)
            .group_by(Loan.borrower_id)
            .order_by(total.desc(), Loan.borrower_id)
            .limit(limit)
        )
        return [
            BorrowerActivity(borrower_id=borrower, total_loans=t, active_loans=a)
            for borrower, t, a in session.execute(stmt).all()
        ]

    def _recent_activity(self, session: Session, limit: int) -> list[ActivityEntry]:
        names = dict(session.execute(select(Item.code, Item.name)).all())

        checkouts = session.execute(
            select(Loan).order_by(Loan.checked_out_at.desc()).limit(limit)
        ).scalars().all()
        returns = session.execute(
            select(Loan)
            .where(Loan.returned_at.isnot(None))
            .order_by(Loan.returned_at.desc())
            .limit(limit)
        ).scalars().all()

        events = [
            ActivityEntry(
                timestamp=loan.checkout_time,
                action="checked_out",
                item_code=loan.item_code,
                item_name=names.get(loan.item_code, loan.item_code),
                borrower_id=loan.borrower_id,
            )
            for loan in checkouts
        ] + [
            ActivityEntry(
                timestamp=loan.return_time,
                action="returned",
                item_code=loan.item_code,
                item_name=names.get(loan.item_code, loan.item_code),
                borrower_id=loan.borrower_id,
            )
            for loan in returns
        ]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
