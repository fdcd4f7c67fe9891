"""Circulation statistics module.

Provides:
- Overdue classification of open loans
- Dashboard analytics (distribution, trends, popular items)
"""

from .analytics import (
    ActivityEntry,
    BorrowerActivity,
    CirculationAnalytics,
    DashboardData,
    ItemStats,
    ItemTypeCount,
    PopularItem,
    TrendPoint,
)
from .overdue import OverdueBucket, OverdueSnapshot, classify_overdue, overdue_bucket

__all__ = [
    "ActivityEntry",
    "BorrowerActivity",
    "CirculationAnalytics",
    "DashboardData",
    "ItemStats",
    "ItemTypeCount",
    "PopularItem",
    "TrendPoint",
    "OverdueBucket",
    "OverdueSnapshot",
    "classify_overdue",
    "overdue_bucket",
]
