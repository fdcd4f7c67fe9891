"""Time helpers shared by the circulation modules.

Timestamps are stored as fixed-width ISO-8601 strings in UTC so that they
sort and compare correctly as text.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize a datetime to the stored text form.

    Naive datetimes are taken to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(ISO_FORMAT)


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp, returning None for empty values."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_past_due(due: Optional[datetime], now: datetime) -> bool:
    """Whether a due time has passed. A loan due exactly now is still current."""
    if due is None:
        return False
    return now > due
