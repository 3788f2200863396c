"""Date helpers for sync windows and vendor date strings."""

from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def utc_today() -> date:
    return utc_now().date()


def days_ago(days: int, today: Optional[date] = None) -> date:
    """
    Date ``days`` before ``today`` (UTC today by default).

    Example:
        >>> days_ago(5, date(2024, 3, 10))
        datetime.date(2024, 3, 5)
    """
    return (today or utc_today()) - timedelta(days=days)


def parse_date(value: Union[str, date, None]) -> Optional[date]:
    """Parse a vendor date or datetime string to a date. Returns None for blanks."""
    if not value:
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, datetime):
        return value.date()
    # Vendors send either YYYY-MM-DD or full ISO-8601 timestamps
    return date.fromisoformat(value[:10])


def format_date(value: date) -> str:
    return value.isoformat()
