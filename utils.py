from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import func, Date, cast, extract


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC"""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def get_start_of_day(now: datetime) -> datetime:
    """Get start of the calendar day (00:00:00) containing ``now``"""
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def get_hour_expr(column, dialect_name):
    """SQLAlchemy expression to get the hour of day from a UTC column"""
    if dialect_name == 'sqlite':
        return func.strftime('%H', column)
    else:
        # Postgres
        return extract('hour', column)


def get_date_expr(column, dialect_name):
    """SQLAlchemy expression to get the calendar date from a UTC column"""
    if dialect_name == 'sqlite':
        return func.date(column)
    else:
        return cast(column, Date)


def format_hour(value) -> Optional[str]:
    """Normalize a dialect hour value ('07', 7, 7.0) to '07'"""
    if value is None:
        return None
    return f"{int(value):02d}"


def format_date(value) -> Optional[str]:
    """Normalize a dialect date value (str or date) to 'YYYY-MM-DD'"""
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")
    return str(value)[:10]
