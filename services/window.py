"""
Reporting windows and the time-range predicates built from them.

Predicates are always SQLAlchemy comparisons against bound parameters; caller
supplied values never end up in SQL text.
"""
from datetime import datetime, timedelta
from typing import List, Optional

from exceptions import ValidationError
from utils import to_naive_utc, utcnow

PERIODS = {
    "24h": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "all": None,
}

DEFAULT_PERIOD = "24h"


def parse_timestamp(value: str, field: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        raise ValidationError(f"{field} must be an ISO 8601 timestamp")
    return to_naive_utc(parsed)


class ReportingWindow:
    """A time range over which aggregates are computed.

    Preset periods are open at the start (``t > now - period``); explicit
    ranges are closed on both ends. A window with no bounds matches
    everything.
    """

    def __init__(self, start: Optional[datetime] = None, end: Optional[datetime] = None,
                 start_inclusive: bool = True, label: str = "custom"):
        self.start = start
        self.end = end
        self.start_inclusive = start_inclusive
        self.label = label

    @classmethod
    def from_params(cls, period: Optional[str] = None, start_date: Optional[str] = None,
                    end_date: Optional[str] = None, now: Optional[datetime] = None) -> "ReportingWindow":
        # An explicit range only applies when both ends are given
        if start_date and end_date:
            start = parse_timestamp(start_date, "startDate")
            end = parse_timestamp(end_date, "endDate")
            if start > end:
                raise ValidationError("startDate must not be after endDate")
            return cls(start=start, end=end, start_inclusive=True)
        return cls.for_period(period or DEFAULT_PERIOD, now)

    @classmethod
    def for_period(cls, period: str, now: Optional[datetime] = None) -> "ReportingWindow":
        if period not in PERIODS:
            raise ValidationError(f"period must be one of: {', '.join(PERIODS)}")
        delta = PERIODS[period]
        if delta is None:
            return cls(label=period)
        now = now or utcnow()
        return cls(start=now - delta, start_inclusive=False, label=period)

    def filters(self, column) -> List:
        clauses = []
        if self.start is not None:
            clauses.append(column >= self.start if self.start_inclusive else column > self.start)
        if self.end is not None:
            clauses.append(column <= self.end)
        return clauses

    def __repr__(self):
        return f"ReportingWindow({self.label}, start={self.start}, end={self.end})"
