# windows.py
"""Time windows over ``created_date`` and the SoQL literals that express them.

Every boundary here is New York civil time held as a naive datetime, which
matches how the provider stores ``created_date`` (a floating timestamp with
no zone). Values that do carry an offset are converted to New York time and
then made naive, so comparisons never mix the two.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, Optional

import pandas as pd
import pytz

NYC_TZ = pytz.timezone("America/New_York")
TICK = timedelta(seconds=1)
SOQL_FORMAT = "%Y-%m-%dT%H:%M:%S"

BOROUGHS = ["MANHATTAN", "BROOKLYN", "QUEENS", "BRONX", "STATEN ISLAND"]


def now_local() -> datetime:
    """Current New York wall-clock time, naive, truncated to the second."""
    return datetime.now(NYC_TZ).replace(tzinfo=None, microsecond=0)


def to_local(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        dt = dt.astimezone(NYC_TZ).replace(tzinfo=None)
    return dt.replace(microsecond=0)


def soql_literal(dt: datetime) -> str:
    return to_local(dt).strftime(SOQL_FORMAT)


def quote(value) -> str:
    safe = str(value).replace("'", "''")
    return f"'{safe}'"


@dataclass(frozen=True)
class Window:
    """Inclusive ``[start, end]`` range on ``created_date`` plus equality filters."""
    start: datetime
    end: datetime
    filters: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "start", to_local(self.start))
        object.__setattr__(self, "end", to_local(self.end))
        object.__setattr__(self, "filters", dict(self.filters))
        if self.start > self.end:
            raise ValueError(f"window start {self.start} is after end {self.end}")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def prior(self) -> "Window":
        """The equal-length window ending one tick before this one starts."""
        prior_end = self.start - TICK
        return Window(prior_end - self.duration, prior_end, self.filters)

    def with_filter(self, name: str, value: str) -> "Window":
        return Window(self.start, self.end, {**self.filters, name: value})

    def where(self, field_name: str = "created_date") -> str:
        clauses = [f"{name}={quote(value)}" for name, value in self.filters.items()]
        clauses.append(
            f"{field_name} between '{soql_literal(self.start)}' and '{soql_literal(self.end)}'")
        return " AND ".join(clauses)

    def label(self) -> str:
        return f"{self.start:%b %d, %Y} - {self.end:%b %d, %Y}"

    def __hash__(self):
        return hash((self.start, self.end, tuple(sorted(self.filters.items()))))


def day_window(first_day: date, last_day: date, **filters) -> Window:
    """Whole days: 00:00:00 of ``first_day`` through 23:59:59 of ``last_day``."""
    start = datetime.combine(first_day, time.min)
    end = datetime.combine(last_day, time(23, 59, 59))
    return Window(start, end, filters)


def last_completed_days(days: int = 7, now: Optional[datetime] = None, **filters) -> Window:
    """The ``days`` whole days ending yesterday (today is still filling in)."""
    if days < 1:
        raise ValueError(f"days must be >= 1, got {days}")
    today = to_local(now or now_local()).date()
    last_day = today - timedelta(days=1)
    return day_window(last_day - timedelta(days=days - 1), last_day, **filters)


def parse_date(s: str) -> date:
    try:
        return datetime.strptime(s, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise ValueError(f"Invalid date format (expected YYYY-MM-DD): {s}")


def _parse_one(value):
    ts = pd.to_datetime(value, errors="coerce")
    if pd.isna(ts):
        return pd.NaT
    if ts.tzinfo is not None:
        ts = ts.tz_convert(NYC_TZ).tz_localize(None)
    return ts


def parse_timestamps(values: Iterable) -> pd.Series:
    """Parse raw ``created_date`` strings into naive local timestamps.

    Anything that is not a non-empty string, or does not parse, becomes NaT.
    """
    raw = pd.Series([v if isinstance(v, str) and v.strip() else None for v in values],
                    dtype="object")
    if raw.empty:
        return pd.Series([], dtype="datetime64[ns]")
    try:
        parsed = pd.to_datetime(raw, errors="coerce", format="ISO8601")
    except (TypeError, ValueError):
        parsed = None
    if parsed is None or not pd.api.types.is_datetime64_any_dtype(parsed):
        # mixed offsets/naive values; fall back to one-at-a-time
        return pd.to_datetime(raw.map(_parse_one), errors="coerce")
    if parsed.dt.tz is not None:
        parsed = parsed.dt.tz_convert(NYC_TZ).dt.tz_localize(None)
    return parsed
