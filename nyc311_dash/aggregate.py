# aggregate.py
"""Pure reductions over fetched 311 rows.

Nothing here does I/O or mutates its input. Rows are the provider's JSON
objects: every field is an optional string.
"""
import random
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .windows import parse_timestamps

UNKNOWN = "Unknown"


@dataclass(frozen=True)
class CountEntry:
    name: str
    value: int
    share: Optional[float] = None


@dataclass(frozen=True)
class DeltaEntry:
    name: str
    current: int
    prior: int
    delta_pct: float


def _key(record: Dict, field: str) -> str:
    value = record.get(field)
    if value is None:
        return UNKNOWN
    value = str(value)
    return value if value.strip() else UNKNOWN


def count_by(records: Iterable[Dict], field: str) -> List[CountEntry]:
    """Group on ``field`` and sort by count, largest first.

    Ties keep first-seen order: dicts preserve insertion order and
    ``sorted`` is stable.
    """
    counts: Dict[str, int] = {}
    for r in records:
        k = _key(r, field)
        counts[k] = counts.get(k, 0) + 1
    ordered = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
    return [CountEntry(name, value) for name, value in ordered]


def share_of(value: int, total: int) -> float:
    return value / total * 100 if total > 0 else 0.0


def with_share(entries: Sequence[CountEntry], total: int) -> List[CountEntry]:
    return [CountEntry(e.name, e.value, share_of(e.value, total)) for e in entries]


def top_n(entries: Sequence, n: int) -> list:
    if n < 0:
        raise ValueError(f"n must be >= 0, got {n}")
    return list(entries[:n])


def delta_pct(current: int, prior: int) -> float:
    """Percent change, with a flat 100 for growth from zero and 0 for zero to zero."""
    if prior == 0:
        return 100.0 if current > 0 else 0.0
    return (current - prior) / prior * 100


def delta(current: Sequence[CountEntry], prior: Sequence[CountEntry]) -> List[DeltaEntry]:
    """Outer join on name; a side with no entry counts as zero.

    Names appear in ``current`` order, followed by names only ``prior`` has.
    """
    now = {e.name: e.value for e in current}
    before = {e.name: e.value for e in prior}
    names = list(now) + [n for n in before if n not in now]
    return [
        DeltaEntry(n, now.get(n, 0), before.get(n, 0), delta_pct(now.get(n, 0), before.get(n, 0)))
        for n in names
    ]


def risers(current: Sequence[CountEntry], prior: Sequence[CountEntry],
           threshold: int = 10, n: int = 5) -> List[DeltaEntry]:
    """Fastest-growing names, ignoring ones too small on both sides to matter."""
    rows = [d for d in delta(current, prior) if d.current >= threshold or d.prior >= threshold]
    rows.sort(key=lambda d: d.delta_pct, reverse=True)
    return top_n(rows, n)


def _created(records: Sequence[Dict]) -> pd.Series:
    return parse_timestamps(r.get("created_date") for r in records)


def hourly_histogram(records: Sequence[Dict]) -> List[int]:
    """Rows per hour of day (0-23); unparseable timestamps are skipped."""
    hours = [0] * 24
    created = _created(records).dropna()
    for h, n in created.dt.hour.value_counts().items():
        hours[int(h)] = int(n)
    return hours


def hourly_by_group(records: Sequence[Dict], field: str,
                    groups: Sequence[str]) -> Dict[str, List[int]]:
    buckets: Dict[str, List[Dict]] = {g: [] for g in groups}
    for r in records:
        g = _key(r, field)
        if g in buckets:
            buckets[g].append(r)
    return {g: hourly_histogram(rows) for g, rows in buckets.items()}


def peak_hour(histogram: Sequence[int]) -> int:
    """Index of the first largest bucket (0 for an all-zero histogram)."""
    best, best_val = 0, -1
    for i, v in enumerate(histogram):
        if v > best_val:
            best, best_val = i, v
    return best


def hour_label(hour: int) -> str:
    h12 = hour % 12 or 12
    return f"{h12} {'AM' if hour < 12 else 'PM'}"


def daily_counts(records: Sequence[Dict]) -> List[CountEntry]:
    """Rows per calendar day, oldest day first."""
    created = _created(records).dropna()
    if created.empty:
        return []
    per_day = created.dt.strftime("%Y-%m-%d").value_counts().sort_index()
    return [CountEntry(day, int(n)) for day, n in per_day.items()]


def busiest_day(records: Sequence[Dict]) -> Optional[Tuple[str, int]]:
    days = daily_counts(records)
    if not days:
        return None
    # earliest day wins a tie
    top = max(days, key=lambda e: e.value)
    return top.name, top.value


def closure_rate(records: Sequence[Dict]) -> float:
    total = len(records)
    closed = sum(1 for r in records if "closed" in str(r.get("status") or "").lower())
    return share_of(closed, total)


def pick_random_descriptor(records: Sequence[Dict],
                           rng: Optional[random.Random] = None) -> Optional[str]:
    choices = [r["descriptor"] for r in records if _key(r, "descriptor") != UNKNOWN]
    if not choices:
        return None
    return (rng or random).choice(choices)


def top_by_group(records: Sequence[Dict], group_field: str, value_field: str,
                 groups: Sequence[str]) -> Dict[str, Optional[str]]:
    """Most common ``value_field`` within each group (None for an empty group)."""
    buckets: Dict[str, List[Dict]] = {g: [] for g in groups}
    for r in records:
        g = _key(r, group_field)
        if g in buckets:
            buckets[g].append(r)
    out = {}
    for g, rows in buckets.items():
        counts = count_by(rows, value_field)
        out[g] = counts[0].name if counts else None
    return out


def recent(records: Sequence[Dict], n: int = 6) -> List[Dict]:
    """Summaries of the first ``n`` rows (newest first, given the fetch order)."""
    return [
        {
            "id": r.get("unique_key"),
            "when": r.get("created_date"),
            "complaint": r.get("complaint_type") or UNKNOWN,
            "zipcode": r.get("incident_zip") or "-",
            "agency": r.get("agency_name") or "-",
        }
        for r in records[:n]
    ]


def geo_points(records: Sequence[Dict]) -> pd.DataFrame:
    """Rows with usable coordinates, latitude/longitude as floats."""
    df = pd.DataFrame.from_records(list(records))
    if df.empty or not {"latitude", "longitude"}.issubset(df.columns):
        return pd.DataFrame(columns=["latitude", "longitude"])
    for c in ["latitude", "longitude"]:
        df[c] = pd.to_numeric(df[c], errors="coerce")
    return df.dropna(subset=["latitude", "longitude"]).reset_index(drop=True)


def to_frame(entries: Sequence) -> pd.DataFrame:
    """Count/Delta entries as a table for display."""
    df = pd.DataFrame([asdict(e) for e in entries])
    if "share" in df.columns and df["share"].isna().all():
        df = df.drop(columns="share")
    return df
