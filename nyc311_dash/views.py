# views.py
"""Fetch-then-aggregate recipes behind each dashboard page.

Each function picks its windows, fetches them (concurrently where they are
independent) and returns a plain dict of derived metrics.
"""
from datetime import date, datetime
from typing import Optional

from . import aggregate as agg
from .fetcher import FetchResult, WindowFetcher
from .windows import BOROUGHS, Window, day_window, last_completed_days


async def current_and_prior(fetcher: WindowFetcher, window: Window):
    """Fetch a window and its prior window side by side."""
    current, prior = await fetcher.fetch_windows([window, window.prior()])
    return current, prior


async def city_overview(fetcher: WindowFetcher, now: Optional[datetime] = None, days: int = 7) -> dict:
    """Last completed ``days`` days citywide against the ``days`` before them."""
    window = last_completed_days(days, now)
    current, prior = await current_and_prior(fetcher, window)
    rows, prev = current.records, prior.records
    total, total_prev = len(rows), len(prev)

    complaints = agg.count_by(rows, "complaint_type")
    boro_now = {e.name: e.value for e in agg.count_by(rows, "borough")}
    boro_prev = {e.name: e.value for e in agg.count_by(prev, "borough")}
    hourly_by_boro = agg.hourly_by_group(rows, "borough", BOROUGHS)
    top_by_boro = agg.top_by_group(rows, "borough", "complaint_type", BOROUGHS)

    # known boroughs first in fixed order, anything else after
    mix = agg.with_share(agg.count_by(rows, "borough"), total)
    mix = [e for b in BOROUGHS for e in mix if e.name == b] + [e for e in mix if e.name not in BOROUGHS]

    cards = []
    for b in BOROUGHS:
        n, n_prev = boro_now.get(b, 0), boro_prev.get(b, 0)
        cards.append({
            "name": b,
            "count": n,
            "share": agg.share_of(n, total),
            "delta_pct": agg.delta_pct(n, n_prev),
            "top_complaint": top_by_boro[b],
            "peak_hour": agg.hour_label(agg.peak_hour(hourly_by_boro[b])),
        })

    return {
        "window": window,
        "prior_window": window.prior(),
        "total": total,
        "total_prior": total_prev,
        "total_delta_pct": agg.delta_pct(total, total_prev),
        "complaints": agg.with_share(complaints, total),
        "complaint_deltas": agg.delta(complaints, agg.count_by(prev, "complaint_type")),
        "borough_mix": mix,
        "borough_cards": cards,
        "hourly": agg.hourly_histogram(rows),
        "busiest_day": agg.busiest_day(rows),
        "capped": current.was_capped or prior.was_capped,
    }


async def borough_report(fetcher: WindowFetcher, borough: str, first_day: date, last_day: date,
                         rng=None) -> dict:
    window = day_window(first_day, last_day, borough=borough)
    current, prior = await current_and_prior(fetcher, window)
    rows, prev = current.records, prior.records
    total = len(rows)

    complaints = agg.count_by(rows, "complaint_type")
    hourly = agg.hourly_histogram(rows)
    zips = [e for e in agg.count_by(rows, "incident_zip") if e.name != agg.UNKNOWN]

    return {
        "borough": borough,
        "window": window,
        "prior_window": window.prior(),
        "total": total,
        "total_prior": len(prev),
        "total_delta_pct": agg.delta_pct(total, len(prev)),
        "top_complaints": agg.with_share(agg.top_n(complaints, 8), total),
        "agencies": agg.with_share(agg.top_n(agg.count_by(rows, "agency_name"), 6), total),
        "zips": agg.top_n(zips, 6),
        "descriptors": agg.top_n(agg.count_by(rows, "descriptor"), 6),
        "statuses": agg.with_share(agg.count_by(rows, "status"), total),
        "location_types": agg.with_share(agg.top_n(agg.count_by(rows, "location_type"), 6), total),
        "closure_rate": agg.closure_rate(rows),
        "random_descriptor": agg.pick_random_descriptor(rows, rng),
        "hourly": hourly,
        "busiest_hour": agg.hour_label(agg.peak_hour(hourly)),
        "risers": agg.risers(complaints, agg.count_by(prev, "complaint_type")),
        "recent": agg.recent(rows, 6),
        "capped": current.was_capped or prior.was_capped,
    }


async def city_from_boroughs(fetcher: WindowFetcher, window: Window) -> FetchResult:
    """Citywide rows assembled from one fetch per borough, all in flight at once."""
    results = await fetcher.fetch_windows([window.with_filter("borough", b) for b in BOROUGHS])
    records = [r for res in results for r in res.records]
    totals = [res.total_known for res in results]
    total = None if any(t is None for t in totals) else sum(totals)
    return FetchResult(records, total, any(res.was_capped for res in results))


async def trends(fetcher: WindowFetcher, days: int = 7, now: Optional[datetime] = None) -> dict:
    window = last_completed_days(days, now)
    result = await fetcher.fetch_all(window)
    rows = result.records
    return {
        "window": window,
        "total": len(rows),
        "daily": agg.daily_counts(rows),
        "top_complaints": agg.top_n(agg.count_by(rows, "complaint_type"), 5),
        "top_boroughs": agg.top_n(agg.count_by(rows, "borough"), 5),
        "capped": result.was_capped,
    }


async def zip_lookup(fetcher: WindowFetcher, zip_code: str, limit: int = 500) -> dict:
    rows = await fetcher.latest(limit=limit, incident_zip=zip_code)
    return {
        "zip": zip_code,
        "total": len(rows),
        "complaints": agg.with_share(agg.count_by(rows, "complaint_type"), len(rows)),
        "recent": agg.recent(rows, 10),
        "points": agg.geo_points(rows),
    }
