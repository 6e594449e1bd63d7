import os
import sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import asyncio
from datetime import date

import pytest

from nyc311_dash.config import FetchConfig
from nyc311_dash.errors import PartialFetchError, QueryError, ThrottledError
from nyc311_dash.fetcher import WindowFetcher
from nyc311_dash.windows import day_window

WINDOW = day_window(date(2025, 1, 1), date(2025, 1, 7))


def small_config(**kw):
    base = dict(page_size=10, safe_max=100, page_delay=0.1, throttle_backoff=0.5,
                max_backoff=4.0, max_throttle_retries=3)
    base.update(kw)
    return FetchConfig(**base)


class Sleeps(list):
    async def __call__(self, seconds):
        self.append(seconds)


class DummyClient:
    """Serves ``total`` fake rows newest-first; can throttle or fail on demand."""

    def __init__(self, total, report_total=None, fail_count=False, throttle=None, fail_at=None):
        self.total = total
        self.report_total = total if report_total is None else report_total
        self.fail_count = fail_count
        self.throttle = dict(throttle or {})  # offset -> number of 429s before success
        self.fail_at = fail_at
        self.calls = []
        self.wheres = []

    async def count(self, where):
        if self.fail_count:
            raise QueryError("500 Server Error", status_code=500)
        return self.report_total

    async def query(self, where, order, limit, offset, select=None):
        self.calls.append((limit, offset))
        self.wheres.append(where)
        assert order == "created_date DESC"
        if self.throttle.get(offset, 0) > 0:
            self.throttle[offset] -= 1
            raise ThrottledError("429 Too Many Requests")
        if self.fail_at is not None and offset >= self.fail_at:
            raise QueryError("503 Service Unavailable", status_code=503)
        end = min(offset + limit, self.total)
        return [{"unique_key": f"k{i}", "created_date": "2025-01-05T10:00:00.000"}
                for i in range(offset, end)]


def run_fetch(client, config=None, **kw):
    sleeps = Sleeps()
    fetcher = WindowFetcher(client, config or small_config(), sleep=sleeps)
    result = asyncio.run(fetcher.fetch_all(WINDOW, **kw))
    return result, sleeps


def test_fetch_all_pages_through_everything():
    client = DummyClient(total=35)
    result, sleeps = run_fetch(client)

    assert result.fetched == 35
    assert result.total_known == 35
    assert result.was_capped is False
    assert client.calls == [(10, 0), (10, 10), (10, 20), (5, 30)]
    keys = [r["unique_key"] for r in result.records]
    assert keys == [f"k{i}" for i in range(35)]
    # politeness delay between pages only, none after the last
    assert sleeps == [0.1, 0.1, 0.1]


def test_exact_multiple_of_page_size_makes_no_extra_call():
    client = DummyClient(total=30)
    result, _ = run_fetch(client)
    assert result.fetched == 30
    assert len(client.calls) == 3


def test_where_clause_is_the_window():
    client = DummyClient(total=3)
    run_fetch(client)
    assert client.wheres == [
        "created_date between '2025-01-01T00:00:00' and '2025-01-07T23:59:59'"]


def test_safe_max_caps_the_download():
    client = DummyClient(total=150, report_total=150)
    result, _ = run_fetch(client)

    assert result.fetched == 100
    assert result.total_known == 150
    assert result.was_capped is True
    assert len(client.calls) == 10


def test_throttle_once_then_success_matches_clean_run():
    clean, clean_sleeps = run_fetch(DummyClient(total=25))
    client = DummyClient(total=25, throttle={10: 1})
    result, sleeps = run_fetch(client)

    assert result.records == clean.records
    assert len({r["unique_key"] for r in result.records}) == 25
    # same page retried with the same offset/limit
    assert client.calls == [(10, 0), (10, 10), (10, 10), (5, 20)]
    assert sorted(sleeps) == sorted(clean_sleeps + [0.5])


def test_throttle_retries_are_bounded():
    client = DummyClient(total=25, throttle={10: 99})
    sleeps = Sleeps()
    fetcher = WindowFetcher(client, small_config(), sleep=sleeps)

    with pytest.raises(PartialFetchError) as info:
        asyncio.run(fetcher.fetch_all(WINDOW))

    assert isinstance(info.value.cause, ThrottledError)
    assert info.value.result.fetched == 10
    # exponential backoff: 0.5, 1.0, 2.0 after the first page delay
    assert sleeps == [0.1, 0.5, 1.0, 2.0]


def test_backoff_is_capped():
    fetcher = WindowFetcher(DummyClient(total=0), small_config())
    assert fetcher.backoff(1) == 0.5
    assert fetcher.backoff(3) == 2.0
    assert fetcher.backoff(10) == 4.0


def test_terminal_error_keeps_partial_rows():
    client = DummyClient(total=50, fail_at=20)
    sleeps = Sleeps()
    fetcher = WindowFetcher(client, small_config(), sleep=sleeps)

    with pytest.raises(PartialFetchError) as info:
        asyncio.run(fetcher.fetch_all(WINDOW))

    err = info.value
    assert isinstance(err.cause, QueryError)
    assert err.cause.status_code == 503
    assert err.result.fetched == 20
    assert err.result.was_capped is False
    # not retried
    assert client.calls == [(10, 0), (10, 10), (10, 20)]


def test_terminal_error_reports_cap_from_known_total_only():
    client = DummyClient(total=500, report_total=500, fail_at=30)
    fetcher = WindowFetcher(client, small_config(), sleep=Sleeps())
    with pytest.raises(PartialFetchError) as info:
        asyncio.run(fetcher.fetch_all(WINDOW))
    assert info.value.result.was_capped is True
    assert info.value.result.total_known == 500


def test_count_failure_falls_back_to_short_page():
    client = DummyClient(total=35, fail_count=True)
    result, _ = run_fetch(client)

    assert result.total_known is None
    assert result.fetched == 35
    assert result.was_capped is False
    assert client.calls == [(10, 0), (10, 10), (10, 20), (10, 30)]


def test_count_failure_still_stops_at_safe_max():
    client = DummyClient(total=500, fail_count=True)
    result, _ = run_fetch(client)
    assert result.fetched == 100
    assert result.was_capped is True


def test_short_page_stops_before_reported_total():
    # rows disappeared between the count and the page requests
    client = DummyClient(total=35, report_total=60)
    result, _ = run_fetch(client)
    assert result.fetched == 35
    assert len(client.calls) == 4


def test_zero_total_makes_no_page_calls():
    client = DummyClient(total=0)
    result, sleeps = run_fetch(client)
    assert result.records == []
    assert client.calls == []
    assert sleeps == []


def test_skip_count():
    client = DummyClient(total=5, fail_count=True)
    result, _ = run_fetch(client, count_first=False)
    assert result.total_known is None
    assert result.fetched == 5


def test_fetch_windows_keeps_input_order():
    class KeyedClient:
        async def count(self, where):
            return 1

        async def query(self, where, order, limit, offset, select=None):
            # let the later window finish first
            await asyncio.sleep(0 if "BRONX" in where else 0.01)
            return [{"unique_key": where}]

    fetcher = WindowFetcher(KeyedClient(), small_config(), sleep=Sleeps())
    windows = [WINDOW.with_filter("borough", "QUEENS"), WINDOW.with_filter("borough", "BRONX")]
    results = asyncio.run(fetcher.fetch_windows(windows))

    assert "QUEENS" in results[0].records[0]["unique_key"]
    assert "BRONX" in results[1].records[0]["unique_key"]


def test_safe_max_below_page_size_shortens_the_only_page():
    client = DummyClient(total=50)
    result, _ = run_fetch(client, small_config(page_size=10, safe_max=4))

    assert client.calls == [(4, 0)]
    assert result.fetched == 4
    assert result.was_capped is True


def test_latest_retries_a_throttle():
    class ThrottlingLatest:
        def __init__(self):
            self.attempts = 0

        async def latest(self, limit=500, **filters):
            self.attempts += 1
            if self.attempts == 1:
                raise ThrottledError("429 Too Many Requests")
            return [{"unique_key": "1", "incident_zip": filters["incident_zip"]}][:limit]

    client = ThrottlingLatest()
    sleeps = Sleeps()
    fetcher = WindowFetcher(client, small_config(), sleep=sleeps)

    rows = asyncio.run(fetcher.latest(limit=5, incident_zip="10451"))

    assert rows == [{"unique_key": "1", "incident_zip": "10451"}]
    assert client.attempts == 2
    assert sleeps == [0.5]
