# fetcher.py
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .client import DEFAULT_ORDER, SELECT_COLS
from .config import FetchConfig
from .errors import FetchError, PartialFetchError, ThrottledError
from .windows import Window

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    records: List[Dict]
    total_known: Optional[int]
    was_capped: bool

    @property
    def fetched(self) -> int:
        return len(self.records)


class WindowFetcher:
    """Materialise every row of a window by paging through the query client.

    Pages are requested strictly one after another, ordered by
    ``created_date DESC``; offset paging is only well defined under a stable
    sort. Concurrency lives one level up: independent windows can be fetched
    at the same time with :meth:`fetch_windows`.
    """

    def __init__(self, client, config: FetchConfig, sleep=asyncio.sleep):
        self.client = client
        self.config = config
        self._sleep = sleep

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based) after a 429."""
        return min(self.config.throttle_backoff * 2 ** (attempt - 1), self.config.max_backoff)

    async def _with_retry(self, call, *args, **kwargs):
        attempt = 0
        while True:
            try:
                return await call(*args, **kwargs)
            except ThrottledError:
                attempt += 1
                if attempt > self.config.max_throttle_retries:
                    logger.error("Still throttled after %d retries; giving up", attempt - 1)
                    raise
                delay = self.backoff(attempt)
                logger.warning("Throttled (429); retry %d/%d in %.2fs",
                               attempt, self.config.max_throttle_retries, delay)
                await self._sleep(delay)

    async def count(self, window: Window) -> Optional[int]:
        """Provider row count for the window, or None if it could not be had."""
        try:
            return await self._with_retry(self.client.count, window.where())
        except FetchError as exc:
            logger.warning("Count failed for %s; paging without a known total: %s",
                           window.label(), exc)
            return None

    async def fetch_all(self, window: Window, select: Optional[Sequence[str]] = SELECT_COLS,
                        count_first: bool = True) -> FetchResult:
        cfg = self.config
        where = window.where()
        total = await self.count(window) if count_first else None
        hard_cap = cfg.safe_max if total is None else min(total, cfg.safe_max)
        logger.info("Fetching %s rows for %s (cap %s, page_size=%s)",
                    "?" if total is None else f"{total:,}", window.label(),
                    f"{hard_cap:,}", cfg.page_size)

        records: List[Dict] = []
        short_page = False
        while len(records) < hard_cap:
            limit = min(cfg.page_size, hard_cap - len(records))
            offset = len(records)
            try:
                batch = await self._with_retry(
                    self.client.query, where, DEFAULT_ORDER, limit, offset, select=select)
            except FetchError as exc:
                logger.error("Page fetch failed at offset %d: %s", offset, exc)
                capped = total is not None and total > cfg.safe_max
                raise PartialFetchError(FetchResult(records, total, capped), exc) from exc

            records.extend(batch)
            logger.debug("Got %d rows at offset %d (%d so far)", len(batch), offset, len(records))

            # fewer rows than requested means the provider has nothing more
            if len(batch) < limit:
                short_page = True
                break
            if len(records) < hard_cap:
                await self._sleep(cfg.page_delay)

        if total is not None:
            capped = total > cfg.safe_max
        else:
            capped = not short_page and len(records) >= cfg.safe_max
        if capped:
            logger.warning("Capped %s at %s rows", window.label(), f"{len(records):,}")
        logger.info("Done. %s rows for %s", f"{len(records):,}", window.label())
        return FetchResult(records, total, capped)

    async def latest(self, limit: int = 500, **filters) -> List[Dict]:
        """Newest rows for equality filters, retried on 429 like any page."""
        return await self._with_retry(self.client.latest, limit=limit, **filters)

    async def fetch_windows(self, windows: Sequence[Window], **kwargs) -> List[FetchResult]:
        """Fetch independent windows concurrently; results follow input order."""
        return list(await asyncio.gather(*(self.fetch_all(w, **kwargs) for w in windows)))
