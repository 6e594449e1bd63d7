# client.py
import asyncio
import logging
import threading
from typing import Dict, List, Optional, Sequence

from requests.exceptions import HTTPError, RequestException
from sodapy import Socrata

from .config import FetchConfig
from .errors import QueryError, ThrottledError
from .windows import quote

logger = logging.getLogger(__name__)

DEFAULT_ORDER = "created_date DESC"

# columns the dashboard views read; everything else stays on the provider
SELECT_COLS = [
    "unique_key", "created_date", "complaint_type", "descriptor", "borough",
    "incident_zip", "agency_name", "status", "resolution_description",
    "location_type", "city", "latitude", "longitude",
]


def _classify(exc: RequestException) -> Exception:
    """Map a requests/sodapy exception onto ThrottledError or QueryError."""
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(exc, HTTPError) and status == 429:
        return ThrottledError(str(exc))
    return QueryError(str(exc), status_code=status)


class SocrataQueryClient:
    """One-request-at-a-time access to the 311 dataset.

    The sodapy client is blocking, so each call is pushed onto a worker
    thread and awaited; the event loop is free while a request is in flight.
    Each worker thread gets its own Socrata client (and requests session)
    unless one is injected.
    """

    def __init__(self, config: FetchConfig, socrata=None):
        self.config = config
        self._shared = socrata
        self._local = threading.local()
        self._lock = threading.Lock()
        self._clients = []

    def _socrata(self):
        if self._shared is not None:
            return self._shared
        client = getattr(self._local, "client", None)
        if client is None:
            # Socrata client timeout is configured here, never passed to get():
            # sodapy turns unknown kwargs into query parameters
            client = Socrata(self.config.domain, self.config.app_token,
                             timeout=self.config.timeout)
            self._local.client = client
            with self._lock:
                self._clients.append(client)
        return client

    def _get(self, **kwargs) -> List[Dict]:
        try:
            rows = self._socrata().get(self.config.dataset_id, **kwargs)
        except RequestException as exc:
            raise _classify(exc) from exc
        return rows if isinstance(rows, list) else []

    async def query(self, where: Optional[str], order: str, limit: int, offset: int,
                    select: Optional[Sequence[str]] = None) -> List[Dict]:
        if not 1 <= limit <= self.config.page_size:
            raise ValueError(f"limit must be in 1..{self.config.page_size}, got {limit}")
        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")
        kwargs = {"order": order, "limit": limit, "offset": offset}
        if where:
            kwargs["where"] = where
        if select:
            kwargs["select"] = ",".join(select)
        return await asyncio.to_thread(self._get, **kwargs)

    async def count(self, where: Optional[str]) -> int:
        kwargs = {"select": "count(1)"}
        if where:
            kwargs["where"] = where
        rows = await asyncio.to_thread(self._get, **kwargs)
        if not rows:
            return 0
        raw = rows[0].get("count_1", rows[0].get("count"))
        try:
            return int(raw)
        except (TypeError, ValueError):
            raise QueryError(f"unexpected count response: {rows[0]!r}")

    async def latest(self, limit: int = 500, order: str = DEFAULT_ORDER,
                     select: Optional[Sequence[str]] = None, **filters) -> List[Dict]:
        """Newest ``limit`` rows matching simple equality filters (map / zip lookups)."""
        where = " AND ".join(f"{k}={quote(v)}" for k, v in filters.items() if v)
        return await self.query(where or None, order, limit, 0, select=select)

    def close(self):
        if self._shared is not None:
            self._shared.close()
        with self._lock:
            clients, self._clients = self._clients, []
        for client in clients:
            client.close()
