"""Windowed fetch and aggregation core for an NYC 311 dashboard."""

from .aggregate import (
    CountEntry,
    DeltaEntry,
    closure_rate,
    count_by,
    delta,
    hourly_histogram,
    pick_random_descriptor,
    risers,
    top_n,
    with_share,
)
from .client import SocrataQueryClient
from .config import FetchConfig, load_config
from .errors import FetchError, PartialFetchError, QueryError, ThrottledError
from .fetcher import FetchResult, WindowFetcher
from .session import LatestSelection
from .windows import Window, day_window, last_completed_days

__version__ = "0.1.0"
