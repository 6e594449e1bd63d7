# config.py
import os
import logging
from dataclasses import dataclass, replace
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DOMAIN = "data.cityofnewyork.us"
DATASET_ID = "erm2-nwe9"  # NYC 311 Service Requests


@dataclass(frozen=True)
class FetchConfig:
    """Paging and backoff settings handed to a WindowFetcher.

    Delays are in seconds. ``safe_max`` is the most rows a single window
    fetch will ever download, whatever the provider reports as its total.
    """
    page_size: int = 50000
    safe_max: int = 300000
    page_delay: float = 0.12
    throttle_backoff: float = 0.6
    max_backoff: float = 10.0
    max_throttle_retries: int = 5
    timeout: int = 60
    domain: str = DOMAIN
    dataset_id: str = DATASET_ID
    app_token: Optional[str] = None

    def __post_init__(self):
        if self.page_size <= 0:
            raise ValueError(f"page_size must be positive, got {self.page_size}")
        if self.safe_max <= 0:
            raise ValueError(f"safe_max must be positive, got {self.safe_max}")
        for name in ("page_delay", "throttle_backoff", "max_backoff"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.max_throttle_retries < 0:
            raise ValueError("max_throttle_retries must be >= 0")

    def with_overrides(self, **kwargs) -> "FetchConfig":
        return replace(self, **{k: v for k, v in kwargs.items() if v is not None})


def _ms_env(name, default_seconds):
    raw = os.getenv(name)
    return default_seconds if raw is None else int(raw) / 1000.0


def load_config(token_env="SOCRATA_APP_TOKEN", **overrides) -> FetchConfig:
    """Build a FetchConfig from the environment (and .env), then apply overrides.

    Explicit keyword overrides win over environment values; ``None`` overrides
    are ignored so argparse defaults can be passed straight through.
    """
    load_dotenv()

    # read token from env using provided env var name (fall back to a common alias)
    app_token = os.getenv(token_env) or os.getenv("SOCRATA_TOKEN")
    if not app_token and not overrides.get("app_token"):
        logger.warning("No %s found in environment; you'll be throttled.", token_env)

    base = FetchConfig(
        page_size=int(os.getenv("PAGE_SIZE", "50000")),
        safe_max=int(os.getenv("SAFE_MAX", "300000")),
        page_delay=_ms_env("PAGE_DELAY_MS", 0.12),
        throttle_backoff=_ms_env("THROTTLE_BACKOFF_MS", 0.6),
        max_throttle_retries=int(os.getenv("MAX_THROTTLE_RETRIES", "5")),
        timeout=int(os.getenv("SOCRATA_TIMEOUT", "60")),
        app_token=app_token,
    )
    return base.with_overrides(**overrides)
