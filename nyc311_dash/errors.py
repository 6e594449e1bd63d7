"""Failure types raised by the query client and the window fetcher."""


class FetchError(Exception):
    """Base class for anything that stops a fetch."""


class ThrottledError(FetchError):
    """The provider answered HTTP 429; the same request may be retried."""

    status_code = 429


class QueryError(FetchError):
    """A terminal failure for one request (non-429 HTTP error or network error)."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class PartialFetchError(FetchError):
    """Paging stopped on a terminal error.

    ``result`` holds every record accumulated before the failure so callers
    can still show partial data; ``cause`` is the error that stopped paging.
    """

    def __init__(self, result, cause):
        super().__init__(
            f"fetch stopped after {len(result.records):,} rows: {cause}")
        self.result = result
        self.cause = cause
