"""
searchmon error taxonomy.

- ConfigurationError: bad aggregation config, fatal for that aggregation
- ConnectivityError: store unreachable / index missing, retried next cycle
- QueryTimeoutError: a single query ran past its deadline
- ResponseShapeError: response does not match the compiled query
"""


class SearchmonError(Exception):
    """Base class for all searchmon errors"""


class ConfigurationError(SearchmonError):
    """Aggregation configuration can never succeed as written."""


class ConnectivityError(SearchmonError):
    """Store could not be reached or refused the request."""

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status


class IndexNotFoundError(ConnectivityError):
    """Index (or pattern) does not exist on the store."""


class QueryTimeoutError(SearchmonError):
    """Query did not complete before its deadline."""


class ResponseShapeError(SearchmonError):
    """Unexpected or malformed search response."""
