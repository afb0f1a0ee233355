from __future__ import annotations

from typing import Any


class QueryError(Exception):
    """Base class for ranking engine failures."""


class InvalidArgument(QueryError, ValueError):
    """A required parameter is missing or malformed. Never retried."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class CacheStale(QueryError):
    """The aggregate cache cannot answer; callers fall back to the exact path."""


class BuildCancelled(QueryError):
    """A cache build observed its cancellation flag between groups."""


class CacheMiss(CacheStale):
    """No entry for the current store version; a rebuild can answer it."""
