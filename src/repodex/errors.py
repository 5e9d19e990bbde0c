"""
Exception taxonomy for the indexing pipeline.

Only the messages of these exceptions reach callers (as the ``error`` field of
a failed job); tracebacks stay in the logs.
"""
from __future__ import annotations

from typing import Optional


class RepodexError(Exception):
    """Base class for all repodex failures."""


class InvalidRepositoryKey(RepodexError, ValueError):
    """Raised when a repository key does not parse into provider, owner and repo."""


class StoreIOError(RepodexError):
    """Raised when a persisted record cannot be read or decoded."""


class FetchError(RepodexError):
    """Raised when the repository host cannot serve a request."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientNetworkError(FetchError):
    """Host unreachable or the request timed out."""


class AuthorizationError(FetchError):
    """Every credential attempt was rejected by the host."""


class ResolutionError(FetchError):
    """The branch, commit or repository could not be determined."""


class HostResponseError(FetchError):
    """The host answered with an unexpected status or a malformed body."""


class PartialContentError(FetchError):
    """A single file could not be downloaded; the crawl skips it."""

    def __init__(self, path: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message, status_code=status_code)
        self.path = path
