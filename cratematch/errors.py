from __future__ import annotations

from typing import Optional


class CrateMatchError(Exception):
    """Base class for errors raised by the resolution engine."""


class ThrottledError(CrateMatchError):
    """The search provider is throttling us; do not retry right now."""

    def __init__(self, message: str = "search provider is throttled", retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class SearchTransportError(CrateMatchError):
    """Network or protocol failure talking to the search provider, after its own retries."""


class PersistenceError(CrateMatchError):
    """A cache or queue read/write failed."""


class MalformedRecordError(CrateMatchError):
    """A stored near-miss snapshot could not be parsed."""


class QueueStateError(CrateMatchError):
    """A queue record was asked to transition out of a terminal state."""


class CatalogError(CrateMatchError):
    """The catalog file could not be read or did not validate."""


class ResolutionCancelled(CrateMatchError):
    """The batch was cancelled before this track finished; nothing was written."""
