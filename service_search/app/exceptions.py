"""Exceptions raised by the search service.

Only ``SearchServiceError`` reaches callers; the others are caught inside the
service and either degrade a retrieval leg or are wrapped.
"""


class SearchServiceError(Exception):
    """Generic search failure surfaced to callers."""
    pass


class ProviderError(Exception):
    """The embedding provider failed, timed out, or returned a bad vector."""
    pass


class DocumentRepositoryError(Exception):
    """Candidate documents could not be fetched."""
    pass


class HistorySinkError(Exception):
    """A search history row could not be written."""
    pass
