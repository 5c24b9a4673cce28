# bookcache/errors.py
"""
Exception types for the book cache pipeline.

Most failures inside the pipeline are turned into empty or partial results.
Exceptions are reserved for explicit saves, programmer errors and the
metadata client's internal retry signalling.
"""


class BookCacheError(Exception):
    """Base class for all bookcache errors"""


class MetadataRequestError(BookCacheError):
    """A metadata API request failed and should not be retried"""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status


class TransientRequestError(MetadataRequestError):
    """Timeout, connection failure or 5xx; retried with backoff"""


class RateLimitError(MetadataRequestError):
    """HTTP 429 from the metadata API; handled inside the client"""

    def __init__(self, message: str = "Rate limited", status: int = 429):
        super().__init__(message, status)


class PersistenceError(BookCacheError):
    """Writing the catalog document to disk failed"""


class UnknownGenreError(BookCacheError):
    """A genre key that has no configured source"""

    def __init__(self, genre_key: str):
        super().__init__(f"Unknown genre key: {genre_key}")
        self.genre_key = genre_key


class GenrePipelineError(BookCacheError):
    """A single-genre refresh failed in a way that cannot be recovered"""

    def __init__(self, genre_key: str, cause: Exception):
        super().__init__(f"Pipeline for genre '{genre_key}' failed: {cause}")
        self.genre_key = genre_key
        self.cause = cause
