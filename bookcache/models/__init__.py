# bookcache/models/__init__.py
"""
Data models for the book cache pipeline.
"""

from .book import (
    PLACEHOLDER_COVER_URL,
    BookStub,
    CanonicalBook,
    is_placeholder_cover,
    normalize_book_key,
    normalize_text,
    synthetic_key_for,
)
from .results import GenreRunResult, RefreshResult

__all__ = [
    "BookStub",
    "CanonicalBook",
    "GenreRunResult",
    "RefreshResult",
    "PLACEHOLDER_COVER_URL",
    "is_placeholder_cover",
    "normalize_book_key",
    "normalize_text",
    "synthetic_key_for",
]
