# bookcache/processors/__init__.py
"""
Response processors for the book cache pipeline.
"""

from .google_processor import (
    convert_isbn10_to_13,
    deduplicate_by_isbn13,
    process_google_response,
    process_volume,
)

__all__ = [
    "convert_isbn10_to_13",
    "deduplicate_by_isbn13",
    "process_google_response",
    "process_volume",
]
