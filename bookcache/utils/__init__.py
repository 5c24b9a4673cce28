# bookcache/utils/__init__.py
"""
Utility functions for the book cache pipeline.
"""

from .storage import atomic_write_text, read_json_document

__all__ = [
    "atomic_write_text",
    "read_json_document",
]
