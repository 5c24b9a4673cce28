# bookcache/sources/__init__.py
"""
External source integrations: Goodreads scraping, Hardcover and cover lookups.
"""

from .covers import CoverResolver
from .goodreads import ShelfScraper, parse_list_page, parse_shelf_page
from .hardcover import HardcoverClient

__all__ = [
    "CoverResolver",
    "HardcoverClient",
    "ShelfScraper",
    "parse_list_page",
    "parse_shelf_page",
]
