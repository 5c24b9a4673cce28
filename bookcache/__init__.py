# bookcache/__init__.py
"""
Genre-indexed book catalog built from Goodreads shelves and Google Books.

Primary interfaces:
- CacheGenerator: Runs genre pipelines and serves catalog reads
- MasterBookCache: Persisted, deduplicated catalog store
- ShelfScraper: Goodreads shelf and list scraping
- MetadataClient: Rate-limited Google Books client
- BookEnricher: Stub to canonical book resolution
- validate_book: Catalog inclusion rules
"""

from .api_caller import MetadataClient
from .config import GENRE_SOURCES, CatalogSettings, GenreSource
from .enricher import BookEnricher, hardcover_rating_provider
from .errors import (
    BookCacheError,
    GenrePipelineError,
    MetadataRequestError,
    PersistenceError,
    RateLimitError,
    TransientRequestError,
    UnknownGenreError,
)
from .lookup_cache import LookupCache
from .models import BookStub, CanonicalBook, GenreRunResult, RefreshResult
from .pipeline import CacheGenerator
from .sources import CoverResolver, HardcoverClient, ShelfScraper
from .store import MasterBookCache, SaveState
from .validator import ValidationResult, validate_book

__all__ = [
    # Primary interface
    "CacheGenerator",
    "MasterBookCache",
    "SaveState",
    "ShelfScraper",
    "MetadataClient",
    "BookEnricher",
    "validate_book",
    "ValidationResult",

    # Models and configuration
    "BookStub",
    "CanonicalBook",
    "GenreRunResult",
    "RefreshResult",
    "CatalogSettings",
    "GenreSource",
    "GENRE_SOURCES",

    # Supporting services
    "CoverResolver",
    "HardcoverClient",
    "LookupCache",
    "hardcover_rating_provider",

    # Errors
    "BookCacheError",
    "GenrePipelineError",
    "MetadataRequestError",
    "PersistenceError",
    "RateLimitError",
    "TransientRequestError",
    "UnknownGenreError",
]
