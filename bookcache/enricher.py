# bookcache/enricher.py
"""
Book enrichment: turns a scraped stub into a CanonicalBook candidate.

Steps per stub:
1. Lookup cache (recent resolutions by title+author)
2. Google Books search with progressively looser queries
3. Best match selection among the hits
4. Cover resolution through the provider chain
5. Best-effort rating backfill when Google has no rating
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Tuple

from .api_caller import MetadataClient
from .fetchers import fetch_google_candidates, select_best_match
from .lookup_cache import LookupCache
from .models import BookStub, CanonicalBook
from .sources.covers import CoverResolver
from .sources.hardcover import HardcoverClient

RatingProvider = Callable[[CanonicalBook], Awaitable[Optional[float]]]


def hardcover_rating_provider(hardcover: HardcoverClient) -> Tuple[str, RatingProvider]:
    async def provider(book: CanonicalBook) -> Optional[float]:
        return await hardcover.get_rating(book.isbn13, book.title, book.primary_author)

    return "hardcover", provider


class BookEnricher:
    """
    Resolves stubs against the shared MetadataClient.

    Never raises for a single book: query failures count as zero hits,
    cover and rating providers are best-effort.
    """

    def __init__(
        self,
        client: MetadataClient,
        cover_resolver: Optional[CoverResolver] = None,
        rating_providers: Optional[List[Tuple[str, RatingProvider]]] = None,
        lookup_cache: Optional[LookupCache] = None,
        max_results: int = 5,
        max_concurrent: int = 5,
    ):
        self.client = client
        self.cover_resolver = cover_resolver
        self.rating_providers = rating_providers or []
        self.lookup_cache = lookup_cache
        self.max_results = max_results
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.logger = logging.getLogger(self.__class__.__name__)

    async def enrich(self, stub: BookStub) -> Optional[CanonicalBook]:
        """
        Enrich one stub.

        Returns:
            Candidate book (not yet validated), or None when no query
            formulation produced a single hit
        """
        if self.lookup_cache is not None:
            cached = self.lookup_cache.get(stub.title, stub.author)
            if cached is not None:
                cached.add_log("Lookup cache hit")
                return cached

        candidates, query = await fetch_google_candidates(stub, self.client, self.max_results)
        if not candidates:
            self.logger.debug(f"No Google Books match for {stub.title!r} by {stub.author}")
            return None

        book = select_best_match(candidates, stub)
        book.add_log(f"Google Books: {len(candidates)} candidates for {query!r}, picked {book.title!r}")
        book.source_cover_url = stub.source_cover_guess

        await self._resolve_cover(book, stub)
        await self._backfill_rating(book)

        if self.lookup_cache is not None:
            self.lookup_cache.set(stub.title, stub.author, book)

        return book

    async def enrich_many(self, stubs: List[BookStub]) -> List[Optional[CanonicalBook]]:
        """Enrich stubs concurrently; results line up with the input order"""
        async def bounded(stub: BookStub) -> Optional[CanonicalBook]:
            async with self.semaphore:
                return await self.enrich(stub)

        return list(await asyncio.gather(*(bounded(stub) for stub in stubs)))

    async def _resolve_cover(self, book: CanonicalBook, stub: BookStub) -> None:
        if self.cover_resolver is None:
            book.cover_url = stub.source_cover_guess or book.thumbnail
            return

        book.cover_url = await self.cover_resolver.resolve(book, stub.source_cover_guess)
        if book.cover_url:
            book.add_log(f"Cover: {book.cover_url}")
        else:
            book.add_log("Cover: none found")

    async def _backfill_rating(self, book: CanonicalBook) -> None:
        if book.average_rating or not (book.isbn13 or book.external_id):
            return

        for name, provider in self.rating_providers:
            try:
                rating = await provider(book)
            except Exception as e:
                self.logger.debug(f"Rating provider {name} failed for {book.title!r}: {e}")
                continue

            if rating:
                book.average_rating = rating
                book.add_log(f"Rating {rating} from {name}")
                return
