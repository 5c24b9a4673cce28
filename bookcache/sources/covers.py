# bookcache/sources/covers.py
"""
Cover image resolution.

Covers come from an ordered chain of providers. Each provider is tried in
turn and the first one returning a real (non-placeholder) image URL wins.
Provider failures are never propagated.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import aiohttp

from ..models import CanonicalBook, is_placeholder_cover
from .hardcover import HardcoverClient

OPEN_LIBRARY_COVER_URL = "https://covers.openlibrary.org/b/isbn/{isbn}-L.jpg?default=false"
AMAZON_COVER_URL = "https://images-na.ssl-images-amazon.com/images/P/{isbn}.01.L.jpg"

# Open Library serves tiny blank images for some misses
MIN_COVER_BYTES = 500

BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
}

CoverProvider = Callable[[CanonicalBook], Awaitable[Optional[str]]]


class CoverResolver:
    """
    Resolves a cover URL for an enriched book.

    Default chain:
    1. Hardcover image lookup by ISBN
    2. Open Library cover-by-ISBN probe
    3. The Google Books thumbnail already on the record
    4. Amazon image URL guess (HEAD probe)
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        hardcover: Optional[HardcoverClient] = None,
        timeout: float = 5.0,
        cache_ttl: float = 60 * 60,
        providers: Optional[List[Tuple[str, CoverProvider]]] = None,
    ):
        self.session = session
        self.hardcover = hardcover
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.providers = providers if providers is not None else [
            ("hardcover", self.try_hardcover),
            ("openlibrary", self.try_open_library),
            ("google", self.try_google_thumbnail),
            ("amazon", self.try_amazon),
        ]
        self._cache: Dict[str, Tuple[float, str]] = {}
        self.logger = logging.getLogger(self.__class__.__name__)

    async def resolve(self, book: CanonicalBook, stub_cover_guess: Optional[str] = None) -> Optional[str]:
        """
        Find the best cover for ``book``.

        Returns:
            First real cover from the provider chain, else the scraped cover
            guess, else the thumbnail, else None
        """
        cached = self._cache.get(book.isbn13) if book.isbn13 else None
        if cached and time.monotonic() - cached[0] < self.cache_ttl:
            return cached[1]

        for name, provider in self.providers:
            try:
                url = await provider(book)
            except Exception as e:
                self.logger.debug(f"Cover provider {name} failed for {book.title!r}: {e}")
                continue

            if url and not is_placeholder_cover(url):
                self.logger.debug(f"Found cover for {book.title!r} via {name}")
                if book.isbn13:
                    self._cache[book.isbn13] = (time.monotonic(), url)
                return url

        return stub_cover_guess or book.thumbnail or None

    def clear_cache(self) -> None:
        self._cache.clear()

    async def try_hardcover(self, book: CanonicalBook) -> Optional[str]:
        if self.hardcover is None:
            return None
        return await self.hardcover.get_cover(book.isbn13)

    async def try_open_library(self, book: CanonicalBook) -> Optional[str]:
        if not book.isbn13 or self.session is None:
            return None

        url = OPEN_LIBRARY_COVER_URL.format(isbn=book.isbn13)
        async with self.session.get(url, timeout=aiohttp.ClientTimeout(total=self.timeout)) as response:
            if response.status != 200:
                return None
            content_type = response.headers.get("Content-Type", "")
            body = await response.read()

        if "image/" in content_type and len(body) > MIN_COVER_BYTES:
            return url
        return None

    async def try_google_thumbnail(self, book: CanonicalBook) -> Optional[str]:
        return book.thumbnail

    async def try_amazon(self, book: CanonicalBook) -> Optional[str]:
        if not book.isbn13 or self.session is None:
            return None

        url = AMAZON_COVER_URL.format(isbn=book.isbn13)
        try:
            async with self.session.head(
                url,
                headers=BROWSER_HEADERS,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                return url if response.status == 200 else None
        except (aiohttp.ClientError, asyncio.TimeoutError):
            return None
