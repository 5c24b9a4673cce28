# bookcache/sources/goodreads.py
"""
Goodreads shelf and list scraping source.

Produces BookStubs (title, author, cover guess) from paginated Goodreads
shelf and list pages. Failures never raise: a page that cannot be fetched
ends the scrape with whatever was gathered so far.
"""

import asyncio
import logging
import math
from typing import List, Optional

import aiohttp
from bs4 import BeautifulSoup

from ..config import GENRE_SOURCES, GenreSource
from ..errors import UnknownGenreError
from ..models import BookStub

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

REQUEST_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "DNT": "1",
}

logger = logging.getLogger(__name__)


def _stub_from_element(element) -> Optional[BookStub]:
    title_el = element.select_one(".bookTitle")
    author_el = element.select_one(".authorName")
    img_el = element.select_one("img")

    title = title_el.get_text(strip=True) if title_el else ""
    author = author_el.get_text(strip=True) if author_el else ""
    if not title or not author:
        return None

    cover = img_el.get("src") if img_el else None
    return BookStub(title=title, author=author, source_cover_guess=cover or None)


def parse_shelf_page(html: str) -> List[BookStub]:
    """Extract stubs from a Goodreads shelf page (.elementList blocks)"""
    soup = BeautifulSoup(html, "lxml")
    stubs = []
    for element in soup.select(".elementList"):
        stub = _stub_from_element(element)
        if stub:
            stubs.append(stub)
    return stubs


def parse_list_page(html: str) -> List[BookStub]:
    """Extract stubs from a Goodreads list page (one table row per book)"""
    soup = BeautifulSoup(html, "lxml")
    stubs = []
    for element in soup.select('tr[itemtype="http://schema.org/Book"], tr[data-resource-type="Book"]'):
        stub = _stub_from_element(element)
        if stub:
            stubs.append(stub)
    return stubs


PAGE_PARSERS = {
    "shelf": parse_shelf_page,
    "list": parse_list_page,
}


class ShelfScraper:
    """
    Paginated Goodreads scraper.

    - Fixed page size per source type
    - Stops early on the first page with zero parsed items
    - Linear backoff retries per page; exhausted retries end the scrape
    - Fixed delay between page fetches
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        page_delay: float = 2.0,
        max_retries: int = 3,
        request_timeout: float = 15.0,
    ):
        self.session = session
        self.page_delay = page_delay
        self.max_retries = max_retries
        self.request_timeout = request_timeout
        self._owns_session = session is None
        self.logger = logging.getLogger(self.__class__.__name__)

    @classmethod
    def from_settings(cls, settings, session: Optional[aiohttp.ClientSession] = None) -> "ShelfScraper":
        return cls(
            session=session,
            page_delay=settings.scrape_page_delay,
            max_retries=settings.scrape_max_retries,
            request_timeout=settings.request_timeout,
        )

    async def __aenter__(self):
        """Async context manager entry"""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
                headers=REQUEST_HEADERS,
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        if self._owns_session and self.session:
            await self.session.close()
            self.session = None

    async def scrape_genre(self, genre_key: str, count: int) -> List[BookStub]:
        """Scrape ``count`` stubs for a configured genre"""
        source = GENRE_SOURCES.get(genre_key)
        if source is None:
            raise UnknownGenreError(genre_key)
        return await self.scrape(source, count)

    async def scrape(self, source: GenreSource, count: int) -> List[BookStub]:
        """
        Scrape up to ``count`` stubs from a shelf or list.

        Args:
            source: Genre source to paginate
            count: Number of stubs wanted

        Returns:
            Stubs gathered before the count was reached, the data ran out,
            or a page could not be fetched
        """
        pages_needed = max(1, math.ceil(count / source.page_size))
        stubs: List[BookStub] = []

        self.logger.info(f"Scraping {source.kind} {source.name!r}: {count} books, {pages_needed} pages")

        for page in range(1, pages_needed + 1):
            url = source.page_url(page)
            self.logger.debug(f"Fetching page {page}/{pages_needed}: {url}")

            page_stubs = await self._fetch_and_parse_page(url, source.kind)

            if page_stubs is None:
                self.logger.error(f"Giving up on {source.name!r} at page {page}, keeping {len(stubs)} books")
                break

            if not page_stubs:
                self.logger.info(f"No books on page {page} of {source.name!r}, stopping")
                break

            stubs.extend(page_stubs)
            if len(stubs) >= count:
                break

            if page < pages_needed:
                await asyncio.sleep(self.page_delay)

        self.logger.info(f"Scrape complete: {source.name!r} - {min(len(stubs), count)} books")
        return stubs[:count]

    async def _fetch_and_parse_page(self, url: str, page_type: str) -> Optional[List[BookStub]]:
        """
        Fetch and parse one page with retries.

        Returns:
            Parsed stubs (possibly empty), or None when all retries failed
        """
        parser = PAGE_PARSERS[page_type]

        for attempt in range(1, self.max_retries + 1):
            try:
                html = await self._fetch_page(url)
                return parser(html)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                self.logger.warning(f"Request failed (attempt {attempt}/{self.max_retries}): {e}")
                if attempt < self.max_retries:
                    await asyncio.sleep(self.page_delay * attempt)

        return None

    async def _fetch_page(self, url: str) -> str:
        if self.session is None:
            raise RuntimeError("ShelfScraper session not open; use 'async with ShelfScraper(...)'")

        async with self.session.get(url, headers=REQUEST_HEADERS, max_redirects=5) as response:
            response.raise_for_status()
            return await response.text()
