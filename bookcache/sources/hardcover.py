# bookcache/sources/hardcover.py
"""
Hardcover.app GraphQL source for covers and community ratings.

Every lookup is best-effort: missing token, HTTP failures and odd payloads
all come back as None.
"""

import asyncio
import logging
import time
from typing import Dict, Optional, Tuple

import aiohttp

HARDCOVER_URL = "https://api.hardcover.app/v1/graphql"

SEARCH_QUERY = """
query SearchBooks($query: String!) {
  search(query: $query) {
    results {
      hits {
        document {
          title
          rating
          ratings_count
          image {
            url
          }
        }
      }
    }
  }
}
"""

# Ratings backed by fewer votes than this are ignored
MIN_RATINGS_COUNT = 5


class HardcoverClient:
    """Hardcover lookups with an in-memory TTL cache"""

    def __init__(
        self,
        token: Optional[str],
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 5.0,
        cache_ttl: float = 24 * 60 * 60,
    ):
        self.token = token
        self.session = session
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self._cache: Dict[str, Tuple[float, list]] = {}
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def enabled(self) -> bool:
        return bool(self.token) and self.session is not None

    async def get_cover(self, isbn13: Optional[str]) -> Optional[str]:
        if not isbn13:
            return None
        document = await self._first_hit(f"isbn:{isbn13}")
        if not document:
            return None
        image = document.get("image") or {}
        return image.get("url") or None

    async def get_rating(self, isbn13: Optional[str], title: Optional[str] = None,
                         author: Optional[str] = None) -> Optional[float]:
        """
        Community rating for a book, by ISBN first and then by title search.

        Only ratings with more than MIN_RATINGS_COUNT votes are returned.
        """
        if isbn13:
            rating = _confident_rating(await self._first_hit(f"isbn:{isbn13}"))
            if rating is not None:
                return rating

        if title:
            query = f"{title} {author}" if author else title
            hits = await self._search(query)
            prefix = title.lower()[:20]
            for document in hits:
                rating = _confident_rating(document)
                if rating is not None and prefix in (document.get("title") or "").lower():
                    return rating

        return None

    async def _first_hit(self, query: str) -> Optional[dict]:
        hits = await self._search(query)
        return hits[0] if hits else None

    async def _search(self, query: str) -> list:
        if not self.enabled:
            return []

        cached = self._cache.get(query)
        if cached and time.monotonic() - cached[0] < self.cache_ttl:
            return cached[1] or []

        hits = []
        try:
            payload = await self._post_graphql(SEARCH_QUERY, {"query": query})
            results = ((payload or {}).get("data") or {}).get("search") or {}
            raw_hits = (results.get("results") or {}).get("hits") or []
            hits = [hit.get("document") or {} for hit in raw_hits if isinstance(hit, dict)]
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.debug(f"Hardcover search failed for {query!r}: {e}")

        self._cache[query] = (time.monotonic(), hits)
        return hits

    async def _post_graphql(self, query: str, variables: dict) -> dict:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {self.token}",
        }
        async with self.session.post(
            HARDCOVER_URL,
            json={"query": query, "variables": variables},
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        ) as response:
            response.raise_for_status()
            return await response.json(content_type=None)


def _confident_rating(document: Optional[dict]) -> Optional[float]:
    if not document:
        return None
    rating = document.get("rating")
    count = document.get("ratings_count") or 0
    if rating and count > MIN_RATINGS_COUNT:
        return round(float(rating), 1)
    return None
