# bookcache/fetchers/google_fetcher.py
"""
Google Books candidate fetcher.
"""

import logging
from typing import List, Optional, Tuple

from ..api_caller import MetadataClient
from ..errors import MetadataRequestError
from ..models import BookStub, CanonicalBook
from ..processors import process_google_response

logger = logging.getLogger(__name__)


def build_queries(stub: BookStub) -> List[str]:
    """
    Query formulations in order of preference:
    1. Field-restricted exact phrase with author
    2. Quoted title and quoted author
    3. Bare title + author concatenation
    """
    return [
        f'intitle:"{stub.title}" inauthor:"{stub.author}"',
        f'"{stub.title}" "{stub.author}"',
        f"{stub.title} {stub.author}",
    ]


async def fetch_google_candidates(
    stub: BookStub,
    client: MetadataClient,
    max_results: int = 5,
) -> Tuple[List[CanonicalBook], Optional[str]]:
    """
    Try each query until one returns any hit.

    A query that fails outright counts as zero hits.

    Returns:
        (candidates, query that produced them) - ([], None) if every query came up empty
    """
    for query in build_queries(stub):
        try:
            items = await client.search_volumes(query, max_results)
        except MetadataRequestError as e:
            logger.warning(f"Search failed for {query!r}: {e}")
            continue

        candidates = process_google_response(items)
        if candidates:
            return candidates, query

    return [], None


def select_best_match(candidates: List[CanonicalBook], stub: BookStub) -> CanonicalBook:
    """
    Prefer a hit whose title contains the stub title and whose authors
    include the stub author (case-insensitive substrings); otherwise the top hit.
    """
    wanted_title = stub.title.lower()
    wanted_author = stub.author.lower()

    for candidate in candidates:
        if wanted_title not in candidate.title.lower():
            continue
        if any(wanted_author in author.lower() for author in candidate.authors):
            return candidate

    return candidates[0]
