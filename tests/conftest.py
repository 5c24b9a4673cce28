"""Shared fixtures and fakes for bookcache tests."""

import dataclasses
from typing import Dict, Iterable, List, Optional

import pytest

from bookcache.models import BookStub, CanonicalBook
from bookcache.store import MasterBookCache


def make_book(
    title: str = "Dune",
    author: Optional[str] = "Frank Herbert",
    isbn13: Optional[str] = "9780441013593",
    **overrides,
) -> CanonicalBook:
    """A valid, fully populated book; override any field"""
    slug = isbn13 or title.lower().replace(" ", "-")
    values = {
        "title": title,
        "authors": [author] if author else [],
        "isbn13": isbn13,
        "external_id": f"gb-{slug}",
        "cover_url": f"https://covers.example.com/{slug}.jpg",
        "average_rating": 4.2,
        "ratings_count": 1200,
        "page_count": 412,
        "published_date": "1990-09-01",
        "publisher": "Ace",
        "description": "A long description of the book that is over twenty characters.",
    }
    values.update(overrides)
    return CanonicalBook(**values)


def volume(
    title: str,
    authors: Iterable[str] = ("Frank Herbert",),
    isbn13: Optional[str] = None,
    rating: float = 0,
    volume_id: Optional[str] = None,
    thumbnail: Optional[str] = None,
) -> Dict:
    """A Google Books volume item"""
    info = {"title": title, "authors": list(authors)}
    if isbn13:
        info["industryIdentifiers"] = [{"type": "ISBN_13", "identifier": isbn13}]
    if rating:
        info["averageRating"] = rating
    if thumbnail:
        info["imageLinks"] = {"thumbnail": thumbnail}
    return {"id": volume_id or f"vol-{title.lower().replace(' ', '-')}", "volumeInfo": info}


def assert_index_consistent(store: MasterBookCache) -> None:
    for genre, keys in store.genre_index.items():
        assert len(keys) == len(set(keys))
        for key in keys:
            assert genre in store.books[key].genres
    for key, book in store.books.items():
        for genre in book.genres:
            assert key in store.genre_index[genre]


class FakeScraper:
    """Returns canned stubs per genre; can fail or run a hook per scrape"""

    def __init__(self, stubs_by_genre: Dict[str, List[BookStub]], failures: Iterable[str] = (), on_scrape=None):
        self.stubs_by_genre = stubs_by_genre
        self.failures = set(failures)
        self.on_scrape = on_scrape
        self.calls = []

    async def scrape(self, source, count):
        self.calls.append((source.key, count))
        if self.on_scrape:
            self.on_scrape(source)
        if source.key in self.failures:
            raise RuntimeError(f"scrape failed for {source.key}")
        return list(self.stubs_by_genre.get(source.key, []))[:count]


class FakeEnricher:
    """Resolves stubs by title from a fixed table, returning fresh copies"""

    def __init__(self, books_by_title: Dict[str, CanonicalBook]):
        self.books_by_title = books_by_title
        self.calls: List[str] = []

    async def enrich_many(self, stubs):
        results = []
        for stub in stubs:
            self.calls.append(stub.title)
            book = self.books_by_title.get(stub.title)
            results.append(dataclasses.replace(book, genres=set(), authors=list(book.authors)) if book else None)
        return results


@pytest.fixture
def cache_path(tmp_path):
    return tmp_path / "master_book_cache.json"


@pytest.fixture
def store(cache_path) -> MasterBookCache:
    return MasterBookCache(cache_path, save_debounce=0.05)
