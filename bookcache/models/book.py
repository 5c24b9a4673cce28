# bookcache/models/book.py
"""
Data models for the book cache pipeline.
"""

import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Set

PLACEHOLDER_COVER_URL = "https://via.placeholder.com/200x300/1a1a1a/888888?text=No+Cover"

# Fragments that mark a cover URL as a stand-in image rather than a real cover
_PLACEHOLDER_MARKERS = ("placeholder", "nophoto", "no-cover", "no_cover")

_WHITESPACE = re.compile(r"\s+")

# camelCase field names found in older catalog documents
LEGACY_FIELDS = {
    "coverUrl": "cover_url",
    "goodreadsCoverUrl": "source_cover_url",
    "averageRating": "average_rating",
    "ratingsCount": "ratings_count",
    "pageCount": "page_count",
    "publishedDate": "published_date",
    "googleBooksId": "external_id",
    "addedToCache": "added_at",
    "lastVerified": "last_verified_at",
}


def normalize_text(value: Optional[str]) -> str:
    """Lowercase, trim and collapse internal whitespace"""
    if not value:
        return ""
    return _WHITESPACE.sub(" ", value.lower().strip())


def normalize_book_key(title: Optional[str], author: Optional[str]) -> Optional[str]:
    """Normalized title+author key used for existence checks and merging"""
    if not title or not title.strip():
        return None
    return f"{normalize_text(title)}|{normalize_text(author)}"


def synthetic_key_for(title: str, author: Optional[str]) -> str:
    """Storage key for a book without an ISBN-13"""
    return f"nk:{normalize_book_key(title, author)}"


def is_placeholder_cover(url: Optional[str]) -> bool:
    if not url or not url.strip():
        return True
    lowered = url.lower()
    return any(marker in lowered for marker in _PLACEHOLDER_MARKERS)


@dataclass
class BookStub:
    """Raw scrape result: just enough to search for the book"""
    title: str
    author: str
    source_cover_guess: Optional[str] = None


@dataclass
class CanonicalBook:
    """
    A resolved book record, as enriched from the metadata API and stored in
    the master cache.
    """
    title: str
    authors: List[str] = field(default_factory=list)
    isbn13: Optional[str] = None
    synthetic_key: Optional[str] = None

    # Images
    cover_url: Optional[str] = None
    thumbnail: Optional[str] = None
    source_cover_url: Optional[str] = None

    # Metadata
    description: str = ""
    average_rating: float = 0.0
    ratings_count: int = 0
    published_date: str = ""
    page_count: int = 0
    publisher: str = ""
    external_id: Optional[str] = None

    # Catalog membership
    genres: Set[str] = field(default_factory=set)
    added_at: Optional[str] = None
    last_verified_at: Optional[str] = None

    # Not persisted
    processing_log: List[str] = field(default_factory=list, repr=False, compare=False)

    def add_log(self, message: str) -> None:
        """Add a message to the processing log"""
        self.processing_log.append(message)

    @property
    def primary_author(self) -> str:
        return self.authors[0] if self.authors else ""

    @property
    def key(self) -> Optional[str]:
        """Store identity: ISBN-13 when known, else the synthetic key"""
        return self.isbn13 or self.synthetic_key

    @property
    def normalized_key(self) -> Optional[str]:
        return normalize_book_key(self.title, self.primary_author)

    @property
    def has_real_cover(self) -> bool:
        return not is_placeholder_cover(self.cover_url)

    def improves_on(self, stored: "CanonicalBook") -> bool:
        """
        True if this record should replace ``stored``: it brings a real cover
        where the stored one has none, or a strictly higher rating.
        """
        if self.has_real_cover and not stored.has_real_cover:
            return True
        return (self.average_rating or 0) > (stored.average_rating or 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "authors": list(self.authors),
            "isbn13": self.isbn13,
            "synthetic_key": self.synthetic_key,
            "cover_url": self.cover_url,
            "thumbnail": self.thumbnail,
            "source_cover_url": self.source_cover_url,
            "description": self.description,
            "average_rating": self.average_rating,
            "ratings_count": self.ratings_count,
            "published_date": self.published_date,
            "page_count": self.page_count,
            "publisher": self.publisher,
            "external_id": self.external_id,
            "genres": sorted(self.genres),
            "added_at": self.added_at,
            "last_verified_at": self.last_verified_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CanonicalBook":
        known = {f.name for f in fields(cls)} - {"processing_log"}
        values = {name: data[name] for name in known if name in data}
        for legacy, name in LEGACY_FIELDS.items():
            if values.get(name) is None and data.get(legacy) is not None:
                values[name] = data[legacy]

        authors = values.get("authors")
        if not authors and data.get("author"):
            authors = [data["author"]]
        values["authors"] = list(authors or [])
        values["genres"] = set(values.get("genres") or [])
        values["average_rating"] = float(values.get("average_rating") or 0)
        values["ratings_count"] = int(values.get("ratings_count") or 0)
        values["page_count"] = int(values.get("page_count") or 0)
        values["title"] = values.get("title") or ""

        return cls(**values)
