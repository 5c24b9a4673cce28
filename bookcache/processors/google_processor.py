# bookcache/processors/google_processor.py
"""
Google Books API response processor.
"""

import logging
import re
from datetime import date
from typing import Dict, List, Optional

from ..models import CanonicalBook

logger = logging.getLogger(__name__)

_ISBN_SEPARATORS = re.compile(r"[-\s]")


def convert_isbn10_to_13(isbn10: Optional[str]) -> Optional[str]:
    """Convert an ISBN-10 to ISBN-13 using the 978 prefix"""
    if not isbn10:
        return None

    clean = _ISBN_SEPARATORS.sub("", isbn10)
    if len(clean) != 10 or not clean[:9].isdigit():
        return None

    isbn12 = "978" + clean[:9]
    total = sum(int(digit) * (1 if i % 2 == 0 else 3) for i, digit in enumerate(isbn12))
    check_digit = (10 - total % 10) % 10
    return f"{isbn12}{check_digit}"


def extract_isbn13(identifiers: List[Dict]) -> Optional[str]:
    """
    Pick the ISBN-13 out of industryIdentifiers, converting an ISBN-10
    when that is all there is.
    """
    for identifier in identifiers:
        id_type = (identifier.get("type") or "").upper()
        if id_type in ("ISBN_13", "ISBN13") and identifier.get("identifier"):
            return _ISBN_SEPARATORS.sub("", identifier["identifier"])

    for identifier in identifiers:
        id_type = (identifier.get("type") or "").upper()
        if id_type in ("ISBN_10", "ISBN10"):
            return convert_isbn10_to_13(identifier.get("identifier"))

    return None


def process_volume(item: Dict) -> CanonicalBook:
    """
    Convert one Google Books volume into a CanonicalBook candidate.

    Args:
        item: A single entry of the API's "items" array

    Returns:
        CanonicalBook without genres or timestamps
    """
    volume_info = item.get("volumeInfo", {})
    isbn13 = extract_isbn13(volume_info.get("industryIdentifiers", []))

    if not isbn13 and volume_info.get("title"):
        logger.debug(f"No ISBN found for {volume_info['title']!r}")

    thumbnail = None
    image_links = volume_info.get("imageLinks") or {}
    if image_links:
        thumbnail = (
            image_links.get("thumbnail")
            or image_links.get("smallThumbnail")
            or image_links.get("medium")
        )
        # Avoid mixed content on the serving side
        if thumbnail and thumbnail.startswith("http://"):
            thumbnail = "https://" + thumbnail[len("http://"):]

    authors = volume_info.get("authors")

    return CanonicalBook(
        title=volume_info.get("title") or "",
        authors=list(authors) if isinstance(authors, list) else [],
        isbn13=isbn13,
        thumbnail=thumbnail,
        description=volume_info.get("description") or "",
        average_rating=float(volume_info.get("averageRating") or 0),
        ratings_count=int(volume_info.get("ratingsCount") or 0),
        published_date=volume_info.get("publishedDate") or "",
        page_count=int(volume_info.get("pageCount") or 0),
        publisher=volume_info.get("publisher") or "",
        external_id=item.get("id"),
    )


def parse_published_date(value: Optional[str]) -> date:
    """Parse Google's partial dates ("2019", "2019-05", "2019-05-03")"""
    if not value:
        return date.min

    match = re.match(r"(\d{4})(?:-(\d{1,2}))?(?:-(\d{1,2}))?", value)
    if not match:
        return date.min

    year, month, day = match.groups()
    try:
        return date(int(year), int(month or 1), int(day or 1))
    except ValueError:
        return date(int(year), 1, 1)


def deduplicate_by_isbn13(books: List[CanonicalBook]) -> List[CanonicalBook]:
    """
    Remove duplicate volumes, preserving first-seen order.

    Books sharing an ISBN-13 keep the higher rated one (newer publication
    breaks ties); books without an ISBN dedupe by volume id.
    """
    by_key: Dict[str, CanonicalBook] = {}

    for book in books:
        if book.isbn13:
            key = f"isbn:{book.isbn13}"
            existing = by_key.get(key)
            if existing is None:
                by_key[key] = book
            elif book.average_rating > existing.average_rating or (
                book.average_rating == existing.average_rating
                and parse_published_date(book.published_date) > parse_published_date(existing.published_date)
            ):
                by_key[key] = book
        else:
            key = f"id:{book.external_id or book.title + '-' + ','.join(book.authors)}"
            by_key.setdefault(key, book)

    return list(by_key.values())


def process_google_response(items: List[Dict]) -> List[CanonicalBook]:
    """Process a search's items into deduplicated, titled candidates"""
    books = [process_volume(item) for item in items]
    titled = [book for book in books if book.title]

    if len(titled) < len(books):
        logger.debug(f"Dropped {len(books) - len(titled)} volumes without a title")

    return deduplicate_by_isbn13(titled)
