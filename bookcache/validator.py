# bookcache/validator.py
"""
Book validation for catalog inclusion.

validate_book() is the single gate between enrichment and the master cache.
It is pure: the same record always gets the same verdict, whether it comes
from a generation run or from cleaning an existing catalog.
"""

import re
from dataclasses import dataclass
from typing import List, Pattern

from .models import CanonicalBook

MIN_PAGE_COUNT = 50

# Multi-book bundles, box sets and series collections
COLLECTION_PATTERNS: List[Pattern] = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"box\s*set",
        r"boxed\s+set",
        r"\bcollection\b",
        r"\bomnibus\b",
        r"complete\s+series",
        r"books\s+1[-–]",
        r"volumes?\s+1[-–]",
        r"the\s+complete\b",
        r"\d-book\b",
        r"trilogy\s+collection",
        r"series\s+collection",
        r"starter\s+bundle",
        r"fantasy\s+firsts",
    ]
]

# Stationery, summaries, foreign-language editions, anthologies, craft guides
NON_BOOK_PATTERNS: List[Pattern] = [
    re.compile(p, re.IGNORECASE)
    for p in [
        # Stationery
        r"\bjournal\b",
        r"\bnotebook\b",
        r"\bplanner\b",
        r"\bdiary\b",
        r"coloring\s+book",
        r"activity\s+book",
        r"\bworkbook\b",
        r"\bstationery\b",
        # Summaries and study guides
        r"\bsummary\s+of\b",
        r"summary\s*(?:and|&)\s*analysis",
        # Semicolon-joined titles ("Eragon; Eldest")
        r"\w;\s+\w",
        # Anthologies
        r"\bsuper\s+pack\b",
        r"presents\s+the\s+great",
        r"\bpresents\s*:",
        # Foreign-language editions that slip past langRestrict
        r"\bsakrileg\b",
        r"\baudgave\b",
        r"\budg[aå]va\b",
        r"ausgabe",
        r"Edici[oó]n\b",
        r"\bNemira\b",
        r"\bitaliano\b",
        r"\bdeutsch(e)?\b",
        # Not the English "series"
        r"\bserie\b",
        # Catalogues and yearbooks
        r"auction\s+catalog",
        r"grand\s+format",
        r"\bdas\s+jahr\b",
        r"\byear\s+\d{4}",
        # Adaptations and writing craft
        r"graphic\s+novel\s+adaptation",
        r"\bwriting\s+magic\b",
        r"\bguide\s+to\s+writing\b",
        r"\bhow\s+to\s+write\b",
    ]
]

_ISBN13 = re.compile(r"^\d{13}$")


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.valid


def _has_author(book: CanonicalBook) -> bool:
    return bool(book.authors) and bool((book.authors[0] or "").strip())


def validate_book(book: CanonicalBook) -> ValidationResult:
    """
    Check a candidate against every inclusion rule, in order:

    1. Non-empty title
    2. At least one author
    3. Title is not a collection or box set
    4. Title is not a non-book item
    5. Has a 13-digit ISBN or a Google Books volume id
    6. Page count, when known, is above MIN_PAGE_COUNT

    Returns:
        ValidationResult; ``reason`` names the first failed rule
    """
    title = (book.title or "").strip()
    if not title:
        return ValidationResult(False, "Missing title")

    if not _has_author(book):
        return ValidationResult(False, "Missing author")

    for pattern in COLLECTION_PATTERNS:
        if pattern.search(title):
            return ValidationResult(False, f"Collection or box set (title matches: {pattern.pattern})")

    for pattern in NON_BOOK_PATTERNS:
        if pattern.search(title):
            return ValidationResult(False, f"Non-book item (title matches: {pattern.pattern})")

    has_isbn13 = bool(book.isbn13) and bool(_ISBN13.match(book.isbn13.strip()))
    has_external_id = bool((book.external_id or "").strip())
    if not has_isbn13 and not has_external_id:
        return ValidationResult(False, "No valid isbn13 or external id")

    if book.page_count and 0 < book.page_count <= MIN_PAGE_COUNT:
        return ValidationResult(False, f"Page count too low ({book.page_count})")

    return ValidationResult(True)
