# bookcache/pipeline/cleaner.py
"""
Catalog maintenance: audit, clean and deduplicate an existing master cache.

Uses the same validate_book() gate as generation runs, so a catalog built
under older rules can be brought in line with the current ones.
"""

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Tuple

from ..models import CanonicalBook, normalize_text
from ..store import MasterBookCache
from ..validator import validate_book

logger = logging.getLogger(__name__)

SAMPLES_PER_GENRE = 5


@dataclass
class CleanReport:
    """What clean_catalog() removed"""
    total_before: int = 0
    removed: int = 0
    kept: int = 0
    reasons: Dict[str, int] = field(default_factory=dict)
    removed_by_genre: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return asdict(self)


def audit_catalog(store: MasterBookCache) -> Dict:
    """
    Report invalid books and index problems without changing anything.

    Returns:
        {"summary": {...}, "genres": {genre: {...}}, "index_problems": [...]}
    """
    summary = {"total_books": len(store), "valid_books": 0, "invalid_books": 0, "issues": {}}
    genres: Dict[str, Dict] = {}

    for key, book in store.books.items():
        verdict = validate_book(book)
        if verdict.valid:
            summary["valid_books"] += 1
        else:
            summary["invalid_books"] += 1
            summary["issues"][verdict.reason] = summary["issues"].get(verdict.reason, 0) + 1

        for genre in sorted(book.genres):
            report = genres.setdefault(genre, {"total": 0, "valid": 0, "invalid": 0, "reasons": {}, "samples": []})
            report["total"] += 1
            if verdict.valid:
                report["valid"] += 1
                continue
            report["invalid"] += 1
            report["reasons"][verdict.reason] = report["reasons"].get(verdict.reason, 0) + 1
            if len(report["samples"]) < SAMPLES_PER_GENRE:
                report["samples"].append({"key": key, "title": book.title, "issue": verdict.reason})

    return {
        "summary": summary,
        "genres": genres,
        "index_problems": find_index_problems(store),
    }


def find_index_problems(store: MasterBookCache) -> List[str]:
    """Disagreements between the genre index and the books' genre sets"""
    problems = []

    for genre, keys in store.genre_index.items():
        if len(keys) != len(set(keys)):
            problems.append(f"{genre}: duplicate keys in index")
        for key in keys:
            book = store.books.get(key)
            if book is None:
                problems.append(f"{genre}: index references missing book {key}")
            elif genre not in book.genres:
                problems.append(f"{genre}: {key} indexed but not tagged")

    for key, book in store.books.items():
        for genre in book.genres:
            if key not in store.genre_index.get(genre, []):
                problems.append(f"{genre}: {key} tagged but not indexed")

    return problems


def clean_catalog(store: MasterBookCache) -> CleanReport:
    """Remove every book that fails validation"""
    report = CleanReport(total_before=len(store))

    for key, book in list(store.books.items()):
        verdict = validate_book(book)
        if verdict.valid:
            continue

        logger.info(f"Removing {book.title!r}: {verdict.reason}")
        for genre in book.genres:
            report.removed_by_genre[genre] = report.removed_by_genre.get(genre, 0) + 1
        report.reasons[verdict.reason] = report.reasons.get(verdict.reason, 0) + 1
        store.remove(key)
        report.removed += 1

    report.kept = len(store)
    logger.info(f"Cleaned catalog: removed {report.removed}, kept {report.kept}")
    return report


_BY_AUTHOR = re.compile(r"\s+by\s+\S.*$")
_PARENS = re.compile(r"\s*\([^)]*\)\s*")
_BRACKETS = re.compile(r"\s*\[[^\]]*\]\s*")
_SUBTITLE = re.compile(r"\s*:.*$")
_SERIES_NUMBER = re.compile(r"\s+#\d+\S*")
_BOOK_NUMBER = re.compile(r"\s+(?:book|vol\.?|volume)\s+\d+\S*", re.IGNORECASE)
_LEADING_ARTICLE = re.compile(r"^(?:the|a|an)\s+")
_PUNCTUATION = re.compile(r"[^\w\s]")


def norm_title(title: str, words: int = 5) -> str:
    """
    Aggressive title key: drops "by Author", bracketed notes, subtitles,
    series numbers and a leading article, then keeps the first few words.
    """
    value = (title or "").lower()
    value = _BY_AUTHOR.sub("", value)
    value = _PARENS.sub(" ", value)
    value = _BRACKETS.sub(" ", value)
    value = _SUBTITLE.sub("", value)
    value = _SERIES_NUMBER.sub(" ", value)
    value = _BOOK_NUMBER.sub(" ", value)
    value = _LEADING_ARTICLE.sub("", value)
    value = normalize_text(_PUNCTUATION.sub(" ", value))
    return " ".join(value.split()[:words])


def quality_score(book: CanonicalBook) -> int:
    """Higher is better: a real cover outweighs everything, then rating"""
    score = 0
    if book.has_real_cover:
        score += 10000
    score += round((book.average_rating or 0) * 1000)
    if book.description and len(book.description) > 20:
        score += 100
    if book.published_date:
        score += 10
    if book.page_count > 0:
        score += 10
    if book.publisher:
        score += 5
    if book.ratings_count > 0:
        score += 5
    if book.external_id:
        score += 5
    if book.isbn13:
        score += 5
    return score


def dedupe_catalog(store: MasterBookCache) -> int:
    """
    Collapse near-duplicate editions into one entry per title+author.

    The best-scoring entry of each group survives and inherits the genres of
    the ones removed.

    Returns:
        Number of entries removed
    """
    groups: Dict[Tuple[str, str], List[str]] = defaultdict(list)
    for key, book in store.books.items():
        title_key = norm_title(book.title)
        if title_key:
            groups[(title_key, normalize_text(book.primary_author))].append(key)

    removed = 0
    for (title_key, _), keys in groups.items():
        if len(keys) < 2:
            continue

        ranked = sorted(keys, key=lambda k: quality_score(store.books[k]), reverse=True)
        winner_key, losers = ranked[0], ranked[1:]

        for loser_key in losers:
            loser = store.remove(loser_key)
            for genre in sorted(loser.genres):
                store.tag_genre(winner_key, genre)
            removed += 1

        logger.info(f"Deduplicated {title_key!r}: kept {store.books[winner_key].title!r}, removed {len(losers)}")

    logger.info(f"Deduplication removed {removed} entries")
    return removed
