# bookcache/pipeline/exporter.py
"""
Catalog snapshots and reports.

build_snapshot() produces the document handed back by a generation run;
genre_summary() and export_catalog_csv() flatten the catalog with pandas for
inspection.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd

from ..models import is_placeholder_cover
from ..store import MasterBookCache

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    "key",
    "title",
    "authors",
    "isbn13",
    "genres",
    "average_rating",
    "ratings_count",
    "page_count",
    "published_date",
    "publisher",
    "has_cover",
    "cover_url",
    "external_id",
    "added_at",
    "last_verified_at",
]


def build_snapshot(store: MasterBookCache, run: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Full catalog snapshot grouped by genre.

    Args:
        store: Loaded master cache
        run: Optional run report to embed

    Returns:
        {"generated_at", "version", "stats", "genres": {genre: [book, ...]}}
    """
    snapshot = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "version": store.version,
        "stats": store.stats,
        "genres": {
            genre: [book.to_dict() for book in store.books_in_genre(genre)]
            for genre in store.genres()
        },
    }
    if run is not None:
        snapshot["run"] = run
    return snapshot


def catalog_dataframe(store: MasterBookCache) -> pd.DataFrame:
    """One row per stored book"""
    rows = []
    for key, book in store.books.items():
        rows.append({
            "key": key,
            "title": book.title,
            "authors": "; ".join(book.authors),
            "isbn13": book.isbn13,
            "genres": ", ".join(sorted(book.genres)),
            "average_rating": book.average_rating,
            "ratings_count": book.ratings_count,
            "page_count": book.page_count,
            "published_date": book.published_date,
            "publisher": book.publisher,
            "has_cover": not is_placeholder_cover(book.cover_url),
            "cover_url": book.cover_url,
            "external_id": book.external_id,
            "added_at": book.added_at,
            "last_verified_at": book.last_verified_at,
        })
    return pd.DataFrame(rows, columns=CSV_COLUMNS)


def genre_summary(store: MasterBookCache) -> pd.DataFrame:
    """
    Per-genre report: book count, share with a real cover, mean rating of
    rated books and last scrape time. Sorted by book count, largest first.
    """
    last_scrape = store.stats["last_scrape"]
    rows = []

    for genre in store.genres():
        books = store.books_in_genre(genre)
        ratings = pd.Series([book.average_rating for book in books if book.average_rating], dtype="float64")
        covered = sum(1 for book in books if book.has_real_cover)
        rows.append({
            "genre": genre,
            "books": len(books),
            "cover_coverage": round(covered / len(books), 3) if books else 0.0,
            "mean_rating": round(float(ratings.mean()), 2) if not ratings.empty else None,
            "last_scrape": last_scrape.get(genre),
        })

    summary = pd.DataFrame(rows, columns=["genre", "books", "cover_coverage", "mean_rating", "last_scrape"])
    return summary.sort_values("books", ascending=False, kind="stable").reset_index(drop=True)


def export_catalog_csv(store: MasterBookCache, path: Path) -> Path:
    """Write the flattened catalog to CSV"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    frame = catalog_dataframe(store)
    frame.to_csv(path, index=False)
    logger.info(f"Exported {len(frame)} books to {path}")
    return path
