# bookcache/pipeline/merge.py
"""
Additive merge of freshly enriched books into a genre's existing pool.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..models import CanonicalBook


@dataclass
class MergeOutcome:
    """Result of merging incoming books into a pool"""
    pool: List[CanonicalBook] = field(default_factory=list)
    added: List[CanonicalBook] = field(default_factory=list)
    # (pool member, incoming); a pool member repeats when improved more than once
    replaced: List[Tuple[CanonicalBook, CanonicalBook]] = field(default_factory=list)
    kept: int = 0


def merge_additive(pool: List[CanonicalBook], incoming: List[CanonicalBook]) -> MergeOutcome:
    """
    Merge ``incoming`` into ``pool`` without ever dropping a pool member.

    Matching is by ISBN-13 first, then normalized title+author. A match is
    replaced only when the incoming record improves on it (real cover where
    the stored one has none, or a strictly higher rating); otherwise the
    stored record is kept. Unmatched books are appended.

    Replacements are reported against the original pool member even when an
    earlier incoming book already took its place, so every improvement can
    be applied to the stored record in order.

    Args:
        pool: Books currently in the genre, in index order
        incoming: Validated candidates from this run

    Returns:
        MergeOutcome whose pool is at least as long as the input pool
    """
    merged = list(pool)
    # Pool member each position started from; None for appended books
    anchors: List[Optional[CanonicalBook]] = list(pool)
    added_at: Dict[int, int] = {}
    by_isbn: Dict[str, int] = {}
    by_name: Dict[str, int] = {}

    def index(position: int, book: CanonicalBook) -> None:
        if book.isbn13:
            by_isbn.setdefault(book.isbn13, position)
        if book.normalized_key:
            by_name.setdefault(book.normalized_key, position)

    for position, book in enumerate(merged):
        index(position, book)

    outcome = MergeOutcome()

    for book in incoming:
        position = by_isbn.get(book.isbn13) if book.isbn13 else None
        if position is None and book.normalized_key:
            position = by_name.get(book.normalized_key)

        if position is None:
            merged.append(book)
            anchors.append(None)
            added_at[len(merged) - 1] = len(outcome.added)
            index(len(merged) - 1, book)
            outcome.added.append(book)
            continue

        stored = merged[position]
        if book.improves_on(stored):
            merged[position] = book
            index(position, book)
            anchor = anchors[position]
            if anchor is None:
                outcome.added[added_at[position]] = book
            else:
                outcome.replaced.append((anchor, book))
        else:
            outcome.kept += 1

    outcome.pool = merged
    return outcome
