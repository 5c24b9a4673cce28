# bookcache/store.py
"""
Master book cache: the persisted, deduplicated, genre-indexed catalog.

One JSON document holds every book keyed by ISBN-13 (or a synthetic
title+author key when there is none), a genre index derived from the books'
genre sets, and aggregate stats. The document is loaded once, mutated in
memory and written back by a debounced atomic save.

Document layout:
    {
        "version": "3.0",
        "last_update": ISO timestamp,
        "books": {key: book},
        "genre_index": {genre: [key, ...]},
        "stats": {"total_books", "total_genres", "books_by_genre", "last_scrape"}
    }
"""

import asyncio
import enum
import json
import logging
import random
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .errors import PersistenceError
from .models import CanonicalBook, normalize_book_key, synthetic_key_for
from .utils import atomic_write_text, read_json_document

CACHE_VERSION = "3.0"

# Fields a strictly-better record may overwrite; identity and membership are never touched
METADATA_FIELDS = (
    "title",
    "authors",
    "cover_url",
    "thumbnail",
    "source_cover_url",
    "description",
    "average_rating",
    "ratings_count",
    "published_date",
    "page_count",
    "publisher",
    "external_id",
)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SaveState(enum.Enum):
    CLEAN = "clean"
    DIRTY = "dirty"
    FLUSH_SCHEDULED = "flush_scheduled"


class MasterBookCache:
    """
    In-memory catalog with debounced, atomic persistence.

    Mutations are synchronous and call schedule_save(). Saving follows a
    small state machine:

        CLEAN --mutation--> DIRTY --arm timer--> FLUSH_SCHEDULED
        FLUSH_SCHEDULED --mutation--> FLUSH_SCHEDULED (no second timer)
        FLUSH_SCHEDULED --write ok--> CLEAN, or DIRTY + re-armed if mutated meanwhile
        FLUSH_SCHEDULED --write failed--> DIRTY (next mutation re-arms)

    The timer is armed at the first mutation of a burst and is not pushed
    back by later ones, so a steady stream of mutations still gets written
    every ``save_debounce`` seconds.
    """

    def __init__(self, path: Path, save_debounce: float = 5.0):
        self.path = Path(path)
        self.save_debounce = save_debounce
        self.version = CACHE_VERSION
        self.last_update = utc_now()
        self.books: Dict[str, CanonicalBook] = {}
        self.genre_index: Dict[str, List[str]] = {}
        self._stats = self._empty_stats()

        self._state = SaveState.CLEAN
        self._generation = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self._flush_task: Optional[asyncio.Task] = None
        self._write_lock = asyncio.Lock()
        self.write_count = 0

        self.logger = logging.getLogger(self.__class__.__name__)

    @classmethod
    def from_settings(cls, settings) -> "MasterBookCache":
        return cls(settings.cache_path, save_debounce=settings.save_debounce)

    @staticmethod
    def _empty_stats() -> Dict:
        return {
            "total_books": 0,
            "total_genres": 0,
            "books_by_genre": {},
            "last_scrape": {},
        }

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> "MasterBookCache":
        """
        Load the document from disk.

        A missing or corrupt file leaves the store empty; startup never fails
        because of the cache file.
        """
        self.books = {}
        self.genre_index = {}
        self._stats = self._empty_stats()

        document = read_json_document(self.path)
        if not isinstance(document, dict) or not isinstance(document.get("books"), dict):
            if document is not None:
                self.logger.error(f"Cache document at {self.path} is malformed, starting empty")
            return self

        for stored_key, data in document["books"].items():
            try:
                book = CanonicalBook.from_dict(data)
            except (TypeError, ValueError, AttributeError) as e:
                self.logger.warning(f"Skipping unreadable book entry {stored_key!r}: {e}")
                continue

            if not book.title:
                continue
            if not book.isbn13 and not book.synthetic_key:
                book.synthetic_key = stored_key

            existing = self.books.get(book.key)
            if existing is not None:
                existing.genres |= book.genres
            else:
                self.books[book.key] = book

        self.version = document.get("version") or CACHE_VERSION
        self.last_update = document.get("last_update") or document.get("lastUpdate") or utc_now()
        stored_stats = document.get("stats") or {}
        self.rebuild_genre_index(schedule=False)
        self._stats["last_scrape"] = dict(stored_stats.get("last_scrape") or stored_stats.get("lastScrape") or {})

        self.logger.info(
            f"Loaded cache with {self._stats['total_books']} books across {self._stats['total_genres']} genres"
        )
        return self

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self.books)

    def __contains__(self, key: str) -> bool:
        return key in self.books

    def exists(self, title: str, author: Optional[str]) -> Optional[str]:
        """
        Key of a stored book with the same normalized title and first author.

        Linear scan over the catalog.
        """
        wanted = normalize_book_key(title, author)
        if wanted is None:
            return None

        for key, book in self.books.items():
            if book.normalized_key == wanted:
                return key
        return None

    def get(self, key: str) -> Optional[CanonicalBook]:
        return self.books.get(key)

    def genre_keys(self, genre: str) -> List[str]:
        return list(self.genre_index.get(genre, []))

    def books_in_genre(self, genre: str) -> List[CanonicalBook]:
        return [self.books[key] for key in self.genre_index.get(genre, []) if key in self.books]

    def sample(self, genre: str, count: int, rng: Optional[random.Random] = None) -> List[CanonicalBook]:
        """
        Random books from a genre.

        The genre's keys are reshuffled on every call, so ordering is not
        stable between calls.
        """
        keys = self.genre_keys(genre)
        if not keys:
            self.logger.debug(f"No books for genre {genre!r}")
            return []

        (rng or random).shuffle(keys)
        return [self.books[key] for key in keys[:max(count, 0)] if key in self.books]

    def genres(self) -> List[str]:
        return list(self.genre_index.keys())

    @property
    def stats(self) -> Dict:
        return {
            "version": self.version,
            "last_update": self.last_update,
            "total_books": self._stats["total_books"],
            "total_genres": self._stats["total_genres"],
            "books_by_genre": dict(self._stats["books_by_genre"]),
            "last_scrape": dict(self._stats["last_scrape"]),
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, book: CanonicalBook, genres: Iterable[str] = ()) -> Optional[str]:
        """
        Insert a book or merge it into the stored entry with the same identity.

        Existing entry: genres are unioned, last_verified_at refreshed and
        metadata overwritten only if ``book`` improves on the stored record.
        New entry: keyed by ISBN-13, or by the synthetic title+author key.

        Returns:
            Key of the stored entry, or None for an untitled book
        """
        if not book.title:
            self.logger.warning("Book missing title, skipping")
            return None

        genres = list(dict.fromkeys(genres))
        now = utc_now()

        if not book.isbn13 and not book.synthetic_key:
            book.synthetic_key = synthetic_key_for(book.title, book.primary_author)

        existing = self.books.get(book.key)
        if existing is None and book.isbn13:
            existing = self._promote_synthetic(book)

        if existing is not None:
            if book.improves_on(existing):
                self._overwrite_metadata(existing, book)
            for genre in genres:
                self._link(existing.key, genre)
            existing.last_verified_at = now
            key = existing.key
            self.logger.debug(f"Updated existing book: {existing.title!r} ({key})")
        else:
            book.genres = set()
            book.added_at = book.added_at or now
            book.last_verified_at = now
            key = book.key
            self.books[key] = book
            self._stats["total_books"] += 1
            for genre in genres:
                self._link(key, genre)
            self.logger.debug(f"Added new book: {book.title!r} ({key})")

        self._touch()
        return key

    def tag_genre(self, key: str, genre: str) -> bool:
        """Attach a genre to a stored book; False if it was already tagged or unknown"""
        book = self.books.get(key)
        if book is None:
            return False

        book.last_verified_at = utc_now()
        linked = self._link(key, genre)
        self._touch()
        return linked

    def replace(self, key: str, incoming: CanonicalBook) -> bool:
        """
        Overwrite a stored book's metadata with ``incoming``.

        The stored key, ISBN, genres and added_at are kept; incoming genres
        are unioned in.
        """
        stored = self.books.get(key)
        if stored is None:
            return False

        self._overwrite_metadata(stored, incoming)
        for genre in incoming.genres:
            self._link(key, genre)
        stored.last_verified_at = utc_now()
        self._touch()
        return True

    def remove(self, key: str) -> Optional[CanonicalBook]:
        book = self.books.pop(key, None)
        if book is None:
            return None

        self._stats["total_books"] -= 1
        for genre in list(book.genres):
            self._unlink_index(key, genre)
        self._touch()
        return book

    def update_scrape_time(self, genre: str) -> None:
        self._stats["last_scrape"][genre] = utc_now()
        self._touch()

    def rebuild_genre_index(self, schedule: bool = True) -> None:
        """Recompute the genre index and stats from the books' genre sets"""
        last_scrape = self._stats.get("last_scrape", {})
        self.genre_index = {}
        self._stats = self._empty_stats()
        self._stats["last_scrape"] = last_scrape
        self._stats["total_books"] = len(self.books)

        for key, book in self.books.items():
            for genre in sorted(book.genres):
                self.genre_index.setdefault(genre, []).append(key)

        for genre, keys in self.genre_index.items():
            self._stats["books_by_genre"][genre] = len(keys)
        self._stats["total_genres"] = len(self.genre_index)

        if schedule:
            self._touch()

    def _link(self, key: str, genre: str) -> bool:
        book = self.books[key]
        if genre in book.genres:
            return False

        book.genres.add(genre)
        index = self.genre_index.setdefault(genre, [])
        if not index:
            self._stats["total_genres"] += 1
        index.append(key)
        self._stats["books_by_genre"][genre] = self._stats["books_by_genre"].get(genre, 0) + 1
        return True

    def _unlink_index(self, key: str, genre: str) -> None:
        index = self.genre_index.get(genre)
        if not index or key not in index:
            return

        index.remove(key)
        self._stats["books_by_genre"][genre] -= 1
        if not index:
            del self.genre_index[genre]
            del self._stats["books_by_genre"][genre]
            self._stats["total_genres"] -= 1

    def _promote_synthetic(self, book: CanonicalBook) -> Optional[CanonicalBook]:
        """
        Re-key a stored ISBN-less entry under the ISBN of an incoming record
        for the same title+author.
        """
        synthetic = synthetic_key_for(book.title, book.primary_author)
        stored = self.books.get(synthetic)
        if stored is None:
            return None

        self.books.pop(synthetic)
        genres = set(stored.genres)
        for genre in genres:
            self._unlink_index(synthetic, genre)

        stored.genres = set()
        stored.isbn13 = book.isbn13
        stored.synthetic_key = None
        self.books[stored.key] = stored
        for genre in sorted(genres):
            self._link(stored.key, genre)

        self.logger.info(f"Re-keyed {stored.title!r} from {synthetic} to {stored.key}")
        return stored

    @staticmethod
    def _overwrite_metadata(stored: CanonicalBook, incoming: CanonicalBook) -> None:
        for name in METADATA_FIELDS:
            value = getattr(incoming, name)
            if value in (None, "", [], 0, 0.0):
                continue
            setattr(stored, name, list(value) if isinstance(value, list) else value)

    def _touch(self) -> None:
        self.last_update = utc_now()
        self.schedule_save()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @property
    def save_state(self) -> SaveState:
        return self._state

    def to_document(self) -> Dict:
        return {
            "version": self.version,
            "last_update": self.last_update,
            "books": {key: book.to_dict() for key, book in self.books.items()},
            "genre_index": {genre: list(keys) for genre, keys in self.genre_index.items()},
            "stats": {
                "total_books": self._stats["total_books"],
                "total_genres": self._stats["total_genres"],
                "books_by_genre": dict(self._stats["books_by_genre"]),
                "last_scrape": dict(self._stats["last_scrape"]),
            },
        }

    def schedule_save(self) -> None:
        """Mark the store dirty and arm the debounced flush if none is pending"""
        self._generation += 1
        if self._state is SaveState.CLEAN:
            self._state = SaveState.DIRTY
        if self._state is SaveState.DIRTY:
            self._arm_flush()

    def _arm_flush(self) -> None:
        if self._timer is not None:
            self._state = SaveState.FLUSH_SCHEDULED
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to schedule on; the next explicit save() writes it out
            return

        self._state = SaveState.FLUSH_SCHEDULED
        self._timer = loop.call_later(self.save_debounce, self._start_auto_flush)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _start_auto_flush(self) -> None:
        self._timer = None
        self._flush_task = asyncio.ensure_future(self._auto_flush())

    async def _auto_flush(self) -> None:
        try:
            await self._write()
        except PersistenceError as e:
            self.logger.error(f"Auto-save failed, will retry on next change: {e}")

    async def save(self) -> None:
        """
        Write the catalog now.

        Raises:
            PersistenceError: if the document could not be written
        """
        self._cancel_timer()
        if self._state is SaveState.FLUSH_SCHEDULED and not self._write_lock.locked():
            self._state = SaveState.DIRTY
        await self._write()

    async def close(self) -> None:
        """Flush pending changes and stop the debounce timer"""
        self._cancel_timer()
        if self._flush_task is not None and not self._flush_task.done():
            await self._flush_task
        if self._state is not SaveState.CLEAN:
            await self.save()

    async def _write(self) -> None:
        async with self._write_lock:
            generation = self._generation
            text = json.dumps(self.to_document(), indent=2)

            try:
                await asyncio.to_thread(atomic_write_text, self.path, text)
            except OSError as e:
                self._state = SaveState.FLUSH_SCHEDULED if self._timer is not None else SaveState.DIRTY
                raise PersistenceError(f"Failed to save cache to {self.path}: {e}") from e

            self.write_count += 1
            self.logger.info(f"Saved {self._stats['total_books']} books to {self.path}")

            if self._generation == generation:
                self._cancel_timer()
                self._state = SaveState.CLEAN
            else:
                # Mutated mid-write: keep a pending timer or arm one
                self._state = SaveState.DIRTY
                self._arm_flush()
