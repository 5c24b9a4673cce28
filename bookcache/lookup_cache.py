# bookcache/lookup_cache.py
"""
Title+author lookup cache for resolved metadata.

Saves repeat Google Books searches for books that were resolved recently,
e.g. the same stub showing up on several shelves. Records older than the TTL
are ignored.
"""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Dict, Optional

from .errors import PersistenceError
from .models import CanonicalBook, normalize_text
from .utils import atomic_write_text, read_json_document

DEFAULT_TTL_SECONDS = 30 * 24 * 60 * 60


class LookupCache:
    """JSON-backed map of normalized title+author to a resolved book"""

    def __init__(self, path: Optional[Path] = None, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock=time.time):
        self.path = Path(path) if path else None
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._records: Dict[str, Dict] = {}
        self._loaded = False
        self.dirty = False
        self.logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def cache_key(title: Optional[str], author: Optional[str]) -> Optional[str]:
        if not title or not title.strip():
            return None
        return f"book:{normalize_text(title)}:{normalize_text(author)}"

    def load(self) -> None:
        if self._loaded:
            return
        self._loaded = True

        if self.path is None:
            return

        document = read_json_document(self.path)
        if isinstance(document, dict):
            self._records = document
            self.logger.info(f"Loaded {len(self._records)} cached lookups from {self.path}")

    def __len__(self) -> int:
        return len(self._records)

    def is_stale(self, record: Dict) -> bool:
        updated_at = record.get("updated_at")
        if not updated_at:
            return True
        return self.clock() - updated_at > self.ttl_seconds

    def get(self, title: str, author: str) -> Optional[CanonicalBook]:
        self.load()
        key = self.cache_key(title, author)
        record = self._records.get(key) if key else None
        if not record:
            return None

        if self.is_stale(record):
            self.logger.debug(f"Stale lookup for {title!r}")
            return None

        return CanonicalBook.from_dict(record["data"])

    def set(self, title: str, author: str, book: CanonicalBook) -> None:
        self.load()
        key = self.cache_key(title, author)
        if not key:
            return

        data = book.to_dict()
        data["genres"] = []
        self._records[key] = {"updated_at": self.clock(), "data": data}
        self.dirty = True

    def prune(self) -> int:
        """Drop stale records, returning how many were removed"""
        self.load()
        stale = [key for key, record in self._records.items() if self.is_stale(record)]
        for key in stale:
            del self._records[key]
        if stale:
            self.dirty = True
        return len(stale)

    async def save(self) -> None:
        if self.path is None or not self.dirty:
            return

        text = json.dumps(self._records, indent=2)
        try:
            await asyncio.to_thread(atomic_write_text, self.path, text)
        except OSError as e:
            raise PersistenceError(f"Failed to write lookup cache {self.path}: {e}") from e

        self.dirty = False
        self.logger.info(f"Saved {len(self._records)} cached lookups")
