# bookcache/config.py
"""
Configuration for the book cache pipeline.

Genre sources map each genre key to the Goodreads shelf or list it is
scraped from. Runtime settings come from constructor defaults, optionally
overridden by environment variables via CatalogSettings.from_env().
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

GOODREADS_BASE_URL = "https://www.goodreads.com"

# Books per page for each Goodreads source type
PAGE_SIZES = {
    "shelf": 50,
    "list": 100,
}


@dataclass(frozen=True)
class GenreSource:
    """Where a genre's stubs are scraped from"""
    key: str
    kind: str  # "shelf" or "list"
    name: str  # shelf name, or list id for lists
    initial_count: int = 150
    refresh_count: int = 50

    @property
    def page_size(self) -> int:
        return PAGE_SIZES[self.kind]

    def page_url(self, page: int) -> str:
        if self.kind == "list":
            return f"{GOODREADS_BASE_URL}/list/show/{self.name}?page={page}"
        return f"{GOODREADS_BASE_URL}/shelf/show/{self.name}?page={page}"


GENRE_SOURCES: Dict[str, GenreSource] = {
    source.key: source
    for source in [
        GenreSource("romantasy", "shelf", "romantasy"),
        GenreSource("fantasy", "shelf", "fantasy", initial_count=200),
        GenreSource("scifi", "shelf", "science-fiction", initial_count=200),
        GenreSource("dark_fantasy", "shelf", "grimdark"),
        GenreSource("cozy", "shelf", "cozy-fantasy"),
        GenreSource("action_adventure", "shelf", "action-adventure"),
        GenreSource("booktok_trending", "shelf", "booktok"),
        GenreSource("popular", "shelf", "popular"),
        GenreSource("new_releases", "shelf", "new-releases"),
        GenreSource("hidden_gems", "shelf", "hidden-gems"),
        GenreSource("enemies_to_lovers", "shelf", "enemies-to-lovers"),
        GenreSource("dragons", "list", "583.Dragons"),
        GenreSource("fairy_tale_retellings", "shelf", "fairy-tale-retellings"),
        GenreSource("post_apocalyptic", "shelf", "post-apocalyptic"),
    ]
}


def _split_keys(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [key.strip() for key in raw.split(",") if key.strip()]


@dataclass
class CatalogSettings:
    """
    Runtime settings for the whole pipeline.

    Defaults mirror the production values; tests shrink the delays.
    """
    data_dir: Path = Path("data")
    cache_filename: str = "master_book_cache.json"
    lookup_cache_filename: str = "book_metadata.json"

    # Metadata client
    google_api_keys: List[str] = field(default_factory=list)
    min_request_spacing: float = 0.5
    max_retries: int = 3
    initial_retry_delay: float = 1.0
    pause_seconds: float = 300.0
    request_timeout: float = 15.0

    # Scraper
    scrape_page_delay: float = 2.0
    scrape_max_retries: int = 3

    # Covers / ratings
    hardcover_token: Optional[str] = None
    cover_timeout: float = 5.0

    # Store and orchestration
    save_debounce: float = 5.0
    batch_width: int = 4

    @property
    def cache_path(self) -> Path:
        return Path(self.data_dir) / self.cache_filename

    @property
    def lookup_cache_path(self) -> Path:
        return Path(self.data_dir) / self.lookup_cache_filename

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "CatalogSettings":
        """Build settings from environment variables, falling back to defaults"""
        env = os.environ if environ is None else environ

        keys = _split_keys(env.get("GOOGLE_BOOKS_API_KEYS"))
        for name in ("GOOGLE_BOOKS_API_KEY", "GOOGLE_BOOKS_API_KEY_2"):
            value = env.get(name)
            if value and value not in keys:
                keys.append(value)

        settings = cls(
            google_api_keys=keys,
            hardcover_token=env.get("HARDCOVER_TOKEN") or env.get("HARDCOVER_API_TOKEN"),
        )

        if env.get("BOOKCACHE_DATA_DIR"):
            settings.data_dir = Path(env["BOOKCACHE_DATA_DIR"])
        if env.get("BOOKCACHE_BATCH_WIDTH"):
            settings.batch_width = max(1, int(env["BOOKCACHE_BATCH_WIDTH"]))
        if env.get("BOOKCACHE_SAVE_DEBOUNCE"):
            settings.save_debounce = float(env["BOOKCACHE_SAVE_DEBOUNCE"])

        return settings
