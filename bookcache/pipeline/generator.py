# bookcache/pipeline/generator.py
"""
Cache generation: drives the scrape -> enrich -> validate -> store pipeline
for every configured genre.

Genres run concurrently in fixed-width batches. The catalog is saved after
each batch, so an interrupted run loses at most the batch in flight.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from ..config import GENRE_SOURCES, GenreSource
from ..enricher import BookEnricher
from ..errors import GenrePipelineError, UnknownGenreError
from ..models import CanonicalBook, GenreRunResult, RefreshResult
from ..sources.goodreads import ShelfScraper
from ..store import MasterBookCache
from ..validator import ValidationResult, validate_book
from .exporter import build_snapshot
from .merge import merge_additive

INITIAL = "initial"
REFRESH = "refresh"


class CacheGenerator:
    """
    Orchestrates genre pipelines over shared services.

    The store, scraper and enricher (and through it the rate-limited
    metadata client) are injected and shared by every genre pipeline.
    """

    def __init__(
        self,
        store: MasterBookCache,
        scraper: ShelfScraper,
        enricher: BookEnricher,
        genre_sources: Optional[Dict[str, GenreSource]] = None,
        batch_width: int = 4,
        validator: Callable[[CanonicalBook], ValidationResult] = validate_book,
    ):
        self.store = store
        self.scraper = scraper
        self.enricher = enricher
        self.genre_sources = genre_sources if genre_sources is not None else GENRE_SOURCES
        self.batch_width = max(1, batch_width)
        self.validator = validator
        self._stop_requested = False
        self.logger = logging.getLogger(self.__class__.__name__)

    def request_stop(self) -> None:
        """Finish the batch in flight, then stop before the next one"""
        self._stop_requested = True
        self.logger.info("Stop requested, finishing current batch")

    # ------------------------------------------------------------------
    # Read paths
    # ------------------------------------------------------------------

    def get_books(self, genre_key: str, count: int = 50) -> List[CanonicalBook]:
        """Random sample from a genre; empty on any failure, never raises"""
        try:
            return self.store.sample(genre_key, count)
        except Exception as e:
            self.logger.error(f"Could not sample genre {genre_key!r}: {e}")
            return []

    def get_master_cache_stats(self) -> Dict:
        return self.store.stats

    def get_cache_stats(self) -> Dict:
        """Per configured genre: book count, last scrape and its age in hours"""
        stats = self.store.stats
        now = datetime.now(timezone.utc)
        genres = {}

        for key in self.genre_sources:
            last_scrape = stats["last_scrape"].get(key)
            age_hours = None
            if last_scrape:
                try:
                    age_hours = round((now - datetime.fromisoformat(last_scrape)).total_seconds() / 3600, 1)
                except (TypeError, ValueError):
                    age_hours = None
            genres[key] = {
                "count": stats["books_by_genre"].get(key, 0),
                "last_scrape": last_scrape,
                "age_hours": age_hours,
            }

        return {
            "last_update": stats["last_update"],
            "total_books": stats["total_books"],
            "total_genres": stats["total_genres"],
            "genres": genres,
        }

    # ------------------------------------------------------------------
    # Administrative paths
    # ------------------------------------------------------------------

    async def generate_daily_cache(self, force_initial: bool = False) -> Dict:
        """
        Run every configured genre.

        Initial population when forced or when the catalog is empty,
        otherwise an incremental refresh sweep.

        Returns:
            Catalog snapshot with the run report under "run"

        Raises:
            PersistenceError: if saving after a batch fails
        """
        mode = INITIAL if force_initial or len(self.store) == 0 else REFRESH
        self._stop_requested = False
        started = time.time()

        self.logger.info(f"Starting {mode} generation for {len(self.genre_sources)} genres")
        results = await self._run_batches(list(self.genre_sources), mode)

        elapsed = time.time() - started
        failed = [result.genre for result in results if result.failed]
        self.logger.info(
            f"Generation complete in {elapsed:.1f}s: {len(results)} genres, "
            f"{sum(r.added for r in results)} books added, {len(failed)} failed"
        )
        if failed:
            self.logger.warning(f"Failed genres: {', '.join(failed)}")

        run = {
            "mode": mode,
            "elapsed_seconds": round(elapsed, 1),
            "stopped_early": len(results) < len(self.genre_sources),
            "genres": {result.genre: result.to_dict() for result in results},
        }
        return build_snapshot(self.store, run=run)

    async def refresh_genre(self, genre_key: str) -> RefreshResult:
        """
        Incrementally refresh one genre and save.

        Raises:
            UnknownGenreError: for a genre with no configured source
            GenrePipelineError: if the pipeline fails outright
            PersistenceError: if the save fails
        """
        source = self.genre_sources.get(genre_key)
        if source is None:
            raise UnknownGenreError(genre_key)

        try:
            result = await self._run_genre(source, REFRESH)
        except Exception as e:
            raise GenrePipelineError(genre_key, e) from e

        await self.store.save()

        return RefreshResult(
            genre=genre_key,
            books_added=result.added,
            total_in_genre=result.total_in_genre,
            generated_at=datetime.now(timezone.utc).isoformat(),
        )

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    async def _run_batches(self, genre_keys: List[str], mode: str) -> List[GenreRunResult]:
        results: List[GenreRunResult] = []
        batches = [genre_keys[i:i + self.batch_width] for i in range(0, len(genre_keys), self.batch_width)]

        for number, batch in enumerate(batches, 1):
            if self._stop_requested:
                self.logger.info(f"Stopping before batch {number}/{len(batches)}")
                break

            self.logger.info(f"Batch {number}/{len(batches)}: {', '.join(batch)}")
            batch_results = await asyncio.gather(
                *(self._run_genre_safely(self.genre_sources[key], mode) for key in batch)
            )
            results.extend(batch_results)

            await self.store.save()
            self.logger.info(f"Batch {number} saved, catalog at {len(self.store)} books")

        return results

    async def _run_genre_safely(self, source: GenreSource, mode: str) -> GenreRunResult:
        try:
            return await self._run_genre(source, mode)
        except Exception as e:
            self.logger.error(f"Genre {source.key} failed: {e}")
            return GenreRunResult(
                genre=source.key,
                mode=mode,
                total_in_genre=len(self.store.genre_keys(source.key)),
                error=str(e) or e.__class__.__name__,
            )

    async def _run_genre(self, source: GenreSource, mode: str) -> GenreRunResult:
        result = GenreRunResult(genre=source.key, mode=mode)
        count = source.initial_count if mode == INITIAL else source.refresh_count
        before = len(self.store.genre_keys(source.key))

        stubs = await self.scraper.scrape(source, count)
        result.scraped = len(stubs)

        pending = stubs
        if mode == REFRESH:
            pending = []
            for stub in stubs:
                existing = self.store.exists(stub.title, stub.author)
                if existing is None:
                    pending.append(stub)
                else:
                    result.skipped_existing += 1
                    self.store.tag_genre(existing, source.key)

        candidates = []
        for book in await self.enricher.enrich_many(pending):
            if book is None:
                result.not_found += 1
                continue

            result.enriched += 1
            verdict = self.validator(book)
            if not verdict.valid:
                result.record_rejection(verdict.reason)
                self.logger.debug(f"Rejected {book.title!r}: {verdict.reason}")
                continue
            candidates.append(book)

        if mode == INITIAL:
            for book in candidates:
                self.store.add(book, [source.key])
        else:
            outcome = merge_additive(self.store.books_in_genre(source.key), candidates)
            for book in outcome.added:
                self.store.add(book, [source.key])
            for stored, incoming in outcome.replaced:
                self.store.replace(stored.key, incoming)
            result.replaced = len(outcome.replaced)

        self.store.update_scrape_time(source.key)
        result.total_in_genre = len(self.store.genre_keys(source.key))
        result.added = result.total_in_genre - before

        self.logger.info(
            f"{source.key}: scraped {result.scraped}, skipped {result.skipped_existing}, "
            f"enriched {result.enriched}, rejected {result.rejected}, added {result.added} "
            f"({result.total_in_genre} total)"
        )
        return result
