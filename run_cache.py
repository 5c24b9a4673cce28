#!/usr/bin/env python3
"""
BOOK CACHE RUNNER

Builds or refreshes the master book cache from Goodreads shelves.

Usage:
    python run_cache.py                   # refresh every genre (initial run if the cache is empty)
    python run_cache.py --initial         # force a full initial population
    python run_cache.py --genre fantasy   # refresh one genre
    python run_cache.py --stats           # print per-genre counts and staleness
    python run_cache.py --clean --dedupe  # drop invalid books, collapse duplicates
    python run_cache.py --report data/catalog.csv
"""

import argparse
import asyncio
import json
import logging
import signal
import time
from contextlib import AsyncExitStack
from pathlib import Path

import aiohttp

from bookcache import (
    BookEnricher,
    CacheGenerator,
    CatalogSettings,
    CoverResolver,
    HardcoverClient,
    LookupCache,
    MasterBookCache,
    MetadataClient,
    ShelfScraper,
    hardcover_rating_provider,
)
from bookcache.errors import BookCacheError
from bookcache.pipeline import audit_catalog, clean_catalog, dedupe_catalog, export_catalog_csv, genre_summary

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("run_cache")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build and maintain the master book cache")
    parser.add_argument("--initial", action="store_true", help="Force a full initial population")
    parser.add_argument("--genre", metavar="KEY", help="Refresh a single genre")
    parser.add_argument("--stats", action="store_true", help="Print cache statistics and exit")
    parser.add_argument("--audit", action="store_true", help="Report invalid books without changing anything")
    parser.add_argument("--clean", action="store_true", help="Remove books that fail validation")
    parser.add_argument("--dedupe", action="store_true", help="Collapse duplicate editions")
    parser.add_argument("--report", metavar="PATH", help="Export the catalog to CSV and print a genre summary")
    parser.add_argument("--data-dir", metavar="DIR", help="Override BOOKCACHE_DATA_DIR")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


async def run_maintenance(args: argparse.Namespace, store: MasterBookCache) -> None:
    """Offline operations on the loaded catalog; no network access"""
    if args.audit:
        print(json.dumps(audit_catalog(store), indent=2))

    if args.clean:
        report = clean_catalog(store)
        print(f"🧹 Removed {report.removed} invalid books, kept {report.kept}")
        for reason, count in sorted(report.reasons.items(), key=lambda item: -item[1]):
            print(f"   • {reason}: {count}")

    if args.dedupe:
        removed = dedupe_catalog(store)
        print(f"🔁 Removed {removed} duplicate entries")

    if args.clean or args.dedupe:
        await store.save()

    if args.report:
        path = export_catalog_csv(store, Path(args.report))
        print(genre_summary(store).to_string(index=False))
        print(f"📄 Catalog CSV: {path}")


async def run_generation(args: argparse.Namespace, settings: CatalogSettings, store: MasterBookCache) -> None:
    """Scrape, enrich and store, sharing one HTTP session across every service"""
    async with AsyncExitStack() as stack:
        session = await stack.enter_async_context(
            aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=settings.request_timeout),
                connector=aiohttp.TCPConnector(limit=20),
            )
        )
        client = await stack.enter_async_context(MetadataClient.from_settings(settings, session))
        scraper = await stack.enter_async_context(ShelfScraper.from_settings(settings, session))

        hardcover = HardcoverClient(settings.hardcover_token, session, timeout=settings.cover_timeout)
        covers = CoverResolver(session, hardcover, timeout=settings.cover_timeout)
        lookup_cache = LookupCache(settings.lookup_cache_path)
        enricher = BookEnricher(
            client,
            cover_resolver=covers,
            rating_providers=[hardcover_rating_provider(hardcover)],
            lookup_cache=lookup_cache,
        )
        generator = CacheGenerator(store, scraper, enricher, batch_width=settings.batch_width)

        try:
            asyncio.get_running_loop().add_signal_handler(signal.SIGINT, generator.request_stop)
        except NotImplementedError:
            pass

        try:
            if args.genre:
                result = await generator.refresh_genre(args.genre)
                print(f"✅ {result.genre}: +{result.books_added} books ({result.total_in_genre} total)")
            else:
                snapshot = await generator.generate_daily_cache(force_initial=args.initial)
                run = snapshot["run"]
                print(f"✅ {run['mode']} run finished in {run['elapsed_seconds']}s")
                for genre, stats in run["genres"].items():
                    status = f"❌ {stats['error']}" if stats["error"] else f"+{stats['added']} ({stats['total_in_genre']} total)"
                    print(f"   • {genre}: {status}")
        finally:
            await lookup_cache.save()


async def main(argv=None) -> int:
    args = parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    settings = CatalogSettings.from_env()
    if args.data_dir:
        settings.data_dir = Path(args.data_dir)

    store = MasterBookCache.from_settings(settings).load()
    start_time = time.time()

    try:
        if args.stats:
            print(json.dumps(store.stats, indent=2))
            return 0

        if args.audit or args.clean or args.dedupe or args.report:
            await run_maintenance(args, store)
            return 0

        await run_generation(args, settings, store)

    except BookCacheError as e:
        logger.error(f"Run failed after {time.time() - start_time:.1f}s: {e}")
        return 1

    finally:
        await store.close()

    print(f"⏱️  Total time: {time.time() - start_time:.1f}s")
    return 0


if __name__ == "__main__":
    exit(asyncio.run(main()))
