"""Tests for the genre pipeline orchestrator."""

from unittest.mock import AsyncMock, patch

import pytest

from bookcache.config import GenreSource
from bookcache.errors import GenrePipelineError, PersistenceError, UnknownGenreError
from bookcache.models import BookStub
from bookcache.pipeline.generator import CacheGenerator
from bookcache.store import MasterBookCache
from conftest import FakeEnricher, FakeScraper, assert_index_consistent, make_book

SOURCES = {
    "scifi": GenreSource("scifi", "shelf", "science-fiction", initial_count=10, refresh_count=5),
    "fantasy": GenreSource("fantasy", "shelf", "fantasy", initial_count=10, refresh_count=5),
    "cozy": GenreSource("cozy", "shelf", "cozy-fantasy", initial_count=10, refresh_count=5),
}

BOOKS = {
    "Dune": make_book("Dune", "Frank Herbert", "9780441013593"),
    "Hyperion": make_book("Hyperion", "Dan Simmons", "9780553283686"),
    "Mistborn": make_book("Mistborn", "Brandon Sanderson", "9780765311788"),
    "Legends & Lattes": make_book("Legends & Lattes", "Travis Baldree", "9781250886088"),
    "Stormlight Boxed Set": make_book("The Stormlight Archive Boxed Set", "Brandon Sanderson", "9781250165541"),
}

STUBS = {
    "scifi": [BookStub("Dune", "Frank Herbert"), BookStub("Hyperion", "Dan Simmons"), BookStub("Lost", "Nobody")],
    "fantasy": [BookStub("Mistborn", "Brandon Sanderson"), BookStub("Stormlight Boxed Set", "Brandon Sanderson")],
    "cozy": [BookStub("Legends & Lattes", "Travis Baldree")],
}


@pytest.fixture
def quiet_store(cache_path):
    return MasterBookCache(cache_path, save_debounce=60)


def make_generator(store, scraper=None, enricher=None, **kwargs):
    return CacheGenerator(
        store,
        scraper or FakeScraper(STUBS),
        enricher or FakeEnricher(BOOKS),
        genre_sources=SOURCES,
        batch_width=2,
        **kwargs,
    )


class TestGenerateDailyCache:
    @pytest.mark.asyncio
    async def test_initial_population(self, quiet_store):
        scraper = FakeScraper(STUBS)
        generator = make_generator(quiet_store, scraper=scraper)

        snapshot = await generator.generate_daily_cache()

        assert snapshot["run"]["mode"] == "initial"
        assert sorted(scraper.calls) == [("cozy", 10), ("fantasy", 10), ("scifi", 10)]
        assert set(quiet_store.genre_keys("scifi")) == {"9780441013593", "9780553283686"}
        assert quiet_store.genre_keys("fantasy") == ["9780765311788"]
        assert [b["title"] for b in snapshot["genres"]["cozy"]] == ["Legends & Lattes"]
        assert_index_consistent(quiet_store)

    @pytest.mark.asyncio
    async def test_records_rejections_and_misses(self, quiet_store):
        snapshot = await make_generator(quiet_store).generate_daily_cache()

        fantasy = snapshot["run"]["genres"]["fantasy"]
        assert fantasy["rejected"] == 1
        assert list(fantasy["rejection_reasons"])[0].startswith("Collection or box set")
        assert snapshot["run"]["genres"]["scifi"]["not_found"] == 1

    @pytest.mark.asyncio
    async def test_saves_after_each_batch(self, quiet_store, cache_path):
        await make_generator(quiet_store).generate_daily_cache()

        assert quiet_store.write_count == 2
        assert MasterBookCache(cache_path).load().stats["total_books"] == 4

    @pytest.mark.asyncio
    async def test_genre_failure_does_not_abort_siblings(self, quiet_store):
        generator = make_generator(quiet_store, scraper=FakeScraper(STUBS, failures=["fantasy"]))

        snapshot = await generator.generate_daily_cache()

        genres = snapshot["run"]["genres"]
        assert "scrape failed" in genres["fantasy"]["error"]
        assert genres["scifi"]["error"] is None
        assert len(quiet_store.genre_keys("scifi")) == 2
        assert len(quiet_store.genre_keys("cozy")) == 1

    @pytest.mark.asyncio
    async def test_stop_request_finishes_current_batch_only(self, quiet_store):
        generator = None

        def stop_during_first_batch(source):
            if source.key == "scifi":
                generator.request_stop()

        scraper = FakeScraper(STUBS, on_scrape=stop_during_first_batch)
        generator = make_generator(quiet_store, scraper=scraper)

        snapshot = await generator.generate_daily_cache()

        assert snapshot["run"]["stopped_early"] is True
        assert "cozy" not in [key for key, _ in scraper.calls]
        assert quiet_store.write_count == 1

    @pytest.mark.asyncio
    async def test_save_failure_after_batch_is_fatal(self, quiet_store):
        generator = make_generator(quiet_store)

        with patch.object(quiet_store, "save", new=AsyncMock(side_effect=PersistenceError("disk full"))):
            with pytest.raises(PersistenceError):
                await generator.generate_daily_cache()

    @pytest.mark.asyncio
    async def test_refresh_sweep_when_catalog_exists(self, quiet_store):
        quiet_store.add(make_book("Dune", "Frank Herbert", "9780441013593"), ["scifi"])
        scraper = FakeScraper(STUBS)

        snapshot = await make_generator(quiet_store, scraper=scraper).generate_daily_cache()

        assert snapshot["run"]["mode"] == "refresh"
        assert ("scifi", 5) in scraper.calls

    @pytest.mark.asyncio
    async def test_force_initial(self, quiet_store):
        quiet_store.add(make_book(), ["scifi"])
        snapshot = await make_generator(quiet_store).generate_daily_cache(force_initial=True)
        assert snapshot["run"]["mode"] == "initial"


class TestRefreshGenre:
    @pytest.mark.asyncio
    async def test_skips_known_books_but_tags_genre(self, quiet_store):
        dune = quiet_store.add(make_book("Dune", "Frank Herbert", "9780441013593"), ["scifi"])
        stubs = {"fantasy": [BookStub("Dune", "Frank Herbert"), BookStub("Mistborn", "Brandon Sanderson")]}
        enricher = FakeEnricher(BOOKS)
        generator = make_generator(quiet_store, scraper=FakeScraper(stubs), enricher=enricher)

        result = await generator.refresh_genre("fantasy")

        assert enricher.calls == ["Mistborn"]
        assert quiet_store.get(dune).genres == {"scifi", "fantasy"}
        assert result.genre == "fantasy"
        assert result.books_added == 2
        assert result.total_in_genre == 2
        assert_index_consistent(quiet_store)

    @pytest.mark.asyncio
    async def test_refresh_never_shrinks_genre(self, quiet_store):
        for title in ("Dune", "Hyperion"):
            quiet_store.add(make_book(title, "Someone", f"97800000000{len(title):02d}"), ["scifi"])
        before = len(quiet_store.genre_keys("scifi"))

        generator = make_generator(quiet_store, scraper=FakeScraper({"scifi": []}))
        result = await generator.refresh_genre("scifi")

        assert result.total_in_genre >= before
        assert result.books_added == 0

    @pytest.mark.asyncio
    async def test_better_record_improves_stored_book(self, quiet_store):
        key = quiet_store.add(make_book("Dune", "Frank Herbert", "9780441013593", cover_url=None), ["scifi"])
        improved = make_book("Dune", "F. Herbert", "9780441013593", cover_url="https://covers.example.com/dune.jpg")
        stubs = {"scifi": [BookStub("Dune", "F. Herbert")]}
        generator = make_generator(quiet_store, scraper=FakeScraper(stubs), enricher=FakeEnricher({"Dune": improved}))

        result = await generator.refresh_genre("scifi")

        assert result.books_added == 0
        assert quiet_store.get(key).cover_url == "https://covers.example.com/dune.jpg"

    @pytest.mark.asyncio
    async def test_two_improvements_to_one_book_both_apply(self, quiet_store):
        key = quiet_store.add(make_book("Dune", "Frank Herbert", "9780441013593", cover_url=None, average_rating=3.0),
                              ["scifi"])
        covered = make_book("Dune", "Frank Herbert", None, cover_url="https://covers.example.com/dune.jpg",
                            average_rating=3.0)
        rated = make_book("Dune", "Frank Herbert", None, cover_url=None, average_rating=4.9)
        stubs = {"scifi": [BookStub("Dune Anniversary", "Frank Herbert"), BookStub("Dune Reissue", "Frank Herbert")]}
        enricher = FakeEnricher({"Dune Anniversary": covered, "Dune Reissue": rated})
        generator = make_generator(quiet_store, scraper=FakeScraper(stubs), enricher=enricher)

        result = await generator.refresh_genre("scifi")

        stored = quiet_store.get(key)
        assert stored.average_rating == 4.9
        assert stored.cover_url == "https://covers.example.com/dune.jpg"
        assert result.books_added == 0
        assert len(quiet_store) == 1

    @pytest.mark.asyncio
    async def test_unknown_genre(self, quiet_store):
        with pytest.raises(UnknownGenreError):
            await make_generator(quiet_store).refresh_genre("westerns")

    @pytest.mark.asyncio
    async def test_pipeline_failure_is_wrapped(self, quiet_store):
        generator = make_generator(quiet_store, scraper=FakeScraper(STUBS, failures=["scifi"]))

        with pytest.raises(GenrePipelineError) as excinfo:
            await generator.refresh_genre("scifi")

        assert excinfo.value.genre_key == "scifi"

    @pytest.mark.asyncio
    async def test_refresh_saves(self, quiet_store):
        await make_generator(quiet_store).refresh_genre("cozy")
        assert quiet_store.write_count == 1


class TestReads:
    def test_get_books_samples_genre(self, quiet_store):
        for n in range(8):
            quiet_store.add(make_book(f"Book {n}", "Author", f"978000000{n:04d}"), ["scifi"])

        books = make_generator(quiet_store).get_books("scifi", 5)

        assert len(books) == 5

    def test_get_books_never_raises(self, quiet_store):
        generator = make_generator(quiet_store)
        with patch.object(quiet_store, "sample", side_effect=RuntimeError("corrupt index")):
            assert generator.get_books("scifi", 5) == []
        assert generator.get_books("unpopulated", 5) == []

    def test_cache_stats_cover_every_configured_genre(self, quiet_store):
        quiet_store.add(make_book(), ["scifi"])
        quiet_store.update_scrape_time("scifi")

        stats = make_generator(quiet_store).get_cache_stats()

        assert set(stats["genres"]) == set(SOURCES)
        assert stats["genres"]["scifi"]["count"] == 1
        assert stats["genres"]["scifi"]["age_hours"] == 0.0
        assert stats["genres"]["cozy"]["last_scrape"] is None
        assert make_generator(quiet_store).get_master_cache_stats()["total_books"] == 1
