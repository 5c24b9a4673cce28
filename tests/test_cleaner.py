"""Tests for catalog audit, cleaning and deduplication."""

import pytest

from bookcache.pipeline.cleaner import (
    audit_catalog,
    clean_catalog,
    dedupe_catalog,
    find_index_problems,
    norm_title,
    quality_score,
)
from conftest import assert_index_consistent, make_book


@pytest.fixture
def dirty_store(store):
    store.add(make_book(), ["scifi"])
    store.add(make_book(title="Summary of Dune", isbn13="9781234567897"), ["scifi"])
    store.add(make_book(title="Mistborn Trilogy Boxed Set", isbn13="9780765365439"), ["fantasy"])
    store.add(make_book(title="Mistborn", author="Brandon Sanderson", isbn13="9780765311788"), ["fantasy"])
    return store


class TestAudit:
    def test_reports_without_mutating(self, dirty_store):
        report = audit_catalog(dirty_store)

        assert report["summary"]["total_books"] == 4
        assert report["summary"]["invalid_books"] == 2
        assert report["genres"]["scifi"]["invalid"] == 1
        assert report["genres"]["fantasy"]["samples"][0]["title"] == "Mistborn Trilogy Boxed Set"
        assert report["index_problems"] == []
        assert len(dirty_store) == 4

    def test_detects_index_drift(self, store):
        key = store.add(make_book(), ["scifi"])
        store.genre_index["fantasy"] = [key, "ghost"]

        problems = find_index_problems(store)

        assert "fantasy: index references missing book ghost" in problems
        assert f"fantasy: {key} indexed but not tagged" in problems


class TestClean:
    def test_removes_invalid_books(self, dirty_store):
        report = clean_catalog(dirty_store)

        assert report.removed == 2
        assert report.kept == 2
        assert report.removed_by_genre == {"scifi": 1, "fantasy": 1}
        assert {book.title for book in dirty_store.books.values()} == {"Dune", "Mistborn"}
        assert dirty_store.stats["total_books"] == 2
        assert_index_consistent(dirty_store)

    def test_clean_catalog_is_stable(self, dirty_store):
        clean_catalog(dirty_store)
        assert clean_catalog(dirty_store).removed == 0


class TestDedupe:
    @pytest.mark.parametrize("title, expected", [
        ("The Way of Kings (The Stormlight Archive, #1)", "way of kings"),
        ("Dune: Deluxe Edition", "dune"),
        ("Mistborn Book 1", "mistborn"),
        ("A Court of Thorns and Roses by Sarah J. Maas", "court of thorns and roses"),
        ("Harry Potter and the Philosopher's Stone", "harry potter and the philosopher"),
    ])
    def test_norm_title(self, title, expected):
        assert norm_title(title) == expected

    def test_cover_outweighs_rating(self):
        covered = make_book(average_rating=3.0)
        rated = make_book(cover_url=None, average_rating=5.0)
        assert quality_score(covered) > quality_score(rated)

    def test_keeps_best_edition_and_merges_genres(self, store):
        store.add(make_book(title="Dune", isbn13="9780441013593", cover_url=None), ["scifi"])
        store.add(make_book(title="Dune: Deluxe Edition", isbn13="9780593099322"), ["popular"])
        store.add(make_book(title="Dune Messiah", isbn13="9780593098233"), ["scifi"])

        removed = dedupe_catalog(store)

        assert removed == 1
        assert "9780441013593" not in store
        assert store.get("9780593099322").genres == {"scifi", "popular"}
        assert "9780593098233" in store
        assert_index_consistent(store)

    def test_different_authors_are_not_merged(self, store):
        store.add(make_book(title="Legacy", author="Author One", isbn13="9780000000001"), ["a"])
        store.add(make_book(title="Legacy", author="Author Two", isbn13="9780000000002"), ["a"])

        assert dedupe_catalog(store) == 0
