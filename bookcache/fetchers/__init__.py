# bookcache/fetchers/__init__.py
"""
Data fetcher modules for the book cache pipeline.
"""

from .google_fetcher import build_queries, fetch_google_candidates, select_best_match

__all__ = ["build_queries", "fetch_google_candidates", "select_best_match"]
