# bookcache/pipeline/__init__.py
"""
Orchestration, merging, maintenance and reporting for the master cache.
"""

from .cleaner import CleanReport, audit_catalog, clean_catalog, dedupe_catalog
from .exporter import build_snapshot, export_catalog_csv, genre_summary
from .generator import CacheGenerator
from .merge import MergeOutcome, merge_additive

__all__ = [
    "CacheGenerator",
    "CleanReport",
    "MergeOutcome",
    "audit_catalog",
    "build_snapshot",
    "clean_catalog",
    "dedupe_catalog",
    "export_catalog_csv",
    "genre_summary",
    "merge_additive",
]
