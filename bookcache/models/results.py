# bookcache/models/results.py
"""
Result records returned by the orchestrator.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, Optional


@dataclass
class GenreRunResult:
    """What one genre contributed to a generation run"""
    genre: str
    mode: str  # "initial" or "refresh"
    scraped: int = 0
    skipped_existing: int = 0
    enriched: int = 0
    not_found: int = 0
    rejected: int = 0
    added: int = 0
    replaced: int = 0
    total_in_genre: int = 0
    error: Optional[str] = None
    rejection_reasons: Dict[str, int] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.error is not None

    def record_rejection(self, reason: str) -> None:
        self.rejected += 1
        self.rejection_reasons[reason] = self.rejection_reasons.get(reason, 0) + 1

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class RefreshResult:
    """Summary returned by a single-genre refresh"""
    genre: str
    books_added: int
    total_in_genre: int
    generated_at: str

    def to_dict(self) -> Dict:
        return asdict(self)
