"""
Batch result summary.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from callwatch.rules.engine import PostResult


@dataclass
class BatchResult:
    """Outcome of one price check batch. Not persisted."""

    owner_id: str
    results: list[PostResult] = field(default_factory=list)
    closed_posts_skipped: int = 0
    cancelled: bool = False
    quota_consumed: bool = False
    remaining_checks: Optional[int] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def checked_posts(self) -> int:
        return len(self.results)

    @property
    def updated_posts(self) -> int:
        return sum(1 for r in self.results if r.updated and not r.skipped)

    @property
    def skipped_posts(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @property
    def errors(self) -> list[PostResult]:
        """Results annotated with a per-post error."""
        return [r for r in self.results if r.error]

    @property
    def changed(self) -> list[PostResult]:
        """Results whose lifecycle flags changed in this batch."""
        return [r for r in self.results if r.has_flag_change and not r.skipped]

    def summary(self) -> dict:
        """Aggregate counts for display."""
        return {
            "checked_posts": self.checked_posts,
            "updated_posts": self.updated_posts,
            "skipped_posts": self.skipped_posts,
            "closed_posts_skipped": self.closed_posts_skipped,
            "errors": len(self.errors),
            "cancelled": self.cancelled,
            "remaining_checks": self.remaining_checks,
        }
