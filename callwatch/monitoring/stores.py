"""
SQLite-backed PostStore and UsageLedger.
"""

from collections.abc import Callable
from datetime import date, datetime, timezone
from typing import Any, Optional

from callwatch.database.connection import Database
from callwatch.database.models import Post
from callwatch.database.repository import PostRepository, UsageRepository
from callwatch.exceptions import QuotaExceeded


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class SqlitePostStore:
    """PostStore over the local posts table."""

    def __init__(self, db: Database):
        self.repo = PostRepository(db)

    async def list_open_posts(self, owner_id: str) -> list[Post]:
        return self.repo.list_open_posts(owner_id)

    async def count_closed(self, owner_id: str) -> int:
        return self.repo.count_closed(owner_id)

    async def get_post(self, post_id: int) -> Optional[Post]:
        return self.repo.get_by_id(post_id)

    async def conditional_update(
        self, post_id: int, expected_version: int, patch: dict[str, Any]
    ) -> int:
        return self.repo.conditional_update(post_id, expected_version, patch)


class SqliteUsageLedger:
    """
    Daily price check quota.

    The period is the current UTC date, so rollover happens when the date
    key changes; nothing here resets counters.
    """

    def __init__(
        self,
        db: Database,
        daily_limit: int = 100,
        today: Callable[[], date] = utc_today,
    ):
        """
        Initialize the ledger.

        Args:
            db: Database instance
            daily_limit: Batches an owner may run per day
            today: Source of the current period key
        """
        self.repo = UsageRepository(db)
        self.daily_limit = daily_limit
        self.today = today

    def used(self, owner_id: str) -> int:
        return self.repo.get_count(owner_id, self.today())

    async def remaining(self, owner_id: str) -> int:
        return max(self.daily_limit - self.used(owner_id), 0)

    async def consume(self, owner_id: str) -> None:
        if not self.repo.consume(owner_id, self.today(), self.daily_limit):
            raise QuotaExceeded(owner_id, self.daily_limit)
