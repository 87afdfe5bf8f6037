"""
Repository classes for CRUD operations.
"""

import json
from datetime import date, datetime
from typing import Any, Optional

from callwatch.exceptions import PersistConflict
from .connection import Database
from .models import Post, PostStatus, PriceCheck


# Columns a conditional update may touch
UPDATABLE_COLUMNS = frozenset({
    "current_price",
    "last_price_check",
    "status",
    "target_reached",
    "stop_loss_triggered",
    "closed",
    "target_reached_date",
    "stop_loss_triggered_date",
    "closed_date",
    "price_checks",
    "target_price",
    "stop_loss_price",
    "company_name",
    "country",
})


def _to_column(name: str, value: Any) -> Any:
    """Convert a model value to its column representation."""
    if value is None:
        return None
    if name == "price_checks":
        return json.dumps([check.to_dict() for check in value])
    if name == "status":
        return PostStatus(value).value
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class PostRepository:
    """CRUD operations for posts."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, post: Post) -> Post:
        """Create a new post."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO posts (
                owner_id, symbol, exchange, company_name, country,
                initial_price, target_price, stop_loss_price, current_price,
                status, target_reached, stop_loss_triggered, closed,
                target_reached_date, stop_loss_triggered_date, closed_date,
                price_checks, version
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                post.owner_id,
                post.symbol,
                post.exchange,
                post.company_name,
                post.country,
                post.initial_price,
                post.target_price,
                post.stop_loss_price,
                post.current_price if post.current_price is not None else post.initial_price,
                _to_column("status", post.status),
                _to_column("target_reached", post.target_reached),
                _to_column("stop_loss_triggered", post.stop_loss_triggered),
                _to_column("closed", post.closed),
                _to_column("target_reached_date", post.target_reached_date),
                _to_column("stop_loss_triggered_date", post.stop_loss_triggered_date),
                _to_column("closed_date", post.closed_date),
                _to_column("price_checks", post.price_checks),
                post.version,
            ),
        )
        self.db.connection.commit()
        return self.get_by_id(cursor.lastrowid)

    def get_by_id(self, post_id: int) -> Optional[Post]:
        """Get post by ID."""
        cursor = self.db.connection.cursor()
        cursor.execute("SELECT * FROM posts WHERE id = ?", (post_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_post(row)

    def list_by_owner(self, owner_id: str) -> list[Post]:
        """List all posts of an owner, closed ones included."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT * FROM posts WHERE owner_id = ? ORDER BY id",
            (owner_id,),
        )
        return [self._row_to_post(row) for row in cursor.fetchall()]

    def list_open_posts(self, owner_id: str) -> list[Post]:
        """List posts of an owner that are still subject to price checks."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT * FROM posts
            WHERE owner_id = ? AND closed = 0
            ORDER BY id
            """,
            (owner_id,),
        )
        return [self._row_to_post(row) for row in cursor.fetchall()]

    def count_closed(self, owner_id: str) -> int:
        """Count closed posts of an owner."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            "SELECT COUNT(*) FROM posts WHERE owner_id = ? AND closed = 1",
            (owner_id,),
        )
        return cursor.fetchone()[0]

    def conditional_update(
        self,
        post_id: int,
        expected_version: int,
        patch: dict[str, Any],
    ) -> int:
        """
        Apply a patch only if the stored post is still at the expected version.

        Closed posts never match, so a terminal post cannot be mutated here.

        Args:
            post_id: Post to update
            expected_version: Version the patch was computed against
            patch: Column name to new value

        Returns:
            The new version of the post

        Raises:
            PersistConflict: If the post moved on, was closed, or is missing
            ValueError: If the patch names a column that cannot be updated
        """
        unknown = set(patch) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")
        if not patch:
            return expected_version

        assignments = ", ".join(f"{name} = ?" for name in patch)
        values = [_to_column(name, value) for name, value in patch.items()]

        cursor = self.db.connection.cursor()
        cursor.execute(
            f"""
            UPDATE posts
            SET {assignments}, version = version + 1
            WHERE id = ? AND version = ? AND closed = 0
            """,
            (*values, post_id, expected_version),
        )
        self.db.connection.commit()

        if cursor.rowcount != 1:
            raise PersistConflict(post_id, expected_version)
        return expected_version + 1

    def close_post(self, post_id: int, closed_on: Optional[date] = None) -> Optional[Post]:
        """Close a post by explicit user action. Closing twice is a no-op."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            UPDATE posts
            SET closed = 1, closed_date = ?, version = version + 1
            WHERE id = ? AND closed = 0
            """,
            ((closed_on or date.today()).isoformat(), post_id),
        )
        self.db.connection.commit()
        return self.get_by_id(post_id)

    def _row_to_post(self, row) -> Post:
        """Convert database row to Post."""
        return Post(
            id=row["id"],
            owner_id=row["owner_id"],
            symbol=row["symbol"],
            exchange=row["exchange"],
            company_name=row["company_name"],
            country=row["country"],
            initial_price=row["initial_price"],
            target_price=row["target_price"],
            stop_loss_price=row["stop_loss_price"],
            current_price=row["current_price"],
            last_price_check=_parse_datetime(row["last_price_check"]),
            status=PostStatus(row["status"]),
            target_reached=bool(row["target_reached"]),
            stop_loss_triggered=bool(row["stop_loss_triggered"]),
            closed=bool(row["closed"]),
            target_reached_date=_parse_date(row["target_reached_date"]),
            stop_loss_triggered_date=_parse_date(row["stop_loss_triggered_date"]),
            closed_date=_parse_date(row["closed_date"]),
            price_checks=[
                PriceCheck.from_dict(item) for item in json.loads(row["price_checks"])
            ],
            version=row["version"],
            created_at=_parse_datetime(row["created_at"]),
        )


class UsageRepository:
    """Per-owner, per-day price check counters."""

    def __init__(self, db: Database):
        self.db = db

    def get_count(self, owner_id: str, day: date) -> int:
        """Get how many checks an owner used on a day."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT count FROM price_check_usage
            WHERE user_id = ? AND check_date = ?
            """,
            (owner_id, day.isoformat()),
        )
        row = cursor.fetchone()
        return row["count"] if row else 0

    def consume(self, owner_id: str, day: date, limit: int) -> bool:
        """
        Increment the day's counter if it is still below the limit.

        Returns:
            True if a unit was consumed, False if the limit was already reached
        """
        if limit <= 0:
            return False

        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            INSERT INTO price_check_usage (user_id, check_date, count, last_check)
            VALUES (?, ?, 1, ?)
            ON CONFLICT(user_id, check_date) DO UPDATE SET
                count = count + 1,
                last_check = excluded.last_check
            WHERE count < ?
            """,
            (owner_id, day.isoformat(), datetime.now().isoformat(), limit),
        )
        self.db.connection.commit()
        return cursor.rowcount == 1

    def get_history(self, owner_id: str, limit: int = 30) -> list[tuple[str, int]]:
        """Get recent (date, count) pairs for an owner."""
        cursor = self.db.connection.cursor()
        cursor.execute(
            """
            SELECT check_date, count FROM price_check_usage
            WHERE user_id = ?
            ORDER BY check_date DESC
            LIMIT ?
            """,
            (owner_id, limit),
        )
        return [(row["check_date"], row["count"]) for row in cursor.fetchall()]
