"""
SQLite database connection and schema management.
"""

import sqlite3
from pathlib import Path
from typing import Optional


class Database:
    """SQLite database connection manager."""

    def __init__(self, db_path: str):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory DB.
        """
        self.db_path = db_path
        self._connection: Optional[sqlite3.Connection] = None
        self._connect()

    def _connect(self) -> None:
        """Establish database connection."""
        if self.db_path != ":memory:":
            # Ensure parent directory exists
            path = Path(self.db_path)
            path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = sqlite3.connect(self.db_path)
        self._connection.row_factory = sqlite3.Row

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the database connection."""
        if self._connection is None:
            raise sqlite3.ProgrammingError("Database connection is closed")
        return self._connection

    def initialize(self) -> None:
        """Create database schema if it doesn't exist."""
        cursor = self.connection.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS posts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                symbol TEXT NOT NULL,
                exchange TEXT NOT NULL DEFAULT 'US',
                company_name TEXT NOT NULL DEFAULT '',
                country TEXT,
                initial_price REAL NOT NULL,
                target_price REAL,
                stop_loss_price REAL,
                current_price REAL,
                last_price_check TIMESTAMP,
                status TEXT NOT NULL DEFAULT 'open',
                target_reached INTEGER NOT NULL DEFAULT 0,
                stop_loss_triggered INTEGER NOT NULL DEFAULT 0,
                closed INTEGER NOT NULL DEFAULT 0,
                target_reached_date TEXT,
                stop_loss_triggered_date TEXT,
                closed_date TEXT,
                price_checks TEXT NOT NULL DEFAULT '[]',
                version INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # One usage row per owner per day
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS price_check_usage (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                check_date TEXT NOT NULL,
                count INTEGER NOT NULL DEFAULT 0,
                last_check TIMESTAMP,
                UNIQUE (user_id, check_date)
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_posts_owner_closed ON posts(owner_id, closed)
        """)

        self.connection.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None
