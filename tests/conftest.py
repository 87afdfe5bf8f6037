"""
Pytest configuration and shared fixtures.
"""

from datetime import date

import pytest

from callwatch.data.fetcher import Quote
from callwatch.database.connection import Database
from callwatch.database.models import Post
from callwatch.database.repository import PostRepository


@pytest.fixture
def db():
    """In-memory database with schema."""
    db = Database(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def post_repo(db):
    return PostRepository(db)


@pytest.fixture
def make_post():
    """Factory for unsaved posts with an upward call on AAPL."""

    def _make(**overrides) -> Post:
        values = {
            "owner_id": "user-1",
            "symbol": "AAPL",
            "exchange": "US",
            "company_name": "Apple Inc.",
            "initial_price": 100.0,
            "current_price": 100.0,
            "target_price": 120.0,
            "stop_loss_price": 90.0,
        }
        values.update(overrides)
        return Post(**values)

    return _make


@pytest.fixture
def make_quote():
    """Factory for daily quotes."""

    def _make(
        close: float,
        high: float = None,
        low: float = None,
        on: date = date(2024, 1, 5),
        symbol: str = "AAPL",
    ) -> Quote:
        return Quote(
            symbol=symbol,
            date=on,
            open=close,
            high=high,
            low=low,
            close=close,
            volume=1_000_000,
        )

    return _make
