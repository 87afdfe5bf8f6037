"""
Data models for CallWatch.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


class PostStatus(str, Enum):
    """Lifecycle status of a post."""

    OPEN = "open"
    SUCCESS = "success"
    LOSS = "loss"


class Direction(str, Enum):
    """Which way the call expects the price to move."""

    UP = "up"
    DOWN = "down"


@dataclass(frozen=True)
class PriceCheck:
    """One daily OHLC snapshot recorded on a post."""

    date: date
    close: float
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    volume: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PriceCheck":
        return cls(
            date=date.fromisoformat(data["date"]),
            open=data.get("open"),
            high=data.get("high"),
            low=data.get("low"),
            close=data["close"],
            volume=data.get("volume"),
        )


@dataclass
class Post:
    """A tracked trading call."""

    owner_id: str
    symbol: str
    initial_price: float
    exchange: str = "US"
    company_name: str = ""
    country: Optional[str] = None
    target_price: Optional[float] = None
    stop_loss_price: Optional[float] = None
    current_price: Optional[float] = None
    last_price_check: Optional[datetime] = None
    status: PostStatus = PostStatus.OPEN
    target_reached: bool = False
    stop_loss_triggered: bool = False
    closed: bool = False
    target_reached_date: Optional[date] = None
    stop_loss_triggered_date: Optional[date] = None
    closed_date: Optional[date] = None
    price_checks: list[PriceCheck] = field(default_factory=list)
    version: int = 0
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    @property
    def direction(self) -> Direction:
        """
        Direction implied by the thresholds relative to the entry price.

        The target decides when present; otherwise a stop-loss above the
        entry marks a short call.
        """
        if self.target_price is not None and self.target_price != self.initial_price:
            return Direction.UP if self.target_price > self.initial_price else Direction.DOWN
        if self.stop_loss_price is not None and self.stop_loss_price > self.initial_price:
            return Direction.DOWN
        return Direction.UP

    @property
    def latest_check_date(self) -> Optional[date]:
        """Date of the newest recorded price check."""
        if not self.price_checks:
            return None
        return self.price_checks[-1].date

    def has_price_check(self, on: date) -> bool:
        """Check if a snapshot for the given date is already recorded."""
        return any(check.date == on for check in self.price_checks)

    def apply(self, patch: dict[str, Any]) -> "Post":
        """Return a copy of the post with the patch applied."""
        if not patch:
            return self
        return replace(self, **patch)
