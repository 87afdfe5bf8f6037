"""
Yahoo Finance quote source.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Optional

import pandas as pd
import yfinance as yf

from callwatch.exceptions import PriceUnavailable
from .cache import QuoteCache
from .symbols import to_yahoo_ticker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Quote:
    """Latest daily OHLC bar for a symbol."""

    symbol: str
    date: date
    close: float
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    volume: Optional[int] = None


def _optional_float(row: Any, column: str) -> Optional[float]:
    """Read a numeric column from a bar, None if missing or NaN."""
    if column not in row.index:
        return None
    value = row[column]
    if pd.isna(value):
        return None
    return float(value)


class YFinancePriceSource:
    """Fetches daily quotes from Yahoo Finance."""

    def __init__(
        self,
        cache: Optional[QuoteCache] = None,
        lookback_days: int = 7,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        """
        Initialize the price source.

        Args:
            cache: Quote cache shared with other consumers, None to disable
            lookback_days: Calendar days of bars to request so that weekends
                and holidays still yield a last bar
            max_retries: Attempts per symbol on provider errors
            retry_delay: Seconds between attempts
        """
        self.cache = cache
        self.lookback_days = lookback_days
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def get_quote(
        self,
        symbol: str,
        exchange: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> Quote:
        """
        Fetch the latest daily bar for a symbol.

        Args:
            symbol: Post symbol (e.g. "AAPL" or "2222.SR")
            exchange: Exchange code stored on the post
            as_of: Last date to consider, defaults to today

        Returns:
            Quote for the most recent trading day

        Raises:
            PriceUnavailable: If the symbol is unknown or has no data
        """
        key = (symbol.upper(), (exchange or "").upper(), as_of)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        ticker = to_yahoo_ticker(symbol, exchange)
        quote = await asyncio.to_thread(self._fetch_quote_sync, ticker, as_of)

        if self.cache is not None:
            self.cache.set(key, quote)
        return quote

    def _fetch_quote_sync(self, ticker: str, as_of: Optional[date]) -> Quote:
        """Fetch a single quote synchronously (run in thread)."""
        end = (as_of or date.today()) + timedelta(days=1)
        start = end - timedelta(days=self.lookback_days)

        hist = None
        for attempt in range(1, self.max_retries + 1):
            try:
                hist = yf.Ticker(ticker).history(
                    start=start.isoformat(), end=end.isoformat(), interval="1d"
                )
                break
            except Exception as e:
                logger.warning(
                    f"Attempt {attempt}/{self.max_retries} failed for {ticker}: {e}"
                )
                if attempt == self.max_retries:
                    raise PriceUnavailable(ticker, str(e)) from e
                time.sleep(self.retry_delay)

        if hist is None or hist.empty or "Close" not in hist.columns:
            raise PriceUnavailable(ticker, "no price data")

        hist = hist.dropna(subset=["Close"])
        if hist.empty:
            raise PriceUnavailable(ticker, "no price data")

        timestamp = hist.index[-1]
        row = hist.iloc[-1]
        volume = _optional_float(row, "Volume")

        return Quote(
            symbol=ticker,
            date=timestamp.date() if hasattr(timestamp, "date") else timestamp,
            open=_optional_float(row, "Open"),
            high=_optional_float(row, "High"),
            low=_optional_float(row, "Low"),
            close=float(row["Close"]),
            volume=int(volume) if volume is not None else None,
        )
