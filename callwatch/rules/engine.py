"""
Price evaluation engine.

Decides how a single post moves through its lifecycle given one fresh quote.
The evaluator is pure: it returns the patch to persist and a result record,
and never talks to storage or the price source.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional

from callwatch.database.models import Direction, Post, PostStatus, PriceCheck
from callwatch.data.fetcher import Quote
from . import analytics

PRICE_UNAVAILABLE = "price unavailable"

# Flags whose change makes a post worth broadcasting
LIFECYCLE_FLAGS = ("target_reached", "stop_loss_triggered", "closed")

__all__ = ["PriceEvaluator", "Evaluation", "PostResult", "PRICE_UNAVAILABLE"]


@dataclass
class PostResult:
    """What happened to one post during a batch."""

    post_id: int
    symbol: str
    company_name: str
    exchange: str
    previous_price: Optional[float]
    current_price: Optional[float]
    target_price: Optional[float]
    stop_loss_price: Optional[float]
    status: PostStatus
    target_reached: bool
    stop_loss_triggered: bool
    closed: bool
    target_reached_date: Optional[date] = None
    stop_loss_triggered_date: Optional[date] = None
    changed_flags: tuple[str, ...] = ()
    price_check_added: bool = False
    updated: bool = False
    skipped: bool = False
    error: Optional[str] = None
    percent_change: Optional[float] = None
    percent_to_target: Optional[float] = None
    percent_to_stop_loss: Optional[float] = None
    progress_to_target: Optional[float] = None

    @property
    def has_flag_change(self) -> bool:
        return bool(self.changed_flags)

    @property
    def status_label(self) -> str:
        """Human-readable status for reports. Errors take priority."""
        if self.error:
            return self.error.capitalize()
        if self.target_reached:
            return "Target Reached"
        if self.stop_loss_triggered:
            return "Stop Loss Triggered"
        if self.closed:
            return "Closed"
        return "Open"


@dataclass
class Evaluation:
    """Patch to persist for a post plus the matching result record."""

    patch: dict[str, Any] = field(default_factory=dict)
    result: Optional[PostResult] = None

    @property
    def is_noop(self) -> bool:
        return not self.patch


class PriceEvaluator:
    """Evaluates a post's thresholds against a quote."""

    def __init__(self, close_on_resolution: bool = True):
        """
        Initialize the evaluator.

        Args:
            close_on_resolution: Close the post once its target or stop-loss
                is hit, which removes it from later batches
        """
        self.close_on_resolution = close_on_resolution

    def evaluate(
        self,
        post: Post,
        quote: Optional[Quote],
        now: Optional[datetime] = None,
    ) -> Evaluation:
        """
        Decide the mutation for one post.

        Args:
            post: Stored post, must not be closed
            quote: Fresh quote, or None if the symbol could not be priced
            now: Check timestamp, defaults to the current time

        Returns:
            Evaluation with an empty patch for no-ops

        Raises:
            ValueError: If the post is closed
        """
        if post.closed:
            raise ValueError(f"Post {post.id} is closed")
        now = now or datetime.now()

        if quote is None:
            return Evaluation(result=self.describe(post, error=PRICE_UNAVAILABLE))

        latest = post.latest_check_date
        if post.has_price_check(quote.date) or (latest is not None and quote.date < latest):
            return self._evaluate_recorded(post, quote, now)

        patch: dict[str, Any] = {
            "price_checks": [*post.price_checks, self._to_price_check(quote)],
            "current_price": quote.close,
            "last_price_check": now,
        }
        patch.update(self._threshold_patch(post, quote))

        after = post.apply(patch)
        return Evaluation(
            patch=patch,
            result=self._result(post, after, price_check_added=True, updated=True),
        )

    def describe(self, post: Post, error: Optional[str] = None) -> PostResult:
        """Result describing a post as stored, with no changes applied."""
        return self._result(post, post, error=error)

    def _evaluate_recorded(self, post: Post, quote: Quote, now: datetime) -> Evaluation:
        """
        Handle a quote whose date is already in the history.

        Only the latest day's close may refresh the current price; history
        and flags stay as they are.
        """
        patch: dict[str, Any] = {}
        if quote.date == post.latest_check_date and post.current_price != quote.close:
            patch = {"current_price": quote.close, "last_price_check": now}

        after = post.apply(patch)
        return Evaluation(
            patch=patch,
            result=self._result(post, after, updated=bool(patch)),
        )

    def _threshold_patch(self, post: Post, quote: Quote) -> dict[str, Any]:
        """Check target first, then stop-loss, against the bar's range."""
        high = quote.high if quote.high is not None else quote.close
        low = quote.low if quote.low is not None else quote.close
        upward = post.direction == Direction.UP

        patch: dict[str, Any] = {}
        if self._target_hit(post, high, low, upward):
            patch = {
                "target_reached": True,
                "target_reached_date": quote.date,
                "status": PostStatus.SUCCESS,
            }
        elif self._stop_loss_hit(post, high, low, upward):
            patch = {
                "stop_loss_triggered": True,
                "stop_loss_triggered_date": quote.date,
                "status": PostStatus.LOSS,
            }

        if patch and self.close_on_resolution:
            patch["closed"] = True
            patch["closed_date"] = quote.date
        return patch

    def _target_hit(self, post: Post, high: float, low: float, upward: bool) -> bool:
        if post.target_price is None or post.target_reached or post.stop_loss_triggered:
            return False
        if upward:
            return high >= post.target_price
        return low <= post.target_price

    def _stop_loss_hit(self, post: Post, high: float, low: float, upward: bool) -> bool:
        if post.stop_loss_price is None or post.stop_loss_triggered or post.target_reached:
            return False
        if upward:
            return low <= post.stop_loss_price
        return high >= post.stop_loss_price

    def _to_price_check(self, quote: Quote) -> PriceCheck:
        return PriceCheck(
            date=quote.date,
            open=quote.open,
            high=quote.high,
            low=quote.low,
            close=quote.close,
            volume=quote.volume,
        )

    def _result(
        self,
        before: Post,
        after: Post,
        price_check_added: bool = False,
        updated: bool = False,
        error: Optional[str] = None,
    ) -> PostResult:
        """Build the per-post result describing before and after."""
        changed = tuple(
            name for name in LIFECYCLE_FLAGS
            if getattr(before, name) != getattr(after, name)
        )
        direction = after.direction
        return PostResult(
            post_id=after.id,
            symbol=after.symbol,
            company_name=after.company_name,
            exchange=after.exchange,
            previous_price=before.current_price,
            current_price=after.current_price,
            target_price=after.target_price,
            stop_loss_price=after.stop_loss_price,
            status=after.status,
            target_reached=after.target_reached,
            stop_loss_triggered=after.stop_loss_triggered,
            closed=after.closed,
            target_reached_date=after.target_reached_date,
            stop_loss_triggered_date=after.stop_loss_triggered_date,
            changed_flags=changed,
            price_check_added=price_check_added,
            updated=updated,
            error=error,
            percent_change=analytics.percent_change(after.initial_price, after.current_price),
            percent_to_target=analytics.percent_to_target(
                after.current_price, after.target_price, direction
            ),
            percent_to_stop_loss=analytics.percent_to_stop_loss(
                after.current_price, after.stop_loss_price, direction
            ),
            progress_to_target=analytics.progress_to_target(
                after.initial_price, after.current_price, after.target_price
            ),
        )
