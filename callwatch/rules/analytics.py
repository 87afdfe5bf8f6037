"""
Derived price analytics shown alongside each checked post.
"""

from typing import Optional

from callwatch.database.models import Direction


def _pct(numerator: float, denominator: float) -> Optional[float]:
    if denominator == 0:
        return None
    return round(numerator / denominator * 100, 2)


def percent_change(initial: Optional[float], current: Optional[float]) -> Optional[float]:
    """Percent move from the entry price to the current price."""
    if initial is None or current is None:
        return None
    return _pct(current - initial, initial)


def percent_to_target(
    current: Optional[float],
    target: Optional[float],
    direction: Direction = Direction.UP,
) -> Optional[float]:
    """
    Percent the price still has to travel to reach the target.

    Zero or negative means the target is at or behind the current price.
    """
    if current is None or target is None:
        return None
    if direction == Direction.UP:
        return _pct(target - current, current)
    return _pct(current - target, current)


def percent_to_stop_loss(
    current: Optional[float],
    stop_loss: Optional[float],
    direction: Direction = Direction.UP,
) -> Optional[float]:
    """Percent cushion between the current price and the stop-loss."""
    if current is None or stop_loss is None:
        return None
    if direction == Direction.UP:
        return _pct(current - stop_loss, current)
    return _pct(stop_loss - current, current)


def progress_to_target(
    initial: Optional[float],
    current: Optional[float],
    target: Optional[float],
) -> Optional[float]:
    """
    Share of the entry-to-target distance already covered, in percent.

    Works for both directions: 100 means the target price was reached,
    negative values mean the price moved against the call.
    """
    if initial is None or current is None or target is None:
        return None
    return _pct(current - initial, target - initial)
