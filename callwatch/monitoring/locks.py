"""Per-owner batch exclusion and cooperative cancellation."""
import asyncio
import logging
import time
from collections.abc import Callable
from typing import Optional

from callwatch.exceptions import AlreadyRunning

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag checked between posts of a batch."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class OwnerLocks:
    """At most one batch per owner.

    A held lock older than ``timeout_seconds`` is treated as abandoned and
    may be taken over, so a batch that died without releasing cannot lock
    its owner out forever. ``acquire`` returns a handle; only the holder of
    the current handle can release the lock.
    """

    def __init__(
        self,
        timeout_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timeout = timeout_seconds
        self._clock = clock
        self._held: dict[str, tuple[object, float]] = {}

    def acquire(self, owner_id: str) -> object:
        """Take the owner's lock or raise AlreadyRunning."""
        held = self._held.get(owner_id)
        now = self._clock()
        if held is not None:
            if now - held[1] < self._timeout:
                logger.info(f"Batch already running for owner {owner_id}")
                raise AlreadyRunning(owner_id)
            logger.warning(f"Taking over stale batch lock for owner {owner_id}")
        handle = object()
        self._held[owner_id] = (handle, now)
        return handle

    def release(self, owner_id: str, handle: Optional[object] = None) -> None:
        """Drop the lock. With a handle, only if it is still the current one."""
        held = self._held.get(owner_id)
        if held is None:
            return
        if handle is not None and held[0] is not handle:
            logger.debug(f"Lock for owner {owner_id} was taken over, not releasing")
            return
        del self._held[owner_id]

    def is_held(self, owner_id: str) -> bool:
        held = self._held.get(owner_id)
        return held is not None and self._clock() - held[1] < self._timeout
