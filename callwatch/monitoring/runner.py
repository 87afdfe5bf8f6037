"""
Batch price check for one owner's open posts.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Optional

from callwatch.data.fetcher import Quote
from callwatch.database.models import Post
from callwatch.exceptions import PersistConflict, PriceUnavailable, QuotaExceeded
from callwatch.rules.engine import Evaluation, PostResult, PriceEvaluator
from .locks import CancellationToken, OwnerLocks
from .ports import PostStore, PriceSource, UsageLedger
from .results import BatchResult

logger = logging.getLogger(__name__)

PERSIST_CONFLICT = "persist conflict"
STORE_ERROR = "store error"


class BatchRunner:
    """Re-evaluates all open posts of an owner against fresh quotes."""

    def __init__(
        self,
        store: PostStore,
        prices: PriceSource,
        ledger: UsageLedger,
        evaluator: Optional[PriceEvaluator] = None,
        locks: Optional[OwnerLocks] = None,
        max_concurrency: int = 5,
        max_persist_retries: int = 1,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize the runner.

        Args:
            store: Post storage
            prices: Quote provider
            ledger: Usage quota
            evaluator: Lifecycle evaluator
            locks: Per-owner exclusion shared by every runner in the process
            max_concurrency: Quote requests in flight at once
            max_persist_retries: Re-read and retry attempts after a conflict
            clock: Timestamp source for last_price_check
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.store = store
        self.prices = prices
        self.ledger = ledger
        self.evaluator = evaluator or PriceEvaluator()
        self.locks = locks or OwnerLocks()
        self.max_concurrency = max_concurrency
        self.max_persist_retries = max_persist_retries
        self.clock = clock
        self._tokens: dict[str, CancellationToken] = {}

    async def run(
        self,
        owner_id: str,
        token: Optional[CancellationToken] = None,
    ) -> BatchResult:
        """
        Check every open post of an owner.

        Args:
            owner_id: Owner whose posts are checked
            token: Cancellation token, a fresh one is created if omitted

        Returns:
            BatchResult, tagged cancelled if the batch stopped early

        Raises:
            AlreadyRunning: If a batch for this owner is in flight
            QuotaExceeded: If the owner has no checks left
        """
        handle = self.locks.acquire(owner_id)
        token = token or CancellationToken()
        self._tokens[owner_id] = token
        try:
            return await self._run(owner_id, token)
        finally:
            # a stale-lock takeover may have installed a newer batch
            if self._tokens.get(owner_id) is token:
                del self._tokens[owner_id]
            self.locks.release(owner_id, handle)

    def cancel(self, owner_id: str) -> bool:
        """Request cancellation of the owner's running batch."""
        token = self._tokens.get(owner_id)
        if token is None:
            return False
        token.cancel()
        logger.info(f"Cancellation requested for owner {owner_id}")
        return True

    def is_running(self, owner_id: str) -> bool:
        return owner_id in self._tokens

    async def _run(self, owner_id: str, token: CancellationToken) -> BatchResult:
        remaining = await self.ledger.remaining(owner_id)
        if remaining <= 0:
            logger.info(f"Owner {owner_id} has no price checks left")
            raise QuotaExceeded(owner_id)

        result = BatchResult(owner_id=owner_id, started_at=self.clock())
        posts = await self.store.list_open_posts(owner_id)
        result.closed_posts_skipped = await self.store.count_closed(owner_id)
        logger.info(f"Checking {len(posts)} open posts for owner {owner_id}")

        semaphore = asyncio.Semaphore(self.max_concurrency)
        outcomes = await asyncio.gather(
            *(self._check_post(post, semaphore, token) for post in posts)
        )
        result.results = [outcome for outcome in outcomes if outcome is not None]
        result.cancelled = token.cancelled and len(result.results) < len(posts)

        if result.cancelled:
            logger.info(
                f"Batch for owner {owner_id} cancelled after "
                f"{result.checked_posts}/{len(posts)} posts"
            )
        else:
            try:
                await self.ledger.consume(owner_id)
                result.quota_consumed = True
                result.remaining_checks = await self.ledger.remaining(owner_id)
            except QuotaExceeded:
                logger.warning(f"Quota ran out for owner {owner_id} during the batch")
                result.remaining_checks = 0

        result.finished_at = self.clock()
        logger.info(f"Batch for owner {owner_id} done: {result.summary()}")
        return result

    async def _check_post(
        self,
        post: Post,
        semaphore: asyncio.Semaphore,
        token: CancellationToken,
    ) -> Optional[PostResult]:
        """Fetch, evaluate and persist one post. None if cancelled before start."""
        async with semaphore:
            if token.cancelled:
                return None
            quote = await self._fetch_quote(post)

        evaluation = self.evaluator.evaluate(post, quote, now=self.clock())
        if evaluation.is_noop:
            return evaluation.result
        try:
            return await self._persist(post, quote, evaluation)
        except Exception as e:
            logger.error(f"Error saving post {post.id} ({post.symbol}): {e}")
            return self._skipped(post, STORE_ERROR)

    async def _fetch_quote(self, post: Post) -> Optional[Quote]:
        try:
            return await self.prices.get_quote(post.symbol, post.exchange)
        except PriceUnavailable as e:
            logger.warning(f"No price for post {post.id}: {e}")
        except Exception as e:
            logger.error(f"Error fetching {post.symbol} for post {post.id}: {e}")
        return None

    async def _persist(
        self,
        post: Post,
        quote: Quote,
        evaluation: Evaluation,
    ) -> PostResult:
        """
        Write the patch with a version check.

        On conflict the post is re-read and re-evaluated against the same
        quote, up to max_persist_retries times, then reported as skipped.
        """
        current, attempts = post, 0
        while True:
            try:
                await self.store.conditional_update(
                    current.id, current.version, evaluation.patch
                )
                return evaluation.result
            except PersistConflict:
                if attempts >= self.max_persist_retries:
                    break
                attempts += 1

            fresh = await self.store.get_post(post.id)
            if fresh is None:
                break
            current = fresh
            if current.closed:
                break
            evaluation = self.evaluator.evaluate(current, quote, now=self.clock())
            if evaluation.is_noop:
                return evaluation.result

        logger.warning(f"Skipping post {post.id} ({post.symbol}): stored post changed")
        return self._skipped(current, PERSIST_CONFLICT)

    def _skipped(self, post: Post, error: str) -> PostResult:
        """Result for a post whose update was not saved, showing the stored state."""
        result = self.evaluator.describe(post, error=error)
        result.skipped = True
        return result
