"""
Application wiring and caller-facing operations.
"""

import logging
from typing import Iterable, Optional

from callwatch.config import AppConfig
from callwatch.data.cache import QuoteCache
from callwatch.data.fetcher import YFinancePriceSource
from callwatch.database.connection import Database
from callwatch.exceptions import EmptySelection
from callwatch.monitoring.locks import CancellationToken, OwnerLocks
from callwatch.monitoring.results import BatchResult
from callwatch.monitoring.runner import BatchRunner
from callwatch.monitoring.stores import SqlitePostStore, SqliteUsageLedger
from callwatch.notifiers.base import (
    DispatcherFactory,
    NotificationDispatcher,
    NotificationPayload,
    NotificationResult,
)
from callwatch.notifiers.selector import NotificationSelection, NotificationSelector
from callwatch.rules.engine import PriceEvaluator

logger = logging.getLogger(__name__)


class CallWatchApp:
    """Main CallWatch application."""

    def __init__(
        self,
        runner: BatchRunner,
        selector: Optional[NotificationSelector] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        """
        Initialize CallWatch app.

        Args:
            runner: Batch runner wired to storage and prices
            selector: Broadcast selector
            dispatcher: Broadcast transport, None disables dispatch
        """
        self.runner = runner
        self.selector = selector or NotificationSelector()
        self.dispatcher = dispatcher

    @classmethod
    def from_config(cls, config: AppConfig, db: Database) -> "CallWatchApp":
        """Build the app and its collaborators from configuration."""
        cache = QuoteCache(ttl_seconds=config.price_source.cache_ttl_seconds)
        prices = YFinancePriceSource(
            cache=cache,
            lookback_days=config.price_source.lookback_days,
            max_retries=config.advanced.max_retries,
            retry_delay=config.advanced.retry_delay_seconds,
        )
        runner = BatchRunner(
            store=SqlitePostStore(db),
            prices=prices,
            ledger=SqliteUsageLedger(db, daily_limit=config.usage.daily_limit),
            evaluator=PriceEvaluator(
                close_on_resolution=config.batch.close_on_resolution
            ),
            locks=OwnerLocks(timeout_seconds=config.batch.lock_timeout_seconds),
            max_concurrency=config.price_source.max_concurrency,
            max_persist_retries=config.batch.max_persist_retries,
        )

        dispatcher = None
        if config.telegram.bot_token:
            dispatcher = DispatcherFactory.create({
                "type": "telegram",
                "bot_token": config.telegram.bot_token,
                "recipients": config.telegram.recipients,
                "parse_mode": config.telegram.parse_mode,
                "sender_name": config.telegram.sender_name,
            })

        return cls(runner=runner, dispatcher=dispatcher)

    async def run_batch(
        self,
        owner_id: str,
        token: Optional[CancellationToken] = None,
    ) -> BatchResult:
        """Run a price check batch. Raises QuotaExceeded or AlreadyRunning."""
        return await self.runner.run(owner_id, token)

    def cancel_batch(self, owner_id: str) -> bool:
        """Cancel the owner's running batch, if any."""
        return self.runner.cancel(owner_id)

    def select_for_notification(
        self,
        result: BatchResult,
        include: Iterable[int] = (),
        exclude: Iterable[int] = (),
    ) -> NotificationSelection:
        """Default selection of changed posts, adjusted by caller overrides."""
        selection = self.selector.select(result)
        return self.selector.apply_overrides(selection, include=include, exclude=exclude)

    def dispatch(self, payload: NotificationPayload) -> NotificationResult:
        """
        Send a broadcast.

        Raises:
            EmptySelection: If the payload selects no posts
        """
        if not payload.selected_post_ids:
            raise EmptySelection("Select at least one post to broadcast")
        if self.dispatcher is None:
            return NotificationResult(
                success=False, channel="none", error="No dispatcher configured"
            )
        result = self.dispatcher.send(payload)
        if result.success:
            logger.info(
                f"Broadcast '{payload.title}' sent for {len(payload.selected_post_ids)} posts"
            )
        else:
            logger.error(f"Broadcast '{payload.title}' failed: {result.error}")
        return result
