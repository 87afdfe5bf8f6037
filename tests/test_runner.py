"""
Batch runner tests.
Tests for quota gating, partial failures, conflicts and cancellation.
"""

import asyncio
import pytest
import sqlite3
from unittest.mock import AsyncMock
from datetime import date, datetime

from callwatch.database.models import PostStatus
from callwatch.exceptions import AlreadyRunning, PriceUnavailable, QuotaExceeded
from callwatch.monitoring.locks import CancellationToken, OwnerLocks
from callwatch.monitoring.runner import PERSIST_CONFLICT, STORE_ERROR, BatchRunner
from callwatch.monitoring.stores import SqlitePostStore, SqliteUsageLedger
from callwatch.notifiers.selector import NotificationSelector
from callwatch.rules.engine import PRICE_UNAVAILABLE

TODAY = date(2024, 1, 5)


class FakePriceSource:
    """Quotes keyed by symbol; missing symbols are unavailable."""

    def __init__(self, quotes, on_call=None):
        self.quotes = quotes
        self.on_call = on_call
        self.calls = []

    async def get_quote(self, symbol, exchange=None, as_of=None):
        self.calls.append(symbol)
        if self.on_call:
            self.on_call(symbol)
        if symbol not in self.quotes:
            raise PriceUnavailable(symbol)
        return self.quotes[symbol]


@pytest.fixture
def store(db):
    return SqlitePostStore(db)


@pytest.fixture
def ledger(db):
    return SqliteUsageLedger(db, daily_limit=3, today=lambda: TODAY)


def make_runner(store, prices, ledger, **kwargs):
    return BatchRunner(
        store=store,
        prices=prices,
        ledger=ledger,
        clock=lambda: datetime(2024, 1, 5, 18, 0),
        **kwargs,
    )


class TestBatchRunner:
    """Test the batch flow end to end against SQLite."""

    @pytest.mark.asyncio
    async def test_partial_failure_is_isolated(self, post_repo, make_post, make_quote, store, ledger):
        """Should record the unpriceable post and update the others."""
        for symbol in ("AAPL", "MSFT", "NVDA"):
            post_repo.create(make_post(symbol=symbol))
        prices = FakePriceSource({
            "AAPL": make_quote(close=105, high=106, low=104, symbol="AAPL"),
            "NVDA": make_quote(close=121, high=122, low=119, symbol="NVDA"),
        })

        result = await make_runner(store, prices, ledger).run("user-1")

        assert result.checked_posts == 3
        assert result.updated_posts == 2
        errors = result.errors
        assert [r.symbol for r in errors] == ["MSFT"]
        assert errors[0].error == PRICE_UNAVAILABLE
        assert result.cancelled is False
        assert result.quota_consumed is True

        stored = {p.symbol: p for p in post_repo.list_by_owner("user-1")}
        assert stored["AAPL"].current_price == 105
        assert len(stored["AAPL"].price_checks) == 1
        assert stored["MSFT"].current_price == 100.0
        assert stored["MSFT"].price_checks == []
        assert stored["NVDA"].status == PostStatus.SUCCESS
        assert stored["NVDA"].closed is True

    @pytest.mark.asyncio
    async def test_quota_exceeded_touches_nothing(self, make_quote):
        """Should fail fast without listing posts or consuming usage."""
        store = AsyncMock()
        ledger = AsyncMock()
        ledger.remaining.return_value = 0
        prices = FakePriceSource({})

        with pytest.raises(QuotaExceeded):
            await make_runner(store, prices, ledger).run("user-1")

        store.list_open_posts.assert_not_called()
        ledger.consume.assert_not_called()

    @pytest.mark.asyncio
    async def test_consumes_one_unit_per_batch(self, post_repo, make_post, make_quote, store, ledger):
        """Should consume one unit regardless of how many posts were checked."""
        for i in range(10):
            post_repo.create(make_post(symbol=f"S{i}"))
        prices = FakePriceSource({})
        runner = make_runner(store, prices, ledger)

        result = await runner.run("user-1")

        assert ledger.used("user-1") == 1
        assert await ledger.remaining("user-1") == 2
        assert result.remaining_checks == 2

    @pytest.mark.asyncio
    async def test_quota_runs_out_after_limit(self, store, ledger):
        """Should reject the batch once the daily limit is used."""
        runner = make_runner(store, FakePriceSource({}), ledger)
        for _ in range(3):
            await runner.run("user-1")

        with pytest.raises(QuotaExceeded):
            await runner.run("user-1")

    @pytest.mark.asyncio
    async def test_closed_posts_are_not_checked(self, post_repo, make_post, make_quote, store, ledger):
        """Should skip closed posts and count them."""
        closed = post_repo.create(make_post(symbol="MSFT"))
        post_repo.close_post(closed.id)
        post_repo.create(make_post(symbol="AAPL"))
        prices = FakePriceSource({
            "AAPL": make_quote(close=101, symbol="AAPL"),
            "MSFT": make_quote(close=500, symbol="MSFT"),
        })

        result = await make_runner(store, prices, ledger).run("user-1")

        assert prices.calls == ["AAPL"]
        assert result.closed_posts_skipped == 1
        assert post_repo.get_by_id(closed.id).current_price == 100.0

    @pytest.mark.asyncio
    async def test_rerun_same_quote_is_idempotent(self, post_repo, make_post, make_quote, store, ledger):
        """Should not add a second history entry for the same date."""
        post = post_repo.create(make_post())
        prices = FakePriceSource({"AAPL": make_quote(close=105, high=106, low=104)})
        runner = make_runner(store, prices, ledger)

        await runner.run("user-1")
        second = await runner.run("user-1")

        assert len(post_repo.get_by_id(post.id).price_checks) == 1
        assert second.updated_posts == 0

    @pytest.mark.asyncio
    async def test_conflict_is_retried_once(self, post_repo, make_post, make_quote, db, ledger):
        """Should re-read and retry when the post changed after it was read."""
        post = post_repo.create(make_post())
        store = SqlitePostStore(db)
        real_list = store.list_open_posts

        async def list_then_touch(owner_id):
            posts = await real_list(owner_id)
            post_repo.conditional_update(post.id, 0, {"company_name": "Apple"})
            return posts

        store.list_open_posts = list_then_touch
        prices = FakePriceSource({"AAPL": make_quote(close=105, high=106, low=104)})

        result = await make_runner(store, prices, ledger).run("user-1")

        stored = post_repo.get_by_id(post.id)
        assert result.results[0].skipped is False
        assert stored.version == 2
        assert stored.current_price == 105
        assert stored.company_name == "Apple"

    @pytest.mark.asyncio
    async def test_conflict_twice_is_skipped(self, make_post, make_quote, ledger):
        """Should report the stored state of a post whose update was rejected."""
        from callwatch.exceptions import PersistConflict

        post = make_post(id=1, version=0)
        store = AsyncMock()
        store.list_open_posts.return_value = [post]
        store.count_closed.return_value = 0
        store.get_post.return_value = make_post(id=1, version=1)
        store.conditional_update.side_effect = PersistConflict(1, 0)
        prices = FakePriceSource({"AAPL": make_quote(close=119, high=121, low=118)})

        result = await make_runner(store, prices, ledger).run("user-1")

        skipped = result.results[0]
        assert store.conditional_update.await_count == 2
        assert skipped.skipped is True
        assert skipped.error == PERSIST_CONFLICT
        assert skipped.target_reached is False
        assert skipped.closed is False
        assert skipped.changed_flags == ()
        assert skipped.current_price == 100.0
        assert skipped.status_label == "Persist conflict"
        assert result.updated_posts == 0
        assert result.skipped_posts == 1
        assert result.changed == []

        line = NotificationSelector().select(result).lines[0]
        assert line.status_label == "Persist conflict"

    @pytest.mark.asyncio
    async def test_conflict_with_closed_post_is_skipped(self, make_post, make_quote, ledger):
        """Should give up without retrying when the post was closed meanwhile."""
        from callwatch.exceptions import PersistConflict

        store = AsyncMock()
        store.list_open_posts.return_value = [make_post(id=1)]
        store.count_closed.return_value = 0
        store.get_post.return_value = make_post(id=1, version=1, closed=True)
        store.conditional_update.side_effect = PersistConflict(1, 0)
        prices = FakePriceSource({"AAPL": make_quote(close=105)})

        result = await make_runner(store, prices, ledger).run("user-1")

        assert store.conditional_update.await_count == 1
        assert result.results[0].skipped is True

    @pytest.mark.asyncio
    async def test_cancellation_returns_partial_result(self, post_repo, make_post, make_quote, store, ledger):
        """Should stop issuing requests and keep completed updates."""
        for symbol in ("AAPL", "MSFT", "NVDA"):
            post_repo.create(make_post(symbol=symbol))
        token = CancellationToken()
        quotes = {s: make_quote(close=105, symbol=s) for s in ("AAPL", "MSFT", "NVDA")}
        prices = FakePriceSource(quotes, on_call=lambda symbol: token.cancel())

        result = await make_runner(store, prices, ledger, max_concurrency=1).run("user-1", token)

        assert result.cancelled is True
        assert result.checked_posts == 1
        assert result.quota_consumed is False
        assert ledger.used("user-1") == 0
        assert prices.calls == ["AAPL"]
        assert post_repo.list_by_owner("user-1")[0].current_price == 105

    @pytest.mark.asyncio
    async def test_second_batch_for_owner_is_rejected(self, post_repo, make_post, make_quote, store, ledger):
        """Should reject a concurrent batch for the same owner."""
        post_repo.create(make_post())
        started = asyncio.Event()
        release = asyncio.Event()

        class SlowPrices:
            async def get_quote(self, symbol, exchange=None, as_of=None):
                started.set()
                await release.wait()
                return make_quote(close=101)

        runner = make_runner(store, SlowPrices(), ledger)
        first = asyncio.create_task(runner.run("user-1"))
        await started.wait()

        with pytest.raises(AlreadyRunning):
            await runner.run("user-1")

        release.set()
        result = await first
        assert result.checked_posts == 1
        assert runner.is_running("user-1") is False

    @pytest.mark.asyncio
    async def test_cancel_via_runner(self, post_repo, make_post, make_quote, store, ledger):
        """Should cancel the owner's in-flight batch by owner ID."""
        for symbol in ("AAPL", "MSFT"):
            post_repo.create(make_post(symbol=symbol))
        runner = make_runner(store, None, ledger, max_concurrency=1)

        class CancellingPrices:
            async def get_quote(self, symbol, exchange=None, as_of=None):
                runner.cancel("user-1")
                return make_quote(close=101, symbol=symbol)

        runner.prices = CancellingPrices()
        result = await runner.run("user-1")

        assert result.cancelled is True
        assert runner.cancel("user-1") is False

    @pytest.mark.asyncio
    async def test_store_error_is_isolated(self, make_post, make_quote, ledger):
        """Should record a failed save and keep checking the other posts."""
        store = AsyncMock()
        store.list_open_posts.return_value = [make_post(id=1), make_post(id=2, symbol="MSFT")]
        store.count_closed.return_value = 0

        async def update(post_id, expected_version, patch):
            if post_id == 1:
                raise sqlite3.OperationalError("database is locked")
            return expected_version + 1

        store.conditional_update.side_effect = update
        prices = FakePriceSource({
            "AAPL": make_quote(close=121, high=122, low=119, symbol="AAPL"),
            "MSFT": make_quote(close=105, symbol="MSFT"),
        })

        result = await make_runner(store, prices, ledger).run("user-1")

        assert result.checked_posts == 2
        assert result.updated_posts == 1
        failed = result.results[0]
        assert failed.skipped is True
        assert failed.error == STORE_ERROR
        assert failed.target_reached is False
        assert failed.current_price == 100.0
        assert result.results[1].current_price == 105
        assert result.quota_consumed is True

    @pytest.mark.asyncio
    async def test_quote_fetches_are_bounded(self, post_repo, make_post, make_quote, store, ledger):
        """Should fetch in parallel without exceeding the concurrency limit."""
        for i in range(5):
            post_repo.create(make_post(symbol=f"S{i}"))

        class CountingPrices:
            def __init__(self):
                self.in_flight = 0
                self.peak = 0

            async def get_quote(self, symbol, exchange=None, as_of=None):
                self.in_flight += 1
                self.peak = max(self.peak, self.in_flight)
                await asyncio.sleep(0.01)
                self.in_flight -= 1
                return make_quote(close=101, symbol=symbol)

        prices = CountingPrices()
        result = await make_runner(store, prices, ledger, max_concurrency=2).run("user-1")

        assert result.checked_posts == 5
        assert prices.peak == 2

    @pytest.mark.asyncio
    async def test_old_batch_keeps_taken_over_lock(self, post_repo, make_post, make_quote, store, ledger):
        """Should leave the newer batch locked when a stale batch finishes late."""
        post_repo.create(make_post())
        now = [0.0]
        locks = OwnerLocks(timeout_seconds=10, clock=lambda: now[0])

        class GatedPrices:
            def __init__(self):
                self.releases = []
                self.started = asyncio.Event()

            async def get_quote(self, symbol, exchange=None, as_of=None):
                release = asyncio.Event()
                self.releases.append(release)
                self.started.set()
                await release.wait()
                return make_quote(close=101)

        prices = GatedPrices()
        runner = make_runner(store, prices, ledger, locks=locks)
        first = asyncio.create_task(runner.run("user-1"))
        await prices.started.wait()
        prices.started.clear()

        now[0] = 11
        second = asyncio.create_task(runner.run("user-1"))
        await prices.started.wait()

        prices.releases[0].set()
        await first

        assert locks.is_held("user-1") is True
        assert runner.is_running("user-1") is True
        with pytest.raises(AlreadyRunning):
            await runner.run("user-1")
        assert runner.cancel("user-1") is True

        prices.releases[1].set()
        await second

        assert locks.is_held("user-1") is False
        assert runner.is_running("user-1") is False

    def test_rejects_zero_concurrency(self, store, ledger):
        with pytest.raises(ValueError):
            make_runner(store, FakePriceSource({}), ledger, max_concurrency=0)


class TestOwnerLocks:
    """Test per-owner exclusion."""

    def test_acquire_twice_raises(self):
        locks = OwnerLocks()
        locks.acquire("user-1")
        with pytest.raises(AlreadyRunning):
            locks.acquire("user-1")

    def test_release_allows_reacquire(self):
        locks = OwnerLocks()
        locks.acquire("user-1")
        locks.release("user-1")
        locks.acquire("user-1")

    def test_stale_lock_is_taken_over(self):
        now = [0.0]
        locks = OwnerLocks(timeout_seconds=10, clock=lambda: now[0])
        locks.acquire("user-1")

        now[0] = 11
        assert locks.is_held("user-1") is False
        locks.acquire("user-1")
        assert locks.is_held("user-1") is True

    def test_stale_holder_cannot_release_new_lock(self):
        """Should ignore a release from a batch whose lock was taken over."""
        now = [0.0]
        locks = OwnerLocks(timeout_seconds=10, clock=lambda: now[0])
        old = locks.acquire("user-1")

        now[0] = 11
        new = locks.acquire("user-1")
        locks.release("user-1", old)
        assert locks.is_held("user-1") is True

        locks.release("user-1", new)
        assert locks.is_held("user-1") is False

    def test_owners_are_independent(self):
        locks = OwnerLocks()
        locks.acquire("user-1")
        locks.acquire("user-2")
