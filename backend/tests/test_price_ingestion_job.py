import asyncio
import datetime
import json
from decimal import Decimal

import pytest

from pricefeed.config.settings import QuoteSourceSettings, RetrySettings
from pricefeed.errors import QuoteSourceError
from pricefeed.jobs.lock import JobLock
from pricefeed.jobs.price_ingestion import PriceIngestionJob
from pricefeed.providers.failover import FailoverFetcher
from pricefeed.providers.governor import RateGovernor
from pricefeed.providers.quotes import QuoteSourceAdapter
from pricefeed.schemas.prices import FetchResult
from support import T0, TEST_SYMBOLS, FakeClock, FakeDateClock, FakeFetcher, FakeSleeper, sqlite_store

FETCHED = FetchResult(
    prices={
        "BTC": Decimal("65000.5"),
        "ETH": Decimal("3200.25"),
        "SOL": Decimal("0.00001234"),
        "USDT": Decimal("1"),
    },
    source="binance:api1.binance.com",
)


class FailingStore:
    def __init__(self) -> None:
        self.calls = 0

    def now(self) -> datetime.datetime:
        return T0

    async def store_prices(self, prices, source, timestamp=None) -> int:
        self.calls += 1
        raise RuntimeError("database unavailable")


def test_successful_cycle_makes_fetched_prices_latest(tmp_path) -> None:
    async def scenario():
        async with sqlite_store(tmp_path, clock=FakeDateClock(T0)) as (store, _):
            lock = JobLock(ttl_seconds=600)
            job = PriceIngestionJob(lock, FakeFetcher([FETCHED]), store)
            result = await job.run_ingestion_cycle()
            latest = await store.latest_prices()
            return result, latest, lock.is_locked()

    result, latest, locked = asyncio.run(scenario())

    assert result.status == "success"
    assert result.prices_stored == 4
    assert result.source == "binance:api1.binance.com"
    assert result.symbols == ["BTC", "ETH", "SOL", "USDT"]
    for symbol, price in FETCHED.prices.items():
        assert latest[symbol].price == price
        assert latest[symbol].timestamp == T0
        assert latest[symbol].source == FETCHED.source
    assert locked is False


def test_cycle_skipped_while_another_run_holds_the_lock(tmp_path) -> None:
    async def scenario():
        async with sqlite_store(tmp_path) as (store, _):
            lock = JobLock(ttl_seconds=600)
            holder = lock.acquire()
            fetcher = FakeFetcher([FETCHED])
            result = await PriceIngestionJob(lock, fetcher, store).run_ingestion_cycle()
            return result, fetcher.calls, lock.state().lock_id == holder

    result, fetch_calls, still_held = asyncio.run(scenario())

    assert result.status == "skipped"
    assert result.reason == "Job already running"
    assert fetch_calls == 0
    assert still_held is True


def test_stale_lock_is_reclaimed_by_next_cycle(tmp_path) -> None:
    async def scenario():
        async with sqlite_store(tmp_path) as (store, _):
            clock = FakeClock()
            lock = JobLock(ttl_seconds=600, clock=clock)
            lock.acquire()
            clock.advance(601)
            return await PriceIngestionJob(lock, FakeFetcher([FETCHED]), store).run_ingestion_cycle()

    assert asyncio.run(scenario()).status == "success"


def test_fetch_failure_aborts_and_releases_lock(tmp_path) -> None:
    async def scenario():
        async with sqlite_store(tmp_path) as (store, _):
            lock = JobLock(ttl_seconds=600)
            fetcher = FakeFetcher([QuoteSourceError("all hosts down", status_code=503)])
            result = await PriceIngestionJob(lock, fetcher, store).run_ingestion_cycle()
            return result, lock.is_locked(), await store.latest_prices()

    result, locked, latest = asyncio.run(scenario())

    assert result.status == "failed"
    assert result.reason == "all hosts down"
    assert locked is False
    assert latest == {}


def test_empty_fetch_writes_nothing() -> None:
    store = FailingStore()
    lock = JobLock(ttl_seconds=600)
    fetcher = FakeFetcher([FetchResult(prices={}, source="binance:api.binance.com")])

    result = asyncio.run(PriceIngestionJob(lock, fetcher, store).run_ingestion_cycle())

    assert result.status == "failed"
    assert result.reason == "No prices fetched"
    assert store.calls == 0
    assert lock.is_locked() is False


def test_storage_failure_propagates_and_releases_lock() -> None:
    store = FailingStore()
    lock = JobLock(ttl_seconds=600)
    job = PriceIngestionJob(lock, FakeFetcher([FETCHED]), store)

    with pytest.raises(RuntimeError, match="database unavailable"):
        asyncio.run(job.run_ingestion_cycle())

    assert store.calls == 1
    assert lock.is_locked() is False


def test_cleanup_old_prices(tmp_path) -> None:
    async def scenario():
        async with sqlite_store(tmp_path, clock=FakeDateClock(T0)) as (store, _):
            await store.store_prices({"BTC": 1}, "seed", timestamp=T0 - datetime.timedelta(days=31))
            job = PriceIngestionJob(JobLock(ttl_seconds=600), FakeFetcher([FETCHED]), store)
            return await job.cleanup_old_prices(30), await job.cleanup_old_prices(30)

    assert asyncio.run(scenario()) == (1, 0)


class TickerResponse:
    def __init__(self, payload) -> None:
        self.body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self.body

    def __enter__(self) -> "TickerResponse":
        return self

    def __exit__(self, *exc) -> None:
        return None


def build_live_fetcher() -> FailoverFetcher:
    hosts = ["https://api.primary.test"]
    adapter = QuoteSourceAdapter(
        TEST_SYMBOLS, QuoteSourceSettings(hosts=hosts), RateGovernor(0)
    )
    return FailoverFetcher(adapter, hosts, RetrySettings(max_retries=0), sleep=FakeSleeper())


@pytest.mark.parametrize(
    "payload",
    [
        [],
        [{"symbol": "BTCUSDT", "price": "0"}, {"symbol": "ETHUSDT", "price": "abc"}],
    ],
)
def test_upstream_reply_without_prices_fails_cycle(monkeypatch, tmp_path, payload) -> None:
    monkeypatch.setattr(
        "pricefeed.providers.quotes.urlopen", lambda request, timeout: TickerResponse(payload)
    )

    async def scenario():
        async with sqlite_store(tmp_path, clock=FakeDateClock(T0)) as (store, _):
            lock = JobLock(ttl_seconds=600)
            result = await PriceIngestionJob(lock, build_live_fetcher(), store).run_ingestion_cycle()
            stats = await store.price_statistics()
            return result, stats, lock.is_locked()

    result, stats, locked = asyncio.run(scenario())

    assert result.status == "failed"
    assert result.reason == "No prices fetched"
    assert all(entry.count == 0 for entry in stats.values())
    assert locked is False


def test_partial_upstream_reply_stores_with_stable_prices(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(
        "pricefeed.providers.quotes.urlopen",
        lambda request, timeout: TickerResponse([{"symbol": "BTCUSDT", "price": "65000.5"}]),
    )

    async def scenario():
        async with sqlite_store(tmp_path, clock=FakeDateClock(T0)) as (store, _):
            job = PriceIngestionJob(JobLock(ttl_seconds=600), build_live_fetcher(), store)
            return await job.run_ingestion_cycle()

    result = asyncio.run(scenario())

    assert result.status == "success"
    assert result.symbols == ["BTC", "USDC", "USDT"]
    assert result.source == "binance:api.primary.test"
