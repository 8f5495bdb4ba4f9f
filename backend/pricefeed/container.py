from __future__ import annotations

import functools
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from pricefeed.analytics.changes import ChangeCalculator
from pricefeed.analytics.display import DisplayAdjuster, MarkdownReader
from pricefeed.cache import connect_redis
from pricefeed.config.settings import Settings, settings as default_settings
from pricefeed.jobs.controller import PriceJobController
from pricefeed.jobs.lock import ExclusivityLock, JobLock, RedisJobLock
from pricefeed.jobs.price_ingestion import PriceIngestionJob
from pricefeed.prices.store import PriceStore
from pricefeed.providers.failover import FailoverFetcher
from pricefeed.providers.governor import RateGovernor
from pricefeed.providers.quotes import QuoteSourceAdapter


@dataclass
class Container:
    settings: Settings
    engine: AsyncEngine
    governor: RateGovernor
    adapter: QuoteSourceAdapter
    fetcher: FailoverFetcher
    lock: ExclusivityLock
    store: PriceStore
    changes: ChangeCalculator
    display: DisplayAdjuster
    job: PriceIngestionJob
    controller: PriceJobController


def build_lock(config: Settings) -> ExclusivityLock:
    if config.job.lock_backend == "redis":
        return RedisJobLock(
            connect_redis(config),
            key=config.job.lock_key,
            ttl_seconds=config.job.lock_ttl_seconds,
        )
    return JobLock(ttl_seconds=config.job.lock_ttl_seconds)


def build_container(
    config: Settings,
    engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
) -> Container:
    governor = RateGovernor(config.quote_source.min_request_interval_seconds)
    adapter = QuoteSourceAdapter(config.symbols, config.quote_source, governor)
    fetcher = FailoverFetcher(adapter, config.quote_source.hosts, config.retry)
    lock = build_lock(config)
    store = PriceStore(
        session_factory,
        config.symbols,
        cache_ttl_seconds=config.job.latest_price_cache_ttl_seconds,
    )
    changes = ChangeCalculator(store, config.symbols)
    display = DisplayAdjuster(
        config.symbols,
        reader=MarkdownReader(session_factory),
        refresh_seconds=config.job.markdown_refresh_seconds,
    )
    job = PriceIngestionJob(lock, fetcher, store)
    controller = PriceJobController(
        job,
        changes,
        change_window_hours=config.job.change_window_hours,
        display=display,
    )
    return Container(
        settings=config,
        engine=engine,
        governor=governor,
        adapter=adapter,
        fetcher=fetcher,
        lock=lock,
        store=store,
        changes=changes,
        display=display,
        job=job,
        controller=controller,
    )


@functools.lru_cache(maxsize=1)
def get_container() -> Container:
    """Process-wide components, built once on first use."""
    from pricefeed.db.session import AsyncSessionLocal, engine

    return build_container(default_settings, engine, AsyncSessionLocal)
