from __future__ import annotations

import logging
import time
from collections.abc import Callable

from pricefeed.jobs.lock import ExclusivityLock
from pricefeed.prices.store import PriceStore
from pricefeed.providers.failover import FailoverFetcher
from pricefeed.schemas.jobs import IngestionResult

logger = logging.getLogger(__name__)


class PriceIngestionJob:
    def __init__(
        self,
        lock: ExclusivityLock,
        fetcher: FailoverFetcher,
        store: PriceStore,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.lock = lock
        self.fetcher = fetcher
        self.store = store
        self._timer = timer

    async def run_ingestion_cycle(self) -> IngestionResult:
        if self.lock.is_locked():
            state = self.lock.state()
            logger.warning(
                "Price ingestion job already running, skipping execution lock_id=%s lock_age=%s",
                state.lock_id,
                state.age_seconds,
            )
            return IngestionResult(status="skipped", reason="Job already running")

        lock_id = self.lock.acquire()
        if not lock_id:
            logger.error("Failed to acquire job lock")
            return IngestionResult(status="skipped", reason="Failed to acquire lock")

        started_at = self.store.now()
        started = self._timer()
        logger.info("Starting price ingestion job lock_id=%s", lock_id)
        try:
            try:
                fetched = await self.fetcher.fetch_with_failover()
            except Exception as exc:
                logger.error(
                    "Failed to fetch prices from quote source, job aborted: %s lock_id=%s",
                    exc,
                    lock_id,
                )
                return IngestionResult(
                    status="failed",
                    reason=str(exc),
                    lock_id=lock_id,
                    started_at=started_at,
                    duration_seconds=self._timer() - started,
                )

            if not fetched.has_upstream_data:
                logger.warning(
                    "No prices fetched from quote source, job aborted lock_id=%s upstream_count=%s",
                    lock_id,
                    fetched.upstream_count,
                )
                return IngestionResult(
                    status="failed",
                    reason="No prices fetched",
                    source=fetched.source,
                    lock_id=lock_id,
                    started_at=started_at,
                    duration_seconds=self._timer() - started,
                )

            symbols = sorted(fetched.prices)
            logger.info(
                "Processing %d tokens for price storage: %s lock_id=%s",
                len(symbols),
                ", ".join(symbols),
                lock_id,
            )
            try:
                stored = await self.store.store_prices(fetched.prices, fetched.source)
            except Exception:
                logger.exception("Failed to store prices lock_id=%s", lock_id)
                raise

            if stored == 0:
                logger.warning("No prices were stored lock_id=%s", lock_id)
                return IngestionResult(
                    status="failed",
                    reason="No prices were stored",
                    symbols=symbols,
                    source=fetched.source,
                    lock_id=lock_id,
                    started_at=started_at,
                    duration_seconds=self._timer() - started,
                )

            duration = self._timer() - started
            logger.info(
                "Price ingestion job completed successfully stored=%d duration=%.3fs source=%s",
                stored,
                duration,
                fetched.source,
            )
            return IngestionResult(
                status="success",
                prices_stored=stored,
                symbols=symbols,
                source=fetched.source,
                lock_id=lock_id,
                started_at=started_at,
                duration_seconds=duration,
            )
        finally:
            self.lock.release(lock_id)

    async def cleanup_old_prices(self, days: int) -> int:
        try:
            deleted = await self.store.cleanup_older_than(days)
        except Exception:
            logger.exception("Error cleaning up old prices")
            raise
        return deleted

