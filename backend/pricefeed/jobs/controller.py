from __future__ import annotations

import logging

from pricefeed.analytics.changes import ChangeCalculator
from pricefeed.analytics.display import DisplayAdjuster
from pricefeed.jobs.price_ingestion import PriceIngestionJob
from pricefeed.schemas.jobs import DryRunResult, IngestionResult, JobStatus

logger = logging.getLogger(__name__)


class PriceJobController:
    """Operational controls around the ingestion job for the admin surface."""

    def __init__(
        self,
        job: PriceIngestionJob,
        changes: ChangeCalculator,
        change_window_hours: float = 24,
        enabled: bool = True,
        display: DisplayAdjuster | None = None,
    ):
        self.job = job
        self.changes = changes
        self.display = display
        self.change_window_hours = change_window_hours
        self.enabled = enabled
        self.runs = 0
        self.failures = 0
        self.skips = 0
        self.last_result: IngestionResult | None = None

    def start(self) -> JobStatus:
        if not self.enabled:
            logger.info("Price ingestion job started")
        self.enabled = True
        return self.get_status()

    def stop(self) -> JobStatus:
        if self.enabled:
            logger.info("Price ingestion job stopped")
        self.enabled = False
        return self.get_status()

    def get_status(self) -> JobStatus:
        lock_state = self.job.lock.state()
        return JobStatus(
            enabled=self.enabled,
            locked=lock_state.held,
            lock_id=lock_state.lock_id,
            lock_age_seconds=lock_state.age_seconds,
            runs=self.runs,
            failures=self.failures,
            skips=self.skips,
            last_run_at=self.last_result.started_at if self.last_result else None,
            last_result=self.last_result,
        )

    async def run_ingestion_cycle(self) -> IngestionResult:
        if not self.enabled:
            logger.info("Price ingestion job is stopped, skipping scheduled run")
            self.skips += 1
            return IngestionResult(status="skipped", reason="Job stopped")

        try:
            result = await self.job.run_ingestion_cycle()
        except Exception as exc:
            self.runs += 1
            self.failures += 1
            self.last_result = IngestionResult(status="failed", reason=str(exc))
            raise

        if result.status == "skipped":
            self.skips += 1
            return result
        self.runs += 1
        if result.status == "failed":
            self.failures += 1
        self.last_result = result
        if result.status == "success" and self.display is not None:
            await self.display.refresh()
        return result

    async def trigger_test_run(self) -> DryRunResult:
        """Fetch current prices and compare them with stored history without writing."""
        fetched = await self.job.fetcher.fetch_with_failover()
        if not fetched.has_upstream_data:
            raise ValueError("No prices fetched for testing")

        changes = await self.changes.changes_for_symbols(
            fetched.prices.keys(),
            hours=self.change_window_hours,
            current_prices=fetched.prices,
        )
        result = DryRunResult(
            prices=fetched.prices,
            source=fetched.source,
            changes=changes,
            tokens_with_changes=sum(1 for change in changes.values() if change.data_available),
        )
        logger.info(
            "Price changes test results: %d tokens, %d with history, source=%s",
            len(result.prices),
            result.tokens_with_changes,
            result.source,
        )
        return result
