from __future__ import annotations

import asyncio

from pricefeed.container import get_container
from pricefeed.observability.logging import setup_logging
from pricefeed.schemas.jobs import IngestionResult


async def _run_ingestion() -> IngestionResult:
    container = get_container()
    try:
        return await container.controller.run_ingestion_cycle()
    finally:
        await container.engine.dispose()


async def _run_cleanup(days: int | None) -> int:
    container = get_container()
    try:
        return await container.job.cleanup_old_prices(
            days if days is not None else container.settings.job.retention_days
        )
    finally:
        await container.engine.dispose()


def _configure_logging() -> None:
    config = get_container().settings.logging
    setup_logging(config.level, config.json_format)


def run_price_ingestion() -> IngestionResult:
    _configure_logging()
    return asyncio.run(_run_ingestion())


def run_price_cleanup(days: int | None = None) -> int:
    _configure_logging()
    return asyncio.run(_run_cleanup(days))
