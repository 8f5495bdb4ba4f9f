"""
Retry and host failover for upstream quote requests.

Per host: rate limits get a long fixed cool-down, other transient errors get
exponential backoff, and a legal block (451) moves on to the next host
straight away. The last error is raised once every host is exhausted.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from pricefeed.config.settings import RetrySettings
from pricefeed.errors import GeoBlockedError, QuoteSourceError, RateLimitedError
from pricefeed.providers.quotes import QuoteSourceAdapter, host_label
from pricefeed.schemas.prices import FetchResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


async def with_retry(
    op: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 2.0,
    rate_limit_delay: float = 30.0,
    sleep: Sleep = asyncio.sleep,
    label: str = "request",
) -> T:
    """
    Run ``op`` up to ``max_retries + 1`` times.

    Raises:
        GeoBlockedError: immediately, without retrying.
        Exception: the last error once the budget is spent.
    """
    last_error: Exception | None = None
    for attempt in range(max_retries + 1):
        try:
            return await op()
        except GeoBlockedError:
            raise
        except RateLimitedError as exc:
            last_error = exc
            if attempt == max_retries:
                break
            logger.warning(
                "Rate limited (%s), waiting %.1fs before retry %d/%d (label=%s)",
                exc.status_code,
                rate_limit_delay,
                attempt + 1,
                max_retries,
                label,
            )
            await sleep(rate_limit_delay)
        except Exception as exc:
            last_error = exc
            if attempt == max_retries:
                break
            wait_time = base_delay * (2**attempt)
            logger.warning(
                "Attempt %d/%d failed, retrying in %.1fs: %s (label=%s)",
                attempt + 1,
                max_retries + 1,
                wait_time,
                exc,
                label,
            )
            await sleep(wait_time)

    if last_error is None:
        raise QuoteSourceError(f"No attempts made for {label}")
    raise last_error


class FailoverFetcher:
    def __init__(
        self,
        adapter: QuoteSourceAdapter,
        hosts: Sequence[str],
        retry_settings: RetrySettings,
        sleep: Sleep = asyncio.sleep,
    ):
        if not hosts:
            raise ValueError("FailoverFetcher needs at least one host")
        self.adapter = adapter
        self.hosts = list(hosts)
        self.retry_settings = retry_settings
        self._sleep = sleep

    async def fetch_with_failover(self, hosts: Sequence[str] | None = None) -> FetchResult:
        candidates = list(hosts) if hosts is not None else self.hosts
        last_error: Exception | None = None
        for index, host in enumerate(candidates):
            label = host_label(host)
            try:
                result = await with_retry(
                    lambda: self.adapter.fetch_prices(host),
                    max_retries=self.retry_settings.max_retries,
                    base_delay=self.retry_settings.base_delay_seconds,
                    rate_limit_delay=self.retry_settings.rate_limit_delay_seconds,
                    sleep=self._sleep,
                    label=label,
                )
            except GeoBlockedError as exc:
                last_error = exc
                logger.warning("Host %s geo-blocked (451), advancing to next host", label)
                continue
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Host %s exhausted its retry budget (%s), %s",
                    label,
                    exc,
                    "advancing to next host" if index + 1 < len(candidates) else "no hosts left",
                )
                continue

            if index > 0:
                logger.info("Prices served by fallback host %s", label)
            return result

        if last_error is None:
            raise QuoteSourceError("No quote source hosts configured")
        logger.error("All %d quote source hosts failed: %s", len(candidates), last_error)
        raise last_error
