from __future__ import annotations

import asyncio
import json
import logging
import socket
from collections.abc import Mapping
from decimal import Decimal
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode, urlsplit
from urllib.request import Request, urlopen

from pricefeed.config.settings import QuoteSourceSettings, SymbolSettings
from pricefeed.errors import (
    GeoBlockedError,
    MalformedPayloadError,
    QuoteSourceError,
    RateLimitedError,
)
from pricefeed.providers.governor import RateGovernor
from pricefeed.schemas.prices import FetchResult
from pricefeed.validation.prices import parse_price

logger = logging.getLogger(__name__)

_RATE_LIMIT_CODES = {429, 418}
_GEO_BLOCK_CODE = 451


def _retry_after(exc: HTTPError) -> float | None:
    headers = exc.headers
    value = headers.get("Retry-After") if headers is not None else None
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def host_label(host: str) -> str:
    return urlsplit(host).netloc or host


class QuoteSourceAdapter:
    """Fetches current prices for the supported symbol set from one upstream host."""

    def __init__(
        self,
        symbols: Mapping[str, SymbolSettings],
        source_settings: QuoteSourceSettings,
        governor: RateGovernor,
    ):
        self.symbols = {symbol.upper(): info for symbol, info in symbols.items()}
        self.source_settings = source_settings
        self.governor = governor
        self._by_quote_id = {
            info.quote_id.upper(): symbol
            for symbol, info in self.symbols.items()
            if not info.stable and info.quote_id
        }

    @property
    def name(self) -> str:
        return self.source_settings.name

    def stable_prices(self) -> dict[str, Decimal]:
        return {
            symbol: info.pinned_price
            for symbol, info in self.symbols.items()
            if info.stable
        }

    def build_url(self, host: str) -> str:
        quote_ids = json.dumps(sorted(self._by_quote_id), separators=(",", ":"))
        path = self.source_settings.ticker_path
        return f"{host.rstrip('/')}{path}?{urlencode({'symbols': quote_ids})}"

    def _build_request(self, url: str) -> Request:
        headers = {"Accept": "application/json", "User-Agent": "pricefeed/ingestion"}
        if self.source_settings.api_key:
            headers["X-MBX-APIKEY"] = self.source_settings.api_key
        return Request(url, headers=headers)

    def _get_json(self, host: str) -> object:
        url = self.build_url(host)
        request = self._build_request(url)
        label = host_label(host)
        try:
            with urlopen(request, timeout=self.source_settings.timeout_seconds) as response:
                body = response.read().decode("utf-8")
        except HTTPError as exc:
            if exc.code in _RATE_LIMIT_CODES:
                raise RateLimitedError(
                    f"Rate limited by {label} ({exc.code})",
                    host=label,
                    status_code=exc.code,
                    retry_after=_retry_after(exc),
                ) from exc
            if exc.code == _GEO_BLOCK_CODE:
                raise GeoBlockedError(
                    f"Request blocked for legal reasons by {label}",
                    host=label,
                    status_code=exc.code,
                ) from exc
            raise QuoteSourceError(
                f"Quote request to {label} failed with status {exc.code}",
                host=label,
                status_code=exc.code,
            ) from exc
        except (URLError, TimeoutError, socket.timeout) as exc:
            raise QuoteSourceError(f"Quote request to {label} failed: {exc}", host=label) from exc

        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise MalformedPayloadError(
                f"Quote response from {label} is not valid JSON", host=label
            ) from exc

    def parse_tickers(self, payload: object, host: str) -> dict[str, Decimal]:
        label = host_label(host)
        if not isinstance(payload, list):
            raise MalformedPayloadError(
                f"Quote response from {label} is not a ticker list", host=label
            )

        prices: dict[str, Decimal] = {}
        for item in payload:
            if not isinstance(item, dict) or not item.get("symbol"):
                logger.warning("Invalid ticker item from %s - missing symbol: %r", label, item)
                continue
            quote_id = str(item["symbol"]).upper()
            symbol = self._by_quote_id.get(quote_id)
            if symbol is None:
                logger.warning("Ignoring unrequested ticker %s from %s", quote_id, label)
                continue
            parsed = parse_price(item.get("price"))
            if not parsed.valid:
                logger.warning(
                    "Invalid price from %s for %s: %r (%s)",
                    label,
                    symbol,
                    item.get("price"),
                    parsed.reason,
                )
                continue
            prices[symbol] = parsed.value
        return prices

    async def fetch_prices(self, host: str) -> FetchResult:
        prices = self.stable_prices()
        source = f"{self.name}:{host_label(host)}"
        if not self._by_quote_id:
            return FetchResult(prices=prices, source=source)

        await self.governor.acquire_slot()
        payload = await asyncio.to_thread(self._get_json, host)
        fetched = self.parse_tickers(payload, host)

        missing = sorted(set(self._by_quote_id.values()) - set(fetched))
        if missing:
            logger.warning("Some symbols missing from %s: %s", host_label(host), ", ".join(missing))
        logger.info("Fetched %d prices from %s", len(fetched), host_label(host))

        prices.update(fetched)
        return FetchResult(prices=prices, source=source, upstream_count=len(fetched))

    def check_connection(self, host: str) -> tuple[bool, int | None]:
        probe_id = next(iter(sorted(self._by_quote_id)), None)
        if probe_id is None:
            return True, None
        path = self.source_settings.ticker_path
        url = f"{host.rstrip('/')}{path}?{urlencode({'symbol': probe_id})}"
        try:
            with urlopen(self._build_request(url), timeout=10) as response:
                return response.status == 200, response.status
        except HTTPError as exc:
            return False, exc.code
        except (URLError, TimeoutError, socket.timeout):
            return False, None
