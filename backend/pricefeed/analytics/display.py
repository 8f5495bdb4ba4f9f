from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricefeed.config.settings import SymbolSettings
from pricefeed.db.models import PriceMarkdown
from pricefeed.schemas.prices import MarkdownConfig

logger = logging.getLogger(__name__)

_HUNDRED = Decimal("100")


def apply_markdown(price: Decimal, markdown: MarkdownConfig) -> Decimal:
    if not markdown.active or markdown.percentage <= 0:
        return price
    return price * (_HUNDRED - markdown.percentage) / _HUNDRED


class MarkdownReader:
    """Reads the externally managed markdown row."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load(self) -> MarkdownConfig:
        try:
            async with self._session_factory() as session:
                row = (
                    await session.execute(select(PriceMarkdown).order_by(PriceMarkdown.id).limit(1))
                ).scalars().first()
        except Exception as exc:
            logger.warning("Error fetching global markdown percentage: %s", exc)
            return MarkdownConfig()

        if row is None or not row.is_active:
            return MarkdownConfig()
        return MarkdownConfig(percentage=Decimal(row.markdown_percentage), active=True)


class DisplayAdjuster:
    """
    Applies the global markdown to display prices.

    With a reader attached, the markdown row is re-read by ``refresh`` and by
    ``display_prices`` once the loaded copy is older than ``refresh_seconds``.
    Stable symbols are always exempt.
    """

    def __init__(
        self,
        symbols: Mapping[str, SymbolSettings],
        markdown: MarkdownConfig | None = None,
        reader: MarkdownReader | None = None,
        refresh_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._stable = {symbol.upper() for symbol, info in symbols.items() if info.stable}
        self.markdown = markdown or MarkdownConfig()
        self._reader = reader
        self.refresh_seconds = refresh_seconds
        self._clock = clock
        self._loaded_at: float | None = None

    async def refresh(self) -> MarkdownConfig:
        if self._reader is not None:
            self.markdown = await self._reader.load()
            self._loaded_at = self._clock()
        return self.markdown

    def is_stale(self) -> bool:
        if self._reader is None:
            return False
        if self._loaded_at is None:
            return True
        return self._clock() - self._loaded_at >= self.refresh_seconds

    async def current_markdown(self) -> MarkdownConfig:
        if self.is_stale():
            await self.refresh()
        return self.markdown

    def is_exempt(self, symbol: str) -> bool:
        return symbol.strip().upper() in self._stable

    def adjust(self, price: Decimal, symbol: str) -> Decimal:
        if self.is_exempt(symbol):
            return price
        return apply_markdown(price, self.markdown)

    def adjust_prices(self, prices: Mapping[str, Decimal]) -> dict[str, Decimal]:
        adjusted = {symbol: self.adjust(price, symbol) for symbol, price in prices.items()}
        if self.markdown.active and self.markdown.percentage > 0:
            logger.debug(
                "Applied %s%% markdown to %d token prices",
                self.markdown.percentage,
                sum(1 for symbol in prices if not self.is_exempt(symbol)),
            )
        return adjusted

    async def display_prices(self, prices: Mapping[str, Decimal]) -> dict[str, Decimal]:
        await self.current_markdown()
        return self.adjust_prices(prices)
