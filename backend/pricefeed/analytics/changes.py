from __future__ import annotations

import datetime
from collections.abc import Iterable, Mapping
from decimal import ROUND_HALF_UP, Decimal

from pricefeed.config.settings import SymbolSettings
from pricefeed.prices.store import PriceStore
from pricefeed.schemas.prices import PriceChange

_PERCENT_QUANT = Decimal("0.01")
_PRICE_QUANT = Decimal("0.00000001")


def _quantize(value: Decimal, quant: Decimal) -> Decimal:
    return value.quantize(quant, rounding=ROUND_HALF_UP)


def compute_change(
    symbol: str,
    old_price: Decimal | None,
    new_price: Decimal | None,
    hours: float,
) -> PriceChange:
    timeframe = f"{hours:g}h"
    if new_price is None or new_price <= 0 or old_price is None or old_price <= 0:
        current = new_price if new_price is not None and new_price > 0 else Decimal("0")
        return PriceChange(
            symbol=symbol,
            old_price=current,
            new_price=current,
            timeframe=timeframe,
            data_available=False,
        )

    absolute = new_price - old_price
    percent = absolute / old_price * 100
    return PriceChange(
        symbol=symbol,
        absolute=_quantize(absolute, _PRICE_QUANT),
        percent=_quantize(percent, _PERCENT_QUANT),
        old_price=_quantize(old_price, _PRICE_QUANT),
        new_price=_quantize(new_price, _PRICE_QUANT),
        timeframe=timeframe,
        data_available=True,
    )


class ChangeCalculator:
    def __init__(self, store: PriceStore, symbols: Mapping[str, SymbolSettings]):
        self.store = store
        self.symbols = {symbol.upper(): info for symbol, info in symbols.items()}

    def _window_start(self, hours: float) -> datetime.datetime:
        return self.store.now() - datetime.timedelta(hours=hours)

    async def change_over_window(self, symbol: str, hours: float) -> PriceChange:
        normalized = symbol.strip().upper()
        new_price = await self.store.latest_price(normalized)
        return await self.change_from_price(normalized, new_price, hours)

    async def change_from_price(
        self, symbol: str, current_price: Decimal | None, hours: float
    ) -> PriceChange:
        normalized = symbol.strip().upper()
        old_price = None
        if current_price is not None:
            old_price = await self.store.price_at_or_before(normalized, self._window_start(hours))
        return compute_change(normalized, old_price, current_price, hours)

    async def changes_for_symbols(
        self,
        symbols: Iterable[str] | None = None,
        hours: float = 24,
        current_prices: Mapping[str, Decimal] | None = None,
    ) -> dict[str, PriceChange]:
        requested = [s.strip().upper() for s in symbols] if symbols is not None else list(self.symbols)
        changes: dict[str, PriceChange] = {}
        for symbol in requested:
            info = self.symbols.get(symbol)
            if info is None or info.stable:
                continue
            if current_prices is not None:
                changes[symbol] = await self.change_from_price(symbol, current_prices.get(symbol), hours)
            else:
                changes[symbol] = await self.change_over_window(symbol, hours)
        return changes
