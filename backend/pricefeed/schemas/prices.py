from __future__ import annotations

import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class PriceSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    price: Decimal = Field(gt=0)
    timestamp: datetime.datetime
    source: str


class PricePoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    price: Decimal
    timestamp: datetime.datetime


class FetchResult(BaseModel):
    prices: dict[str, Decimal] = Field(default_factory=dict)
    source: str
    # prices that came from the upstream itself; None when no request was made
    upstream_count: int | None = None

    @property
    def has_upstream_data(self) -> bool:
        if not self.prices:
            return False
        return self.upstream_count is None or self.upstream_count > 0


class PriceChange(BaseModel):
    symbol: str
    absolute: Decimal = Decimal("0")
    percent: Decimal = Decimal("0")
    old_price: Decimal = Decimal("0")
    new_price: Decimal = Decimal("0")
    timeframe: str
    data_available: bool = False


class SymbolStatistics(BaseModel):
    symbol: str
    count: int = 0
    latest_price: Decimal | None = None
    latest_timestamp: datetime.datetime | None = None
    source: str | None = None


class MarkdownConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    percentage: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    active: bool = False
