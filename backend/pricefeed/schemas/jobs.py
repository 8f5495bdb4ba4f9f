from __future__ import annotations

import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from pricefeed.schemas.prices import PriceChange


class IngestionResult(BaseModel):
    status: Literal["success", "skipped", "failed"]
    reason: str | None = None
    prices_stored: int = 0
    symbols: list[str] = Field(default_factory=list)
    source: str | None = None
    lock_id: str | None = None
    started_at: datetime.datetime | None = None
    duration_seconds: float | None = None


class LockState(BaseModel):
    held: bool = False
    lock_id: str | None = None
    age_seconds: float | None = None


class JobStatus(BaseModel):
    enabled: bool
    locked: bool
    lock_id: str | None = None
    lock_age_seconds: float | None = None
    runs: int = 0
    failures: int = 0
    skips: int = 0
    last_run_at: datetime.datetime | None = None
    last_result: IngestionResult | None = None


class DryRunResult(BaseModel):
    prices: dict[str, Decimal] = Field(default_factory=dict)
    source: str
    changes: dict[str, PriceChange] = Field(default_factory=dict)
    tokens_with_changes: int = 0
