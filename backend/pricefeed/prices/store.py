"""
Append-only price time-series store.

Every batch is written in one transaction, so readers see either all
snapshots of a batch or none of them. Rows are never updated; retention
cleanup is the only delete path.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable, Mapping
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricefeed import cache
from pricefeed.db.models import PriceSnapshotRecord
from pricefeed.schemas.prices import PricePoint, PriceSnapshot, SymbolStatistics
from pricefeed.validation.prices import validate_price_item

logger = logging.getLogger(__name__)


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    # SQLite hands back naive datetimes; everything is written as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value.astimezone(datetime.UTC)


class PriceStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        symbols: Mapping[str, Any],
        clock: Callable[[], datetime.datetime] = utc_now,
        cache_ttl_seconds: int | None = None,
    ):
        self._session_factory = session_factory
        self._symbols = {symbol.upper() for symbol in symbols}
        self._clock = clock
        self._cache_ttl_seconds = cache_ttl_seconds

    @property
    def symbols(self) -> set[str]:
        return set(self._symbols)

    def now(self) -> datetime.datetime:
        return _as_utc(self._clock())

    def _normalize(self, symbol: str) -> str | None:
        if not isinstance(symbol, str):
            return None
        normalized = symbol.strip().upper()
        if normalized not in self._symbols:
            return None
        return normalized

    async def store_prices(
        self,
        prices: Mapping[str, Any],
        source: str,
        timestamp: datetime.datetime | None = None,
    ) -> int:
        stamped_at = _as_utc(timestamp) if timestamp is not None else self.now()
        rows: list[dict[str, Any]] = []
        for symbol, raw_price in prices.items():
            normalized, parsed = validate_price_item(symbol, raw_price, self._symbols)
            if not parsed.valid:
                logger.debug(
                    "Skipping invalid price item symbol=%s price=%r reason=%s",
                    normalized or symbol,
                    raw_price,
                    parsed.reason,
                )
                continue
            rows.append(
                {
                    "symbol": normalized,
                    "price": parsed.value,
                    "timestamp": stamped_at,
                    "source": source,
                }
            )

        if not rows:
            return 0

        async with self._session_factory() as session:
            await session.execute(insert(PriceSnapshotRecord), rows)
            await session.commit()

        logger.info(
            "Stored %d price entries at %s source=%s",
            len(rows),
            stamped_at.isoformat(),
            source,
        )
        if self._cache_ttl_seconds and timestamp is None:
            cache.set_latest_snapshots(
                [PriceSnapshot(**row) for row in rows], self._cache_ttl_seconds
            )
        return len(rows)

    async def latest_snapshot(self, symbol: str) -> PriceSnapshot | None:
        normalized = self._normalize(symbol)
        if normalized is None:
            return None
        if self._cache_ttl_seconds:
            cached = cache.get_latest_snapshot(normalized)
            if cached is not None:
                return cached

        stmt = (
            select(PriceSnapshotRecord)
            .where(PriceSnapshotRecord.symbol == normalized)
            .order_by(PriceSnapshotRecord.timestamp.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            record = (await session.execute(stmt)).scalars().first()
        if record is None:
            return None
        return self._to_snapshot(record)

    async def latest_price(self, symbol: str) -> Decimal | None:
        snapshot = await self.latest_snapshot(symbol)
        return snapshot.price if snapshot else None

    async def latest_prices(self) -> dict[str, PriceSnapshot]:
        latest: dict[str, PriceSnapshot] = {}
        for symbol in sorted(self._symbols):
            snapshot = await self.latest_snapshot(symbol)
            if snapshot is not None:
                latest[symbol] = snapshot
        return latest

    async def price_at_or_before(
        self, symbol: str, target_time: datetime.datetime
    ) -> Decimal | None:
        normalized = self._normalize(symbol)
        if normalized is None:
            return None
        stmt = (
            select(PriceSnapshotRecord.price)
            .where(
                PriceSnapshotRecord.symbol == normalized,
                PriceSnapshotRecord.timestamp <= _as_utc(target_time),
            )
            .order_by(PriceSnapshotRecord.timestamp.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalars().first()

    async def price_history(self, symbol: str, window_hours: float) -> list[PricePoint]:
        normalized = self._normalize(symbol)
        if normalized is None:
            return []
        start_time = self.now() - datetime.timedelta(hours=window_hours)
        stmt = (
            select(PriceSnapshotRecord.price, PriceSnapshotRecord.timestamp)
            .where(
                PriceSnapshotRecord.symbol == normalized,
                PriceSnapshotRecord.timestamp >= start_time,
            )
            .order_by(PriceSnapshotRecord.timestamp.asc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [PricePoint(price=price, timestamp=_as_utc(ts)) for price, ts in rows]

    async def cleanup_older_than(self, days: float) -> int:
        cutoff = self.now() - datetime.timedelta(days=days)
        async with self._session_factory() as session:
            result = await session.execute(
                delete(PriceSnapshotRecord).where(PriceSnapshotRecord.timestamp < cutoff)
            )
            await session.commit()
        deleted = int(result.rowcount or 0)
        logger.info("Cleaned up %d old price entries older than %s days", deleted, days)
        return deleted

    async def price_statistics(self) -> dict[str, SymbolStatistics]:
        count_stmt = select(PriceSnapshotRecord.symbol, func.count()).group_by(
            PriceSnapshotRecord.symbol
        )
        async with self._session_factory() as session:
            counts = dict((await session.execute(count_stmt)).all())

        stats: dict[str, SymbolStatistics] = {}
        for symbol in sorted(self._symbols):
            snapshot = await self.latest_snapshot(symbol)
            stats[symbol] = SymbolStatistics(
                symbol=symbol,
                count=int(counts.get(symbol, 0)),
                latest_price=snapshot.price if snapshot else None,
                latest_timestamp=snapshot.timestamp if snapshot else None,
                source=snapshot.source if snapshot else None,
            )
        return stats

    @staticmethod
    def _to_snapshot(record: PriceSnapshotRecord) -> PriceSnapshot:
        return PriceSnapshot(
            symbol=record.symbol,
            price=record.price,
            timestamp=_as_utc(record.timestamp),
            source=record.source,
        )
