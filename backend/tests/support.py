from __future__ import annotations

import datetime
from contextlib import asynccontextmanager
from decimal import Decimal
from pathlib import Path

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from pricefeed.config.settings import SymbolSettings
from pricefeed.db.session import init_models
from pricefeed.prices.store import PriceStore
from pricefeed.schemas.prices import FetchResult

T0 = datetime.datetime(2026, 3, 2, 12, 0, tzinfo=datetime.UTC)

TEST_SYMBOLS = {
    "BTC": SymbolSettings(quote_id="BTCUSDT"),
    "ETH": SymbolSettings(quote_id="ETHUSDT"),
    "SOL": SymbolSettings(quote_id="SOLUSDT"),
    "USDT": SymbolSettings(stable=True),
    "USDC": SymbolSettings(stable=True, pinned_price=Decimal("1.00")),
}


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateClock:
    def __init__(self, start: datetime.datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += datetime.timedelta(**kwargs)


class FakeSleeper:
    def __init__(self, clock: FakeClock | None = None) -> None:
        self.calls: list[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


class FakeRedis:
    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock or FakeClock()
        self.store: dict[str, str] = {}
        self.expires_at: dict[str, float] = {}
        self.expirations: dict[str, int] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("redis unavailable")

    def _expire(self, key: str) -> None:
        deadline = self.expires_at.get(key)
        if deadline is not None and self.clock() >= deadline:
            self.store.pop(key, None)
            self.expires_at.pop(key, None)

    def get(self, key: str) -> str | None:
        self._check()
        self._expire(key)
        return self.store.get(key)

    def setex(self, key: str, ttl: int, value: str) -> None:
        self._check()
        self.store[key] = value
        self.expirations[key] = ttl

    def set(self, key: str, value: str, nx: bool = False, px: int | None = None):
        self._check()
        self._expire(key)
        if nx and key in self.store:
            return None
        self.store[key] = value
        if px is not None:
            self.expires_at[key] = self.clock() + px / 1000
        return True

    def exists(self, key: str) -> int:
        self._check()
        self._expire(key)
        return int(key in self.store)

    def pttl(self, key: str) -> int:
        self._check()
        self._expire(key)
        if key not in self.store:
            return -2
        deadline = self.expires_at.get(key)
        if deadline is None:
            return -1
        return int((deadline - self.clock()) * 1000)

    def eval(self, script: str, numkeys: int, key: str, *args):
        self._check()
        self._expire(key)
        if self.store.get(key) != args[0]:
            return 0
        if "pexpire" in script:
            self.expires_at[key] = self.clock() + int(args[1]) / 1000
            return 1
        self.store.pop(key, None)
        self.expires_at.pop(key, None)
        return 1


class FakeFetcher:
    def __init__(self, outcomes: list[FetchResult | Exception]) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    async def fetch_with_failover(self, hosts=None) -> FetchResult:
        self.calls += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@asynccontextmanager
async def sqlite_store(tmp_path: Path, clock=None, symbols=None, cache_ttl_seconds=None):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'prices.db'}")
    await init_models(engine)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    store = PriceStore(
        session_factory,
        symbols or TEST_SYMBOLS,
        clock=clock or FakeDateClock(),
        cache_ttl_seconds=cache_ttl_seconds,
    )
    try:
        yield store, session_factory
    finally:
        await engine.dispose()
