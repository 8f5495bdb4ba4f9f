from __future__ import annotations

import json

from redis import Redis

from pricefeed.config.settings import Settings, settings
from pricefeed.schemas.prices import PriceSnapshot

_KEY_PREFIX = "pricefeed:latest:"


def connect_redis(config: Settings) -> Redis:
    return Redis.from_url(
        config.redis_url,
        socket_timeout=config.redis.socket_timeout_seconds,
        socket_connect_timeout=config.redis.socket_connect_timeout_seconds,
    )


def _get_client() -> Redis:
    return connect_redis(settings)


def latest_price_key(symbol: str) -> str:
    return f"{_KEY_PREFIX}{symbol.upper()}"


def get_latest_snapshot(symbol: str) -> PriceSnapshot | None:
    try:
        client = _get_client()
        raw = client.get(latest_price_key(symbol))
    except Exception:
        return None

    if not raw:
        return None

    try:
        payload = json.loads(raw)
        return PriceSnapshot(**payload)
    except (json.JSONDecodeError, TypeError, ValueError):
        return None


def set_latest_snapshots(snapshots: list[PriceSnapshot], ttl_seconds: int) -> None:
    try:
        client = _get_client()
        for snapshot in snapshots:
            client.setex(latest_price_key(snapshot.symbol), ttl_seconds, snapshot.model_dump_json())
    except Exception:
        return None
