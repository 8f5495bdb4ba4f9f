from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Collection


@dataclass(frozen=True)
class ParsedPrice:
    valid: bool
    value: Decimal | None = None
    reason: str | None = None


def _invalid(reason: str) -> ParsedPrice:
    return ParsedPrice(valid=False, reason=reason)


def parse_price(raw: Any) -> ParsedPrice:
    """Parse an upstream or caller supplied price into a positive finite Decimal."""
    if raw is None or isinstance(raw, bool):
        return _invalid("missing")
    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, (int, float, str)):
        text = str(raw).strip() if not isinstance(raw, float) else repr(raw)
        if not text:
            return _invalid("missing")
        try:
            value = Decimal(text)
        except InvalidOperation:
            return _invalid("not a number")
    else:
        return _invalid(f"unsupported type {type(raw).__name__}")

    if not value.is_finite():
        return _invalid("not finite")
    if value <= 0:
        return _invalid("not positive")
    return ParsedPrice(valid=True, value=value)


def validate_price_item(
    symbol: Any, raw_price: Any, supported: Collection[str]
) -> tuple[str | None, ParsedPrice]:
    """Validate one (symbol, price) pair against the supported symbol set."""
    if not isinstance(symbol, str) or not symbol.strip():
        return None, _invalid("missing symbol")
    normalized = symbol.strip().upper()
    if normalized not in supported:
        return normalized, _invalid("unsupported symbol")
    return normalized, parse_price(raw_price)
