"""
Logging setup.

Text or JSON output on stderr, with API keys and tokens masked.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

__all__ = [
    "setup_logging",
    "SensitiveDataFilter",
    "JSONFormatter",
]

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


class SensitiveDataFilter(logging.Filter):
    """Masks API keys and secrets in log messages."""

    SENSITIVE_PATTERNS = [
        (re.compile(r"(X-MBX-APIKEY['\"]?:\s*['\"]?)([a-zA-Z0-9]{16,})(['\"]?)", re.IGNORECASE), r"\1***MASKED***\3"),
        (re.compile(r"(api[_-]?key['\"]?[:=]\s*['\"]?)([a-zA-Z0-9]{16,})(['\"]?)", re.IGNORECASE), r"\1***MASKED***\3"),
        (re.compile(r"(secret['\"]?[:=]\s*['\"]?)([a-zA-Z0-9]{16,})(['\"]?)", re.IGNORECASE), r"\1***MASKED***\3"),
        (re.compile(r"(token['\"]?[:=]\s*['\"]?)([a-zA-Z0-9]{16,})(['\"]?)", re.IGNORECASE), r"\1***MASKED***\3"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        original_msg = str(record.getMessage())
        masked_msg = original_msg

        for pattern, replacement in self.SENSITIVE_PATTERNS:
            masked_msg = pattern.sub(replacement, masked_msg)

        if masked_msg != original_msg:
            record.msg = masked_msg
            record.args = ()

        return True


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder for Decimal and datetime values."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, cls=DecimalEncoder)


def setup_logging(level: str = "INFO", json_format: bool = False) -> logging.Logger:
    root = logging.getLogger()
    root.setLevel(level.upper())

    for handler in list(root.handlers):
        if getattr(handler, "_pricefeed", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler._pricefeed = True  # type: ignore[attr-defined]
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(_TEXT_FORMAT))
    handler.addFilter(SensitiveDataFilter())
    root.addHandler(handler)
    return root
