"""
Job exclusivity locks.

``JobLock`` guards one process. ``RedisJobLock`` keeps the same contract for
several scheduler instances sharing one Redis; the key expires on its own
after the TTL, which is how a crashed holder gets reclaimed.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections.abc import Callable
from typing import Protocol

from redis import Redis

from pricefeed.schemas.jobs import LockState

logger = logging.getLogger(__name__)


def new_lock_id() -> str:
    return f"job-{int(time.time() * 1000)}-{secrets.token_hex(5)}"


class ExclusivityLock(Protocol):
    ttl_seconds: float

    def is_locked(self) -> bool: ...

    def acquire(self) -> str | None: ...

    def release(self, lock_id: str) -> bool: ...

    def state(self) -> LockState: ...


class JobLock:
    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._guard = threading.Lock()
        self._held = False
        self._acquired_at: float | None = None
        self._lock_id: str | None = None

    def _reset(self) -> None:
        self._held = False
        self._acquired_at = None
        self._lock_id = None

    def _check_expiry(self) -> bool:
        if not self._held:
            return False
        age = self._clock() - (self._acquired_at or 0.0)
        if age > self.ttl_seconds:
            logger.warning(
                "Job lock expired, releasing lock_id=%s lock_age=%.1fs ttl=%.1fs",
                self._lock_id,
                age,
                self.ttl_seconds,
            )
            self._reset()
            return False
        return True

    def is_locked(self) -> bool:
        with self._guard:
            return self._check_expiry()

    def acquire(self) -> str | None:
        with self._guard:
            if self._check_expiry():
                return None
            self._held = True
            self._acquired_at = self._clock()
            self._lock_id = new_lock_id()
            logger.info("Job lock acquired lock_id=%s", self._lock_id)
            return self._lock_id

    def release(self, lock_id: str) -> bool:
        with self._guard:
            if not self._held or self._lock_id != lock_id:
                logger.warning(
                    "Attempted to release lock with wrong ID provided_id=%s current_id=%s",
                    lock_id,
                    self._lock_id,
                )
                return False
            self._reset()
            logger.info("Job lock released lock_id=%s", lock_id)
            return True

    def state(self) -> LockState:
        with self._guard:
            if not self._check_expiry():
                return LockState()
            return LockState(
                held=True,
                lock_id=self._lock_id,
                age_seconds=self._clock() - (self._acquired_at or 0.0),
            )


_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
  return redis.call("del", KEYS[1])
else
  return 0
end
"""

_EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
  return redis.call("pexpire", KEYS[1], ARGV[2])
else
  return 0
end
"""


def _decode(value: bytes | str | None) -> str | None:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


class RedisJobLock:
    def __init__(self, client: Redis, key: str, ttl_seconds: float):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.client = client
        self.key = key
        self.ttl_seconds = ttl_seconds

    @property
    def _ttl_ms(self) -> int:
        return int(self.ttl_seconds * 1000)

    def is_locked(self) -> bool:
        try:
            return bool(self.client.exists(self.key))
        except Exception:
            logger.error("Error checking lock %s", self.key, exc_info=True)
            return True

    def acquire(self) -> str | None:
        lock_id = new_lock_id()
        try:
            acquired = self.client.set(self.key, lock_id, nx=True, px=self._ttl_ms)
        except Exception:
            logger.error("Error acquiring lock %s", self.key, exc_info=True)
            return None
        if not acquired:
            logger.debug("Lock already held: %s", self.key)
            return None
        logger.info("Job lock acquired key=%s lock_id=%s", self.key, lock_id)
        return lock_id

    def release(self, lock_id: str) -> bool:
        try:
            result = self.client.eval(_RELEASE_SCRIPT, 1, self.key, lock_id)
        except Exception:
            logger.error("Error releasing lock %s", self.key, exc_info=True)
            return False
        if result == 1:
            logger.info("Job lock released key=%s lock_id=%s", self.key, lock_id)
            return True
        logger.warning(
            "Lock %s already expired or held by another process (lock_id=%s)",
            self.key,
            lock_id,
        )
        return False

    def extend(self, lock_id: str, additional_seconds: float) -> bool:
        try:
            result = self.client.eval(
                _EXTEND_SCRIPT, 1, self.key, lock_id, int(additional_seconds * 1000)
            )
        except Exception:
            logger.error("Error extending lock %s", self.key, exc_info=True)
            return False
        if result == 1:
            return True
        logger.warning("Cannot extend lock %s - not owner", self.key)
        return False

    def state(self) -> LockState:
        try:
            holder = _decode(self.client.get(self.key))
            remaining_ms = self.client.pttl(self.key) if holder else None
        except Exception:
            logger.error("Error reading lock %s", self.key, exc_info=True)
            return LockState()
        if holder is None:
            return LockState()
        age = None
        if remaining_ms is not None and remaining_ms >= 0:
            age = max(0.0, self.ttl_seconds - remaining_ms / 1000)
        return LockState(held=True, lock_id=holder, age_seconds=age)
