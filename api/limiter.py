"""
api/limiter.py -- Rate limiting for the Markpost API.

Three mechanisms, each at a different scope:

  limiter (slowapi)   -- per-route limits declared with @limiter.limit().
                         Used on POST /api/auth/login against password guessing.
                         A single shared instance, so every route shares one
                         in-memory counter store.

  TokenBucket         -- one global bucket in front of every route except
                         /health. Refills at API_RATE_LIMIT/60 tokens per
                         second up to a burst of API_RATE_LIMIT. Never queues:
                         an empty bucket is an immediate 429.

  WriteRateLimiter    -- four fixed-window counters on POST /{post_key}:
                         ip/minute, ip/day, post_key/minute, post_key/day,
                         backed by the `limits` library's MemoryStorage.

WriteRateLimiter semantics:
  Check-before-increment. All four windows are tested in that fixed order;
  only if every one has room are all four hit. A rejected request therefore
  increments nothing, including the window that rejected it.

  Counter keys carry the dimension and the window (limits builds them from the
  item granularity plus our identifiers), so an IP and a post key with the
  same text never share a counter.

  Test-then-hit must be atomic per key. Locks are striped: each key hashes to
  one of _LOCK_STRIPES locks, and a request takes the stripes for its IP and
  its post key in ascending index order (no deadlock, no global lock, and no
  per-key lock table that grows without bound).

  Backend faults (anything other than "limit exceeded") follow fail_open:
  True logs at ERROR and lets the request through; False raises
  RateLimitUnavailable, which the API maps to 503.

All state is in process memory: restarts reset every counter, and multiple
instances do not share limits.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable

from fastapi import Request
from limits import RateLimitItem, RateLimitItemPerDay, RateLimitItemPerMinute
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger("markpost.ratelimit")

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

LOGIN_RATE_LIMIT = "10/minute"

_LOCK_STRIPES = 64


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class RateLimitRejected(Exception):
    """A request exceeded one of the write windows.

    dimension is for logs only; the HTTP response never names it.
    """

    def __init__(self, dimension: str, retry_after: int = 60) -> None:
        super().__init__(f"rate limit exceeded: {dimension}")
        self.dimension = dimension
        self.retry_after = retry_after


class RateLimitUnavailable(Exception):
    """The limiter backend failed and fail-closed mode is active."""


# ---------------------------------------------------------------------------
# Global token bucket
# ---------------------------------------------------------------------------


class TokenBucket:
    """A single shared token bucket.

    slowapi's Limiter(application_limits=...) would give a shared fixed
    window instead. The bucket admits a burst of per_minute requests and then
    refills at per_minute / 60 tokens per second, so there is no window edge
    where two full bursts land back to back.

    per_minute <= 0 disables the bucket: allow() then always returns True.
    clock must be monotonic and return seconds.
    """

    def __init__(self, per_minute: int, clock: Callable[[], float] = time.monotonic) -> None:
        self.capacity = float(max(per_minute, 0))
        self.rate = self.capacity / 60.0
        self._clock = clock
        self._tokens = self.capacity
        self._updated = clock()
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.capacity > 0

    def allow(self) -> bool:
        """Take one token if available. Never blocks waiting for a refill."""
        if not self.enabled:
            return True
        with self._lock:
            now = self._clock()
            elapsed = max(now - self._updated, 0.0)
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
            self._updated = now
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False


# ---------------------------------------------------------------------------
# Write-endpoint fixed windows
# ---------------------------------------------------------------------------


def mask_key(post_key: str) -> str:
    """Return a log-safe prefix of a post key."""
    return f"{post_key[:4]}..." if len(post_key) > 4 else "***"


class WriteRateLimiter:
    """Four fixed-window counters guarding POST /{post_key}.

    Usage:
        write_limiter = WriteRateLimiter.from_settings(settings)
        write_limiter.check("203.0.113.7", post_key)   # raises RateLimitRejected
    """

    def __init__(
        self,
        ip_per_minute: RateLimitItem,
        ip_per_day: RateLimitItem,
        post_key_per_minute: RateLimitItem,
        post_key_per_day: RateLimitItem,
        fail_open: bool = True,
        storage: Storage | None = None,
    ) -> None:
        self.storage = storage if storage is not None else MemoryStorage()
        self.strategy = FixedWindowRateLimiter(self.storage)
        self.fail_open = fail_open
        # (dimension label, item, identifier namespace) in check order
        self._windows = [
            ("ip_minute", ip_per_minute, "ip"),
            ("ip_day", ip_per_day, "ip"),
            ("post_key_minute", post_key_per_minute, "post_key"),
            ("post_key_day", post_key_per_day, "post_key"),
        ]
        self._locks = [threading.Lock() for _ in range(_LOCK_STRIPES)]

    @classmethod
    def from_settings(cls, settings) -> WriteRateLimiter:
        return cls(
            RateLimitItemPerMinute(settings.rate_limit_ip_per_minute),
            RateLimitItemPerDay(settings.rate_limit_ip_per_day),
            RateLimitItemPerMinute(settings.rate_limit_post_key_per_minute),
            RateLimitItemPerDay(settings.rate_limit_post_key_per_day),
            fail_open=settings.rate_limit_fail_open,
        )

    def _stripes(self, ip: str, post_key: str) -> list[threading.Lock]:
        indices = sorted({hash(("ip", ip)) % _LOCK_STRIPES, hash(("post_key", post_key)) % _LOCK_STRIPES})
        return [self._locks[i] for i in indices]

    def check(self, ip: str, post_key: str) -> None:
        """Admit one write from ip with post_key, or raise.

        Raises:
            RateLimitRejected: a window is exhausted. Nothing was counted.
            RateLimitUnavailable: the backend failed and fail_open is False.
        """
        values = {"ip": ip, "post_key": post_key}
        locks = self._stripes(ip, post_key)
        for lock in locks:
            lock.acquire()
        try:
            for dimension, item, namespace in self._windows:
                if not self.strategy.test(item, namespace, values[namespace]):
                    raise RateLimitRejected(dimension, self._retry_after(item, namespace, values[namespace]))
            for _dimension, item, namespace in self._windows:
                self.strategy.hit(item, namespace, values[namespace])
        except RateLimitRejected as exc:
            logger.warning(
                "Write rejected: dimension=%s ip=%s post_key=%s reason=window exhausted",
                exc.dimension,
                ip,
                mask_key(post_key),
            )
            raise
        except Exception as exc:  # noqa: BLE001 -- any backend fault
            if self.fail_open:
                logger.error("Rate limiter backend failure, allowing request (fail-open): %s", exc)
                return
            logger.error("Rate limiter backend failure, refusing request (fail-closed): %s", exc)
            raise RateLimitUnavailable(str(exc)) from exc
        finally:
            for lock in reversed(locks):
                lock.release()

    def _retry_after(self, item: RateLimitItem, *identifiers: str) -> int:
        reset_time = self.strategy.get_window_stats(item, *identifiers).reset_time
        return max(1, math.ceil(reset_time - time.time()))


def enforce_write_limits(post_key: str, request: Request) -> None:
    """FastAPI dependency: run the write windows for POST /{post_key}.

    Declared before require_post_key on the route, so unknown keys are
    throttled too and cannot be enumerated at full speed.
    """
    request.app.state.write_limiter.check(get_remote_address(request), post_key)
