from __future__ import annotations

import hmac
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional


def verify_password(candidate: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison; an unset expected password rejects everything."""
    if not expected or candidate is None:
        return False
    return hmac.compare_digest(str(candidate).encode("utf-8"), expected.encode("utf-8"))


@dataclass(frozen=True)
class RateLimitStatus:
    allowed: bool
    remaining_attempts: int
    blocked_until: Optional[float] = None

    def minutes_remaining(self, now: float) -> int:
        if self.blocked_until is None:
            return 0
        return max(1, math.ceil((self.blocked_until - now) / 60.0))


CLEANUP_INTERVAL_SECONDS = 60 * 60


@dataclass
class _Entry:
    attempts: int = 0
    last_failure: float = 0.0
    blocked_until: Optional[float] = None

    def expired(self, now: float, stale_seconds: float) -> bool:
        if self.blocked_until is not None:
            return self.blocked_until <= now
        return self.last_failure + stale_seconds <= now


class FailedAttemptLimiter:
    """Blocks a client key for ``block_seconds`` after ``max_attempts`` failed logins.

    State lives in process memory, so each API worker keeps its own counts.
    Failures that never reach the limit are forgotten after ``stale_seconds``,
    and expired entries are swept at most once per ``cleanup_interval``.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        block_seconds: float = 900,
        clock: Callable[[], float] = time.time,
        *,
        stale_seconds: float = CLEANUP_INTERVAL_SECONDS,
        cleanup_interval: float = CLEANUP_INTERVAL_SECONDS,
    ):
        self.max_attempts = max_attempts
        self.block_seconds = block_seconds
        self.stale_seconds = stale_seconds
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    def now(self) -> float:
        return self._clock()

    def __len__(self) -> int:
        return len(self._entries)

    def check(self, key: str) -> RateLimitStatus:
        now = self._clock()
        with self._lock:
            self._sweep_if_due(now)
            entry = self._entries.get(key)
            if entry is None:
                return RateLimitStatus(allowed=True, remaining_attempts=self.max_attempts)
            if entry.expired(now, self.stale_seconds):
                del self._entries[key]
                return RateLimitStatus(allowed=True, remaining_attempts=self.max_attempts)
            if entry.blocked_until is not None:
                return RateLimitStatus(allowed=False, remaining_attempts=0, blocked_until=entry.blocked_until)
            return RateLimitStatus(allowed=True, remaining_attempts=max(0, self.max_attempts - entry.attempts))

    def record_failure(self, key: str) -> RateLimitStatus:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.expired(now, self.stale_seconds):
                entry = self._entries[key] = _Entry()
            entry.attempts += 1
            entry.last_failure = now
            if entry.attempts >= self.max_attempts:
                entry.blocked_until = now + self.block_seconds
        return self.check(key)

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def prune(self) -> int:
        """Drop expired blocks and stale failure counts; returns how many were removed."""
        now = self._clock()
        with self._lock:
            return self._sweep(now)

    def _sweep_if_due(self, now: float) -> None:
        if now - self._last_cleanup >= self.cleanup_interval:
            self._sweep(now)

    def _sweep(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if e.expired(now, self.stale_seconds)]
        for key in expired:
            del self._entries[key]
        self._last_cleanup = now
        return len(expired)


def client_ip_from_headers(headers: Mapping[str, str]) -> str:
    """First ``X-Forwarded-For`` hop, then ``X-Real-IP``, else loopback."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return "127.0.0.1"
