"""
Sliding-window rate limiting for admin endpoints.

The limiter state lives behind the ``RateLimitStore`` protocol. The
in-memory store serves a single process and the test suite; a shared store
(Redis or the database) can implement the same two methods for multi-process
deployments. Routers receive the store through a FastAPI dependency.
"""
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional, Protocol


@dataclass(frozen=True)
class RateLimitDecision:
    limited: bool
    remaining: int
    reset_at: float  # epoch seconds when the oldest counted request leaves the window


class RateLimitStore(Protocol):
    def hit(self, key: str, now: Optional[float] = None) -> RateLimitDecision:
        ...

    def reset(self, key: str) -> None:
        ...


class InMemoryRateLimitStore:
    """Per-key request timestamps inside a sliding window, guarded by a lock."""

    def __init__(self, max_requests: int, window_seconds: float):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = 0.0
        self._lock = threading.Lock()

    def _evict(self, hits: Deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        # Drop keys with no request left in the window, at most once per window.
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        for key in list(self._hits):
            hits = self._hits[key]
            self._evict(hits, now)
            if not hits:
                del self._hits[key]

    def hit(self, key: str, now: Optional[float] = None) -> RateLimitDecision:
        now = time.time() if now is None else now
        with self._lock:
            self._sweep(now)
            hits = self._hits.setdefault(key, deque())
            self._evict(hits, now)
            if len(hits) >= self.max_requests:
                return RateLimitDecision(limited=True, remaining=0, reset_at=hits[0] + self.window_seconds)
            hits.append(now)
            return RateLimitDecision(
                limited=False,
                remaining=self.max_requests - len(hits),
                reset_at=hits[0] + self.window_seconds,
            )

    def reset(self, key: str) -> None:
        with self._lock:
            self._hits.pop(key, None)
