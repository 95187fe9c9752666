"""
Rate limiting middleware -- prevents abuse from any single client.

Token bucket per client address: each bucket holds up to `points` tokens and
refills continuously at points / window_seconds per second. Every request
costs one token; an empty bucket gets 429 rate_limit_exceeded with a
Retry-After header (seconds until one token is available).

Buckets live in process memory. For multiple replicas, replace with a shared
store.

Configuration (via GatewaySettings):
  RATE_LIMIT_POINTS=100           bucket capacity
  RATE_LIMIT_WINDOW_SECONDS=60    time to refill an empty bucket
  TRUST_FORWARDED_FOR=false       key on the first X-Forwarded-For hop
"""

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ...errors import RateLimitExceeded
from ..errors import error_response

logger = logging.getLogger(__name__)

DEFAULT_POINTS = 100
DEFAULT_WINDOW_SECONDS = 60.0
PRUNE_INTERVAL_SECONDS = 300.0


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: float = 0.0


@dataclass
class _Bucket:
    tokens: float
    updated_at: float


class TokenBucketLimiter:
    """
    Thread-safe token buckets keyed by client id.

    The clock is injectable so tests can advance time without sleeping.
    check() never awaits; it holds the lock only for arithmetic.
    """

    def __init__(
        self,
        points: int = DEFAULT_POINTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if points < 1 or window_seconds <= 0:
            raise ValueError("points must be >= 1 and window_seconds > 0")
        self.points = points
        self.window_seconds = window_seconds
        self._refill_rate = points / window_seconds
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()
        self._last_prune = clock()

    def check(self, client_id: str, cost: float = 1.0) -> RateLimitDecision:
        """Consume cost tokens for client_id if available."""
        now = self._clock()
        with self._lock:
            self._maybe_prune(now)
            bucket = self._buckets.get(client_id)
            if bucket is None:
                bucket = _Bucket(tokens=float(self.points), updated_at=now)
                self._buckets[client_id] = bucket
            else:
                elapsed = max(0.0, now - bucket.updated_at)
                bucket.tokens = min(self.points, bucket.tokens + elapsed * self._refill_rate)
                bucket.updated_at = now

            if bucket.tokens >= cost:
                bucket.tokens -= cost
                return RateLimitDecision(allowed=True, remaining=int(bucket.tokens))

            retry_after = (cost - bucket.tokens) / self._refill_rate
            return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after)

    @property
    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._buckets)

    def _maybe_prune(self, now: float) -> None:
        # Caller holds the lock. A bucket idle for a full window is full again,
        # so dropping it is indistinguishable from keeping it.
        if now - self._last_prune < PRUNE_INTERVAL_SECONDS:
            return
        self._last_prune = now
        stale = [
            key
            for key, bucket in self._buckets.items()
            if now - bucket.updated_at >= self.window_seconds
        ]
        for key in stale:
            del self._buckets[key]
        if stale:
            logger.debug(f"[RateLimit] Pruned {len(stale)} idle bucket(s)")


def client_key(request: Request, trust_forwarded_for: bool = False) -> str:
    """Network address of the caller (first X-Forwarded-For hop if trusted)."""
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rejects requests from clients whose bucket is empty."""

    def __init__(self, app, limiter: TokenBucketLimiter, trust_forwarded_for: bool = False):
        super().__init__(app)
        self.limiter = limiter
        self.trust_forwarded_for = trust_forwarded_for

    async def dispatch(self, request: Request, call_next):
        client_id = client_key(request, self.trust_forwarded_for)
        decision = self.limiter.check(client_id)
        if not decision.allowed:
            logger.warning(
                f"[RateLimit] Client {client_id} exceeded "
                f"{self.limiter.points}/{self.limiter.window_seconds:g}s"
            )
            retry_after = max(1, math.ceil(decision.retry_after))
            return error_response(
                RateLimitExceeded(retry_after=retry_after),
                headers={"Retry-After": str(retry_after)},
            )
        return await call_next(request)
