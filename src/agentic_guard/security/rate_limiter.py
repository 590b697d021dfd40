"""Rate limiting for agent commands.

Two independent mechanisms, both must pass:
- a token bucket per agent (capacity + burst, refilled at a fixed rate)
- sliding per-minute and per-hour windows per session

Buckets are refilled lazily on every check and by ``refill_all``, which
the service runs once a second. ``prune_idle`` drops state for agents
and sessions that have been quiet for an hour.
"""

import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from agentic_guard.concurrency import KeyedLocks
from agentic_guard.logging import Loggers
from agentic_guard.security.models import AgentContext, RateLimitResult
from agentic_guard.security.policy import RateLimitConfig

logger = Loggers.ratelimit()

MINUTE = 60.0
HOUR = 3600.0


@dataclass
class TokenBucket:
    """Token bucket for one agent."""

    capacity: int
    refill_rate: float  # Tokens per second
    burst: int
    tokens: float
    last_refill: float
    last_used: float

    @property
    def ceiling(self) -> float:
        return float(self.capacity + self.burst)

    def refill(self, now: float) -> None:
        elapsed = now - self.last_refill
        if elapsed <= 0:
            return
        self.tokens = min(self.ceiling, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def try_consume(self) -> bool:
        if self.tokens >= 1:
            self.tokens -= 1
            return True
        return False

    def retry_after(self) -> int:
        """Whole seconds until one token is available (at least 1)."""
        return max(1, math.ceil((1 - self.tokens) / self.refill_rate))


@dataclass
class SlidingWindow:
    """Request timestamps for one session."""

    minute: deque = field(default_factory=deque)
    hour: deque = field(default_factory=deque)
    last_used: float = 0.0

    def prune(self, now: float) -> None:
        while self.minute and now - self.minute[0] >= MINUTE:
            self.minute.popleft()
        while self.hour and now - self.hour[0] >= HOUR:
            self.hour.popleft()

    def record(self, now: float) -> None:
        self.minute.append(now)
        self.hour.append(now)
        self.last_used = now


class RateLimiter:
    """Per-agent token buckets and per-session sliding windows.

    Example:
        limiter = RateLimiter(RateLimitConfig(capacity=100, refill_rate=10))
        result = limiter.check_and_consume(context)
        if not result.allowed:
            wait(result.retry_after)
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._windows: dict[str, SlidingWindow] = {}
        self._registry_lock = threading.Lock()
        self._bucket_locks = KeyedLocks()
        self._window_locks = KeyedLocks()

    def update_config(self, config: RateLimitConfig) -> None:
        """Apply new limits to existing and future buckets."""
        self.config = config
        with self._registry_lock:
            items = list(self._buckets.items())
        for agent_id, bucket in items:
            with self._bucket_locks.hold(agent_id):
                bucket.capacity = config.capacity
                bucket.refill_rate = config.refill_rate
                bucket.burst = config.burst
                bucket.tokens = min(bucket.tokens, bucket.ceiling)

    def check_and_consume(self, context: AgentContext) -> RateLimitResult:
        """Consume one request for the context's agent and session.

        Returns:
            RateLimitResult; denials carry retry_after in seconds.
        """
        now = self._clock()

        bucket = self._bucket(context.agent_id, now)
        with self._bucket_locks.hold(context.agent_id):
            bucket.refill(now)
            bucket.last_used = now
            if not bucket.try_consume():
                retry_after = bucket.retry_after()
                logger.info(
                    "rate_limit_bucket_exhausted",
                    agent_id=context.agent_id,
                    retry_after=retry_after,
                )
                return RateLimitResult(
                    allowed=False,
                    retry_after=retry_after,
                    reason=f"Rate limit exceeded for agent {context.agent_id}",
                )

        window = self._window(context.session_id, now)
        with self._window_locks.hold(context.session_id):
            window.prune(now)
            if len(window.minute) >= self.config.per_minute:
                return RateLimitResult(
                    allowed=False,
                    retry_after=int(MINUTE),
                    reason=f"Per-minute limit of {self.config.per_minute} requests exceeded",
                )
            if len(window.hour) >= self.config.per_hour:
                return RateLimitResult(
                    allowed=False,
                    retry_after=int(HOUR),
                    reason=f"Per-hour limit of {self.config.per_hour} requests exceeded",
                )
            window.record(now)

        return RateLimitResult(allowed=True)

    def _bucket(self, agent_id: str, now: float) -> TokenBucket:
        with self._registry_lock:
            bucket = self._buckets.get(agent_id)
            if bucket is None:
                c = self.config
                bucket = TokenBucket(
                    capacity=c.capacity,
                    refill_rate=c.refill_rate,
                    burst=c.burst,
                    tokens=float(c.capacity),
                    last_refill=now,
                    last_used=now,
                )
                self._buckets[agent_id] = bucket
            return bucket

    def _window(self, session_id: str, now: float) -> SlidingWindow:
        with self._registry_lock:
            window = self._windows.get(session_id)
            if window is None:
                window = SlidingWindow(last_used=now)
                self._windows[session_id] = window
            return window

    def refill_all(self) -> None:
        """Top up every bucket by elapsed time (periodic task body)."""
        now = self._clock()
        with self._registry_lock:
            items = list(self._buckets.items())
        for agent_id, bucket in items:
            with self._bucket_locks.hold(agent_id):
                bucket.refill(now)

    def prune_idle(self, now: float | None = None) -> int:
        """Drop buckets and windows unused for longer than the idle TTL.

        Returns:
            Number of entries removed.
        """
        now = self._clock() if now is None else now
        cutoff = now - self.config.idle_ttl_seconds
        with self._registry_lock:
            stale_buckets = [k for k, b in self._buckets.items() if b.last_used < cutoff]
            stale_windows = [k for k, w in self._windows.items() if w.last_used < cutoff]
            for key in stale_buckets:
                del self._buckets[key]
                self._bucket_locks.discard(key)
            for key in stale_windows:
                del self._windows[key]
                self._window_locks.discard(key)
        removed = len(stale_buckets) + len(stale_windows)
        if removed:
            logger.debug("rate_limit_state_pruned", buckets=len(stale_buckets), windows=len(stale_windows))
        return removed

    def tick(self) -> None:
        """Refill buckets and prune idle state."""
        self.refill_all()
        self.prune_idle()

    def get_status(self, agent_id: str) -> dict[str, float] | None:
        """Remaining tokens for an agent (None if the agent is unknown)."""
        with self._registry_lock:
            bucket = self._buckets.get(agent_id)
        if bucket is None:
            return None
        with self._bucket_locks.hold(agent_id):
            bucket.refill(self._clock())
            return {"tokens": bucket.tokens, "ceiling": bucket.ceiling}

    def reset(self) -> None:
        """Forget all buckets and windows."""
        with self._registry_lock:
            self._buckets.clear()
            self._windows.clear()
