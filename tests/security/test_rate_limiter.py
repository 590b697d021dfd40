"""Tests for per-agent token buckets and per-session sliding windows."""

import threading

import pytest

from agentic_guard.security import RateLimitConfig, RateLimiter


def make_limiter(clock, **overrides) -> RateLimiter:
    config = RateLimitConfig(**{"capacity": 2, "refill_rate": 1.0, "burst": 0, **overrides})
    return RateLimiter(config, clock=clock)


class TestTokenBucket:
    """Tests for the per-agent bucket."""

    def test_capacity_then_denied(self, clock, context_factory):
        limiter = make_limiter(clock)
        context = context_factory()

        assert limiter.check_and_consume(context).allowed
        assert limiter.check_and_consume(context).allowed
        result = limiter.check_and_consume(context)

        assert not result.allowed
        assert result.retry_after == 1
        assert result.reason == "Rate limit exceeded for agent agent-1"

    def test_waiting_retry_after_allows_next_call(self, clock, context_factory):
        limiter = make_limiter(clock, refill_rate=0.5)
        context = context_factory()
        limiter.check_and_consume(context)
        limiter.check_and_consume(context)

        denied = limiter.check_and_consume(context)
        assert denied.retry_after == 2

        clock.advance(denied.retry_after)
        assert limiter.check_and_consume(context).allowed

    def test_burst_raises_ceiling(self, clock, context_factory):
        limiter = make_limiter(clock, capacity=2, burst=3)
        context = context_factory()
        assert limiter.check_and_consume(context).allowed

        clock.advance(60)
        results = [limiter.check_and_consume(context).allowed for _ in range(6)]

        assert results == [True] * 5 + [False]

    def test_buckets_are_per_agent(self, clock, context_factory):
        limiter = make_limiter(clock, capacity=1)
        limiter.check_and_consume(context_factory(agent_id="a"))

        assert not limiter.check_and_consume(context_factory(agent_id="a")).allowed
        assert limiter.check_and_consume(context_factory(agent_id="b")).allowed

    def test_refill_all(self, clock, context_factory):
        limiter = make_limiter(clock)
        context = context_factory()
        limiter.check_and_consume(context)
        limiter.check_and_consume(context)

        clock.advance(1)
        limiter.refill_all()

        assert limiter.get_status("agent-1")["tokens"] == pytest.approx(1.0)

    def test_refill_never_exceeds_ceiling(self, clock, context_factory):
        limiter = make_limiter(clock, burst=1)
        limiter.check_and_consume(context_factory())

        clock.advance(1000)

        assert limiter.get_status("agent-1") == {"tokens": 3.0, "ceiling": 3.0}

    def test_update_config_clips_tokens(self, clock, context_factory):
        limiter = make_limiter(clock, capacity=10)
        limiter.check_and_consume(context_factory())

        limiter.update_config(RateLimitConfig(capacity=1, refill_rate=1.0, burst=0))

        assert limiter.get_status("agent-1")["tokens"] == 1.0


class TestSlidingWindows:
    """Tests for the per-session windows."""

    def test_per_minute_limit(self, clock, context_factory):
        limiter = make_limiter(clock, capacity=100, per_minute=3)
        context = context_factory()
        for _ in range(3):
            assert limiter.check_and_consume(context).allowed

        result = limiter.check_and_consume(context)
        assert not result.allowed
        assert result.retry_after == 60
        assert result.reason == "Per-minute limit of 3 requests exceeded"

        clock.advance(60)
        assert limiter.check_and_consume(context).allowed

    def test_per_hour_limit(self, clock, context_factory):
        limiter = make_limiter(clock, capacity=100, per_hour=2)
        context = context_factory()
        limiter.check_and_consume(context)
        limiter.check_and_consume(context)

        result = limiter.check_and_consume(context)
        assert result.retry_after == 3600
        assert result.reason == "Per-hour limit of 2 requests exceeded"

    def test_windows_are_per_session(self, clock, context_factory):
        limiter = make_limiter(clock, capacity=100, per_minute=1)
        limiter.check_and_consume(context_factory(session_id="s1"))

        assert limiter.check_and_consume(context_factory(session_id="s2")).allowed


class TestIdleState:
    """Tests for pruning and reset."""

    def test_prune_idle(self, clock, context_factory):
        limiter = make_limiter(clock)
        limiter.check_and_consume(context_factory())
        clock.advance(3601)

        assert limiter.prune_idle() == 2
        assert limiter.get_status("agent-1") is None

    def test_recent_state_kept(self, clock, context_factory):
        limiter = make_limiter(clock)
        limiter.check_and_consume(context_factory())
        clock.advance(60)

        assert limiter.prune_idle() == 0

    def test_tick_refills_and_prunes(self, clock, context_factory):
        limiter = make_limiter(clock)
        limiter.check_and_consume(context_factory(agent_id="stale"))
        clock.advance(3601)
        limiter.check_and_consume(context_factory(agent_id="fresh", session_id="s2"))

        limiter.tick()

        assert limiter.get_status("stale") is None
        assert limiter.get_status("fresh") is not None

    def test_reset(self, clock, context_factory):
        limiter = make_limiter(clock, capacity=1)
        limiter.check_and_consume(context_factory())
        limiter.reset()

        assert limiter.get_status("agent-1") is None
        assert limiter.check_and_consume(context_factory()).allowed


class TestConcurrentCallers:
    """Tests for bucket and window integrity under concurrent callers."""

    def run_threads(self, threads: int, target) -> None:
        barrier = threading.Barrier(threads)

        def worker(index: int):
            barrier.wait()
            target(index)

        pool = [threading.Thread(target=worker, args=(i,)) for i in range(threads)]
        for t in pool:
            t.start()
        for t in pool:
            t.join()

    def test_bucket_never_overspends(self, clock, context_factory):
        limiter = make_limiter(clock, capacity=200, per_minute=10_000, per_hour=10_000)
        context = context_factory()
        outcomes: list[bool] = []
        lock = threading.Lock()

        def calls(index: int):
            for _ in range(50):
                allowed = limiter.check_and_consume(context).allowed
                with lock:
                    outcomes.append(allowed)

        self.run_threads(8, calls)

        assert len(outcomes) == 400
        assert outcomes.count(True) == 200
        assert limiter.get_status("agent-1")["tokens"] == pytest.approx(0.0)

    def test_window_counts_every_call(self, clock, context_factory):
        limiter = make_limiter(clock, capacity=10_000, per_minute=150, per_hour=10_000)
        context = context_factory()
        allowed = []

        def calls(index: int):
            for _ in range(40):
                if limiter.check_and_consume(context).allowed:
                    allowed.append(1)

        self.run_threads(6, calls)

        assert len(allowed) == 150
