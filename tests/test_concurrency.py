"""Tests for per-key locks and periodic tasks."""

import asyncio
import threading

import pytest

from agentic_guard.concurrency import KeyedLocks, PeriodicTask


class TestKeyedLocks:
    def test_same_key_same_lock(self):
        locks = KeyedLocks()

        assert locks.get("a") is locks.get("a")
        assert locks.get("a") is not locks.get("b")
        assert len(locks) == 2

    def test_hold(self):
        locks = KeyedLocks()

        with locks.hold("a"):
            assert locks.get("a").locked()
            assert not locks.get("b").locked()
        assert not locks.get("a").locked()

    def test_discard(self):
        locks = KeyedLocks()
        locks.get("a")
        locks.discard("a")
        locks.discard("missing")

        assert len(locks) == 0

    def test_concurrent_get(self):
        locks = KeyedLocks()
        seen = []

        def worker():
            seen.append(locks.get("shared"))

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(lock is seen[0] for lock in seen)


class TestPeriodicTask:
    """Tests for the background loop helper."""

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            PeriodicTask("bad", lambda: None, interval=0)

    @pytest.mark.asyncio
    async def test_run_once_sync(self):
        calls = []
        task = PeriodicTask("sync", lambda: calls.append(1), interval=1)

        await task.run_once()

        assert calls == [1]
        assert task.iterations == 1

    @pytest.mark.asyncio
    async def test_run_once_async(self):
        calls = []

        async def tick():
            calls.append(1)

        task = PeriodicTask("async", tick, interval=1)
        await task.run_once()

        assert calls == [1]

    @pytest.mark.asyncio
    async def test_failures_are_logged_not_raised(self):
        def broken():
            raise RuntimeError("boom")

        task = PeriodicTask("broken", broken, interval=1)
        await task.run_once()
        await task.run_once()

        assert task.failures == 2
        assert task.iterations == 2

    @pytest.mark.asyncio
    async def test_loop_keeps_running_after_failure(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first call fails")

        task = PeriodicTask("flaky", flaky, interval=0.01, run_immediately=True)
        task.start()
        for _ in range(200):
            if len(calls) >= 3:
                break
            await asyncio.sleep(0.01)
        await task.stop()

        assert len(calls) >= 3
        assert task.failures == 1
        assert not task.running

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        task = PeriodicTask("idle", lambda: None, interval=1)

        await task.stop()

        assert not task.running

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        task = PeriodicTask("once", lambda: None, interval=10)
        task.start()
        first = task._task
        task.start()

        assert task._task is first
        await task.stop()
