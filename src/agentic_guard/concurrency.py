"""Concurrency helpers: per-key locks, cancellation tokens and periodic tasks."""

import asyncio
import inspect
import threading
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Generator, Hashable, Protocol

from agentic_guard.logging import Loggers

logger = Loggers.service()


class CancellationToken(Protocol):
    """Anything with ``is_set()``: threading.Event, asyncio.Event, ..."""

    def is_set(self) -> bool: ...


class KeyedLocks:
    """A registry of mutexes, one per key.

    Callers touching different keys never contend with each other. The
    registry lock is held only long enough to get-or-create a key's lock.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def get(self, key: Hashable) -> threading.Lock:
        """Return the lock for ``key``, creating it on first use."""
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Generator[None, None, None]:
        """Hold the lock for ``key`` for the duration of the block."""
        lock = self.get(key)
        with lock:
            yield

    def discard(self, key: Hashable) -> None:
        """Forget the lock for ``key`` (used when keyed state is pruned)."""
        with self._registry_lock:
            self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)


class PeriodicTask:
    """Runs a callable on a fixed period until stopped.

    A failing iteration is logged and the loop keeps going. Synchronous
    callables run in a worker thread so slow disk work (audit compression)
    never stalls the event loop.

    Example:
        task = PeriodicTask("bucket_refill", limiter.refill_all, interval=1.0)
        task.start()
        ...
        await task.stop()
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], Any] | Callable[[], Awaitable[Any]],
        interval: float,
        run_immediately: bool = False,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self._func = func
        self._run_immediately = run_immediately
        self._task: asyncio.Task | None = None
        self.iterations = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"periodic:{self.name}")
        logger.debug("periodic_task_started", task=self.name, interval=self.interval)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("periodic_task_stopped", task=self.name, iterations=self.iterations)

    async def run_once(self) -> None:
        """Run a single iteration, logging rather than raising failures."""
        try:
            if inspect.iscoroutinefunction(self._func):
                await self._func()
            else:
                await asyncio.to_thread(self._func)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            logger.error("periodic_task_failed", task=self.name, error=str(e), exc_info=True)
        finally:
            self.iterations += 1

    async def _run(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self.interval)
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)
