"""
Coalesce concurrent identical async operations into one in-flight call.

The API server and the poller each run their own event loop (the poller in an
APScheduler thread). Tasks never cross loops, so ``SingleFlight`` keeps one
in-flight task per (loop, key). ``KeyedLock`` serialises the same key across
loops and threads.
"""
import asyncio
import threading
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Hashable, Tuple

from anyio import to_thread


class SingleFlight:
    def __init__(self):
        self._inflight: Dict[Tuple[asyncio.AbstractEventLoop, Hashable], asyncio.Task] = {}
        self._guard = threading.Lock()

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``fn`` unless a call for ``key`` is already running on this loop; then share its outcome."""
        loop = asyncio.get_running_loop()
        slot = (loop, key)
        with self._guard:
            task = self._inflight.get(slot)
            if task is None or task.done():
                task = loop.create_task(fn())
                self._inflight[slot] = task
                task.add_done_callback(lambda t, s=slot: self._forget(s, t))
        # shield so one cancelled waiter does not cancel the shared call
        return await asyncio.shield(task)

    def _forget(self, slot, task: asyncio.Task) -> None:
        with self._guard:
            if self._inflight.get(slot) is task:
                del self._inflight[slot]

    def in_flight(self, key: Hashable) -> bool:
        with self._guard:
            return any(k == key and not t.done() for (_, k), t in self._inflight.items())


class KeyedLock:
    """One ``threading.Lock`` per key, awaitable from any event loop."""

    def __init__(self):
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: Hashable) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._lock_for(key)
        if not lock.acquire(blocking=False):
            taken = []

            def acquire():
                lock.acquire()
                taken.append(True)

            # wait in a worker thread so the event loop keeps running
            try:
                await to_thread.run_sync(acquire)
            except BaseException:
                if taken:
                    lock.release()
                raise
        try:
            yield
        finally:
            lock.release()

    def locked(self, key: Hashable) -> bool:
        return self._lock_for(key).locked()


# account-scoped refreshes share these across connector objects and loops
refresh_flights = SingleFlight()
refresh_locks = KeyedLock()
