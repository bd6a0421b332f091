"""
Cancellable timers on an asyncio event loop.

Sessions never call asyncio directly for timing; they go through a scheduler
so a virtual clock can stand in during tests. Delays are in milliseconds.
"""

import asyncio
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Timer:
    """One-shot or periodic callback. cancel() is idempotent."""

    def __init__(self, loop, delay_ms, callback: Callable[[], None], interval_ms=None):
        self._loop = loop
        self._callback = callback
        self._interval_s = interval_ms / 1000.0 if interval_ms is not None else None
        self._next_at = loop.time() + delay_ms / 1000.0
        self._handle = loop.call_at(self._next_at, self._fire)
        self.active = True

    def _fire(self):
        if not self.active:
            return
        if self._interval_s is None:
            self.active = False
            self._handle = None
        else:
            # fixed-rate: next deadline from the schedule, not from now
            self._next_at += self._interval_s
            self._handle = self._loop.call_at(self._next_at, self._fire)
        self._callback()

    def cancel(self):
        if not self.active:
            return
        self.active = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class AsyncioScheduler:
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._tasks = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        """Milliseconds on the loop's monotonic clock."""
        return self.loop.time() * 1000.0

    def call_later(self, delay_ms, callback) -> Timer:
        return Timer(self.loop, delay_ms, callback)

    def call_every(self, interval_ms, callback) -> Timer:
        return Timer(self.loop, interval_ms, callback, interval_ms=interval_ms)

    def spawn(self, coro) -> asyncio.Task:
        task = self.loop.create_task(coro)
        # the loop only holds weak references to tasks
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background task %s failed: %s", task.get_name(), exc, exc_info=exc)


class LoopThread:
    """
    Runs an asyncio loop on a daemon thread.

    The web host handles Socket.IO events on its own threads; everything that
    touches a session is funnelled through call() so session state is only
    ever mutated on this loop.
    """

    def __init__(self, name: str = "liveness-loop"):
        self._name = name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        self.start()
        return self._loop

    def start(self):
        with self._lock:
            if self._thread is not None:
                return
            self._loop = asyncio.new_event_loop()
            ready = threading.Event()

            def run():
                asyncio.set_event_loop(self._loop)
                self._loop.call_soon(ready.set)
                self._loop.run_forever()

            self._thread = threading.Thread(target=run, name=self._name, daemon=True)
            self._thread.start()
            ready.wait()
            logger.info("event loop thread %s started", self._name)

    def call(self, fn, *args, timeout: float = 5.0):
        """Run fn(*args) on the loop thread and return its result."""
        if self._thread is threading.current_thread():
            return fn(*args)

        async def invoke():
            return fn(*args)

        future = asyncio.run_coroutine_threadsafe(invoke(), self.loop)
        return future.result(timeout)

    def stop(self):
        with self._lock:
            if self._thread is None:
                return
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=5)
            self._loop.close()
            self._thread = None
            self._loop = None
