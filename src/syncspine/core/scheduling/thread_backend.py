"""Threading-based scheduler backend.

This is the DEFAULT backend for sync-spine. It uses Python's stdlib
threading module and runs each tick with ``asyncio.run``.

┌──────────────────────────────────────────────────────────────────────────────┐
│  THREAD BACKEND ARCHITECTURE                                                  │
│                                                                               │
│   start()                                                                     │
│      │                                                                        │
│      ▼                                                                        │
│   ┌─────────────────────────────────────────────────────────┐                │
│   │              Daemon Thread (loop)                       │                │
│   │                                                         │                │
│   │   if run_immediately: tick()                            │                │
│   │   while not stop_event.wait(interval):                  │                │
│   │       tick()                                            │                │
│   │                                                         │                │
│   │   tick(): tick_count += 1                               │                │
│   │           asyncio.run(tick_callback())                  │                │
│   └─────────────────────────────────────────────────────────┘                │
│                                                                               │
│   stop()                                                                      │
│      │                                                                        │
│      ▼                                                                        │
│   stop_event.set()        no new tick begins                                 │
│   thread.join(timeout)    the in-flight tick is allowed to finish            │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import threading
from datetime import UTC, datetime
from typing import Any

from syncspine.core.logging import get_logger

from .protocol import BackendHealth, TickCallback

logger = get_logger(__name__)


class ThreadSchedulerBackend:
    """Daemon-thread timing backend.

    Example:
        >>> backend = ThreadSchedulerBackend()
        >>>
        >>> async def my_tick():
        ...     print("Tick!")
        ...
        >>> backend.start(my_tick, interval_seconds=5.0)
        >>> # ... later ...
        >>> backend.stop()
    """

    name = "thread"

    def __init__(self, join_timeout: float = 5.0) -> None:
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._interval: float = 60.0
        self._join_timeout = join_timeout
        self._started = False
        self._lock = threading.Lock()

    def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 60.0,
        run_immediately: bool = True,
    ) -> None:
        """Start the scheduler loop in a daemon thread.

        Args:
            tick_callback: Async function to call on each tick.
            interval_seconds: How often to tick.
            run_immediately: Tick once right away, before the first wait.
        """
        if self._started:
            logger.warning("thread_backend_already_started")
            return

        self._interval = interval_seconds
        # one event per loop; a thread outliving stop() still sees its own set event
        stop_event = threading.Event()
        self._stop_event = stop_event

        def _run_tick() -> None:
            with self._lock:
                self._tick_count += 1
                self._last_tick = datetime.now(UTC)
            try:
                asyncio.run(tick_callback())
            except Exception as e:
                logger.exception("tick_failed", error=str(e))

        def _loop() -> None:
            logger.info("thread_backend_started", interval_seconds=interval_seconds)
            if run_immediately and not stop_event.is_set():
                _run_tick()
            while not stop_event.wait(interval_seconds):
                _run_tick()
            logger.info("thread_backend_stopped")

        self._thread = threading.Thread(target=_loop, daemon=True, name="syncspine-scheduler")
        self._thread.start()
        self._started = True

    def stop(self) -> None:
        """Stop the loop, waiting up to ``join_timeout`` for the current tick."""
        if not self._started:
            return

        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=self._join_timeout)
            if self._thread.is_alive():
                logger.warning("scheduler_thread_still_running")

        self._started = False

    def health(self) -> dict[str, Any]:
        """Return backend health status."""
        return self.get_health().to_dict()

    def get_health(self) -> BackendHealth:
        """Return structured health status."""
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            extra={"interval_seconds": self._interval},
        )

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick
