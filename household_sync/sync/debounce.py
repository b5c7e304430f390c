"""
Debounce Scheduler

Coalesces rapid edits of one record into a single remote write.

GUARANTEES:
- At most one pending action per key; scheduling again replaces it
- The action reads current state when it fires, so the last edit wins
- cancel_all() on teardown means nothing fires after the owner is gone

Each MutationCoordinator owns its own scheduler; there is no global
timer registry.
"""

import asyncio
from typing import Awaitable, Callable, Hashable, Optional

import structlog


logger = structlog.get_logger("household_sync.sync.debounce")

Action = Callable[[], Awaitable[None]]


class DebounceScheduler:
    """Per-key timer registry on the running event loop."""

    def __init__(self):
        self._timers: dict[Hashable, asyncio.TimerHandle] = {}
        self._running: set[asyncio.Task] = set()
        self._closed = False

    def schedule(self, key: Hashable, delay_ms: int, action: Action) -> None:
        """
        Run `action` once `delay_ms` passed without another schedule for `key`.

        Must be called from inside a running event loop.
        """
        if self._closed:
            logger.debug("debounce_schedule_after_close", key=str(key))
            return
        self.cancel(key)
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay_ms / 1000, self._fire, key, action)

    def cancel(self, key: Hashable) -> bool:
        """Cancel the pending action for `key`. Returns True if one was pending."""
        handle = self._timers.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> int:
        """Cancel every pending action and refuse new ones. Returns how many were cancelled."""
        self._closed = True
        count = 0
        for key in list(self._timers):
            if self.cancel(key):
                count += 1
        return count

    def is_pending(self, key: Hashable) -> bool:
        return key in self._timers

    @property
    def pending_count(self) -> int:
        return len(self._timers)

    @property
    def running_count(self) -> int:
        return len(self._running)

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until no action is pending or running."""

        async def _wait() -> None:
            while self._timers or self._running:
                if self._running:
                    await asyncio.gather(*list(self._running), return_exceptions=True)
                else:
                    await asyncio.sleep(0.005)

        await asyncio.wait_for(_wait(), timeout)

    def _fire(self, key: Hashable, action: Action) -> None:
        self._timers.pop(key, None)
        task = asyncio.ensure_future(action())
        self._running.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._running.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("debounced_action_failed", error=str(task.exception()))
