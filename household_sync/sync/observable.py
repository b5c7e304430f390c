"""
Minimal observable value.

The UI layer reads `value` and subscribes for changes; the owning
component is the only writer.
"""

from typing import Any, Callable, Generic, TypeVar

import structlog


T = TypeVar("T")

logger = structlog.get_logger("household_sync.sync.observable")


class Observable(Generic[T]):
    """A value plus change callbacks."""

    def __init__(self, initial: T):
        self._value = initial
        self._subscribers: list[Callable[[T], Any]] = []

    @property
    def value(self) -> T:
        return self._value

    def set(self, new_value: T) -> None:
        """Replace the value and notify subscribers in subscription order."""
        self._value = new_value
        for callback in list(self._subscribers):
            try:
                callback(new_value)
            except Exception as e:
                # A broken view must not break the writer
                logger.error("observer_failed", error=str(e))

    def subscribe(self, callback: Callable[[T], Any]) -> Callable[[], None]:
        """Register `callback`; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def __repr__(self) -> str:
        return f"Observable({self._value!r})"
