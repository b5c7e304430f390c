"""
Change Stream Subscriber

Bridges household-scoped change notifications to a reload of the right
collection. Notifications carry no diff; every one means "re-fetch".

Overlapping reloads are allowed. The coordinator's versioned reload
decides which result is applied.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Union

from household_sync.audit import AuditLogger
from household_sync.models.audit import AuditEventBuilder
from household_sync.services.remote import ChangeEvent, ChangeStream, Disposer
from household_sync.sync.coordinator import MutationCoordinator


OnChange = Callable[[], Union[None, Awaitable[object]]]


class ChangeStreamSubscriber:
    """
    One subscription per (table, household) pair.

    Subscribing twice to the same pair returns the existing disposer.
    """

    def __init__(
        self,
        stream: ChangeStream,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._stream = stream
        self._audit = audit_logger or AuditLogger()
        self._subscriptions: dict[tuple[str, str], Disposer] = {}

    def subscribe(
        self,
        table: str,
        household_id: str,
        on_change: OnChange,
        topic: Optional[str] = None,
    ) -> Disposer:
        """
        Call `on_change` (awaiting it if needed) for every change to the pair.

        Returns a disposer that ends the subscription; calling it twice is harmless.
        """
        key = (table, household_id)
        if key in self._subscriptions:
            return self._subscriptions[key]

        topic = topic or f"{table}:{household_id}"

        async def handle(event: ChangeEvent) -> None:
            self._audit.log(AuditEventBuilder.change_received(table, household_id, event.event))
            result = on_change()
            if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
                await result

        unsubscribe = self._stream.subscribe(table, household_id, handle, topic=topic)

        def dispose() -> None:
            if self._subscriptions.pop(key, None) is None:
                return
            unsubscribe()
            self._audit.log(AuditEventBuilder.subscription_closed(table, household_id, topic))

        self._subscriptions[key] = dispose
        self._audit.log(AuditEventBuilder.subscription_opened(table, household_id, topic))
        return dispose

    def bind(self, coordinator: MutationCoordinator) -> Disposer:
        """Reload `coordinator` whenever its table changes within its scope."""
        return self.subscribe(
            coordinator.table,
            coordinator.scope_id,
            coordinator.reload,
            topic=coordinator.spec.topic(coordinator.scope_id),
        )

    def is_subscribed(self, table: str, household_id: str) -> bool:
        return (table, household_id) in self._subscriptions

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def close(self) -> None:
        """Dispose every open subscription."""
        for dispose in list(self._subscriptions.values()):
            dispose()
