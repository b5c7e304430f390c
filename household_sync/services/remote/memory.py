"""
In-Memory Remote Backend

DESIGN DECISION: A process-local implementation of RemoteStore and
ChangeStream, used for local development and tests. It behaves like the
hosted backend where it matters to the sync layer:
1. The store assigns durable ids and creation timestamps
2. Every write publishes an undifferentiated change notification
3. Notifications are delivered asynchronously, never inside the write

TRADEOFFS:
- No row-level security; household scoping is by filter only
- Failures and latency are injected explicitly (see fail_next/hold)
"""

import asyncio
import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence
from uuid import uuid4

import structlog

from household_sync.services.remote.interface import (
    ChangeEvent,
    ChangeHandler,
    ChangeStream,
    Disposer,
    NotFoundError,
    OrderBy,
    RemoteStore,
)


logger = structlog.get_logger("household_sync.remote.memory")

# Columns a change notification is published under, besides household_id
SCOPE_COLUMNS: dict[str, tuple[str, ...]] = {
    "households": ("id",),
    "recipe_ingredients": ("recipe_id",),
}


class InMemoryChangeStream(ChangeStream):
    """Fan-out of change notifications to subscribed handlers."""

    def __init__(self):
        self._handlers: dict[tuple[str, str], list[ChangeHandler]] = {}
        self._deliveries: set[asyncio.Task] = set()
        self.topics: list[str] = []

    def subscribe(
        self,
        table: str,
        household_id: str,
        on_event: ChangeHandler,
        topic: Optional[str] = None,
    ) -> Disposer:
        key = (table, household_id)
        self._handlers.setdefault(key, []).append(on_event)
        self.topics.append(topic or f"{table}:{household_id}")

        def dispose() -> None:
            handlers = self._handlers.get(key, [])
            if on_event in handlers:
                handlers.remove(on_event)
            if not handlers:
                self._handlers.pop(key, None)

        return dispose

    def subscriber_count(self, table: str, household_id: str) -> int:
        return len(self._handlers.get((table, household_id), []))

    def publish(self, event: ChangeEvent) -> None:
        """Schedule delivery of `event` to every matching handler."""
        for handler in list(self._handlers.get((event.table, event.household_id), [])):
            task = asyncio.ensure_future(self._deliver(handler, event))
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, handler: ChangeHandler, event: ChangeEvent) -> None:
        # Yield first so delivery never happens inside the publishing write
        await asyncio.sleep(0)
        try:
            result = handler(event)
            if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
                await result
        except Exception as e:
            logger.error(
                "change_delivery_failed",
                table=event.table,
                household_id=event.household_id,
                error=str(e),
            )

    async def drain(self) -> None:
        """Wait until every scheduled delivery (and what it triggered) finished."""
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)


class InMemoryRemoteStore(RemoteStore):
    """
    Dict-of-lists relational store.

    Procedures:
    - get_household_members(household_id): rows of the `memberships` table
    """

    def __init__(
        self,
        change_stream: Optional[InMemoryChangeStream] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self._tables: dict[str, list[dict[str, Any]]] = {}
        self._procedures: dict[str, Callable[[dict[str, Any]], Awaitable[Any]]] = {
            "get_household_members": self._get_household_members,
        }
        self._failures: list[tuple[str, Optional[str], Exception]] = []
        self._holds: dict[str, asyncio.Event] = {}
        self._last_created_at: Optional[datetime] = None
        self.change_stream = change_stream
        self._id_factory = id_factory or (lambda: str(uuid4()))
        self.calls: list[tuple[str, str, Any]] = []

    # -------------------------------------------------------------------------
    # Test and development controls
    # -------------------------------------------------------------------------

    def seed(self, table: str, rows: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
        """Insert rows directly, without notifications. Returns stored copies."""
        stored = [self._stamp(dict(row)) for row in rows]
        self._tables.setdefault(table, []).extend(stored)
        return copy.deepcopy(stored)

    def rows(self, table: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self._tables.get(table, []))

    def fail_next(
        self,
        operation: str,
        error: Exception,
        table: Optional[str] = None,
        times: int = 1,
    ) -> None:
        """Make the next `times` calls of `operation` (optionally on `table`) raise `error`."""
        for _ in range(times):
            self._failures.append((operation, table, error))

    def hold(self, operation: str) -> asyncio.Event:
        """Suspend calls of `operation` until the returned event is set."""
        gate = asyncio.Event()
        self._holds[operation] = gate
        return gate

    def release(self, operation: str) -> None:
        gate = self._holds.pop(operation, None)
        if gate is not None:
            gate.set()

    def register_procedure(
        self,
        name: str,
        procedure: Callable[[dict[str, Any]], Awaitable[Any]],
    ) -> None:
        self._procedures[name] = procedure

    def calls_of(self, operation: str, table: Optional[str] = None) -> list[Any]:
        return [
            payload for op, tbl, payload in self.calls
            if op == operation and (table is None or tbl == table)
        ]

    # -------------------------------------------------------------------------
    # RemoteStore
    # -------------------------------------------------------------------------

    async def select(
        self,
        table: str,
        filters: dict[str, Any],
        order: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        await self._enter("select", table, dict(filters))
        rows = [
            row for row in self._tables.get(table, [])
            if all(row.get(column) == value for column, value in filters.items())
        ]
        # Stable sorts applied from the last clause to the first
        for column, ascending in reversed(list(order)):
            rows.sort(key=lambda r: _sort_key(r.get(column)), reverse=not ascending)
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        await self._enter("insert", table, dict(row))
        stored = self._stamp(dict(row))
        self._tables.setdefault(table, []).append(stored)
        self._notify(table, [stored], "INSERT")
        return copy.deepcopy(stored)

    async def update(self, table: str, record_id: str, patch: dict[str, Any]) -> None:
        await self._enter("update", table, {"id": record_id, **patch})
        for row in self._tables.get(table, []):
            if row["id"] == record_id:
                row.update(patch)
                self._notify(table, [row], "UPDATE")
                return
        raise NotFoundError(f"No row {record_id} in {table}")

    async def delete(self, table: str, record_ids: Sequence[str]) -> None:
        ids = set(record_ids)
        await self._enter("delete", table, sorted(ids))
        existing = self._tables.get(table, [])
        removed = [row for row in existing if row["id"] in ids]
        self._tables[table] = [row for row in existing if row["id"] not in ids]
        self._notify(table, removed, "DELETE")

    async def call(self, procedure: str, args: Optional[dict[str, Any]] = None) -> Any:
        await self._enter("call", procedure, dict(args or {}))
        try:
            handler = self._procedures[procedure]
        except KeyError:
            raise NotFoundError(f"Unknown procedure: {procedure}")
        return await handler(dict(args or {}))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _enter(self, operation: str, table: str, payload: Any) -> None:
        self.calls.append((operation, table, payload))
        gate = self._holds.get(operation)
        if gate is not None:
            await gate.wait()
        else:
            await asyncio.sleep(0)
        for index, (op, tbl, error) in enumerate(self._failures):
            if op == operation and (tbl is None or tbl == table):
                del self._failures[index]
                raise error

    def _stamp(self, row: dict[str, Any]) -> dict[str, Any]:
        if "id" not in row:
            row["id"] = self._id_factory()
        if "created_at" not in row:
            now = datetime.now(timezone.utc)
            # Strictly increasing so creation order is total
            if self._last_created_at is not None and now <= self._last_created_at:
                now = self._last_created_at + timedelta(microseconds=1)
            self._last_created_at = now
            row["created_at"] = now
        return row

    def _notify(self, table: str, rows: list[dict[str, Any]], event: str) -> None:
        if self.change_stream is None:
            return
        columns = ("household_id", *SCOPE_COLUMNS.get(table, ()))
        scopes = {str(r[c]) for r in rows for c in columns if r.get(c)}
        for scope_id in sorted(scopes):
            self.change_stream.publish(
                ChangeEvent(table=table, household_id=scope_id, event=event)
            )

    async def _get_household_members(self, args: dict[str, Any]) -> list[dict[str, Any]]:
        household_id = args.get("household_id")
        return [
            {
                "user_id": row["user_id"],
                "household_id": row.get("household_id"),
                "role": row.get("role", "member"),
                "display_name": row.get("display_name"),
            }
            for row in self._tables.get("memberships", [])
            if household_id is None or row.get("household_id") == household_id
        ]


def _sort_key(value: Any) -> tuple:
    return (value is None, value if value is not None else 0)
