"""
Abstract Remote Interfaces

DESIGN DECISION: The authoritative store and its change-notification
channel are external collaborators. We define abstract interfaces so we
can:
1. Point the sync layer at any hosted relational backend
2. Use in-memory implementations for testing and local development
3. Keep reconciliation logic decoupled from transport details

The interface is intentionally small - it is not an ORM. Rows are plain
dicts; every call is scoped by table and, for reads, by household.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from pydantic import BaseModel, Field


OrderBy = tuple[str, bool]
"""(column, ascending) pair for remote ordering."""


class ChangeEvent(BaseModel):
    """
    A change notification.

    Carries no row data: it only says that something in
    (table, household) changed and the collection should be re-fetched.
    """

    table: str
    household_id: str
    event: str = Field(
        default="*",
        pattern=r"^(INSERT|UPDATE|DELETE|\*)$",
        description="Kind of change; consumers treat all kinds the same"
    )


ChangeHandler = Callable[[ChangeEvent], Union[None, Awaitable[None]]]
Disposer = Callable[[], None]


class RemoteStore(ABC):
    """
    Abstract interface for the authoritative household store.

    Any backend (hosted Postgres REST API, in-memory, ...) must implement
    these methods. Every method may raise a RemoteStoreError subclass.
    """

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: dict[str, Any],
        order: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """
        Read rows matching all equality filters.

        Args:
            table: Table name
            filters: Column -> required value
            order: Ordering clauses applied in sequence
            limit: Maximum number of rows

        Returns:
            Matching rows, ordered
        """
        pass

    @abstractmethod
    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """
        Insert one row.

        Returns:
            The stored row, including its durable id and server defaults

        Raises:
            RemoteRejectedError: If the row violates a constraint or policy
        """
        pass

    @abstractmethod
    async def update(self, table: str, record_id: str, patch: dict[str, Any]) -> None:
        """
        Apply a partial update to one row.

        Raises:
            RemoteRejectedError: If the update is refused
            NotFoundError: If the row does not exist
        """
        pass

    @abstractmethod
    async def delete(self, table: str, record_ids: Sequence[str]) -> None:
        """
        Delete one or more rows by id.

        Raises:
            RemoteRejectedError: If the delete is refused
        """
        pass

    @abstractmethod
    async def call(self, procedure: str, args: Optional[dict[str, Any]] = None) -> Any:
        """
        Invoke a stored procedure (e.g. the member roster).

        Raises:
            NotFoundError: If the procedure does not exist
        """
        pass


class ChangeStream(ABC):
    """
    Abstract interface for household-scoped change notifications.
    """

    @abstractmethod
    def subscribe(
        self,
        table: str,
        household_id: str,
        on_event: ChangeHandler,
        topic: Optional[str] = None,
    ) -> Disposer:
        """
        Start receiving notifications for (table, household).

        Args:
            table: Table to watch
            household_id: Only changes to rows scoped to this id are delivered.
                Usually a household id; the households table is scoped by its
                own id and recipe ingredients by their recipe id
            on_event: Called (or awaited) once per change
            topic: Channel name, informational

        Returns:
            A callable that ends the subscription
        """
        pass


class RemoteStoreError(Exception):
    """Base exception for remote store operations."""
    pass


class RemoteRejectedError(RemoteStoreError):
    """The store refused a write (validation, permission, constraint)."""
    pass


class NotFoundError(RemoteRejectedError):
    """Entity not found in the remote store."""
    pass


class DuplicateError(RemoteRejectedError):
    """Attempted to insert a duplicate entity."""
    pass


class RemoteConnectionError(RemoteStoreError):
    """Could not reach the remote store. The only retryable failure."""
    pass
