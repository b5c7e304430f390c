"""
Remote Services Package

Provides abstract interfaces for the authoritative store and its change
notifications, plus an in-memory implementation of both.
"""

from household_sync.services.remote.interface import (
    ChangeEvent,
    ChangeHandler,
    ChangeStream,
    Disposer,
    DuplicateError,
    NotFoundError,
    OrderBy,
    RemoteConnectionError,
    RemoteRejectedError,
    RemoteStore,
    RemoteStoreError,
)
from household_sync.services.remote.memory import (
    InMemoryChangeStream,
    InMemoryRemoteStore,
)

__all__ = [
    # Interfaces
    "ChangeEvent",
    "ChangeHandler",
    "ChangeStream",
    "Disposer",
    "OrderBy",
    "RemoteStore",
    # Exceptions
    "DuplicateError",
    "NotFoundError",
    "RemoteConnectionError",
    "RemoteRejectedError",
    "RemoteStoreError",
    # In-memory implementation
    "InMemoryChangeStream",
    "InMemoryRemoteStore",
]
