"""Services package."""

from household_sync.services.remote import (
    ChangeEvent,
    ChangeStream,
    DuplicateError,
    InMemoryChangeStream,
    InMemoryRemoteStore,
    NotFoundError,
    RemoteConnectionError,
    RemoteRejectedError,
    RemoteStore,
    RemoteStoreError,
)

__all__ = [
    "ChangeEvent",
    "ChangeStream",
    "DuplicateError",
    "InMemoryChangeStream",
    "InMemoryRemoteStore",
    "NotFoundError",
    "RemoteConnectionError",
    "RemoteRejectedError",
    "RemoteStore",
    "RemoteStoreError",
]
