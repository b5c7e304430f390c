"""
Mutation Coordinator

Owns one household collection and keeps it responsive under optimistic
writes.

Flow of every write:
1. Apply the change locally (synchronous, visible immediately)
2. Suspend on the remote call
3. Confirm (reconcile ids) or roll back, and record the outcome

DESIGN DECISION: Reloads are versioned. The coordinator keeps a local
revision counter (bumped by every local mutation) and a reload sequence
number. A reload result is only applied if no newer reload was applied
meanwhile and nothing local changed or is still waiting on the remote
store. A discarded reload is repeated as soon as the last outstanding
write settles, so remote changes are never dropped, only postponed.

GUARANTEES:
- A LocalId record is replaced in its own slot by its confirmed record,
  or removed on failure; the two never coexist
- Failures never propagate: they become the shared last-error message
- After close(), no debounced write fires
"""

from typing import Any, Iterable, Optional, Union
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from household_sync.audit import AuditLogger, create_correlation_id
from household_sync.config import SyncSettings, get_settings
from household_sync.models.audit import AuditEventBuilder
from household_sync.models.records import (
    HouseholdRecord,
    LocalId,
    RecordId,
    RemoteId,
    new_local_id,
)
from household_sync.services.remote import (
    RemoteConnectionError,
    RemoteStore,
    RemoteStoreError,
)
from household_sync.sync.collections import CollectionSpec
from household_sync.sync.debounce import DebounceScheduler
from household_sync.sync.observable import Observable


logger = structlog.get_logger("household_sync.sync.coordinator")

IdLike = Union[RecordId, str]


class MutationCoordinator:
    """
    Optimistic create/update/delete for one collection.

    The collection is exposed as `records`, an Observable list that is
    replaced atomically on every change. `last_error` may be shared by
    several coordinators so the UI shows the most recent failure.
    """

    def __init__(
        self,
        spec: CollectionSpec,
        store: RemoteStore,
        household_id: str,
        last_error: Optional[Observable] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[SyncSettings] = None,
        scope_id: Optional[str] = None,
    ):
        if spec.scope_column != "household_id" and not scope_id:
            raise ValueError(f"{spec.name} records are scoped by {spec.scope_column}; scope_id is required")
        self.spec = spec
        self.household_id = household_id
        # Value of spec.scope_column shared by every record of this collection
        self.scope_id = scope_id or household_id
        self.records: Observable[list[HouseholdRecord]] = Observable([])
        self.last_error: Observable[Optional[str]] = last_error or Observable(None)

        self._store = store
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().sync
        self._scheduler = DebounceScheduler()

        # Pre-edit values of fields waiting for a debounced write
        self._dirty: dict[RemoteId, dict[str, Any]] = {}
        # Pre-edit values of fields edited before the create was confirmed
        self._unsynced: dict[LocalId, dict[str, Any]] = {}
        # Local records removed before their create was confirmed
        self._abandoned: set[LocalId] = set()
        # Confirmed ids of former local records, for snapshot restores
        self._resolved: dict[LocalId, RemoteId] = {}

        self._revision = 0
        self._reload_seq = 0
        self._applied_seq = 0
        self._in_flight = 0
        self._refresh_needed = False
        self._closed = False

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    @property
    def table(self) -> str:
        return self.spec.table

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def has_pending_writes(self) -> bool:
        # A fired debounce action increments _in_flight before its first await
        return bool(self._in_flight or self._scheduler.pending_count or self._dirty)

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, record_id: IdLike) -> Optional[HouseholdRecord]:
        record_id = _coerce_id(record_id)
        for record in self.records.value:
            if record.id == record_id:
                return record
        return None

    def is_update_pending(self, record_id: IdLike) -> bool:
        return self._scheduler.is_pending(_coerce_id(record_id))

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    async def create(
        self,
        fields: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> Optional[HouseholdRecord]:
        """
        Append a LocalId record now, insert it remotely, then reconcile.

        Returns the confirmed record, or None if the create failed.
        """
        correlation_id = create_correlation_id(correlation_id)
        values = dict(fields)
        values["household_id"] = self.household_id
        if self.spec.scope_column != "household_id":
            values[self.spec.scope_column] = self.scope_id
        try:
            record = self.spec.record_type(id=new_local_id(), **values)
        except ValueError as e:
            self._refuse(None, f"Invalid {self.spec.name} record: {e}")
            return None

        local_id = record.id
        self._commit_local(self._with_inserted(self.records.value, record))
        self._audit.log(AuditEventBuilder.create_applied(
            self.spec.name, str(local_id), correlation_id,
        ))

        confirmed: Optional[HouseholdRecord] = None
        self._in_flight += 1
        try:
            row = await self._store.insert(self.table, record.to_insert_row())
            confirmed = self._parse_row(row)
        except (RemoteStoreError, ValueError) as e:
            self._unsynced.pop(local_id, None)
            self._abandoned.discard(local_id)
            self._commit_local([r for r in self.records.value if r.id != local_id])
            self._fail("create", str(local_id), e, correlation_id)
        finally:
            self._in_flight -= 1

        if confirmed is None:
            await self._settle()
            return None

        self._clear_error()
        self._resolved[local_id] = confirmed.id
        self._audit.log(AuditEventBuilder.confirmed(
            "create", self.spec.name, str(confirmed.id), correlation_id,
            details={"local_id": str(local_id)},
        ))

        if local_id in self._abandoned:
            # Removed locally while the insert was in flight
            self._abandoned.discard(local_id)
            self._unsynced.pop(local_id, None)
            await self._delete_remote([confirmed.id], [], correlation_id)
            await self._settle()
            return None

        pending = self._unsynced.pop(local_id, None)
        current = self.get(local_id)
        if current is not None and pending:
            confirmed = confirmed.with_patch(current.values_of(pending))
        self._commit_local([
            confirmed if r.id == local_id else r for r in self.records.value
        ])

        if pending:
            await self._write(confirmed.id, pending, correlation_id)
        await self._settle()
        return confirmed

    # -------------------------------------------------------------------------
    # Update
    # -------------------------------------------------------------------------

    async def update(
        self,
        record_id: IdLike,
        patch: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Patch a record locally, then write it.

        Debounce-eligible fields are written after a quiet period with their
        latest values; other fields are written immediately. On failure only
        the patched fields revert.
        """
        correlation_id = create_correlation_id(correlation_id)
        record_id = _coerce_id(record_id)

        if self.spec.immutable:
            self._refuse(record_id, f"{self.spec.name} entries cannot be edited, only removed")
            return False
        current = self.get(record_id)
        if current is None:
            self._refuse(record_id, "Record no longer exists")
            return False
        if not patch:
            return True
        try:
            updated = current.with_patch(patch)
        except ValueError as e:
            self._refuse(record_id, f"Invalid update: {e}")
            return False

        previous = current.values_of(patch)
        self._commit_local([updated if r.id == record_id else r for r in self.records.value])

        if isinstance(record_id, LocalId):
            remembered = self._unsynced.setdefault(record_id, {})
            for name, value in previous.items():
                remembered.setdefault(name, value)
            self._audit.log(AuditEventBuilder.update_applied(
                self.spec.name, str(record_id), sorted(patch), True, correlation_id,
            ))
            return True

        debounced = {n: v for n, v in previous.items() if n in self.spec.debounced_fields}
        immediate = {n: v for n, v in previous.items() if n not in self.spec.debounced_fields}

        if debounced:
            dirty = self._dirty.setdefault(record_id, {})
            for name, value in debounced.items():
                dirty.setdefault(name, value)
            self._scheduler.schedule(
                record_id,
                self.spec.delay_ms(self._settings),
                lambda: self._flush_debounced(record_id),
            )
            self._audit.log(AuditEventBuilder.update_applied(
                self.spec.name, str(record_id), sorted(debounced), True, correlation_id,
            ))

        ok = True
        if immediate:
            self._audit.log(AuditEventBuilder.update_applied(
                self.spec.name, str(record_id), sorted(immediate), False, correlation_id,
            ))
            ok = await self._write(record_id, immediate, correlation_id)
            await self._settle()
        return ok

    async def _flush_debounced(self, record_id: RemoteId) -> None:
        previous = self._dirty.pop(record_id, None)
        if not previous or self._closed:
            return
        await self._write(record_id, previous, create_correlation_id())
        await self._settle()

    async def _write(
        self,
        record_id: RemoteId,
        previous: dict[str, Any],
        correlation_id: UUID,
    ) -> bool:
        """Send the current values of `previous`'s fields; revert them on failure."""
        record = self.get(record_id)
        if record is None:
            return False
        payload = record.model_dump(mode="json", include=set(previous))

        self._in_flight += 1
        try:
            await self._store.update(self.table, record_id.value, payload)
        except RemoteStoreError as e:
            self._revert(record_id, previous)
            self._fail("update", str(record_id), e, correlation_id)
            return False
        finally:
            self._in_flight -= 1

        self._clear_error()
        self._audit.log(AuditEventBuilder.confirmed(
            "update", self.spec.name, str(record_id), correlation_id,
            details={"fields": sorted(payload)},
        ))
        return True

    def _revert(self, record_id: RemoteId, previous: dict[str, Any]) -> None:
        # Fields edited again since this write was sent keep their newer value
        newer = self._dirty.get(record_id, {})
        restore = {n: v for n, v in previous.items() if n not in newer}
        current = self.get(record_id)
        if current is None or not restore:
            return
        reverted = current.with_patch(restore)
        self._commit_local([reverted if r.id == record_id else r for r in self.records.value])

    # -------------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------------

    async def remove(self, record_id: IdLike, correlation_id: Optional[UUID] = None) -> bool:
        """Remove one record now; restore the whole prior collection on failure."""
        return await self.bulk_remove([record_id], correlation_id)

    async def bulk_remove(
        self,
        record_ids: Iterable[IdLike],
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """Remove several records with a single snapshot and a single remote delete."""
        correlation_id = create_correlation_id(correlation_id)
        wanted = {_coerce_id(r) for r in record_ids}

        snapshot = list(self.records.value)
        targets = [r for r in snapshot if r.id in wanted]
        if not targets:
            return True

        cancelled: list[tuple[RemoteId, dict[str, Any]]] = []
        for record in targets:
            self._scheduler.cancel(record.id)
            dirty = self._dirty.pop(record.id, None)
            if dirty:
                cancelled.append((record.id, dirty))
            if isinstance(record.id, LocalId):
                self._abandoned.add(record.id)

        self._commit_local([r for r in snapshot if r.id not in wanted])
        self._audit.log(AuditEventBuilder.delete_applied(
            self.spec.name, [str(r.id) for r in targets], correlation_id,
        ))

        remote_ids = [r.id for r in targets if isinstance(r.id, RemoteId)]
        if not remote_ids:
            self._clear_error()
            return True

        ok = await self._delete_remote(remote_ids, cancelled, correlation_id, snapshot)
        await self._settle()
        return ok

    async def _delete_remote(
        self,
        remote_ids: list[RemoteId],
        cancelled: list[tuple[RemoteId, dict[str, Any]]],
        correlation_id: UUID,
        snapshot: Optional[list[HouseholdRecord]] = None,
    ) -> bool:
        record_label = str(remote_ids[0]) if len(remote_ids) == 1 else None
        self._in_flight += 1
        try:
            await self._store.delete(self.table, [r.value for r in remote_ids])
        except RemoteStoreError as e:
            if snapshot is not None:
                self._restore(snapshot, cancelled)
            self._fail("delete", record_label, e, correlation_id)
            return False
        finally:
            self._in_flight -= 1

        self._clear_error()
        self._audit.log(AuditEventBuilder.confirmed(
            "delete", self.spec.name, record_label, correlation_id,
            details={"record_ids": [r.value for r in remote_ids]},
        ))
        return True

    def _restore(
        self,
        snapshot: list[HouseholdRecord],
        cancelled: list[tuple[RemoteId, dict[str, Any]]],
    ) -> None:
        current = {r.id: r for r in self.records.value}
        restored = []
        for record in snapshot:
            if isinstance(record.id, LocalId):
                self._abandoned.discard(record.id)
                resolved = self._resolved.get(record.id)
                if resolved is not None:
                    # Confirmed while the delete was in flight. If the confirmed
                    # record is gone too, it was deleted remotely on confirmation.
                    if resolved in current:
                        restored.append(current[resolved])
                    continue
            restored.append(record)
        self._commit_local(restored)

        # Edits whose debounced write was cancelled by the delete are rescheduled
        for record_id, dirty in cancelled:
            self._dirty.setdefault(record_id, {}).update(dirty)
            self._scheduler.schedule(
                record_id,
                self.spec.delay_ms(self._settings),
                lambda record_id=record_id: self._flush_debounced(record_id),
            )

    # -------------------------------------------------------------------------
    # Reload
    # -------------------------------------------------------------------------

    async def reload(self) -> bool:
        """
        Replace the collection with a fresh remote read.

        LocalId records are kept (they cannot appear remotely yet). Returns
        True if the result was applied, False if it failed or was stale.
        """
        if self._closed:
            return False
        self._reload_seq += 1
        sequence = self._reload_seq
        revision = self._revision

        try:
            rows = await self._fetch()
            fresh = [self._parse_row(row) for row in rows]
        except (RemoteStoreError, ValueError) as e:
            self._record_error(self._error_message("reload", e))
            self._audit.log(AuditEventBuilder.reload_failed(self.spec.name, str(e)))
            return False

        if self._closed:
            return False
        if sequence < self._applied_seq:
            self._audit.log(AuditEventBuilder.reload_discarded(
                self.spec.name, "a newer reload was already applied", sequence,
            ))
            return False
        if self._revision != revision or self.has_pending_writes:
            self._refresh_needed = True
            self._audit.log(AuditEventBuilder.reload_discarded(
                self.spec.name, "local changes outstanding", sequence,
            ))
            if not self.has_pending_writes:
                await self._settle()
            return False

        local_only = [r for r in self.records.value if r.is_local]
        merged = local_only + fresh if self.spec.prepend else fresh + local_only
        self._applied_seq = sequence
        self._refresh_needed = False
        self._set(merged)
        self._audit.log(AuditEventBuilder.reload_applied(
            self.spec.name, len(fresh), len(local_only), self._revision,
        ))
        return True

    async def _fetch(self) -> list[dict[str, Any]]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.reload_retry_attempts),
            wait=wait_exponential(
                multiplier=self._settings.reload_retry_min_wait_s,
                min=self._settings.reload_retry_min_wait_s,
                max=self._settings.reload_retry_max_wait_s,
            ),
            retry=retry_if_exception_type(RemoteConnectionError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._store.select(
                    self.table,
                    {self.spec.scope_column: self.scope_id},
                    order=self.spec.order,
                )
        return []

    async def _settle(self) -> None:
        """Run the refresh a stale reload postponed, once nothing is outstanding."""
        if self._refresh_needed and not self.has_pending_writes and not self._closed:
            self._refresh_needed = False
            await self.reload()

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Cancel all pending debounced writes; the coordinator stops writing."""
        if self._closed:
            return
        self._closed = True
        cancelled = self._scheduler.cancel_all()
        self._dirty.clear()
        logger.debug("coordinator_closed", collection=self.spec.name, cancelled=cancelled)

    async def flush(self) -> None:
        """Wait for every debounced write that is pending or running."""
        await self._scheduler.wait_idle()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _with_inserted(
        self,
        records: list[HouseholdRecord],
        record: HouseholdRecord,
    ) -> list[HouseholdRecord]:
        return [record, *records] if self.spec.prepend else [*records, record]

    def _commit_local(self, records: list[HouseholdRecord]) -> None:
        self._revision += 1
        self._set(records)

    def _set(self, records: list[HouseholdRecord]) -> None:
        if self.spec.sort_key is not None:
            records = sorted(records, key=self.spec.sort_key)
        self.records.set(records)

    def _clear_error(self) -> None:
        if self.last_error.value is not None:
            self.last_error.set(None)

    def _record_error(self, message: str) -> None:
        self.last_error.set(message)

    def _parse_row(self, row: dict[str, Any]) -> HouseholdRecord:
        """Raises ValueError (pydantic ValidationError) for a malformed row."""
        return self.spec.record_type.from_row(row)

    def _error_message(self, operation: str, error: Exception) -> str:
        if isinstance(error, RemoteStoreError):
            return str(error) or f"Could not {operation} {self.spec.name} record"
        return f"Received an invalid {self.spec.name} record from the store"

    def _fail(
        self,
        operation: str,
        record_id: Optional[str],
        error: Exception,
        correlation_id: UUID,
    ) -> None:
        self._record_error(self._error_message(operation, error))
        self._audit.log(AuditEventBuilder.rolled_back(
            operation, self.spec.name, record_id, str(error), correlation_id,
        ))

    def _refuse(self, record_id: Optional[RecordId], reason: str) -> None:
        self._record_error(reason)
        self._audit.log(AuditEventBuilder.mutation_refused(
            self.spec.name, str(record_id) if record_id is not None else None, reason,
        ))


def _coerce_id(record_id: IdLike) -> RecordId:
    if isinstance(record_id, (LocalId, RemoteId)):
        return record_id
    return RemoteId(value=str(record_id))
