"""
Audit Models for Household Sync

Every optimistic change, its confirmation or rollback, and every reload
decision is recorded as an audit event. This provides:
1. Traceability of what the local view did and why
2. Debugging information when local and remote state disagree
3. A way to reconstruct the order of races after the fact

DESIGN DECISION: Audit events are append-only. We never modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each step of the optimistic mutation lifecycle has its own type.
    """
    # Create
    CREATE_APPLIED = "create_applied"
    CREATE_CONFIRMED = "create_confirmed"
    CREATE_ROLLED_BACK = "create_rolled_back"

    # Update
    UPDATE_APPLIED = "update_applied"
    UPDATE_DEFERRED = "update_deferred"
    UPDATE_CONFIRMED = "update_confirmed"
    UPDATE_ROLLED_BACK = "update_rolled_back"

    # Delete
    DELETE_APPLIED = "delete_applied"
    DELETE_CONFIRMED = "delete_confirmed"
    DELETE_ROLLED_BACK = "delete_rolled_back"

    # Reload
    RELOAD_APPLIED = "reload_applied"
    RELOAD_DISCARDED = "reload_discarded"
    RELOAD_FAILED = "reload_failed"

    # Change stream
    SUBSCRIPTION_OPENED = "subscription_opened"
    SUBSCRIPTION_CLOSED = "subscription_closed"
    CHANGE_RECEIVED = "change_received"

    # Session and input
    PRECONDITION_FAILED = "precondition_failed"
    INPUT_REJECTED = "input_rejected"
    MUTATION_REFUSED = "mutation_refused"

    # Settlement
    SETTLEMENT_COMPUTED = "settlement_computed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - which collection and record is this about?
    collection: Optional[str] = Field(
        default=None,
        description="Collection name (e.g., 'shopping', 'expenses')"
    )
    record_id: Optional[str] = Field(
        default=None,
        description="Local or remote id of the record, rendered as text"
    )

    # Correlation - ties an optimistic step to its confirmation or rollback
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID shared by all events of one user action"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "collection": self.collection,
            "record_id": self.record_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.create_applied("shopping", record_id, correlation_id)
        event = AuditEventBuilder.rolled_back("delete", "shopping", record_id, error, correlation_id)
    """

    _ROLLBACK_TYPES = {
        "create": AuditEventType.CREATE_ROLLED_BACK,
        "update": AuditEventType.UPDATE_ROLLED_BACK,
        "delete": AuditEventType.DELETE_ROLLED_BACK,
    }

    _CONFIRM_TYPES = {
        "create": AuditEventType.CREATE_CONFIRMED,
        "update": AuditEventType.UPDATE_CONFIRMED,
        "delete": AuditEventType.DELETE_CONFIRMED,
    }

    @staticmethod
    def create_applied(
        collection: str,
        record_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREATE_APPLIED,
            collection=collection,
            record_id=record_id,
            correlation_id=correlation_id,
            description=f"Optimistic create in {collection}",
        )

    @staticmethod
    def update_applied(
        collection: str,
        record_id: str,
        fields: list[str],
        deferred: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.UPDATE_DEFERRED if deferred else AuditEventType.UPDATE_APPLIED
            ),
            severity=AuditSeverity.DEBUG if deferred else AuditSeverity.INFO,
            collection=collection,
            record_id=record_id,
            correlation_id=correlation_id,
            description=f"Optimistic update of {', '.join(fields)}",
            details={"fields": fields, "deferred": deferred},
        )

    @staticmethod
    def delete_applied(
        collection: str,
        record_ids: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DELETE_APPLIED,
            collection=collection,
            record_id=record_ids[0] if len(record_ids) == 1 else None,
            correlation_id=correlation_id,
            description=f"Optimistic delete of {len(record_ids)} record(s) in {collection}",
            details={"record_ids": record_ids},
        )

    @classmethod
    def confirmed(
        cls,
        operation: str,
        collection: str,
        record_id: Optional[str],
        correlation_id: UUID,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=cls._CONFIRM_TYPES[operation],
            collection=collection,
            record_id=record_id,
            correlation_id=correlation_id,
            description=f"Remote store confirmed {operation} in {collection}",
            details=details or {},
        )

    @classmethod
    def rolled_back(
        cls,
        operation: str,
        collection: str,
        record_id: Optional[str],
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=cls._ROLLBACK_TYPES[operation],
            severity=AuditSeverity.WARNING,
            collection=collection,
            record_id=record_id,
            correlation_id=correlation_id,
            description=f"Remote store rejected {operation}; local state rolled back",
            error_message=error_message,
        )

    @staticmethod
    def reload_applied(
        collection: str,
        record_count: int,
        kept_local: int,
        revision: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RELOAD_APPLIED,
            severity=AuditSeverity.DEBUG,
            collection=collection,
            description=f"Reloaded {record_count} record(s) into {collection}",
            details={
                "record_count": record_count,
                "kept_local": kept_local,
                "revision": revision,
            },
        )

    @staticmethod
    def reload_discarded(
        collection: str,
        reason: str,
        sequence: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RELOAD_DISCARDED,
            severity=AuditSeverity.DEBUG,
            collection=collection,
            description=f"Discarded stale reload of {collection}: {reason}",
            details={"reason": reason, "sequence": sequence},
        )

    @staticmethod
    def reload_failed(
        collection: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RELOAD_FAILED,
            severity=AuditSeverity.ERROR,
            collection=collection,
            description=f"Could not reload {collection}",
            error_message=error_message,
        )

    @staticmethod
    def subscription_opened(table: str, household_id: str, topic: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_OPENED,
            severity=AuditSeverity.DEBUG,
            collection=table,
            description=f"Subscribed to {topic}",
            details={"household_id": household_id, "topic": topic},
        )

    @staticmethod
    def subscription_closed(table: str, household_id: str, topic: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_CLOSED,
            severity=AuditSeverity.DEBUG,
            collection=table,
            description=f"Unsubscribed from {topic}",
            details={"household_id": household_id, "topic": topic},
        )

    @staticmethod
    def change_received(table: str, household_id: str, event: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHANGE_RECEIVED,
            severity=AuditSeverity.DEBUG,
            collection=table,
            description=f"Change notification ({event}) for {table}",
            details={"household_id": household_id, "event": event},
        )

    @staticmethod
    def precondition_failed(reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PRECONDITION_FAILED,
            severity=AuditSeverity.WARNING,
            description="Mutation skipped: precondition not met",
            error_message=reason,
        )

    @staticmethod
    def input_rejected(collection: str, issues: list[dict]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INPUT_REJECTED,
            severity=AuditSeverity.WARNING,
            collection=collection,
            description=f"Input rejected with {len(issues)} issue(s)",
            details={"issues": issues},
        )

    @staticmethod
    def mutation_refused(
        collection: str,
        record_id: Optional[str],
        reason: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_REFUSED,
            severity=AuditSeverity.WARNING,
            collection=collection,
            record_id=record_id,
            description="Mutation refused locally",
            error_message=reason,
        )

    @staticmethod
    def settlement_computed(
        total_minor: int,
        member_count: int,
        transfer_count: int,
        rounding_slack: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_COMPUTED,
            severity=AuditSeverity.DEBUG,
            collection="expenses",
            description=f"Settlement computed: {transfer_count} transfer(s)",
            details={
                "total_minor": total_minor,
                "member_count": member_count,
                "transfer_count": transfer_count,
                "rounding_slack": rounding_slack,
            },
        )
