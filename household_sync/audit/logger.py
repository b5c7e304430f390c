"""
Audit Logger

DESIGN DECISION: Every optimistic step and every reconciliation decision
is logged. This provides:
1. Traceability of races between local writes and remote reloads
2. Debugging capability when a member reports a "lost" edit
3. A record of every rollback the user saw

The audit logger:
- Is synchronous, because optimistic steps happen before any suspension point
- Never raises into the caller (logging failure must not break a mutation)
- Supports correlation IDs to trace related events
- Keeps a bounded in-memory history (nothing is persisted across restarts)
"""

from collections import deque
from typing import Optional
from uuid import UUID, uuid4

import structlog

from household_sync.models.audit import AuditEvent, AuditSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. A bounded in-memory history (for inspection by the UI and tests)
    """

    def __init__(self, history_size: int = 500):
        """
        Initialize audit logger.

        Args:
            history_size: How many recent events to keep in memory.
        """
        self._history: deque[AuditEvent] = deque(maxlen=history_size)
        self._logger = structlog.get_logger("household_sync.audit")

    def log(self, event: AuditEvent) -> None:
        """Log an audit event locally and remember it."""
        self._history.append(event)

        log_dict = event.to_log_dict()
        try:
            if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity == AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            # Log failure but don't raise
            self._logger.error(
                "audit_log_failed",
                error=str(e),
                event_id=str(event.event_id),
            )

    def recent(self, limit: int = 100) -> list[AuditEvent]:
        """Most recent events, newest first."""
        events = list(self._history)[-limit:]
        events.reverse()
        return events

    def events_for(self, correlation_id: UUID) -> list[AuditEvent]:
        """All remembered events of one user action, in chronological order."""
        return [e for e in self._history if e.correlation_id == correlation_id]

    def clear(self) -> None:
        self._history.clear()


def create_correlation_id(existing: Optional[UUID] = None) -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., adding an item).
    Pass it through all subsequent operations.
    """
    return existing or uuid4()
