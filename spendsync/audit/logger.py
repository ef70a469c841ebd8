"""
Audit Logger

DESIGN DECISION: Every load, write and realtime decision is logged.
This provides:
1. Traceability of why a record is (or is not) in the local log
2. A visible degraded-mode signal when live updates stop
3. Debugging capability for reconciliation races

The audit logger:
- Is synchronous, so store mutations can log without yielding to the event loop
- Never raises (a logging failure must not break reconciliation)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from spendsync.models.audit import AuditEvent, AuditSeverity


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

    Emits AuditEvents through structlog at the level matching
    their severity. Keeps the most recent events in memory so
    callers (and tests) can inspect what happened.
    """

    def __init__(self, history_size: int = 200):
        """
        Initialize audit logger.

        Args:
            history_size: How many recent events to retain in memory.
        """
        self._logger = structlog.get_logger("spendsync.audit")
        self._history: list[AuditEvent] = []
        self._history_size = history_size

    @property
    def history(self) -> list[AuditEvent]:
        """Recent events, oldest first."""
        return list(self._history)

    def log(self, event: AuditEvent) -> None:
        """Log an audit event."""
        self._history.append(event)
        if len(self._history) > self._history_size:
            del self._history[: len(self._history) - self._history_size]

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
            # A broken handler must not take reconciliation down with it
            structlog.get_logger("spendsync.audit").error(
                "audit_log_failed",
                error=str(e),
                event_id=str(event.event_id),
            )


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a user action (e.g., a load or a create)
    and pass it through all subsequent operations.
    """
    return uuid4()
