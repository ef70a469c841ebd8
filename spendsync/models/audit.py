"""
Audit Models for SpendSync

Every change to the local transaction log and every realtime decision
is described by an AuditEvent. This provides:
1. Traceability of why a record is (or is not) visible
2. Debugging information when the log and the database disagree
3. A visible signal when live updates degrade

DESIGN DECISION: Audit events are emitted, never edited.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each step of load, write and reconciliation has its own event type.
    """
    # Loading
    TRANSACTIONS_LOADED = "transactions_loaded"
    LOAD_SUPERSEDED = "load_superseded"
    LOAD_FAILED = "load_failed"

    # Local writes
    VALIDATION_FAILED = "validation_failed"
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    WRITE_FAILED = "write_failed"

    # Realtime reconciliation
    REMOTE_CHANGE_APPLIED = "remote_change_applied"
    REMOTE_CHANGE_IGNORED = "remote_change_ignored"
    REMOTE_PAYLOAD_REJECTED = "remote_payload_rejected"
    SUBSCRIPTION_STATUS_CHANGED = "subscription_status_changed"
    SUBSCRIPTION_DEGRADED = "subscription_degraded"
    FAMILY_SCOPE_CHANGED = "family_scope_changed"

    # System events
    SYSTEM_ERROR = "system_error"


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

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'subscription')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Opaque id of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one load and its reconciliations)"
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

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transactions_loaded("2024-05", 12, correlation_id)
        event = AuditEventBuilder.remote_change_ignored("INSERT", tx_id, "duplicate")
    """

    @staticmethod
    def transactions_loaded(
        period: str,
        count: int,
        scope_size: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTIONS_LOADED,
            entity_type="period",
            entity_id=period,
            correlation_id=correlation_id,
            description=f"Loaded {count} transactions for {period}",
            details={
                "count": count,
                "scope_size": scope_size,
            },
        )

    @staticmethod
    def load_superseded(
        period: str,
        generation: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAD_SUPERSEDED,
            severity=AuditSeverity.DEBUG,
            entity_type="period",
            entity_id=period,
            correlation_id=correlation_id,
            description=f"Discarded stale load #{generation} for {period}",
            details={"generation": generation},
        )

    @staticmethod
    def load_failed(
        period: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAD_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="period",
            entity_id=period,
            correlation_id=correlation_id,
            description=f"Load failed for {period}; keeping previous snapshot",
            error_message=error_message,
        )

    @staticmethod
    def validation_failed(
        operation: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            correlation_id=correlation_id,
            description=f"{operation.capitalize()} rejected with {len(issues)} issues",
            details={
                "operation": operation,
                "issues": issues,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_written(
        operation: str,
        transaction_id: str,
        amount: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        event_type = {
            "create": AuditEventType.TRANSACTION_CREATED,
            "update": AuditEventType.TRANSACTION_UPDATED,
            "delete": AuditEventType.TRANSACTION_DELETED,
        }[operation]
        return AuditEvent(
            event_type=event_type,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction {operation}d: {transaction_id}",
            details={"amount": amount} if amount is not None else {},
            is_user_action=True,
        )

    @staticmethod
    def write_failed(
        operation: str,
        error_message: str,
        transaction_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WRITE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Remote {operation} failed; local log unchanged",
            error_message=error_message,
            details={"operation": operation},
            is_user_action=True,
        )

    @staticmethod
    def remote_change_applied(
        event_type: str,
        transaction_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REMOTE_CHANGE_APPLIED,
            severity=AuditSeverity.DEBUG,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Applied realtime {event_type}",
            details={"change": event_type},
        )

    @staticmethod
    def remote_change_ignored(
        event_type: str,
        transaction_id: Optional[str],
        reason: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REMOTE_CHANGE_IGNORED,
            severity=AuditSeverity.DEBUG,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Ignored realtime {event_type}: {reason}",
            details={
                "change": event_type,
                "reason": reason,
            },
        )

    @staticmethod
    def remote_payload_rejected(
        table: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REMOTE_PAYLOAD_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="subscription",
            entity_id=table,
            description=f"Dropped malformed realtime payload on {table}",
            error_message=error_message,
        )

    @staticmethod
    def subscription_status_changed(
        table: str,
        previous: str,
        current: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_STATUS_CHANGED,
            entity_type="subscription",
            entity_id=table,
            description=f"Subscription on {table}: {previous} -> {current}",
            details={
                "previous": previous,
                "current": current,
            },
        )

    @staticmethod
    def subscription_degraded(
        table: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_DEGRADED,
            severity=AuditSeverity.WARNING,
            entity_type="subscription",
            entity_id=table,
            description=f"Live updates disabled for {table}; using last fetched snapshot",
            error_message=error_message,
        )

    @staticmethod
    def family_scope_changed(
        viewer_id: str,
        previous_size: int,
        current_size: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FAMILY_SCOPE_CHANGED,
            entity_type="family_scope",
            entity_id=viewer_id,
            description=f"Family scope now has {current_size} members (was {previous_size})",
            details={
                "previous_size": previous_size,
                "current_size": current_size,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
