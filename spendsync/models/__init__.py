"""
Data Models Package

This package contains all Pydantic models used in SpendSync.
All data crossing the database or realtime boundary must conform to these schemas.
"""

from spendsync.models.transaction import (
    AggregateBucket,
    CategoryRef,
    ChangeEvent,
    ChangeEventType,
    FamilyMember,
    FamilyScope,
    FetchResult,
    PeriodWindow,
    TransactionInput,
    TransactionKind,
    TransactionRecord,
    TransactionUpdateInput,
)
from spendsync.models.validation import ValidationIssue, ValidationResult
from spendsync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Transaction models
    "AggregateBucket",
    "CategoryRef",
    "ChangeEvent",
    "ChangeEventType",
    "FamilyMember",
    "FamilyScope",
    "FetchResult",
    "PeriodWindow",
    "TransactionInput",
    "TransactionKind",
    "TransactionRecord",
    "TransactionUpdateInput",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
