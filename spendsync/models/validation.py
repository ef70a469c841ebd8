"""Validation result models shared by the input validator and its callers."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'invalid_format')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (types, required fields)
    Stage 2: Semantic validation (business rules)
    """

    validated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    schema_valid: bool
    semantic_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid and not self.has_errors

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    def issues_as_dicts(self) -> list[dict]:
        return [
            {"field": i.field, "type": i.issue_type, "message": i.message}
            for i in self.issues
        ]
