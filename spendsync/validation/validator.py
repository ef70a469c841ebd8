"""
Two-Stage Input Validation

DESIGN DECISION: Validation happens before any remote call, in two stages:

STAGE 1 - SCHEMA VALIDATION:
- The payload decodes into TransactionInput / TransactionUpdateInput
- Amounts parse as finite decimals, kinds are known values

STAGE 2 - SEMANTIC VALIDATION:
- Amount strictly positive with at most 2 fractional digits
- Description present and not blank

IMPORTANT: Validation NEVER silently fixes issues, and input that fails
validation is never sent to the store of record.
"""

from decimal import Decimal
from typing import Any, Union

from pydantic import ValidationError as SchemaError

from spendsync import money
from spendsync.models.transaction import TransactionInput, TransactionUpdateInput
from spendsync.models.validation import ValidationIssue, ValidationResult


MAX_DESCRIPTION_LENGTH = 255


class ValidationError(Exception):
    """Input rejected locally; nothing was sent to the store of record."""

    def __init__(self, result: ValidationResult, message: str = "Invalid transaction input"):
        self.result = result
        details = "; ".join(f"{i.field}: {i.message}" for i in result.issues)
        super().__init__(f"{message}: {details}" if details else message)


class TransactionValidator:
    """
    Validates transaction input through a two-stage pipeline.

    Use `validate_*` to get a ValidationResult, or `require_*` to get
    the decoded model or a ValidationError.
    """

    def _schema_issues(self, error: SchemaError) -> list[ValidationIssue]:
        issues = []
        for err in error.errors():
            field = ".".join(str(part) for part in err.get("loc", ())) or "input"
            issue_type = "missing" if err.get("type") == "missing" else "invalid_format"
            issues.append(ValidationIssue(
                field=field,
                issue_type=issue_type,
                message=err.get("msg", "Invalid value"),
            ))
        return issues

    def _amount_issues(self, amount: Decimal) -> list[ValidationIssue]:
        issues = []
        if not amount.is_finite():
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be a finite number",
            ))
        elif not money.is_positive(amount):
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than zero",
                suggested_fix="Enter a positive amount",
            ))
        elif money.round_amount(amount) != amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount cannot have more than 2 decimal places",
            ))
        return issues

    def _description_issues(self, description: str) -> list[ValidationIssue]:
        issues = []
        if not description.strip():
            issues.append(ValidationIssue(
                field="description",
                issue_type="missing",
                message="Description is required",
            ))
        elif len(description) > MAX_DESCRIPTION_LENGTH:
            issues.append(ValidationIssue(
                field="description",
                issue_type="invalid_value",
                message=f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters",
            ))
        return issues

    def validate_input(
        self,
        data: Union[TransactionInput, dict[str, Any]],
    ) -> tuple[ValidationResult, TransactionInput | None]:
        """
        Validate a create payload.

        Returns:
            (validation_result, decoded_input or None if schema failed)
        """
        if isinstance(data, TransactionInput):
            tx = data
        else:
            try:
                tx = TransactionInput.model_validate(data)
            except SchemaError as e:
                return ValidationResult(
                    schema_valid=False,
                    semantic_valid=False,
                    issues=self._schema_issues(e),
                ), None

        issues = self._description_issues(tx.description) + self._amount_issues(tx.amount)
        return ValidationResult(
            schema_valid=True,
            semantic_valid=not issues,
            issues=issues,
        ), tx

    def validate_update(
        self,
        data: Union[TransactionUpdateInput, dict[str, Any]],
    ) -> tuple[ValidationResult, TransactionUpdateInput | None]:
        """Validate a partial update; only fields present are checked."""
        if isinstance(data, TransactionUpdateInput):
            update = data
        else:
            try:
                update = TransactionUpdateInput.model_validate(data)
            except SchemaError as e:
                return ValidationResult(
                    schema_valid=False,
                    semantic_valid=False,
                    issues=self._schema_issues(e),
                ), None

        issues = []
        if update.description is not None:
            issues += self._description_issues(update.description)
        if update.amount is not None:
            issues += self._amount_issues(update.amount)
        return ValidationResult(
            schema_valid=True,
            semantic_valid=not issues,
            issues=issues,
        ), update

    def require_inputs(
        self,
        items: list[Union[TransactionInput, dict[str, Any]]],
    ) -> list[TransactionInput]:
        """
        Validate a batch of create payloads.

        Raises:
            ValidationError: If the batch is empty or any item is invalid.
                Issue fields are prefixed with the item index.
        """
        if not items:
            raise ValidationError(ValidationResult(
                schema_valid=False,
                semantic_valid=False,
                issues=[ValidationIssue(
                    field="transactions",
                    issue_type="missing",
                    message="At least one transaction is required",
                )],
            ))

        decoded: list[TransactionInput] = []
        issues: list[ValidationIssue] = []
        schema_valid = True
        for index, item in enumerate(items):
            result, tx = self.validate_input(item)
            schema_valid = schema_valid and result.schema_valid
            for issue in result.issues:
                issues.append(issue.model_copy(update={"field": f"{index}.{issue.field}"}))
            if tx is not None:
                decoded.append(tx)

        if issues:
            raise ValidationError(ValidationResult(
                schema_valid=schema_valid,
                semantic_valid=False,
                issues=issues,
            ))
        return decoded

    def require_update(
        self,
        data: Union[TransactionUpdateInput, dict[str, Any]],
    ) -> TransactionUpdateInput:
        """
        Raises:
            ValidationError: If the update is invalid.
        """
        result, update = self.validate_update(data)
        if not result.is_valid or update is None:
            raise ValidationError(result)
        return update
