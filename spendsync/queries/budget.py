"""
Budget-Threshold Classifier

Maps a period's spending onto a three-way status:

    total >  upper           -> OVER    (red)
    lower <= total <= upper  -> WITHIN  (yellow)
    0 <= total < lower       -> UNDER   (green)

Both bounds are inclusive in the WITHIN band. Keep it that way:
an off-by-one at either boundary changes the signal users see.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from spendsync import money
from spendsync.config import get_settings
from spendsync.money import Amount
from spendsync.models.validation import ValidationIssue, ValidationResult
from spendsync.validation.validator import ValidationError


DEFAULT_UPPER_LIMIT = 250000
DEFAULT_LOWER_LIMIT = 210000


class BudgetStatus(str, Enum):
    """Spending status for a period."""
    OVER = "over"
    WITHIN = "within"
    UNDER = "under"

    @property
    def signal(self) -> str:
        """Colour used to signal the status downstream."""
        return {
            BudgetStatus.OVER: "red",
            BudgetStatus.WITHIN: "yellow",
            BudgetStatus.UNDER: "green",
        }[self]


class BudgetBounds(BaseModel):
    """Lower and upper spending bounds for a period."""
    model_config = ConfigDict(frozen=True)

    lower: Decimal = Field(default=Decimal(DEFAULT_LOWER_LIMIT))
    upper: Decimal = Field(default=Decimal(DEFAULT_UPPER_LIMIT))

    @model_validator(mode='after')
    def validate_order(self) -> 'BudgetBounds':
        if not money.is_valid_amount(self.lower) or not money.is_valid_amount(self.upper):
            raise ValueError("Budget bounds must be non-negative amounts")
        if money.compare(self.lower, self.upper) > 0:
            raise ValueError("Budget lower bound cannot exceed upper bound")
        return self

    @classmethod
    def from_settings(cls) -> 'BudgetBounds':
        settings = get_settings().budget
        return cls(lower=settings.lower_limit, upper=settings.upper_limit)


def classify(
    total: Amount,
    lower: Optional[Amount] = None,
    upper: Optional[Amount] = None,
) -> BudgetStatus:
    """
    Classify a period total against budget bounds.

    Missing bounds fall back to 210000 (lower) and 250000 (upper).

    Raises:
        ValidationError: If the total is negative or not a number, or
            the bounds are inverted.
    """
    lower = DEFAULT_LOWER_LIMIT if lower is None else lower
    upper = DEFAULT_UPPER_LIMIT if upper is None else upper

    issues = []
    if not money.is_valid_amount(total):
        issues.append(ValidationIssue(
            field="total",
            issue_type="invalid_value",
            message="Total must be a non-negative amount",
        ))
    if not money.is_valid_amount(lower) or not money.is_valid_amount(upper):
        issues.append(ValidationIssue(
            field="bounds",
            issue_type="invalid_value",
            message="Budget bounds must be non-negative amounts",
        ))
    elif money.compare(lower, upper) > 0:
        issues.append(ValidationIssue(
            field="bounds",
            issue_type="invalid_value",
            message="Lower bound cannot exceed upper bound",
        ))
    if issues:
        raise ValidationError(
            ValidationResult(schema_valid=True, semantic_valid=False, issues=issues),
            "Cannot classify spending",
        )

    if money.compare(total, upper) > 0:
        return BudgetStatus.OVER
    if money.compare(total, lower) >= 0:
        return BudgetStatus.WITHIN
    return BudgetStatus.UNDER


def classify_with_bounds(total: Amount, bounds: Optional[BudgetBounds] = None) -> BudgetStatus:
    """Classify against configured bounds (settings when none are given)."""
    bounds = bounds or BudgetBounds.from_settings()
    return classify(total, bounds.lower, bounds.upper)
