"""
Tests for the budget-threshold classifier.

Boundaries are inclusive on both ends of the WITHIN band.
"""

from decimal import Decimal

import pytest

from spendsync.queries import BudgetBounds, BudgetStatus, classify, classify_with_bounds
from spendsync.validation import ValidationError


class TestClassify:
    """Tests for classify(total, lower, upper)."""

    @pytest.mark.parametrize("total,expected", [
        (210000, BudgetStatus.WITHIN),
        (209999, BudgetStatus.UNDER),
        (250000, BudgetStatus.WITHIN),
        (250001, BudgetStatus.OVER),
        (0, BudgetStatus.UNDER),
        ("250000.01", BudgetStatus.OVER),
        ("209999.99", BudgetStatus.UNDER),
    ])
    def test_boundaries(self, total, expected):
        """Test the inclusive band edges."""
        assert classify(total, 210000, 250000) == expected

    def test_defaults(self):
        """Test the default bounds are 210000 and 250000."""
        assert classify(Decimal("230000")) == BudgetStatus.WITHIN
        assert classify(Decimal("260000")) == BudgetStatus.OVER
        assert classify(Decimal("100000")) == BudgetStatus.UNDER

    def test_signals(self):
        """Test each status maps to its colour."""
        assert BudgetStatus.OVER.signal == "red"
        assert BudgetStatus.WITHIN.signal == "yellow"
        assert BudgetStatus.UNDER.signal == "green"

    def test_negative_total_is_rejected(self):
        """Test a negative total is a validation error."""
        with pytest.raises(ValidationError) as exc_info:
            classify(-1)
        assert exc_info.value.result.issues[0].field == "total"

    def test_inverted_bounds_are_rejected(self):
        """Test lower above upper is a validation error."""
        with pytest.raises(ValidationError):
            classify(1000, lower=500, upper=100)

    def test_equal_bounds(self):
        """Test a zero-width band still classifies its single value."""
        assert classify(100, 100, 100) == BudgetStatus.WITHIN
        assert classify(101, 100, 100) == BudgetStatus.OVER


class TestBudgetBounds:
    """Tests for the bounds model."""

    def test_defaults(self):
        """Test default bounds."""
        bounds = BudgetBounds()
        assert bounds.lower == Decimal("210000")
        assert bounds.upper == Decimal("250000")

    def test_inverted_bounds(self):
        """Test the model refuses lower above upper."""
        with pytest.raises(ValueError):
            BudgetBounds(lower=300000, upper=200000)

    def test_classify_with_bounds(self):
        """Test classification against explicit bounds."""
        bounds = BudgetBounds(lower=100, upper=200)
        assert classify_with_bounds(150, bounds) == BudgetStatus.WITHIN
        assert classify_with_bounds(201, bounds) == BudgetStatus.OVER


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
