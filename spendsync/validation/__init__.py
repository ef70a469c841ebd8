"""Input validation package."""

from spendsync.validation.validator import TransactionValidator, ValidationError

__all__ = ["TransactionValidator", "ValidationError"]
