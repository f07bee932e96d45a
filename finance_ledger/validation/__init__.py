"""Validation package."""

from finance_ledger.validation.validator import (
    ValidationError,
    validate_account,
    validate_budget,
    validate_export,
    validate_goal,
    validate_transaction,
)

__all__ = [
    "ValidationError",
    "validate_account",
    "validate_budget",
    "validate_export",
    "validate_goal",
    "validate_transaction",
]
