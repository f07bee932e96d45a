"""
Input Validation

Every create/update call passes through one of the validate_* functions
before anything is persisted.

Validation happens in two steps:

STEP 1 - SCHEMA VALIDATION (pydantic):
- Required field presence, empty strings
- Types, finite numbers, ranges
- Calendar dates

STEP 2 - LEDGER RULES:
- Currency codes restricted to the configured supported set
- Export documents no newer than the current schema version

IMPORTANT: Validation NEVER silently fixes issues. The only coercion
anywhere in the ledger is the documented amount sign convention, and that
is applied by the coordinator after validation, not here.
"""

import json
from decimal import InvalidOperation
from typing import Any, Iterable, Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from finance_ledger.config import get_settings
from finance_ledger.models.export import UnsupportedExportVersion, read_export
from finance_ledger.models.ledger import (
    AccountInput,
    BudgetInput,
    GoalInput,
    LedgerExport,
    TransactionInput,
    ValidationIssue,
)


class ValidationError(Exception):
    """
    Malformed input to a create/update call.

    Carries every issue found, not just the first one.
    """

    def __init__(self, entity: str, issues: list[ValidationIssue]):
        self.entity = entity
        self.issues = issues
        super().__init__(self.summary())

    @property
    def fields(self) -> list[str]:
        return [issue.field for issue in self.issues]

    def summary(self) -> str:
        """One line per issue, suitable for showing to the user."""
        lines = [f"Invalid {self.entity}:"]
        for issue in self.issues:
            lines.append(f"- {issue.field}: {issue.message}")
        return "\n".join(lines)


_MISSING_TYPES = {"missing", "string_too_short"}


def _issues_from_pydantic(error: PydanticValidationError) -> list[ValidationIssue]:
    issues = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail.get("loc", ())) or "__root__"
        error_type = detail.get("type", "value_error")
        issue_type = "missing" if error_type in _MISSING_TYPES else "invalid_value"
        message = detail.get("msg", "Invalid value")
        # Model-level validators report "Value error, <message>"
        message = message.removeprefix("Value error, ")
        issues.append(ValidationIssue(
            field=location,
            issue_type=issue_type,
            message=message,
        ))
    return issues


def _validate(
    model: type[BaseModel],
    entity: str,
    data: Union[BaseModel, dict[str, Any]],
) -> Any:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(entity, _issues_from_pydantic(e)) from e


def validate_transaction(data: Union[TransactionInput, dict[str, Any]]) -> TransactionInput:
    """
    Validate a transaction as entered by the user.

    Fails if the amount is not a finite positive magnitude, if the
    description, category or account reference is empty or missing,
    or if the date does not parse as a calendar date.
    """
    return _validate(TransactionInput, "transaction", data)


def validate_account(
    data: Union[AccountInput, dict[str, Any]],
    supported_currencies: Optional[Iterable[str]] = None,
) -> AccountInput:
    """
    Validate an account.

    Fails if the name is empty or the currency is not supported.
    `supported_currencies` defaults to the configured list.
    """
    account = _validate(AccountInput, "account", data)

    if supported_currencies is None:
        supported_currencies = get_settings().ledger.supported_currencies_list
    supported = {code.upper() for code in supported_currencies}

    if account.currency not in supported:
        raise ValidationError("account", [ValidationIssue(
            field="currency",
            issue_type="unsupported",
            message=(
                f"Currency {account.currency} is not supported. "
                f"Supported: {', '.join(sorted(supported))}"
            ),
        )])
    return account


def validate_budget(data: Union[BudgetInput, dict[str, Any]]) -> BudgetInput:
    """Fails if the limit is not positive or the alert threshold is outside 0-100."""
    return _validate(BudgetInput, "budget", data)


def validate_goal(data: Union[GoalInput, dict[str, Any]]) -> GoalInput:
    """Fails if the target is not positive or the current amount is negative."""
    return _validate(GoalInput, "goal", data)


def validate_export(
    document: Union[LedgerExport, str, dict[str, Any]],
    user_id: Optional[str] = None,
) -> LedgerExport:
    """
    Validate an export document before it is imported.

    Accepts a LedgerExport, its JSON text or the decoded dict. Legacy
    (version 0) records are assigned to `user_id`.

    Raises:
        UnsupportedExportVersion: If the document is from a newer version
        ValidationError: If the document or any record in it is malformed
    """
    if isinstance(document, LedgerExport):
        return document
    if isinstance(document, str):
        try:
            document = json.loads(document)
        except json.JSONDecodeError as e:
            raise ValidationError("export", [ValidationIssue(
                field="__root__",
                issue_type="invalid_value",
                message=f"Not valid JSON: {e.msg}",
            )]) from e
    if not isinstance(document, dict):
        raise ValidationError("export", [ValidationIssue(
            field="__root__",
            issue_type="invalid_value",
            message="Export document must be a JSON object",
        )])

    try:
        return read_export(document, user_id)
    except UnsupportedExportVersion:
        raise
    except PydanticValidationError as e:
        raise ValidationError("export", _issues_from_pydantic(e)) from e
    except KeyError as e:
        raise ValidationError("export", [ValidationIssue(
            field=str(e.args[0]),
            issue_type="missing",
            message="Required field missing from legacy record",
        )]) from e
    except (ValueError, TypeError, InvalidOperation) as e:
        raise ValidationError("export", [ValidationIssue(
            field="__root__",
            issue_type="invalid_value",
            message=str(e),
        )]) from e
