"""
Core Data Models for Finance Ledger

These models define the strict schemas for every record in the ledger.
They are designed to:
1. Enforce field invariants at construction time
2. Provide clear validation error messages
3. Be serializable for storage, export and logging
4. Keep derived fields consistent on every write

DESIGN DECISION: Each entity has two shapes.
The *Input models describe what a user enters (amounts are positive
magnitudes). The stored models describe what the ledger keeps (transaction
amounts carry the sign convention, identifiers and timestamps are assigned).
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionKind(str, Enum):
    """Direction of money movement."""
    INCOME = "income"
    EXPENSE = "expense"


class RecurrenceInterval(str, Enum):
    """How often a recurring transaction repeats."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class AccountType(str, Enum):
    """Supported account types."""
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT = "credit"
    INVESTMENT = "investment"
    CASH = "cash"


class BudgetPeriod(str, Enum):
    """Window a budget limit applies to."""
    MONTHLY = "monthly"
    YEARLY = "yearly"


class EntityKind(str, Enum):
    """
    The four record collections of a ledger.

    Storage backends keep one collection (table, worksheet...) per kind.
    """
    TRANSACTION = "transaction"
    ACCOUNT = "account"
    BUDGET = "budget"
    GOAL = "goal"


# Seed list only. Categories are free-form strings and this list is
# never used to reject a value.
DEFAULT_CATEGORIES: tuple[str, ...] = (
    "Food & Dining",
    "Transportation",
    "Shopping",
    "Entertainment",
    "Bills & Utilities",
    "Healthcare",
    "Education",
    "Travel",
    "Income",
    "Investments",
    "Other",
)


def apply_sign_convention(kind: TransactionKind, magnitude: Decimal) -> Decimal:
    """
    Turn a user-entered magnitude into a stored amount.

    Expenses are stored negative, income positive.
    """
    magnitude = abs(magnitude)
    if kind == TransactionKind.EXPENSE:
        return -magnitude
    return magnitude


def normalize_tags(tags: list[str]) -> list[str]:
    """Strip tags, drop empties and duplicates, keep first-seen order."""
    seen: list[str] = []
    for tag in tags:
        cleaned = tag.strip()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'unsupported')"
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


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionInput(BaseModel):
    """
    A transaction as entered by the user.

    The amount is always a positive magnitude here. The sign is applied
    by the coordinator when the transaction is recorded.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(
        ...,
        gt=0,
        allow_inf_nan=False,
        description="Positive magnitude in the account currency"
    )
    kind: TransactionKind
    category: str = Field(..., min_length=1, max_length=100)
    subcategory: Optional[str] = Field(default=None, max_length=100)
    account_id: UUID = Field(
        ...,
        description="Account the transaction is applied to"
    )
    description: str = Field(..., min_length=1, max_length=500)
    date: date
    tags: list[str] = Field(default_factory=list)
    recurring: bool = False
    recurring_interval: Optional[RecurrenceInterval] = None

    @field_validator('tags')
    @classmethod
    def clean_tags(cls, v: list[str]) -> list[str]:
        return normalize_tags(v)

    @field_validator('subcategory')
    @classmethod
    def empty_subcategory_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @model_validator(mode='after')
    def validate_recurrence(self) -> 'TransactionInput':
        if self.recurring and self.recurring_interval is None:
            raise ValueError("Recurring transactions need a recurring_interval")
        if not self.recurring:
            self.recurring_interval = None
        return self


class Transaction(BaseModel):
    """
    A recorded transaction.

    CRITICAL: `amount` carries the sign convention - expenses are
    negative, income positive. Consumers use `amount` for balance impact
    and `magnitude` for expense displays; they never re-derive the sign.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: UUID = Field(
        default_factory=uuid4,
        description="Unique transaction ID"
    )
    user_id: Optional[str] = Field(
        default=None,
        description="Owning user"
    )

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    amount: Decimal = Field(
        ...,
        allow_inf_nan=False,
        description="Signed amount in the account currency"
    )
    kind: TransactionKind
    category: str = Field(..., min_length=1, max_length=100)
    subcategory: Optional[str] = None
    account_id: UUID
    description: str = Field(..., min_length=1, max_length=500)
    date: date
    tags: list[str] = Field(default_factory=list)
    recurring: bool = False
    recurring_interval: Optional[RecurrenceInterval] = None

    @field_validator('tags')
    @classmethod
    def clean_tags(cls, v: list[str]) -> list[str]:
        return normalize_tags(v)

    @model_validator(mode='after')
    def validate_sign(self) -> 'Transaction':
        """Enforce the sign convention on stored amounts."""
        if self.kind == TransactionKind.EXPENSE and self.amount > 0:
            raise ValueError("Expense amounts must be stored as negative values")
        if self.kind == TransactionKind.INCOME and self.amount < 0:
            raise ValueError("Income amounts must be stored as positive values")
        return self

    @property
    def magnitude(self) -> Decimal:
        """Unsigned amount, for expense displays."""
        return abs(self.amount)

    @property
    def is_expense(self) -> bool:
        return self.kind == TransactionKind.EXPENSE

    @classmethod
    def from_input(
        cls,
        data: TransactionInput,
        user_id: Optional[str] = None,
        **identity,
    ) -> 'Transaction':
        """Build a stored transaction from validated user input."""
        fields = data.model_dump()
        fields["amount"] = apply_sign_convention(data.kind, data.amount)
        return cls(user_id=user_id, **fields, **identity)

    def to_input(self) -> TransactionInput:
        """The user-facing shape of this transaction (positive magnitude)."""
        fields = self.model_dump(include=set(TransactionInput.model_fields))
        fields["amount"] = self.magnitude
        return TransactionInput.model_validate(fields)


# =============================================================================
# ACCOUNTS
# =============================================================================

class AccountInput(BaseModel):
    """An account as entered by the user; `balance` is the opening balance."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    type: AccountType = AccountType.CHECKING
    balance: Decimal = Field(
        default=Decimal("0"),
        allow_inf_nan=False,
        description="Opening balance (may be negative for credit accounts)"
    )
    currency: str = Field(default="USD", min_length=3, max_length=3)
    institution: Optional[str] = Field(default=None, max_length=200)
    is_active: bool = True

    @field_validator('currency')
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class Account(BaseModel):
    """
    A financial account.

    INVARIANT: balance == opening_balance + signed sum of the live
    transactions referencing this account.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    name: str = Field(..., min_length=1, max_length=200)
    type: AccountType
    balance: Decimal = Field(..., allow_inf_nan=False)
    opening_balance: Decimal = Field(..., allow_inf_nan=False)
    currency: str = Field(..., pattern="^[A-Z]{3}$")
    institution: Optional[str] = None
    is_active: bool = True

    @classmethod
    def from_input(
        cls,
        data: AccountInput,
        user_id: Optional[str] = None,
        **identity,
    ) -> 'Account':
        fields = data.model_dump()
        fields["opening_balance"] = data.balance
        return cls(user_id=user_id, **fields, **identity)


# =============================================================================
# BUDGETS
# =============================================================================

class BudgetInput(BaseModel):
    """A budget as entered by the user."""
    model_config = ConfigDict(str_strip_whitespace=True)

    category: str = Field(..., min_length=1, max_length=100)
    limit: Decimal = Field(..., gt=0, allow_inf_nan=False)
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    alert_threshold: Decimal = Field(
        default=Decimal("80"),
        ge=0,
        le=100,
        allow_inf_nan=False,
        description="Percentage of the limit at which the user is warned"
    )


class Budget(BaseModel):
    """
    A spending limit for one category.

    CRITICAL: `spent` is a cache of an aggregator computation.
    It is never persisted as ground truth and never trusted without
    being refreshed from the transactions first.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    category: str = Field(..., min_length=1, max_length=100)
    limit: Decimal = Field(..., gt=0, allow_inf_nan=False)
    spent: Decimal = Field(default=Decimal("0"), ge=0)
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    alert_threshold: Decimal = Field(default=Decimal("80"), ge=0, le=100)

    @classmethod
    def from_input(
        cls,
        data: BudgetInput,
        user_id: Optional[str] = None,
        **identity,
    ) -> 'Budget':
        return cls(user_id=user_id, spent=Decimal("0"), **data.model_dump(), **identity)


# =============================================================================
# GOALS
# =============================================================================

class GoalInput(BaseModel):
    """A savings goal as entered by the user."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    target_amount: Decimal = Field(..., gt=0, allow_inf_nan=False)
    current_amount: Decimal = Field(default=Decimal("0"), ge=0, allow_inf_nan=False)
    deadline: Optional[date] = None
    category: str = Field(default="Other", min_length=1, max_length=100)


class Goal(BaseModel):
    """
    A savings goal with manual contributions.

    INVARIANT: is_completed == (current_amount >= target_amount).
    The model recomputes it on every construction, so any write that
    goes through validation keeps it true.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    name: str = Field(..., min_length=1, max_length=200)
    target_amount: Decimal = Field(..., gt=0, allow_inf_nan=False)
    current_amount: Decimal = Field(default=Decimal("0"), ge=0, allow_inf_nan=False)
    deadline: Optional[date] = None
    category: str = Field(default="Other", min_length=1, max_length=100)
    is_completed: bool = False

    @model_validator(mode='after')
    def derive_completion(self) -> 'Goal':
        self.is_completed = self.current_amount >= self.target_amount
        return self

    @classmethod
    def from_input(
        cls,
        data: GoalInput,
        user_id: Optional[str] = None,
        **identity,
    ) -> 'Goal':
        return cls(user_id=user_id, **data.model_dump(), **identity)


ENTITY_MODELS: dict[EntityKind, type[BaseModel]] = {
    EntityKind.TRANSACTION: Transaction,
    EntityKind.ACCOUNT: Account,
    EntityKind.BUDGET: Budget,
    EntityKind.GOAL: Goal,
}


# =============================================================================
# EXPORT DOCUMENT
# =============================================================================

CURRENT_EXPORT_VERSION = 1


class LedgerExport(BaseModel):
    """
    Full-state export of one user's ledger.

    `schema_version` lets an importer tell document shapes apart.
    Documents written before the field existed are read as version 0.
    """

    schema_version: int = Field(default=CURRENT_EXPORT_VERSION, ge=0)
    exported_at: datetime = Field(default_factory=utcnow)
    transactions: list[Transaction] = Field(default_factory=list)
    accounts: list[Account] = Field(default_factory=list)
    budgets: list[Budget] = Field(default_factory=list)
    goals: list[Goal] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)
