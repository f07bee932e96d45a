"""
Data Models Package

This package contains all Pydantic models used in the Finance Ledger.
All data flowing through the system must conform to these schemas.
"""

from finance_ledger.models.ledger import (
    CURRENT_EXPORT_VERSION,
    DEFAULT_CATEGORIES,
    ENTITY_MODELS,
    Account,
    AccountInput,
    AccountType,
    Budget,
    BudgetInput,
    BudgetPeriod,
    EntityKind,
    Goal,
    GoalInput,
    LedgerExport,
    RecurrenceInterval,
    Transaction,
    TransactionInput,
    TransactionKind,
    ValidationIssue,
    apply_sign_convention,
)
from finance_ledger.models.export import (
    UnsupportedExportVersion,
    read_export,
)
from finance_ledger.models.reports import (
    BudgetOverview,
    BudgetProgress,
    BudgetStatus,
    CategoryAmount,
    GoalOverview,
    GoalProgress,
    GoalStatus,
    LedgerSummary,
    MonthlyTotals,
    PeriodSummary,
)
from finance_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "CURRENT_EXPORT_VERSION",
    "DEFAULT_CATEGORIES",
    "ENTITY_MODELS",
    "Account",
    "AccountInput",
    "AccountType",
    "Budget",
    "BudgetInput",
    "BudgetPeriod",
    "EntityKind",
    "Goal",
    "GoalInput",
    "LedgerExport",
    "RecurrenceInterval",
    "Transaction",
    "TransactionInput",
    "TransactionKind",
    "ValidationIssue",
    "apply_sign_convention",
    # Export reading
    "UnsupportedExportVersion",
    "read_export",
    # Report models
    "BudgetOverview",
    "BudgetProgress",
    "BudgetStatus",
    "CategoryAmount",
    "GoalOverview",
    "GoalProgress",
    "GoalStatus",
    "LedgerSummary",
    "MonthlyTotals",
    "PeriodSummary",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
