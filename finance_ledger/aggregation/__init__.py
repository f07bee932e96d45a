"""Ledger aggregation package."""

from finance_ledger.aggregation.aggregator import (
    budget_consumption_percentage,
    budget_overview,
    budget_progress,
    budget_spent,
    budget_status,
    category_breakdown,
    category_spending,
    filter_transactions,
    goal_overview,
    goal_progress,
    goal_progress_percentage,
    goal_status,
    month_range,
    monthly_expenses,
    monthly_income,
    monthly_series,
    period_summary,
    raw_budget_consumption_percentage,
    recompute_account_balance,
    total_balance,
)

__all__ = [
    "budget_consumption_percentage",
    "budget_overview",
    "budget_progress",
    "budget_spent",
    "budget_status",
    "category_breakdown",
    "category_spending",
    "filter_transactions",
    "goal_overview",
    "goal_progress",
    "goal_progress_percentage",
    "goal_status",
    "month_range",
    "monthly_expenses",
    "monthly_income",
    "monthly_series",
    "period_summary",
    "raw_budget_consumption_percentage",
    "recompute_account_balance",
    "total_balance",
]
