"""
Report Models

Read-only shapes produced by the aggregator. None of these are persisted;
they are recomputed from the ledger whenever they are needed.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class BudgetStatus(str, Enum):
    """
    Consumption state of a budget.

    OVER_BUDGET is decided on the raw percentage, so a budget at 150%
    is never mistaken for one sitting exactly at its limit.
    """
    ON_TRACK = "on_track"
    NEAR_LIMIT = "near_limit"
    OVER_BUDGET = "over_budget"


class GoalStatus(str, Enum):
    """Progress state of a savings goal."""
    GETTING_STARTED = "getting_started"
    ON_TRACK = "on_track"
    ALMOST_THERE = "almost_there"
    COMPLETED = "completed"


class BudgetProgress(BaseModel):
    """Consumption of one budget in its current period."""

    budget_id: UUID
    category: str
    limit: Decimal
    spent: Decimal
    remaining: Decimal = Field(
        ...,
        description="Limit minus spent, floored at zero"
    )
    raw_percentage: Decimal = Field(
        ...,
        description="Unclamped spent/limit*100, used for threshold checks"
    )
    display_percentage: Decimal = Field(
        ...,
        description="Percentage clamped to 100 for progress bars"
    )
    alert_threshold: Decimal
    alert_triggered: bool
    status: BudgetStatus


class GoalProgress(BaseModel):
    """Progress of one savings goal."""

    goal_id: UUID
    name: str
    target_amount: Decimal
    current_amount: Decimal
    remaining: Decimal
    raw_percentage: Decimal
    display_percentage: Decimal
    is_completed: bool
    status: GoalStatus
    days_remaining: Optional[int] = Field(
        default=None,
        description="Days until the deadline (negative once it has passed)"
    )


class MonthlyTotals(BaseModel):
    """Income and expenses of one calendar month."""

    year: int
    month: int = Field(..., ge=1, le=12)
    label: str = Field(..., description="Short label such as 'Jun 24'")
    income: Decimal = Decimal("0")
    expenses: Decimal = Decimal("0")

    @property
    def net(self) -> Decimal:
        return self.income - self.expenses


class CategoryAmount(BaseModel):
    """Expense total of one category."""

    category: str
    amount: Decimal


class PeriodSummary(BaseModel):
    """Income/expense report over an inclusive date range."""

    start: date
    end: date
    months: list[MonthlyTotals] = Field(default_factory=list)
    total_income: Decimal = Decimal("0")
    total_expenses: Decimal = Decimal("0")
    average_monthly_income: Decimal = Decimal("0")
    average_monthly_expenses: Decimal = Decimal("0")
    categories: list[CategoryAmount] = Field(default_factory=list)

    @property
    def net_income(self) -> Decimal:
        return self.total_income - self.total_expenses


class BudgetOverview(BaseModel):
    """All budgets of the current period."""

    total_limit: Decimal = Decimal("0")
    total_spent: Decimal = Decimal("0")
    remaining: Decimal = Decimal("0")
    budgets: list[BudgetProgress] = Field(default_factory=list)

    @property
    def alerts(self) -> list[BudgetProgress]:
        return [b for b in self.budgets if b.alert_triggered]


class GoalOverview(BaseModel):
    """All savings goals."""

    total_goals: int = 0
    active_goals: int = 0
    completed_goals: int = 0
    total_target: Decimal = Decimal("0")
    total_current: Decimal = Decimal("0")
    goals: list[GoalProgress] = Field(default_factory=list)


class LedgerSummary(BaseModel):
    """The dashboard: headline figures for one reference month."""

    reference_date: date
    total_balance: Decimal
    total_balance_is_approximate: bool = Field(
        default=False,
        description="True when any balance was converted without an exact rate"
    )
    approximate_accounts: list[UUID] = Field(
        default_factory=list,
        description="Accounts whose balance conversion was approximate or impossible"
    )
    monthly_income: Decimal
    monthly_expenses: Decimal
    category_spending: dict[str, Decimal] = Field(default_factory=dict)
    trend: list[MonthlyTotals] = Field(default_factory=list)
    budgets: BudgetOverview = Field(default_factory=BudgetOverview)
    goals: GoalOverview = Field(default_factory=GoalOverview)

    @property
    def monthly_net(self) -> Decimal:
        return self.monthly_income - self.monthly_expenses
