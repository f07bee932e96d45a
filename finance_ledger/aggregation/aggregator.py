"""
Ledger Aggregator

DESIGN DECISION: Aggregation is PURE.
Every function takes the records it needs as arguments and returns a
new value. Nothing here reads global state, the clock or storage, so the
same snapshot always produces the same figures.

Conventions:
- Months are 1-12.
- Time windows use the transaction's own date and compare year AND
  month; June 2023 and June 2024 are never merged.
- Income uses the signed amount, expenses use |amount|.
- Percentages are Decimal. "raw" values are unclamped and drive
  threshold logic; "display" values are clamped to 100 for progress bars.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from finance_ledger.models.ledger import (
    Account,
    Budget,
    BudgetPeriod,
    Goal,
    Transaction,
    TransactionKind,
)
from finance_ledger.models.reports import (
    BudgetOverview,
    BudgetProgress,
    BudgetStatus,
    CategoryAmount,
    GoalOverview,
    GoalProgress,
    GoalStatus,
    MonthlyTotals,
    PeriodSummary,
)


ZERO = Decimal("0")
HUNDRED = Decimal("100")

# Goal status thresholds (percent of target)
GOAL_ALMOST_THERE = Decimal("90")
GOAL_ON_TRACK = Decimal("50")


def _check_month(month: int) -> None:
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month}")


def _in_month(transaction: Transaction, year: int, month: int) -> bool:
    return transaction.date.year == year and transaction.date.month == month


def _in_range(transaction: Transaction, start: date, end: date) -> bool:
    return start <= transaction.date <= end


def _income(transactions: Iterable[Transaction]) -> Decimal:
    return sum(
        (t.amount for t in transactions if t.kind == TransactionKind.INCOME),
        ZERO,
    )


def _expenses(transactions: Iterable[Transaction]) -> Decimal:
    return sum(
        (t.magnitude for t in transactions if t.kind == TransactionKind.EXPENSE),
        ZERO,
    )


# =============================================================================
# FILTERING
# =============================================================================

def filter_transactions(
    transactions: Iterable[Transaction],
    search: Optional[str] = None,
    category: Optional[str] = None,
    account_id: Optional[UUID] = None,
    kind: Optional[TransactionKind] = None,
) -> list[Transaction]:
    """
    Transactions matching every given filter, in their original order.

    `search` matches description or category, case-insensitively.
    `category` is an exact match. Empty or None filters match everything.
    """
    term = (search or "").strip().lower()
    return [
        t for t in transactions
        if (not term or term in t.description.lower() or term in t.category.lower())
        and (not category or t.category == category)
        and (account_id is None or t.account_id == account_id)
        and (kind is None or t.kind == kind)
    ]


# =============================================================================
# BALANCES
# =============================================================================

def total_balance(accounts: Iterable[Account], include_inactive: bool = True) -> Decimal:
    """Sum of account balances. Inactive accounts count unless excluded."""
    return sum(
        (a.balance for a in accounts if include_inactive or a.is_active),
        ZERO,
    )


def recompute_account_balance(
    account: Account,
    transactions: Iterable[Transaction],
) -> Decimal:
    """
    Full recomputation of an account balance from its transactions.

    Must always equal the incrementally maintained `account.balance`.
    """
    return account.opening_balance + sum(
        (t.amount for t in transactions if t.account_id == account.id),
        ZERO,
    )


# =============================================================================
# MONTHLY FIGURES
# =============================================================================

def monthly_income(transactions: Iterable[Transaction], year: int, month: int) -> Decimal:
    _check_month(month)
    return _income(t for t in transactions if _in_month(t, year, month))


def monthly_expenses(transactions: Iterable[Transaction], year: int, month: int) -> Decimal:
    _check_month(month)
    return _expenses(t for t in transactions if _in_month(t, year, month))


def category_spending(
    transactions: Iterable[Transaction],
    year: int,
    month: int,
) -> dict[str, Decimal]:
    """
    Expense totals per category for one month.

    Income never appears. Category strings are kept verbatim
    (case-sensitive, no normalization).
    """
    _check_month(month)
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for t in transactions:
        if t.kind == TransactionKind.EXPENSE and _in_month(t, year, month):
            totals[t.category] += t.magnitude
    return dict(totals)


def month_range(start: date, end: date) -> list[tuple[int, int]]:
    """Every (year, month) from start's month to end's month inclusive."""
    months = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        months.append((year, month))
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return months


def monthly_series(
    transactions: Iterable[Transaction],
    start: date,
    end: date,
) -> list[MonthlyTotals]:
    """
    One entry per calendar month in [start, end], oldest first.

    Months without transactions are present with zero totals.
    An empty list is returned when start is after end.
    """
    series = {
        (year, month): MonthlyTotals(
            year=year,
            month=month,
            label=date(year, month, 1).strftime("%b %y"),
        )
        for year, month in month_range(start, end)
    }

    for t in transactions:
        entry = series.get((t.date.year, t.date.month))
        if entry is None:
            continue
        if t.kind == TransactionKind.INCOME:
            entry.income += t.amount
        else:
            entry.expenses += t.magnitude

    return list(series.values())


def category_breakdown(
    transactions: Iterable[Transaction],
    start: date,
    end: date,
) -> list[CategoryAmount]:
    """Expense totals per category over a date range, largest first."""
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for t in transactions:
        if t.kind == TransactionKind.EXPENSE and _in_range(t, start, end):
            totals[t.category] += t.magnitude
    return sorted(
        (CategoryAmount(category=c, amount=a) for c, a in totals.items()),
        key=lambda item: item.amount,
        reverse=True,
    )


def period_summary(
    transactions: Iterable[Transaction],
    start: date,
    end: date,
) -> PeriodSummary:
    """Income/expense report over an inclusive date range."""
    in_range = [t for t in transactions if _in_range(t, start, end)]
    months = monthly_series(in_range, start, end)

    total_income = _income(in_range)
    total_expenses = _expenses(in_range)
    month_count = Decimal(len(months) or 1)

    return PeriodSummary(
        start=start,
        end=end,
        months=months,
        total_income=total_income,
        total_expenses=total_expenses,
        average_monthly_income=total_income / month_count,
        average_monthly_expenses=total_expenses / month_count,
        categories=category_breakdown(in_range, start, end),
    )


# =============================================================================
# BUDGETS
# =============================================================================

def raw_budget_consumption_percentage(spent: Decimal, limit: Decimal) -> Decimal:
    """spent / limit * 100, unclamped. Use this for every threshold check."""
    if limit <= 0:
        raise ValueError("Budget limit must be positive")
    return spent / limit * HUNDRED


def budget_consumption_percentage(spent: Decimal, limit: Decimal) -> Decimal:
    """Consumption clamped to 100, for progress bars only."""
    return min(raw_budget_consumption_percentage(spent, limit), HUNDRED)


def _alert_reached(raw: Decimal, alert_threshold: Decimal) -> bool:
    # A budget with nothing spent never alerts, even at threshold 0
    return raw > ZERO and raw >= alert_threshold


def budget_status(
    spent: Decimal,
    limit: Decimal,
    alert_threshold: Decimal,
) -> BudgetStatus:
    raw = raw_budget_consumption_percentage(spent, limit)
    if raw >= HUNDRED:
        return BudgetStatus.OVER_BUDGET
    if _alert_reached(raw, alert_threshold):
        return BudgetStatus.NEAR_LIMIT
    return BudgetStatus.ON_TRACK


def budget_spent(
    budget: Budget,
    transactions: Iterable[Transaction],
    reference_date: date,
) -> Decimal:
    """
    Authoritative spend of a budget.

    Expense magnitudes in the budget's category, within the month
    (monthly budgets) or year (yearly budgets) of `reference_date`.
    """
    return _expenses(
        t for t in transactions
        if t.category == budget.category
        and _in_budget_period(budget.period, t, reference_date)
    )


def _in_budget_period(
    period: BudgetPeriod,
    transaction: Transaction,
    reference_date: date,
) -> bool:
    if period == BudgetPeriod.YEARLY:
        return transaction.date.year == reference_date.year
    return _in_month(transaction, reference_date.year, reference_date.month)


def budget_progress(budget: Budget, spent: Optional[Decimal] = None) -> BudgetProgress:
    """
    Progress of one budget.

    Uses `budget.spent` unless a freshly computed `spent` is given.
    """
    if spent is None:
        spent = budget.spent
    raw = raw_budget_consumption_percentage(spent, budget.limit)
    return BudgetProgress(
        budget_id=budget.id,
        category=budget.category,
        limit=budget.limit,
        spent=spent,
        remaining=max(budget.limit - spent, ZERO),
        raw_percentage=raw,
        display_percentage=min(raw, HUNDRED),
        alert_threshold=budget.alert_threshold,
        alert_triggered=_alert_reached(raw, budget.alert_threshold),
        status=budget_status(spent, budget.limit, budget.alert_threshold),
    )


def budget_overview(
    budgets: Iterable[Budget],
    transactions: Iterable[Transaction],
    reference_date: date,
) -> BudgetOverview:
    transactions = list(transactions)
    progress = [
        budget_progress(b, budget_spent(b, transactions, reference_date))
        for b in budgets
    ]
    total_limit = sum((p.limit for p in progress), ZERO)
    total_spent = sum((p.spent for p in progress), ZERO)
    return BudgetOverview(
        total_limit=total_limit,
        total_spent=total_spent,
        remaining=max(total_limit - total_spent, ZERO),
        budgets=progress,
    )


# =============================================================================
# GOALS
# =============================================================================

def goal_progress_percentage(current: Decimal, target: Decimal) -> Decimal:
    """current / target * 100 clamped to 100, for display only."""
    if target <= 0:
        raise ValueError("Goal target must be positive")
    return min(current / target * HUNDRED, HUNDRED)


def goal_status(current: Decimal, target: Decimal) -> GoalStatus:
    # Completion uses the unclamped comparison
    if current >= target:
        return GoalStatus.COMPLETED
    raw = current / target * HUNDRED
    if raw >= GOAL_ALMOST_THERE:
        return GoalStatus.ALMOST_THERE
    if raw >= GOAL_ON_TRACK:
        return GoalStatus.ON_TRACK
    return GoalStatus.GETTING_STARTED


def goal_progress(goal: Goal, reference_date: Optional[date] = None) -> GoalProgress:
    days_remaining = None
    if goal.deadline and reference_date:
        days_remaining = (goal.deadline - reference_date).days

    return GoalProgress(
        goal_id=goal.id,
        name=goal.name,
        target_amount=goal.target_amount,
        current_amount=goal.current_amount,
        remaining=max(goal.target_amount - goal.current_amount, ZERO),
        raw_percentage=goal.current_amount / goal.target_amount * HUNDRED,
        display_percentage=goal_progress_percentage(goal.current_amount, goal.target_amount),
        is_completed=goal.is_completed,
        status=goal_status(goal.current_amount, goal.target_amount),
        days_remaining=days_remaining,
    )


def goal_overview(goals: Iterable[Goal], reference_date: Optional[date] = None) -> GoalOverview:
    goals = list(goals)
    completed = sum(1 for g in goals if g.is_completed)
    return GoalOverview(
        total_goals=len(goals),
        active_goals=len(goals) - completed,
        completed_goals=completed,
        total_target=sum((g.target_amount for g in goals), ZERO),
        total_current=sum((g.current_amount for g in goals), ZERO),
        goals=[goal_progress(g, reference_date) for g in goals],
    )
