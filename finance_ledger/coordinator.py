"""
Ledger Coordinator

This module is the only write path into a ledger. It ties together
validation, storage, aggregation and auditing for:
1. Transactions (create / update / delete, with account balance upkeep)
2. Accounts, budgets and goals (create / update / delete)
3. Derived views (dashboard, period reports)
4. Export and import of the whole ledger

DESIGN DECISION: The coordinator enforces the boundaries:
- Nothing reaches storage without passing validation
- Persist-then-reflect: in-memory state changes only after storage succeeds
- A transaction and its balance effect are one logical write; if the
  second step fails the first is rolled back, and if the rollback fails
  LedgerInconsistencyError names both records
- Every mutation is audited

Operations are async because storage is; they're issued one at a time.
"""

import warnings
from datetime import date
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from finance_ledger.aggregation import (
    budget_overview,
    budget_progress,
    budget_spent,
    category_spending,
    filter_transactions,
    goal_overview,
    monthly_expenses,
    monthly_income,
    monthly_series,
    period_summary,
    recompute_account_balance,
    total_balance,
)
from finance_ledger.audit import AuditLogger, create_correlation_id
from finance_ledger.config import get_settings
from finance_ledger.config.settings import LedgerSettings
from finance_ledger.currency import (
    ConversionFallbackWarning,
    CurrencyNormalizer,
    RateSource,
    RateTable,
)
from finance_ledger.models.audit import AuditEventBuilder
from finance_ledger.models.ledger import (
    DEFAULT_CATEGORIES,
    Account,
    Budget,
    BudgetInput,
    EntityKind,
    Goal,
    LedgerExport,
    Transaction,
    TransactionKind,
    ValidationIssue,
    utcnow,
)
from finance_ledger.models.reports import LedgerSummary, PeriodSummary
from finance_ledger.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
    PersistenceError,
)
from finance_ledger.validation import (
    ValidationError,
    validate_account,
    validate_budget,
    validate_export,
    validate_goal,
    validate_transaction,
)


# Fields a stored record owns that updates never touch
_IDENTITY_FIELDS = {"id", "user_id", "created_at", "updated_at"}


class LedgerInconsistencyError(PersistenceError):
    """
    A two-step write failed and could not be rolled back.

    Storage now holds a transaction without its balance effect (or the
    reverse). Both identifiers are kept so the records can be repaired.
    """

    def __init__(self, transaction_id: UUID, account_id: UUID, message: str):
        self.transaction_id = transaction_id
        self.account_id = account_id
        super().__init__(
            f"Ledger inconsistent: transaction {transaction_id} and account "
            f"{account_id} could not be reconciled: {message}"
        )


class AccountInUseError(Exception):
    """Hard delete refused because transactions still reference the account."""

    def __init__(self, account_id: UUID, transaction_count: int):
        self.account_id = account_id
        self.transaction_count = transaction_count
        super().__init__(
            f"Account {account_id} is referenced by {transaction_count} "
            "transaction(s); deactivate it instead"
        )


class LedgerState(BaseModel):
    """Everything the coordinator knows about one user's ledger."""

    transactions: dict[UUID, Transaction] = Field(default_factory=dict)
    accounts: dict[UUID, Account] = Field(default_factory=dict)
    budgets: dict[UUID, Budget] = Field(default_factory=dict)
    goals: dict[UUID, Goal] = Field(default_factory=dict)
    categories: list[str] = Field(default_factory=lambda: list(DEFAULT_CATEGORIES))


class TransactionMutation(BaseModel):
    """
    Outcome of a transaction write.

    `accounts` holds the accounts whose balance changed. `warnings`
    explains any balance step that was skipped.
    """

    transaction: Transaction
    accounts: list[Account] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


def _months_back(reference_date: date, months: int) -> date:
    """First day of the month `months - 1` months before the reference month."""
    year = reference_date.year
    month = reference_date.month - (months - 1)
    while month <= 0:
        month += 12
        year -= 1
    return date(year, month, 1)


class LedgerCoordinator:
    """
    Owns a LedgerState and keeps it in step with storage.

    Usage:
        coordinator = LedgerCoordinator(storage, "alice")
        await coordinator.load()
        result = await coordinator.create_transaction({...})
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        user_id: Optional[str] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], date] = date.today,
        settings: Optional[LedgerSettings] = None,
    ):
        self._settings = settings or get_settings().ledger
        self._storage = storage
        self._user_id = user_id or self._settings.user_id
        self._audit_logger = audit_logger or AuditLogger()
        self._clock = clock
        self._state = LedgerState()
        self._alerting_budgets: set[UUID] = set()
        self._rate_table = RateTable(self._settings.base_currency, audit_logger=self._audit_logger)
        self._logger = structlog.get_logger()

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def state(self) -> LedgerState:
        return self._state

    @property
    def rate_table(self) -> RateTable:
        return self._rate_table

    def normalizer(self, display_currency: Optional[str] = None) -> CurrencyNormalizer:
        """A normalizer over this ledger's rate table (default: the configured display currency)."""
        return CurrencyNormalizer(display_currency or self._settings.default_currency, self._rate_table)

    async def refresh_rates(self, source: RateSource) -> bool:
        """Refresh the rate table; on failure the previous rates stay in use."""
        return await self._rate_table.refresh(source)

    async def load(self) -> LedgerState:
        """Replace in-memory state with this user's records from storage."""
        state = LedgerState()
        for kind, bucket in (
            (EntityKind.TRANSACTION, state.transactions),
            (EntityKind.ACCOUNT, state.accounts),
            (EntityKind.BUDGET, state.budgets),
            (EntityKind.GOAL, state.goals),
        ):
            for record in await self._storage.list_records(kind, self._user_id):
                bucket[record.id] = record

        self._state = state
        for transaction in state.transactions.values():
            self._remember_category(transaction.category)
        self._refresh_budgets()

        self._logger.info(
            "ledger_loaded",
            user_id=self._user_id,
            transactions=len(state.transactions),
            accounts=len(state.accounts),
        )
        return state

    # =========================================================================
    # READ ACCESSORS
    # =========================================================================

    def transactions(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        account_id: Optional[UUID] = None,
        kind: Optional[TransactionKind] = None,
    ) -> list[Transaction]:
        """
        Transactions newest first, optionally filtered.

        `search` matches description or category case-insensitively; the
        other filters are exact. Filters combine with AND.
        """
        ordered = sorted(
            self._state.transactions.values(),
            key=lambda t: (t.date, t.created_at),
            reverse=True,
        )
        return filter_transactions(ordered, search, category, account_id, kind)

    def accounts(self, include_inactive: bool = True) -> list[Account]:
        accounts = sorted(self._state.accounts.values(), key=lambda a: a.created_at)
        if include_inactive:
            return accounts
        return [a for a in accounts if a.is_active]

    def budgets(self) -> list[Budget]:
        """Budgets with `spent` recomputed from the current transactions."""
        self._refresh_budgets()
        return sorted(self._state.budgets.values(), key=lambda b: b.created_at)

    def goals(self) -> list[Goal]:
        return sorted(self._state.goals.values(), key=lambda g: g.created_at)

    def categories(self) -> list[str]:
        return list(self._state.categories)

    def add_category(self, name: str) -> list[str]:
        """Add a category to the list if it isn't already there."""
        self._remember_category(name)
        return self.categories()

    def get_transaction(self, transaction_id: UUID) -> Transaction:
        transaction = self._state.transactions.get(transaction_id)
        if transaction is None:
            raise NotFoundError(EntityKind.TRANSACTION, transaction_id)
        return transaction

    def get_account(self, account_id: UUID) -> Account:
        account = self._state.accounts.get(account_id)
        if account is None:
            raise NotFoundError(EntityKind.ACCOUNT, account_id)
        return account

    def _get_budget(self, budget_id: UUID) -> Budget:
        budget = self._state.budgets.get(budget_id)
        if budget is None:
            raise NotFoundError(EntityKind.BUDGET, budget_id)
        return budget

    def _get_goal(self, goal_id: UUID) -> Goal:
        goal = self._state.goals.get(goal_id)
        if goal is None:
            raise NotFoundError(EntityKind.GOAL, goal_id)
        return goal

    def _remember_category(self, name: str) -> None:
        name = name.strip()
        if name and name not in self._state.categories:
            self._state.categories.append(name)

    def _refresh_budgets(self) -> list[Budget]:
        """
        Recompute every budget's `spent` cache.

        Returns the budgets whose alert has just started firing, compared
        with the previous refresh.
        """
        reference_date = self._clock()
        transactions = list(self._state.transactions.values())
        newly_alerted = []
        alerting = set()
        for budget_id, budget in list(self._state.budgets.items()):
            spent = budget_spent(budget, transactions, reference_date)
            refreshed = budget.model_copy(update={"spent": spent})
            self._state.budgets[budget_id] = refreshed
            if budget_progress(refreshed).alert_triggered:
                alerting.add(budget_id)
                if budget_id not in self._alerting_budgets:
                    newly_alerted.append(refreshed)
        self._alerting_budgets = alerting
        return newly_alerted

    async def _refresh_budget_alerts(self) -> None:
        for budget in self._refresh_budgets():
            progress = budget_progress(budget)
            await self._audit_logger.log(AuditEventBuilder.budget_alert(
                budget_id=budget.id,
                category=budget.category,
                raw_percentage=str(progress.raw_percentage.quantize(Decimal("0.01"))),
                status=progress.status.value,
            ))

    # =========================================================================
    # BALANCE EFFECTS
    # =========================================================================

    async def _apply_effects(
        self,
        transaction_id: UUID,
        effects: list[tuple[UUID, Decimal]],
        correlation_id: UUID,
    ) -> tuple[list[tuple[Account, Account]], list[str]]:
        """
        Write balance deltas to accounts.

        Missing accounts are skipped with a warning. If a write fails,
        the deltas already written are undone before the error is raised.

        Returns:
            ([(account before, account after)], warnings)
        """
        written: list[tuple[Account, Account]] = []
        warnings: list[str] = []

        for account_id, delta in effects:
            before = self._state.accounts.get(account_id)
            if before is None:
                warnings.append(f"Account {account_id} not found; balance not updated")
                await self._audit_logger.log_balance_skipped(
                    transaction_id=transaction_id,
                    account_id=account_id,
                    reason="account not found",
                    correlation_id=correlation_id,
                )
                continue
            if delta == 0:
                continue

            new_balance = before.balance + delta
            try:
                await self._storage.update_record(
                    EntityKind.ACCOUNT, account_id, {"balance": new_balance}
                )
            except (PersistenceError, NotFoundError):
                await self._undo_balances(transaction_id, written, correlation_id)
                raise
            after = before.model_copy(update={"balance": new_balance, "updated_at": utcnow()})
            written.append((before, after))

        return written, warnings

    async def _undo_balances(
        self,
        transaction_id: UUID,
        written: list[tuple[Account, Account]],
        correlation_id: UUID,
    ) -> None:
        for before, _ in reversed(written):
            try:
                await self._storage.update_record(
                    EntityKind.ACCOUNT, before.id, {"balance": before.balance}
                )
            except (PersistenceError, NotFoundError) as e:
                await self._audit_logger.log_rollback_failed(
                    transaction_id=transaction_id,
                    account_id=before.id,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
                raise LedgerInconsistencyError(transaction_id, before.id, str(e)) from e

    async def _write_with_effects(
        self,
        transaction_id: UUID,
        account_id: UUID,
        write_record: Callable[[], Awaitable[Any]],
        undo_record: Callable[[], Awaitable[Any]],
        effects: list[tuple[UUID, Decimal]],
        correlation_id: UUID,
    ) -> tuple[list[tuple[Account, Account]], list[str]]:
        """
        Write a transaction record, then its balance effects.

        If the balance step fails the record write is undone and
        PersistenceError is raised. If the undo fails too,
        LedgerInconsistencyError is raised instead.
        """
        try:
            await write_record()
        except PersistenceError as e:
            await self._audit_logger.log_save_failed(
                EntityKind.TRANSACTION, transaction_id, str(e), correlation_id
            )
            raise

        try:
            return await self._apply_effects(transaction_id, effects, correlation_id)
        except LedgerInconsistencyError:
            raise
        except (PersistenceError, NotFoundError) as e:
            try:
                await undo_record()
            except PersistenceError as undo_error:
                await self._audit_logger.log_rollback_failed(
                    transaction_id=transaction_id,
                    account_id=account_id,
                    error_message=str(undo_error),
                    correlation_id=correlation_id,
                )
                raise LedgerInconsistencyError(
                    transaction_id, account_id, str(undo_error)
                ) from undo_error
            await self._audit_logger.log_save_failed(
                EntityKind.ACCOUNT, account_id, str(e), correlation_id
            )
            raise PersistenceError(
                f"Balance update for account {account_id} failed; "
                f"transaction {transaction_id} change was rolled back: {e}"
            ) from e

    async def _reflect_balances(
        self,
        written: list[tuple[Account, Account]],
        correlation_id: UUID,
    ) -> list[Account]:
        accounts = []
        for before, after in written:
            self._state.accounts[after.id] = after
            accounts.append(after)
            await self._audit_logger.log_balance_adjusted(
                account_id=after.id,
                old_balance=str(before.balance),
                new_balance=str(after.balance),
                correlation_id=correlation_id,
            )
        return accounts

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def create_transaction(
        self,
        data: Any,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionMutation:
        """
        Record a transaction and apply it to its account.

        Raises:
            ValidationError: If the input is malformed
            NotFoundError: If the account doesn't exist (nothing is persisted)
            PersistenceError: If storage fails (nothing is left behind)
            LedgerInconsistencyError: If a failed write couldn't be rolled back
        """
        correlation_id = correlation_id or create_correlation_id()
        entered = validate_transaction(data)
        self.get_account(entered.account_id)

        transaction = Transaction.from_input(entered, user_id=self._user_id)

        written, warnings = await self._write_with_effects(
            transaction_id=transaction.id,
            account_id=transaction.account_id,
            write_record=lambda: self._storage.insert_record(
                EntityKind.TRANSACTION, transaction
            ),
            undo_record=lambda: self._storage.delete_record(
                EntityKind.TRANSACTION, transaction.id
            ),
            effects=[(transaction.account_id, transaction.amount)],
            correlation_id=correlation_id,
        )

        self._state.transactions[transaction.id] = transaction
        self._remember_category(transaction.category)
        await self._audit_logger.log_created(
            EntityKind.TRANSACTION,
            transaction.id,
            {
                "amount": str(transaction.amount),
                "kind": transaction.kind.value,
                "category": transaction.category,
                "account_id": str(transaction.account_id),
            },
            correlation_id,
        )
        accounts = await self._reflect_balances(written, correlation_id)
        await self._refresh_budget_alerts()

        return TransactionMutation(transaction=transaction, accounts=accounts, warnings=warnings)

    async def update_transaction(
        self,
        transaction_id: UUID,
        updates: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> TransactionMutation:
        """
        Change a transaction, moving its balance effect accordingly.

        `updates` uses the entered shape (positive `amount`). The old
        effect is reversed and the new one applied, on two accounts when
        the account changes.
        """
        correlation_id = correlation_id or create_correlation_id()
        existing = self.get_transaction(transaction_id)

        merged = {**existing.to_input().model_dump(), **updates}
        entered = validate_transaction(merged)
        if entered.account_id != existing.account_id:
            self.get_account(entered.account_id)

        updated = Transaction.from_input(
            entered,
            user_id=existing.user_id,
            id=existing.id,
            created_at=existing.created_at,
        )

        if updated.account_id == existing.account_id:
            effects = [(existing.account_id, updated.amount - existing.amount)]
        else:
            effects = [
                (existing.account_id, -existing.amount),
                (updated.account_id, updated.amount),
            ]

        changes = updated.model_dump(exclude=_IDENTITY_FIELDS)
        previous = existing.model_dump(exclude=_IDENTITY_FIELDS)

        written, warnings = await self._write_with_effects(
            transaction_id=transaction_id,
            account_id=updated.account_id,
            write_record=lambda: self._storage.update_record(
                EntityKind.TRANSACTION, transaction_id, changes
            ),
            undo_record=lambda: self._storage.update_record(
                EntityKind.TRANSACTION, transaction_id, previous
            ),
            effects=effects,
            correlation_id=correlation_id,
        )

        self._state.transactions[transaction_id] = updated
        self._remember_category(updated.category)
        changed_fields = sorted(k for k in changes if changes[k] != previous.get(k))
        await self._audit_logger.log_updated(
            EntityKind.TRANSACTION, transaction_id, changed_fields, correlation_id
        )
        accounts = await self._reflect_balances(written, correlation_id)
        await self._refresh_budget_alerts()

        return TransactionMutation(transaction=updated, accounts=accounts, warnings=warnings)

    async def delete_transaction(
        self,
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionMutation:
        """
        Reverse a transaction's effect on its account, then remove it.

        Inactive accounts are still adjusted.
        """
        correlation_id = correlation_id or create_correlation_id()
        existing = self.get_transaction(transaction_id)

        written, warnings = await self._apply_effects(
            transaction_id,
            [(existing.account_id, -existing.amount)],
            correlation_id,
        )
        try:
            await self._storage.delete_record(EntityKind.TRANSACTION, transaction_id)
        except PersistenceError as e:
            await self._undo_balances(transaction_id, written, correlation_id)
            await self._audit_logger.log_save_failed(
                EntityKind.TRANSACTION, transaction_id, str(e), correlation_id
            )
            raise

        del self._state.transactions[transaction_id]
        await self._audit_logger.log_deleted(EntityKind.TRANSACTION, transaction_id, correlation_id)
        accounts = await self._reflect_balances(written, correlation_id)
        await self._refresh_budget_alerts()

        return TransactionMutation(transaction=existing, accounts=accounts, warnings=warnings)

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def create_account(self, data: Any) -> Account:
        """Create an account; its entered balance becomes the opening balance."""
        entered = validate_account(data, self._settings.supported_currencies_list)
        account = Account.from_input(entered, user_id=self._user_id)
        await self._storage.insert_record(EntityKind.ACCOUNT, account)

        self._state.accounts[account.id] = account
        await self._audit_logger.log_created(
            EntityKind.ACCOUNT,
            account.id,
            {"name": account.name, "currency": account.currency, "balance": str(account.balance)},
        )
        return account

    async def update_account(self, account_id: UUID, updates: dict[str, Any]) -> Account:
        """
        Edit an account.

        A direct balance edit shifts the opening balance by the same
        amount, so balance - opening_balance still equals the sum of the
        account's transactions.
        """
        existing = self.get_account(account_id)
        merged = {**existing.model_dump(exclude=_IDENTITY_FIELDS | {"opening_balance"}), **updates}
        entered = validate_account(merged, self._settings.supported_currencies_list)

        changes = entered.model_dump()
        changes["opening_balance"] = existing.opening_balance + (entered.balance - existing.balance)
        changed_fields = sorted(
            k for k, v in changes.items() if getattr(existing, k) != v
        )

        await self._storage.update_record(EntityKind.ACCOUNT, account_id, changes)

        updated = existing.model_copy(update={**changes, "updated_at": utcnow()})
        self._state.accounts[account_id] = updated
        await self._audit_logger.log_updated(EntityKind.ACCOUNT, account_id, changed_fields)
        if existing.is_active and not updated.is_active:
            await self._audit_logger.log(AuditEventBuilder.account_deactivated(account_id))
        return updated

    async def delete_account(self, account_id: UUID, hard: bool = False) -> Account:
        """
        Deactivate an account, or remove it with `hard=True`.

        Soft delete keeps the record and its history readable. Hard
        delete is refused while any transaction references the account.

        Returns:
            The deactivated account, or the removed record

        Raises:
            AccountInUseError: On hard delete of a referenced account
        """
        existing = self.get_account(account_id)

        if not hard:
            await self._storage.update_record(
                EntityKind.ACCOUNT, account_id, {"is_active": False}
            )
            updated = existing.model_copy(update={"is_active": False, "updated_at": utcnow()})
            self._state.accounts[account_id] = updated
            await self._audit_logger.log(AuditEventBuilder.account_deactivated(account_id))
            return updated

        in_use = sum(1 for t in self._state.transactions.values() if t.account_id == account_id)
        if in_use:
            raise AccountInUseError(account_id, in_use)

        await self._storage.delete_record(EntityKind.ACCOUNT, account_id)
        del self._state.accounts[account_id]
        await self._audit_logger.log_deleted(EntityKind.ACCOUNT, account_id)
        return existing

    # =========================================================================
    # BUDGETS
    # =========================================================================

    async def create_budget(self, data: Any) -> Budget:
        if isinstance(data, dict) and "alert_threshold" not in data:
            data = {**data, "alert_threshold": self._settings.default_alert_threshold}
        entered = validate_budget(data)
        budget = Budget.from_input(entered, user_id=self._user_id)
        await self._storage.insert_record(EntityKind.BUDGET, budget)

        self._state.budgets[budget.id] = budget
        await self._audit_logger.log_created(
            EntityKind.BUDGET,
            budget.id,
            {"category": budget.category, "limit": str(budget.limit), "period": budget.period.value},
        )
        await self._refresh_budget_alerts()
        return self._state.budgets[budget.id]

    async def update_budget(self, budget_id: UUID, updates: dict[str, Any]) -> Budget:
        existing = self._get_budget(budget_id)
        merged = {**existing.model_dump(include=set(BudgetInput.model_fields)), **updates}
        entered = validate_budget(merged)
        changes = entered.model_dump()
        changed_fields = sorted(k for k, v in changes.items() if getattr(existing, k) != v)

        await self._storage.update_record(EntityKind.BUDGET, budget_id, changes)

        self._state.budgets[budget_id] = existing.model_copy(update={**changes, "updated_at": utcnow()})
        await self._audit_logger.log_updated(EntityKind.BUDGET, budget_id, changed_fields)
        await self._refresh_budget_alerts()
        return self._state.budgets[budget_id]

    async def delete_budget(self, budget_id: UUID) -> Budget:
        existing = self._get_budget(budget_id)
        await self._storage.delete_record(EntityKind.BUDGET, budget_id)
        del self._state.budgets[budget_id]
        await self._audit_logger.log_deleted(EntityKind.BUDGET, budget_id)
        return existing

    # =========================================================================
    # GOALS
    # =========================================================================

    async def create_goal(self, data: Any) -> Goal:
        entered = validate_goal(data)
        goal = Goal.from_input(entered, user_id=self._user_id)
        await self._storage.insert_record(EntityKind.GOAL, goal)

        self._state.goals[goal.id] = goal
        await self._audit_logger.log_created(
            EntityKind.GOAL,
            goal.id,
            {"name": goal.name, "target_amount": str(goal.target_amount)},
        )
        if goal.is_completed:
            await self._audit_logger.log(AuditEventBuilder.goal_completed(goal.id, goal.name))
        return goal

    async def update_goal(self, goal_id: UUID, updates: dict[str, Any]) -> Goal:
        """Edit a goal; completion is recomputed from the new amounts."""
        existing = self._get_goal(goal_id)
        merged = {**existing.model_dump(exclude=_IDENTITY_FIELDS | {"is_completed"}), **updates}
        entered = validate_goal(merged)
        changes = entered.model_dump()
        changed_fields = sorted(k for k, v in changes.items() if getattr(existing, k) != v)

        await self._storage.update_record(EntityKind.GOAL, goal_id, changes)

        updated = Goal.model_validate({**existing.model_dump(), **changes, "updated_at": utcnow()})
        self._state.goals[goal_id] = updated
        await self._audit_logger.log_updated(EntityKind.GOAL, goal_id, changed_fields)
        if updated.is_completed and not existing.is_completed:
            await self._audit_logger.log(AuditEventBuilder.goal_completed(goal_id, updated.name))
        return updated

    async def delete_goal(self, goal_id: UUID) -> Goal:
        existing = self._get_goal(goal_id)
        await self._storage.delete_record(EntityKind.GOAL, goal_id)
        del self._state.goals[goal_id]
        await self._audit_logger.log_deleted(EntityKind.GOAL, goal_id)
        return existing

    # =========================================================================
    # DERIVED VIEWS
    # =========================================================================

    def dashboard(
        self,
        reference_date: Optional[date] = None,
        normalizer: Optional[CurrencyNormalizer] = None,
    ) -> LedgerSummary:
        """
        Headline figures for the month of `reference_date` (default today).

        With a normalizer, account balances are converted to its display
        currency before they're summed. Balances converted with the
        single-rate fallback, or left unconverted for lack of a rate, are
        listed in `approximate_accounts`; the fallback also emits
        ConversionFallbackWarning.
        """
        reference_date = reference_date or self._clock()
        transactions = list(self._state.transactions.values())
        year, month = reference_date.year, reference_date.month

        accounts = self.accounts(include_inactive=self._settings.include_inactive_in_total)
        approximate: list[UUID] = []
        if normalizer is None:
            balance = total_balance(accounts)
        else:
            balance = Decimal("0")
            for account in accounts:
                result = normalizer.to_display(account.balance, account.currency)
                balance += result.amount
                exact = result.is_converted or account.currency == normalizer.display_currency
                if result.is_approximate or not exact:
                    approximate.append(account.id)
                if result.is_approximate:
                    warnings.warn(
                        f"No rate for {account.currency}; balance of account {account.id} "
                        f"converted to {normalizer.display_currency} using the target rate only",
                        ConversionFallbackWarning,
                        stacklevel=2,
                    )

        return LedgerSummary(
            reference_date=reference_date,
            total_balance=balance,
            total_balance_is_approximate=bool(approximate),
            approximate_accounts=approximate,
            monthly_income=monthly_income(transactions, year, month),
            monthly_expenses=monthly_expenses(transactions, year, month),
            category_spending=category_spending(transactions, year, month),
            trend=monthly_series(
                transactions,
                _months_back(reference_date, self._settings.trend_months),
                reference_date,
            ),
            budgets=budget_overview(self._state.budgets.values(), transactions, reference_date),
            goals=goal_overview(self._state.goals.values(), reference_date),
        )

    def period_report(self, start: date, end: date) -> PeriodSummary:
        """Income, expenses and category breakdown over [start, end]."""
        return period_summary(self._state.transactions.values(), start, end)

    # =========================================================================
    # EXPORT / IMPORT
    # =========================================================================

    def _record_counts(self, export: LedgerExport) -> dict[str, int]:
        return {
            "transactions": len(export.transactions),
            "accounts": len(export.accounts),
            "budgets": len(export.budgets),
            "goals": len(export.goals),
        }

    async def export_ledger(self) -> LedgerExport:
        """Snapshot the whole ledger as a versioned export document."""
        export = LedgerExport(
            transactions=self.transactions(),
            accounts=self.accounts(),
            budgets=self.budgets(),
            goals=self.goals(),
        )
        await self._audit_logger.log(AuditEventBuilder.ledger_exported(self._record_counts(export)))
        return export

    async def _upsert(self, kind: EntityKind, record: BaseModel) -> None:
        if await self._storage.get_record(kind, record.id) is None:
            await self._storage.insert_record(kind, record)
        else:
            await self._storage.update_record(
                kind, record.id, record.model_dump(exclude={"id", "created_at"})
            )

    def _check_import_balances(self, export: LedgerExport) -> None:
        """
        Refuse an import that would leave an account balance out of step
        with its transactions.

        The ledger after the import (current state with the document's
        records replacing those with the same id) must satisfy
        balance == opening_balance + sum(transaction amounts) for every
        account.
        """
        accounts = dict(self._state.accounts)
        accounts.update((a.id, a) for a in export.accounts)
        transactions = dict(self._state.transactions)
        transactions.update((t.id, t) for t in export.transactions)

        issues = []
        for account in accounts.values():
            expected = recompute_account_balance(account, transactions.values())
            if account.balance != expected:
                issues.append(ValidationIssue(
                    field=f"accounts.{account.id}.balance",
                    issue_type="inconsistent_balance",
                    message=(
                        f"Account '{account.name}' would have balance {account.balance} "
                        f"but its opening balance and transactions give {expected}"
                    ),
                ))
        if issues:
            raise ValidationError("export", issues)

    async def import_ledger(self, document: Any) -> dict[str, int]:
        """
        Import an export document into this user's ledger.

        Records are written through storage (replacing records with the
        same id) and the state is reloaded afterwards. Imported records
        are reassigned to this coordinator's user.

        Raises:
            UnsupportedExportVersion: If the document is from a newer version
            ValidationError: If the document is malformed, or would leave an
                account balance inconsistent with its transactions (nothing
                is written)
            PersistenceError: If storage fails part way through
        """
        export = validate_export(document, self._user_id)
        self._check_import_balances(export)

        try:
            for kind, records in (
                (EntityKind.ACCOUNT, export.accounts),
                (EntityKind.TRANSACTION, export.transactions),
                (EntityKind.BUDGET, export.budgets),
                (EntityKind.GOAL, export.goals),
            ):
                for record in records:
                    await self._upsert(kind, record.model_copy(update={"user_id": self._user_id}))
        except PersistenceError as e:
            await self._audit_logger.log_error(
                error_type="import_failed",
                error_message=str(e),
                details={"schema_version": export.schema_version},
            )
            raise

        counts = self._record_counts(export)
        await self._audit_logger.log(
            AuditEventBuilder.ledger_imported(export.schema_version, counts)
        )
        await self.load()
        return counts


def create_ledger_components(
    use_storage: bool = True,
) -> tuple[LedgerCoordinator, Optional[GoogleSheetsClient]]:
    """
    Factory function to create a coordinator with its storage.

    Args:
        use_storage: Whether to use Google Sheets storage.
                    Falls back to in-memory storage when False or when
                    Google Sheets isn't configured.

    Returns:
        (coordinator, sheets_client)
    """
    sheets_client = None
    ledger_storage: LedgerStorageInterface
    logger = structlog.get_logger()

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            ledger_storage = GoogleSheetsLedgerStorage(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            ledger_storage = InMemoryLedgerStorage()
            audit_logger = AuditLogger(InMemoryAuditStorage())
    else:
        ledger_storage = InMemoryLedgerStorage()
        audit_logger = AuditLogger(InMemoryAuditStorage())

    coordinator = LedgerCoordinator(ledger_storage, audit_logger=audit_logger)
    return coordinator, sheets_client
