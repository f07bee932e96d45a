"""
Tests for the LedgerCoordinator

All tests run against in-memory storage; failure paths use a storage
subclass that can be told to fail specific writes.
"""

import random
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from finance_ledger.aggregation import recompute_account_balance
from finance_ledger.audit import AuditLogger
from finance_ledger.config import LedgerSettings
from finance_ledger.coordinator import (
    AccountInUseError,
    LedgerCoordinator,
    LedgerInconsistencyError,
    create_ledger_components,
)
from finance_ledger.currency import ConversionFallbackWarning, CurrencyNormalizer, RateSource
from finance_ledger.models import (
    AuditEventType,
    BudgetStatus,
    EntityKind,
    LedgerExport,
    TransactionKind,
    UnsupportedExportVersion,
)
from finance_ledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    NotFoundError,
    PersistenceError,
)
from finance_ledger.validation import ValidationError

from conftest import TODAY, make_transaction


class FlakyStorage(InMemoryLedgerStorage):
    """In-memory storage that fails chosen writes."""

    def __init__(self):
        super().__init__()
        self.fail_inserts = False
        self.fail_deletes = False
        self.failing_accounts = set()

    async def insert_record(self, kind, record):
        if self.fail_inserts:
            raise PersistenceError("insert failed")
        return await super().insert_record(kind, record)

    async def update_record(self, kind, record_id, changes):
        if kind == EntityKind.ACCOUNT and record_id in self.failing_accounts:
            raise PersistenceError("account sheet unavailable")
        return await super().update_record(kind, record_id, changes)

    async def delete_record(self, kind, record_id):
        if self.fail_deletes:
            raise PersistenceError("delete failed")
        return await super().delete_record(kind, record_id)


class StaticRates(RateSource):
    def __init__(self, rates):
        self.rates = rates

    async def fetch_rates(self, base_currency):
        return self.rates


def txn(account, amount, kind="expense", category="Food & Dining", on=TODAY, **extra):
    data = {
        "amount": amount,
        "kind": kind,
        "category": category,
        "account_id": account.id,
        "description": f"{kind} {amount}",
        "date": on,
    }
    data.update(extra)
    return data


@pytest.fixture
def flaky_storage():
    return FlakyStorage()


@pytest.fixture
def flaky_coordinator(flaky_storage, audit_storage):
    return LedgerCoordinator(
        flaky_storage,
        "tester",
        audit_logger=AuditLogger(audit_storage),
        clock=lambda: TODAY,
        settings=LedgerSettings(),
    )


def event_types(audit_storage):
    return [e.event_type for e in audit_storage.events]


class TestTransactionLifecycle:
    """Tests for transaction writes and their balance effects."""

    @pytest.mark.asyncio
    async def test_end_to_end_scenario(self, coordinator):
        """Test income, expense and delete against a zero-balance account."""
        account = await coordinator.create_account({"name": "Checking", "balance": "0"})

        await coordinator.create_transaction(txn(account, "1000", "income", "Income"))
        assert coordinator.get_account(account.id).balance == Decimal("1000")

        expense = await coordinator.create_transaction(txn(account, "300"))
        assert expense.transaction.amount == Decimal("-300")
        assert coordinator.get_account(account.id).balance == Decimal("700")

        summary = coordinator.dashboard()
        assert summary.monthly_expenses == Decimal("300")
        assert summary.category_spending["Food & Dining"] == Decimal("300")

        await coordinator.delete_transaction(expense.transaction.id)
        assert coordinator.get_account(account.id).balance == Decimal("1000")
        assert "Food & Dining" not in coordinator.dashboard().category_spending

    @pytest.mark.asyncio
    async def test_writes_reach_storage(self, coordinator, storage):
        """Test state and storage agree after a write."""
        account = await coordinator.create_account({"name": "Checking", "balance": "50"})
        result = await coordinator.create_transaction(txn(account, "20"))

        stored_txn = await storage.get_record(EntityKind.TRANSACTION, result.transaction.id)
        stored_account = await storage.get_record(EntityKind.ACCOUNT, account.id)
        assert stored_txn.amount == Decimal("-20")
        assert stored_txn.user_id == "tester"
        assert stored_account.balance == Decimal("30")
        assert result.accounts[0].balance == Decimal("30")

    @pytest.mark.asyncio
    async def test_incremental_matches_full_recomputation(self, coordinator, storage):
        """Test balances stay equal to a full recomputation over many writes."""
        rng = random.Random(7)
        accounts = [
            await coordinator.create_account({"name": f"Account {i}", "balance": str(100 * i)})
            for i in range(3)
        ]
        live = []

        for _ in range(80):
            op = rng.choice(["create", "create", "update", "delete"])
            if op == "create" or not live:
                result = await coordinator.create_transaction(txn(
                    rng.choice(accounts),
                    str(rng.randint(1, 500)),
                    rng.choice(["income", "expense"]),
                    on=date(2024, rng.randint(1, 12), rng.randint(1, 28)),
                ))
                live.append(result.transaction.id)
            elif op == "update":
                await coordinator.update_transaction(rng.choice(live), {
                    "amount": str(rng.randint(1, 500)),
                    "kind": rng.choice(["income", "expense"]),
                    "account_id": rng.choice(accounts).id,
                })
            else:
                await coordinator.delete_transaction(live.pop(rng.randrange(len(live))))

        transactions = coordinator.transactions()
        assert len(transactions) == len(live)
        for account in coordinator.accounts():
            assert account.balance == recompute_account_balance(account, transactions)
            stored = await storage.get_record(EntityKind.ACCOUNT, account.id)
            assert stored.balance == account.balance

    @pytest.mark.asyncio
    async def test_update_reverses_old_effect(self, coordinator):
        """Test changing amount and kind moves the balance by the difference."""
        account = await coordinator.create_account({"name": "Checking", "balance": "100"})
        result = await coordinator.create_transaction(txn(account, "40"))

        updated = await coordinator.update_transaction(
            result.transaction.id, {"amount": "60", "kind": "income", "category": "Income"}
        )
        assert updated.transaction.amount == Decimal("60")
        assert updated.transaction.created_at == result.transaction.created_at
        assert coordinator.get_account(account.id).balance == Decimal("160")

    @pytest.mark.asyncio
    async def test_update_moves_between_accounts(self, coordinator):
        """Test moving a transaction adjusts both accounts."""
        first = await coordinator.create_account({"name": "First", "balance": "100"})
        second = await coordinator.create_account({"name": "Second", "balance": "100"})
        result = await coordinator.create_transaction(txn(first, "30"))

        moved = await coordinator.update_transaction(result.transaction.id, {"account_id": second.id})
        assert coordinator.get_account(first.id).balance == Decimal("100")
        assert coordinator.get_account(second.id).balance == Decimal("70")
        assert {a.id for a in moved.accounts} == {first.id, second.id}

    @pytest.mark.asyncio
    async def test_transactions_newest_first(self, coordinator):
        """Test the transaction accessor sorts by date descending."""
        account = await coordinator.create_account({"name": "Checking"})
        for day in (3, 20, 11):
            await coordinator.create_transaction(txn(account, "1", on=date(2024, 6, day)))
        assert [t.date.day for t in coordinator.transactions()] == [20, 11, 3]

    @pytest.mark.asyncio
    async def test_transaction_filters(self, coordinator):
        """Test search, category, account and kind filters alone and combined."""
        checking = await coordinator.create_account({"name": "Checking"})
        savings = await coordinator.create_account({"name": "Savings"})
        coffee = await coordinator.create_transaction(
            txn(checking, "4", description="Morning Coffee"))
        groceries = await coordinator.create_transaction(
            txn(savings, "60", description="Weekly shop"))
        salary = await coordinator.create_transaction(
            txn(checking, "2000", "income", "Income", description="June salary"))
        cinema = await coordinator.create_transaction(
            txn(checking, "15", category="Entertainment", description="Cinema"))

        def ids(**filters):
            return {t.id for t in coordinator.transactions(**filters)}

        assert ids(search="COFFEE") == {coffee.id}
        assert ids(search="dining") == {coffee.id, groceries.id}
        assert ids(category="Entertainment") == {cinema.id}
        assert ids(account_id=savings.id) == {groceries.id}
        assert ids(kind=TransactionKind.INCOME) == {salary.id}
        assert ids(search="  ", category="") == {coffee.id, groceries.id, salary.id, cinema.id}
        assert ids(
            search="food", category="Food & Dining",
            account_id=checking.id, kind=TransactionKind.EXPENSE,
        ) == {coffee.id}

    @pytest.mark.asyncio
    async def test_free_form_category_is_remembered(self, coordinator):
        """Test new categories join the category list."""
        account = await coordinator.create_account({"name": "Checking"})
        await coordinator.create_transaction(txn(account, "12", category="Pets"))
        assert "Pets" in coordinator.categories()
        assert coordinator.add_category("Gifts")[-1] == "Gifts"
        assert coordinator.add_category("Gifts").count("Gifts") == 1


class TestTransactionFailures:
    """Tests for rejected and failed transaction writes."""

    @pytest.mark.asyncio
    async def test_invalid_input_persists_nothing(self, coordinator, storage):
        """Test validation errors leave storage untouched."""
        account = await coordinator.create_account({"name": "Checking"})
        with pytest.raises(ValidationError):
            await coordinator.create_transaction(txn(account, "-5"))
        assert await storage.list_records(EntityKind.TRANSACTION) == []

    @pytest.mark.asyncio
    async def test_unknown_account_persists_nothing(self, coordinator, storage):
        """Test a missing account is NotFoundError and nothing is written."""
        await coordinator.create_account({"name": "Checking"})
        data = txn(await coordinator.create_account({"name": "Other"}), "5")
        data["account_id"] = uuid4()
        with pytest.raises(NotFoundError):
            await coordinator.create_transaction(data)
        assert await storage.list_records(EntityKind.TRANSACTION) == []

    @pytest.mark.asyncio
    async def test_failed_insert_leaves_state_unchanged(self, flaky_coordinator, flaky_storage, audit_storage):
        """Test state only changes after storage succeeds."""
        account = await flaky_coordinator.create_account({"name": "Checking", "balance": "10"})
        flaky_storage.fail_inserts = True

        with pytest.raises(PersistenceError):
            await flaky_coordinator.create_transaction(txn(account, "5"))
        assert flaky_coordinator.transactions() == []
        assert flaky_coordinator.get_account(account.id).balance == Decimal("10")
        assert AuditEventType.SAVE_FAILED in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_balance_failure_rolls_back_transaction(self, flaky_coordinator, flaky_storage):
        """Test a failed balance write removes the inserted transaction."""
        account = await flaky_coordinator.create_account({"name": "Checking", "balance": "10"})
        flaky_storage.failing_accounts.add(account.id)

        with pytest.raises(PersistenceError) as exc_info:
            await flaky_coordinator.create_transaction(txn(account, "5"))

        assert not isinstance(exc_info.value, LedgerInconsistencyError)
        assert await flaky_storage.list_records(EntityKind.TRANSACTION) == []
        assert flaky_coordinator.transactions() == []
        assert flaky_coordinator.get_account(account.id).balance == Decimal("10")

    @pytest.mark.asyncio
    async def test_failed_rollback_is_inconsistency(self, flaky_coordinator, flaky_storage, audit_storage):
        """Test an unrecoverable two-step write names both records."""
        account = await flaky_coordinator.create_account({"name": "Checking", "balance": "10"})
        flaky_storage.failing_accounts.add(account.id)
        flaky_storage.fail_deletes = True

        with pytest.raises(LedgerInconsistencyError) as exc_info:
            await flaky_coordinator.create_transaction(txn(account, "5"))

        assert exc_info.value.account_id == account.id
        stored = await flaky_storage.list_records(EntityKind.TRANSACTION)
        assert exc_info.value.transaction_id == stored[0].id
        assert flaky_coordinator.transactions() == []
        assert AuditEventType.ROLLBACK_FAILED in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_failed_move_restores_both_sides(self, flaky_coordinator, flaky_storage):
        """Test a failure on the second account undoes the first and the record."""
        first = await flaky_coordinator.create_account({"name": "First", "balance": "100"})
        second = await flaky_coordinator.create_account({"name": "Second", "balance": "100"})
        result = await flaky_coordinator.create_transaction(txn(first, "30"))
        flaky_storage.failing_accounts.add(second.id)

        with pytest.raises(PersistenceError):
            await flaky_coordinator.update_transaction(result.transaction.id, {"account_id": second.id})

        stored_first = await flaky_storage.get_record(EntityKind.ACCOUNT, first.id)
        stored_txn = await flaky_storage.get_record(EntityKind.TRANSACTION, result.transaction.id)
        assert stored_first.balance == Decimal("70")
        assert stored_txn.account_id == first.id
        assert flaky_coordinator.get_transaction(result.transaction.id).account_id == first.id

    @pytest.mark.asyncio
    async def test_dangling_account_is_skipped_with_warning(self, coordinator, storage, audit_storage):
        """Test deleting a transaction whose account is gone still works."""
        orphan = make_transaction("25").model_copy(update={"user_id": "tester"})
        await storage.insert_record(EntityKind.TRANSACTION, orphan)
        await coordinator.load()

        result = await coordinator.delete_transaction(orphan.id)

        assert result.accounts == []
        assert len(result.warnings) == 1
        assert coordinator.transactions() == []
        assert AuditEventType.BALANCE_UPDATE_SKIPPED in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, coordinator):
        """Test updating or deleting an unknown id is NotFoundError."""
        with pytest.raises(NotFoundError):
            await coordinator.update_transaction(uuid4(), {"amount": "1"})
        with pytest.raises(NotFoundError):
            await coordinator.delete_transaction(uuid4())


class TestAccounts:
    """Tests for account writes."""

    @pytest.mark.asyncio
    async def test_unsupported_currency(self, coordinator):
        """Test accounts must use a supported currency."""
        with pytest.raises(ValidationError):
            await coordinator.create_account({"name": "Odd", "currency": "XYZ"})

    @pytest.mark.asyncio
    async def test_balance_edit_shifts_opening_balance(self, coordinator):
        """Test a direct balance edit keeps the balance invariant."""
        account = await coordinator.create_account({"name": "Checking", "balance": "0"})
        await coordinator.create_transaction(txn(account, "1000", "income", "Income"))

        edited = await coordinator.update_account(account.id, {"balance": "1200", "name": "Main"})

        assert edited.name == "Main"
        assert edited.balance == Decimal("1200")
        assert edited.opening_balance == Decimal("200")
        assert recompute_account_balance(edited, coordinator.transactions()) == Decimal("1200")

    @pytest.mark.asyncio
    async def test_soft_delete_keeps_history(self, coordinator, audit_storage):
        """Test soft delete deactivates and later deletes still adjust the balance."""
        account = await coordinator.create_account({"name": "Checking", "balance": "100"})
        result = await coordinator.create_transaction(txn(account, "40"))

        deactivated = await coordinator.delete_account(account.id)
        assert deactivated.is_active is False
        assert coordinator.accounts(include_inactive=False) == []
        assert len(coordinator.accounts()) == 1
        assert AuditEventType.ACCOUNT_DEACTIVATED in event_types(audit_storage)

        await coordinator.delete_transaction(result.transaction.id)
        assert coordinator.get_account(account.id).balance == Decimal("100")

    @pytest.mark.asyncio
    async def test_hard_delete_blocked_while_referenced(self, coordinator, storage):
        """Test hard delete is refused while transactions reference the account."""
        account = await coordinator.create_account({"name": "Checking"})
        result = await coordinator.create_transaction(txn(account, "5"))

        with pytest.raises(AccountInUseError) as exc_info:
            await coordinator.delete_account(account.id, hard=True)
        assert exc_info.value.transaction_count == 1

        await coordinator.delete_transaction(result.transaction.id)
        await coordinator.delete_account(account.id, hard=True)
        assert coordinator.accounts() == []
        assert await storage.get_record(EntityKind.ACCOUNT, account.id) is None


class TestBudgetsAndGoals:
    """Tests for budget and goal writes."""

    @pytest.mark.asyncio
    async def test_budget_spent_follows_transactions(self, coordinator, audit_storage):
        """Test spent is refreshed after writes and alerts fire once."""
        account = await coordinator.create_account({"name": "Checking"})
        budget = await coordinator.create_budget({"category": "Entertainment", "limit": "200"})
        assert budget.spent == Decimal("0")

        await coordinator.create_transaction(txn(account, "180", category="Entertainment"))
        await coordinator.create_transaction(txn(account, "5", category="Entertainment"))

        assert coordinator.budgets()[0].spent == Decimal("185")
        progress = coordinator.dashboard().budgets.budgets[0]
        assert progress.status == BudgetStatus.NEAR_LIMIT
        assert event_types(audit_storage).count(AuditEventType.BUDGET_ALERT_TRIGGERED) == 1

    @pytest.mark.asyncio
    async def test_budget_writes_raise_alerts(self, coordinator, audit_storage):
        """Test creating or tightening a budget over existing spending logs an alert once."""
        account = await coordinator.create_account({"name": "Checking"})
        await coordinator.create_transaction(txn(account, "180", category="Shopping"))
        await coordinator.create_transaction(txn(account, "50", category="Travel"))

        await coordinator.create_budget({"category": "Shopping", "limit": "200"})
        assert event_types(audit_storage).count(AuditEventType.BUDGET_ALERT_TRIGGERED) == 1

        travel = await coordinator.create_budget({"category": "Travel", "limit": "200"})
        assert event_types(audit_storage).count(AuditEventType.BUDGET_ALERT_TRIGGERED) == 1

        await coordinator.update_budget(travel.id, {"limit": "60"})
        assert event_types(audit_storage).count(AuditEventType.BUDGET_ALERT_TRIGGERED) == 2

        await coordinator.update_budget(travel.id, {"limit": "55"})
        assert event_types(audit_storage).count(AuditEventType.BUDGET_ALERT_TRIGGERED) == 2

    @pytest.mark.asyncio
    async def test_budget_default_threshold_from_settings(self, storage):
        """Test budgets without a threshold use the configured default."""
        coordinator = LedgerCoordinator(storage, "tester", settings=LedgerSettings(default_alert_threshold=50))
        budget = await coordinator.create_budget({"category": "Travel", "limit": "100"})
        assert budget.alert_threshold == Decimal("50")

    @pytest.mark.asyncio
    async def test_update_and_delete_budget(self, coordinator):
        """Test budget edits are validated and applied."""
        budget = await coordinator.create_budget({"category": "Shopping", "limit": "100"})

        updated = await coordinator.update_budget(budget.id, {"limit": "250", "alert_threshold": "90"})
        assert updated.limit == Decimal("250")
        assert updated.alert_threshold == Decimal("90")
        assert updated.category == "Shopping"

        with pytest.raises(ValidationError):
            await coordinator.update_budget(budget.id, {"limit": "0"})

        await coordinator.delete_budget(budget.id)
        assert coordinator.budgets() == []

    @pytest.mark.asyncio
    async def test_goal_completion_recomputed(self, coordinator, storage, audit_storage):
        """Test is_completed follows contributions on every write."""
        goal = await coordinator.create_goal({"name": "Emergency fund", "target_amount": "1000"})
        assert goal.is_completed is False

        done = await coordinator.update_goal(goal.id, {"current_amount": "1500"})
        assert done.is_completed is True
        stored = await storage.get_record(EntityKind.GOAL, goal.id)
        assert stored.is_completed is True
        assert AuditEventType.GOAL_COMPLETED in event_types(audit_storage)

        reopened = await coordinator.update_goal(goal.id, {"target_amount": "2000"})
        assert reopened.is_completed is False

        await coordinator.delete_goal(goal.id)
        assert coordinator.goals() == []


class TestViewsAndLoading:
    """Tests for derived views and loading from storage."""

    @pytest.mark.asyncio
    async def test_dashboard(self, coordinator):
        """Test the headline figures and trend."""
        account = await coordinator.create_account({"name": "Checking", "balance": "500"})
        await coordinator.create_transaction(txn(account, "2000", "income", "Income"))
        await coordinator.create_transaction(txn(account, "150", category="Travel"))
        await coordinator.create_transaction(txn(account, "90", on=date(2024, 5, 2)))

        summary = coordinator.dashboard()
        assert summary.reference_date == TODAY
        assert summary.total_balance == Decimal("2260")
        assert summary.monthly_income == Decimal("2000")
        assert summary.monthly_expenses == Decimal("150")
        assert summary.monthly_net == Decimal("1850")
        assert len(summary.trend) == 6
        assert summary.trend[-1].label == "Jun 24"
        assert summary.trend[-2].expenses == Decimal("90")

    @pytest.mark.asyncio
    async def test_dashboard_converts_balances(self, coordinator):
        """Test balances in other currencies are converted when a normalizer is given."""
        await coordinator.create_account({"name": "US", "balance": "100", "currency": "USD"})
        await coordinator.create_account({"name": "EU", "balance": "90", "currency": "EUR"})
        normalizer = CurrencyNormalizer("USD", {"USD": Decimal("1"), "EUR": Decimal("0.9")})
        assert coordinator.dashboard(normalizer=normalizer).total_balance == Decimal("200")

    @pytest.mark.asyncio
    async def test_dashboard_flags_approximate_balances(self, coordinator):
        """Test balances converted without a rate for their currency are flagged."""
        await coordinator.create_account({"name": "US", "balance": "100", "currency": "USD"})
        rupees = await coordinator.create_account({"name": "IN", "balance": "1000", "currency": "INR"})
        normalizer = CurrencyNormalizer("EUR", {"USD": Decimal("1"), "EUR": Decimal("0.9")})

        with pytest.warns(ConversionFallbackWarning):
            summary = coordinator.dashboard(normalizer=normalizer)

        assert summary.total_balance == Decimal("990")
        assert summary.total_balance_is_approximate is True
        assert summary.approximate_accounts == [rupees.id]

    @pytest.mark.asyncio
    async def test_dashboard_exact_balances_not_flagged(self, coordinator):
        """Test a fully converted total carries no approximation flag."""
        await coordinator.create_account({"name": "US", "balance": "100", "currency": "USD"})
        await coordinator.create_account({"name": "EU", "balance": "90", "currency": "EUR"})
        normalizer = CurrencyNormalizer("USD", {"USD": Decimal("1"), "EUR": Decimal("0.9")})

        summary = coordinator.dashboard(normalizer=normalizer)
        assert summary.total_balance_is_approximate is False
        assert summary.approximate_accounts == []
        assert coordinator.dashboard().total_balance_is_approximate is False

    @pytest.mark.asyncio
    async def test_rate_refresh_feeds_normalizer(self, storage, audit_storage):
        """Test refreshed rates reach the configured display currency."""
        coordinator = LedgerCoordinator(
            storage,
            "tester",
            audit_logger=AuditLogger(audit_storage),
            settings=LedgerSettings(default_currency="EUR"),
        )
        assert await coordinator.refresh_rates(StaticRates({"EUR": Decimal("0.5")})) is True

        normalizer = coordinator.normalizer()
        assert normalizer.display_currency == "EUR"
        assert normalizer.display(Decimal("10"), "USD") == "€5.00"
        assert coordinator.normalizer("usd").display(Decimal("10"), "USD") == "$10.00"
        assert AuditEventType.RATES_REFRESHED in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_period_report(self, coordinator):
        """Test the period report covers the requested range."""
        account = await coordinator.create_account({"name": "Checking"})
        await coordinator.create_transaction(txn(account, "40", on=date(2024, 5, 10)))
        await coordinator.create_transaction(txn(account, "60", on=date(2024, 6, 10)))
        report = coordinator.period_report(date(2024, 6, 1), date(2024, 6, 30))
        assert report.total_expenses == Decimal("60")

    @pytest.mark.asyncio
    async def test_load_restores_state_for_user(self, coordinator, storage):
        """Test a fresh coordinator sees only its user's records."""
        account = await coordinator.create_account({"name": "Checking", "balance": "10"})
        await coordinator.create_transaction(txn(account, "4", category="Pets"))
        await coordinator.create_budget({"category": "Pets", "limit": "10"})

        reloaded = LedgerCoordinator(storage, "tester", clock=lambda: TODAY, settings=LedgerSettings())
        await reloaded.load()
        assert reloaded.get_account(account.id).balance == Decimal("6")
        assert "Pets" in reloaded.categories()
        assert reloaded.budgets()[0].spent == Decimal("4")

        stranger = LedgerCoordinator(storage, "someone-else", settings=LedgerSettings())
        await stranger.load()
        assert stranger.accounts() == []


class TestExportImport:
    """Tests for ledger export and import."""

    @pytest.mark.asyncio
    async def test_export_then_import(self, coordinator):
        """Test a ledger survives export and import into new storage."""
        account = await coordinator.create_account({"name": "Checking", "balance": "100"})
        await coordinator.create_transaction(txn(account, "30"))
        await coordinator.create_budget({"category": "Food & Dining", "limit": "300"})
        await coordinator.create_goal({"name": "Bike", "target_amount": "400"})

        document = (await coordinator.export_ledger()).to_json()

        target_audit = InMemoryAuditStorage()
        target = LedgerCoordinator(
            InMemoryLedgerStorage(),
            "new-owner",
            audit_logger=AuditLogger(target_audit),
            clock=lambda: TODAY,
            settings=LedgerSettings(),
        )
        counts = await target.import_ledger(document)

        assert counts == {"transactions": 1, "accounts": 1, "budgets": 1, "goals": 1}
        imported = target.get_account(account.id)
        assert imported.balance == Decimal("70")
        assert imported.user_id == "new-owner"
        assert target.budgets()[0].spent == Decimal("30")
        assert AuditEventType.LEDGER_IMPORTED in event_types(target_audit)

    @pytest.mark.asyncio
    async def test_reimport_replaces_records(self, coordinator):
        """Test importing records that already exist updates them in place."""
        account = await coordinator.create_account({"name": "Checking", "balance": "100"})
        export = await coordinator.export_ledger()
        await coordinator.update_account(account.id, {"name": "Renamed"})

        await coordinator.import_ledger(export)
        assert len(coordinator.accounts()) == 1
        assert coordinator.get_account(account.id).name == "Checking"

    @pytest.mark.asyncio
    async def test_import_that_breaks_balances_rejected(self, coordinator, storage):
        """Test moving a transaction between accounts without their balances is refused."""
        first = await coordinator.create_account({"name": "A"})
        second = await coordinator.create_account({"name": "B"})
        spent = await coordinator.create_transaction(txn(second, "50"))
        moved = spent.model_copy(update={"account_id": first.id})

        with pytest.raises(ValidationError) as exc_info:
            await coordinator.import_ledger(LedgerExport(transactions=[moved]))

        issue_types = {issue.issue_type for issue in exc_info.value.issues}
        assert issue_types == {"inconsistent_balance"}
        assert any(str(first.id) in field for field in exc_info.value.fields)
        stored = await storage.get_record(EntityKind.TRANSACTION, spent.id)
        assert stored.account_id == second.id
        assert (await storage.get_record(EntityKind.ACCOUNT, first.id)).balance == Decimal("0")
        assert coordinator.get_account(first.id).balance == Decimal("0")

    @pytest.mark.asyncio
    async def test_future_version_rejected(self, coordinator, storage):
        """Test newer documents are refused before anything is written."""
        with pytest.raises(UnsupportedExportVersion):
            await coordinator.import_ledger({"schema_version": 99, "accounts": []})
        assert await storage.list_records(EntityKind.ACCOUNT) == []

    @pytest.mark.asyncio
    async def test_legacy_import(self, coordinator):
        """Test a version-0 document imports with consistent balances."""
        await coordinator.import_ledger({
            "exportDate": "2024-06-01T00:00:00.000Z",
            "accounts": [{"id": "a1", "name": "Main", "type": "savings", "balance": 700,
                          "currency": "USD", "isActive": True}],
            "transactions": [
                {"id": "t1", "amount": 1000, "type": "income", "category": "Income",
                 "account": "a1", "description": "Salary", "date": "2024-06-01", "tags": []},
                {"id": "t2", "amount": -300, "type": "expense", "category": "Food & Dining",
                 "account": "a1", "description": "Groceries", "date": "2024-06-02", "tags": []},
            ],
            "budgets": [],
            "goals": [],
        })
        account = coordinator.accounts()[0]
        assert account.balance == Decimal("700")
        assert recompute_account_balance(account, coordinator.transactions()) == Decimal("700")


class TestComponentFactory:
    """Tests for create_ledger_components."""

    def test_without_storage_uses_memory(self):
        """Test the factory falls back to in-memory storage."""
        coordinator, sheets_client = create_ledger_components(use_storage=False)
        assert sheets_client is None
        assert isinstance(coordinator, LedgerCoordinator)
