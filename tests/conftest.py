"""Shared fixtures for the ledger tests."""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import pytest

from finance_ledger.audit import AuditLogger
from finance_ledger.config import LedgerSettings
from finance_ledger.coordinator import LedgerCoordinator
from finance_ledger.models import Transaction, TransactionKind, apply_sign_convention
from finance_ledger.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage


TODAY = date(2024, 6, 15)


def make_transaction(
    amount: str,
    kind: TransactionKind = TransactionKind.EXPENSE,
    category: str = "Food & Dining",
    on: date = TODAY,
    account_id: Optional[UUID] = None,
) -> Transaction:
    """A stored transaction built from a positive magnitude."""
    return Transaction(
        amount=apply_sign_convention(kind, Decimal(amount)),
        kind=kind,
        category=category,
        account_id=account_id or uuid4(),
        description=f"{kind.value} {amount}",
        date=on,
    )


@pytest.fixture
def storage():
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def coordinator(storage, audit_storage):
    return LedgerCoordinator(
        storage,
        "tester",
        audit_logger=AuditLogger(audit_storage),
        clock=lambda: TODAY,
        settings=LedgerSettings(),
    )
