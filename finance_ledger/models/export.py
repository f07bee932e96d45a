"""
Export Document Reading

Turns a decoded export document into a LedgerExport, whatever version
wrote it.

Version 0 is the legacy shape: no schema_version, an `exportDate`
timestamp and camelCase records with free-form string identifiers.
Legacy accounts carry only their current balance, so the opening
balance is recovered by subtracting the account's transactions.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, NAMESPACE_URL, uuid5

from finance_ledger.models.ledger import (
    CURRENT_EXPORT_VERSION,
    Account,
    Budget,
    Goal,
    LedgerExport,
    Transaction,
    TransactionKind,
    apply_sign_convention,
)


LEGACY_VERSION = 0

# Legacy identifiers that aren't UUIDs map to stable UUIDs in this namespace
LEGACY_ID_NAMESPACE = uuid5(NAMESPACE_URL, "finance-ledger/legacy-export")


class UnsupportedExportVersion(ValueError):
    """The document was written by a newer version of the ledger."""

    def __init__(self, version: Any):
        self.version = version
        super().__init__(
            f"Export schema version {version} is not supported "
            f"(newest supported: {CURRENT_EXPORT_VERSION})"
        )


def export_version(document: dict[str, Any]) -> int:
    version = document.get("schema_version")
    if version is None:
        return LEGACY_VERSION
    if isinstance(version, bool) or not isinstance(version, int) or version < 0:
        raise UnsupportedExportVersion(version)
    return version


def legacy_id(value: Any) -> UUID:
    try:
        return UUID(str(value))
    except ValueError:
        return uuid5(LEGACY_ID_NAMESPACE, str(value))


def _legacy_date(value: Optional[str]) -> Optional[date]:
    # Legacy dates are either "YYYY-MM-DD" or full ISO timestamps
    if not value:
        return None
    return date.fromisoformat(str(value)[:10])


def _legacy_transaction(raw: dict[str, Any], user_id: Optional[str]) -> Transaction:
    kind = TransactionKind(raw["type"])
    recurring = bool(raw.get("recurring", False))
    return Transaction(
        id=legacy_id(raw["id"]),
        user_id=user_id,
        amount=apply_sign_convention(kind, Decimal(str(raw["amount"]))),
        kind=kind,
        category=raw["category"],
        subcategory=raw.get("subcategory") or None,
        account_id=legacy_id(raw["account"]),
        description=raw["description"],
        date=_legacy_date(raw["date"]),
        tags=raw.get("tags") or [],
        recurring=recurring,
        recurring_interval=raw.get("recurringInterval") if recurring else None,
    )


def _legacy_account(
    raw: dict[str, Any],
    transactions: list[Transaction],
    user_id: Optional[str],
) -> Account:
    account_id = legacy_id(raw["id"])
    balance = Decimal(str(raw["balance"]))
    applied = sum(
        (t.amount for t in transactions if t.account_id == account_id),
        Decimal("0"),
    )
    return Account(
        id=account_id,
        user_id=user_id,
        name=raw["name"],
        type=raw["type"],
        balance=balance,
        opening_balance=balance - applied,
        currency=str(raw.get("currency", "USD")).upper(),
        institution=raw.get("institution") or None,
        is_active=raw.get("isActive", True),
    )


def _legacy_budget(raw: dict[str, Any], user_id: Optional[str]) -> Budget:
    # `spent` is a cache and is recomputed after import
    return Budget(
        id=legacy_id(raw["id"]),
        user_id=user_id,
        category=raw["category"],
        limit=Decimal(str(raw["limit"])),
        period=raw.get("period", "monthly"),
        alert_threshold=Decimal(str(raw.get("alertThreshold", 80))),
    )


def _legacy_goal(raw: dict[str, Any], user_id: Optional[str]) -> Goal:
    return Goal(
        id=legacy_id(raw["id"]),
        user_id=user_id,
        name=raw["name"],
        target_amount=Decimal(str(raw["targetAmount"])),
        current_amount=Decimal(str(raw.get("currentAmount", 0))),
        deadline=_legacy_date(raw.get("deadline")),
        category=raw.get("category") or "Other",
    )


def read_legacy_export(document: dict[str, Any], user_id: Optional[str] = None) -> LedgerExport:
    transactions = [
        _legacy_transaction(raw, user_id) for raw in document.get("transactions", [])
    ]
    fields: dict[str, Any] = {
        "schema_version": LEGACY_VERSION,
        "transactions": transactions,
        "accounts": [
            _legacy_account(raw, transactions, user_id)
            for raw in document.get("accounts", [])
        ],
        "budgets": [_legacy_budget(raw, user_id) for raw in document.get("budgets", [])],
        "goals": [_legacy_goal(raw, user_id) for raw in document.get("goals", [])],
    }
    if document.get("exportDate"):
        fields["exported_at"] = document["exportDate"]
    return LedgerExport.model_validate(fields)


def read_export(document: dict[str, Any], user_id: Optional[str] = None) -> LedgerExport:
    """
    Read an export document of any supported version.

    Raises:
        UnsupportedExportVersion: If the document is newer than this ledger
        pydantic.ValidationError: If a record is malformed
        KeyError: If a legacy record lacks a required key
    """
    version = export_version(document)
    if version > CURRENT_EXPORT_VERSION:
        raise UnsupportedExportVersion(version)
    if version == LEGACY_VERSION:
        return read_legacy_export(document, user_id)
    return LedgerExport.model_validate(document)
