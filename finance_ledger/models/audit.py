"""
Audit Models for Finance Ledger

Every mutation of the ledger, and every non-fatal condition the user
should be able to see later, is recorded as an audit event.
This provides:
1. Traceability of every balance change
2. Debugging information when a two-step write goes wrong
3. A visible record of approximate conversions and skipped updates

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from finance_ledger.models.ledger import EntityKind, utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Record lifecycle
    RECORD_CREATED = "record_created"
    RECORD_UPDATED = "record_updated"
    RECORD_DELETED = "record_deleted"
    ACCOUNT_DEACTIVATED = "account_deactivated"

    # Balance maintenance
    BALANCE_ADJUSTED = "balance_adjusted"
    BALANCE_UPDATE_SKIPPED = "balance_update_skipped"

    # Derived state
    BUDGET_ALERT_TRIGGERED = "budget_alert_triggered"
    GOAL_COMPLETED = "goal_completed"

    # Currency
    RATES_REFRESHED = "rates_refreshed"
    RATES_REFRESH_FAILED = "rates_refresh_failed"

    # Export / import
    LEDGER_EXPORTED = "ledger_exported"
    LEDGER_IMPORTED = "ledger_imported"

    # Failures
    SAVE_FAILED = "save_failed"
    ROLLBACK_FAILED = "rollback_failed"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'account', 'rates')"
    )
    entity_id: Optional[UUID] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., a transaction write and its balance update)"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.record_created(EntityKind.ACCOUNT, account.id, {...})
        event = AuditEventBuilder.balance_adjusted(account_id, old, new, correlation_id)
    """

    @staticmethod
    def record_created(
        kind: EntityKind,
        entity_id: UUID,
        details: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_CREATED,
            entity_type=kind.value,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{kind.value.capitalize()} created",
            details=details,
            is_user_action=True,
        )

    @staticmethod
    def record_updated(
        kind: EntityKind,
        entity_id: UUID,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_UPDATED,
            entity_type=kind.value,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{kind.value.capitalize()} updated",
            details={"changed_fields": changed_fields},
            is_user_action=True,
        )

    @staticmethod
    def record_deleted(
        kind: EntityKind,
        entity_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_DELETED,
            entity_type=kind.value,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{kind.value.capitalize()} deleted",
            is_user_action=True,
        )

    @staticmethod
    def account_deactivated(
        account_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DEACTIVATED,
            entity_type=EntityKind.ACCOUNT.value,
            entity_id=account_id,
            correlation_id=correlation_id,
            description="Account deactivated",
            is_user_action=True,
        )

    @staticmethod
    def balance_adjusted(
        account_id: UUID,
        old_balance: str,
        new_balance: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_ADJUSTED,
            entity_type=EntityKind.ACCOUNT.value,
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Balance changed from {old_balance} to {new_balance}",
            details={"old_balance": old_balance, "new_balance": new_balance},
        )

    @staticmethod
    def balance_update_skipped(
        transaction_id: UUID,
        account_id: UUID,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_UPDATE_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type=EntityKind.TRANSACTION.value,
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Account balance not updated",
            details={"account_id": str(account_id), "reason": reason},
        )

    @staticmethod
    def budget_alert(
        budget_id: UUID,
        category: str,
        raw_percentage: str,
        status: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_ALERT_TRIGGERED,
            severity=AuditSeverity.WARNING,
            entity_type=EntityKind.BUDGET.value,
            entity_id=budget_id,
            description=f"Budget for {category} at {raw_percentage}%",
            details={"category": category, "raw_percentage": raw_percentage, "status": status},
        )

    @staticmethod
    def goal_completed(goal_id: UUID, name: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_COMPLETED,
            entity_type=EntityKind.GOAL.value,
            entity_id=goal_id,
            description=f"Goal reached: {name}",
        )

    @staticmethod
    def rates_refreshed(base_currency: str, currency_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RATES_REFRESHED,
            entity_type="rates",
            description=f"Exchange rates refreshed for base {base_currency}",
            details={"base_currency": base_currency, "currency_count": currency_count},
        )

    @staticmethod
    def rates_refresh_failed(base_currency: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RATES_REFRESH_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="rates",
            description="Exchange rate refresh failed, keeping previous table",
            details={"base_currency": base_currency},
            error_message=error_message,
        )

    @staticmethod
    def ledger_exported(record_counts: dict[str, int]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_EXPORTED,
            entity_type="ledger",
            description="Ledger exported",
            details=record_counts,
            is_user_action=True,
        )

    @staticmethod
    def ledger_imported(schema_version: int, record_counts: dict[str, int]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_IMPORTED,
            entity_type="ledger",
            description=f"Ledger imported (schema version {schema_version})",
            details=record_counts,
            is_user_action=True,
        )

    @staticmethod
    def save_failed(
        kind: EntityKind,
        entity_id: Optional[UUID],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type=kind.value,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Failed to save {kind.value}",
            error_message=error_message,
        )

    @staticmethod
    def rollback_failed(
        transaction_id: UUID,
        account_id: UUID,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ROLLBACK_FAILED,
            severity=AuditSeverity.CRITICAL,
            entity_type=EntityKind.TRANSACTION.value,
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Transaction recorded without its balance effect",
            details={"account_id": str(account_id)},
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"System error: {error_type}",
            details=details or {},
            error_message=error_message,
        )
