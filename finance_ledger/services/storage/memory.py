"""
In-Memory Storage Implementation

Keeps records in dictionaries. Used by tests and as the fallback
backend when Google Sheets isn't configured.

Records are copied on the way in and on the way out, so callers can't
mutate stored state behind the storage's back.
"""

from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel

from finance_ledger.models.audit import AuditEvent
from finance_ledger.models.ledger import ENTITY_MODELS, EntityKind, utcnow
from finance_ledger.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
)


def sort_records(kind: EntityKind, records: list[BaseModel]) -> list[BaseModel]:
    """Transactions newest first by date; everything else by creation time."""
    if kind == EntityKind.TRANSACTION:
        return sorted(records, key=lambda r: (r.date, r.created_at), reverse=True)
    return sorted(records, key=lambda r: r.created_at)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Dictionary-backed ledger storage."""

    def __init__(self):
        self._records: dict[EntityKind, dict[UUID, BaseModel]] = {
            kind: {} for kind in EntityKind
        }

    async def list_records(
        self,
        kind: EntityKind,
        user_id: Optional[str] = None,
    ) -> list[BaseModel]:
        records = [
            record.model_copy(deep=True)
            for record in self._records[kind].values()
            if user_id is None or record.user_id == user_id
        ]
        return sort_records(kind, records)

    async def get_record(
        self,
        kind: EntityKind,
        record_id: UUID,
    ) -> Optional[BaseModel]:
        record = self._records[kind].get(record_id)
        return record.model_copy(deep=True) if record else None

    async def insert_record(
        self,
        kind: EntityKind,
        record: BaseModel,
    ) -> BaseModel:
        if record.id in self._records[kind]:
            raise DuplicateError(f"{kind.value.capitalize()} already exists: {record.id}")
        self._records[kind][record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def update_record(
        self,
        kind: EntityKind,
        record_id: UUID,
        changes: dict[str, Any],
    ) -> bool:
        existing = self._records[kind].get(record_id)
        if existing is None:
            raise NotFoundError(kind, record_id)
        merged = {**existing.model_dump(), **changes, "updated_at": utcnow()}
        self._records[kind][record_id] = ENTITY_MODELS[kind].model_validate(merged)
        return True

    async def delete_record(
        self,
        kind: EntityKind,
        record_id: UUID,
    ) -> bool:
        return self._records[kind].pop(record_id, None) is not None


class InMemoryAuditStorage(AuditStorageInterface):
    """List-backed audit log."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
