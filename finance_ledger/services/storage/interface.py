"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep ledger logic decoupled from storage implementation

The interface is intentionally narrow - one CRUD contract shared by the
four record kinds. The ledger only needs listing by owning user,
insertion, partial update and deletion. Query semantics beyond that
belong to the backend.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel

from finance_ledger.models.ledger import EntityKind
from finance_ledger.models.audit import AuditEvent


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger record storage.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def list_records(
        self,
        kind: EntityKind,
        user_id: Optional[str] = None,
    ) -> list[BaseModel]:
        """
        List records of one kind.

        Args:
            kind: Which collection to read
            user_id: Only return records owned by this user (None = all)

        Returns:
            Records of the kind's model type. Transactions are ordered by
            date, newest first; other kinds by creation time.

        Raises:
            PersistenceError: If the backend cannot be read
        """
        pass

    @abstractmethod
    async def get_record(
        self,
        kind: EntityKind,
        record_id: UUID,
    ) -> Optional[BaseModel]:
        """
        Retrieve one record by ID.

        Returns:
            The record if found, None otherwise
        """
        pass

    @abstractmethod
    async def insert_record(
        self,
        kind: EntityKind,
        record: BaseModel,
    ) -> BaseModel:
        """
        Insert a new record.

        Returns:
            The stored record (with its identifier)

        Raises:
            DuplicateError: If a record with the same ID exists
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def update_record(
        self,
        kind: EntityKind,
        record_id: UUID,
        changes: dict[str, Any],
    ) -> bool:
        """
        Apply a partial update to a record.

        Args:
            kind: Which collection the record lives in
            record_id: The record's identifier
            changes: Field name to new value

        Returns:
            True if updated successfully

        Raises:
            NotFoundError: If the record doesn't exist
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_record(
        self,
        kind: EntityKind,
        record_id: UUID,
    ) -> bool:
        """
        Delete a record by ID.

        Returns:
            True if deleted, False if no such record existed

        Raises:
            PersistenceError: If the write fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a correlation ID, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class PersistenceError(Exception):
    """Base exception for storage operations."""
    pass


class DuplicateError(PersistenceError):
    """Attempted to insert a duplicate entity."""
    pass


class StorageConnectionError(PersistenceError):
    """Could not connect to storage backend."""
    pass


class NotFoundError(Exception):
    """
    Reference to an entity that doesn't exist.

    Not a PersistenceError: the backend worked, the record just isn't there.
    """

    def __init__(self, kind: EntityKind, record_id: UUID, message: Optional[str] = None):
        self.kind = kind
        self.record_id = record_id
        super().__init__(message or f"{kind.value.capitalize()} not found: {record_id}")
