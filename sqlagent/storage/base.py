"""
Store Interface

Persistence for connection records, the per-connection schema cache, and
the append-only query history. Every read and write of connection data is
scoped by user id; schema snapshots are keyed by connection id and only
reached after the connection has been resolved for a user.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from sqlagent.models import (
    ConnectionRecord,
    ConnectionStatus,
    QueryHistoryEntry,
    SchemaSnapshot,
)


class SQLAgentStore(ABC):
    """Abstract persistence backend."""

    async def initialize(self) -> None:
        """Prepare the backend (create tables, open pools)."""
        return None

    async def close(self) -> None:
        """Release backend resources."""
        return None

    # Connections

    @abstractmethod
    async def insert_connection(self, record: ConnectionRecord) -> ConnectionRecord:
        pass

    @abstractmethod
    async def list_connections(self, user_id: str) -> list[ConnectionRecord]:
        """Connections owned by ``user_id``, newest first."""
        pass

    @abstractmethod
    async def get_connection(self, user_id: str, connection_id: str) -> ConnectionRecord | None:
        pass

    @abstractmethod
    async def update_connection(self, record: ConnectionRecord) -> ConnectionRecord:
        """Persist the mutable fields of ``record`` and return the stored row."""
        pass

    @abstractmethod
    async def set_connection_status(
        self,
        connection_id: str,
        status: ConnectionStatus,
        *,
        last_error: str | None = None,
        last_connected_at: datetime | None = None,
    ) -> None:
        """
        Record probe outcome.

        ``last_error`` is written as given (``None`` clears it);
        ``last_connected_at`` is only written when provided.
        """
        pass

    @abstractmethod
    async def delete_connection(self, user_id: str, connection_id: str) -> bool:
        """Remove the row. Returns False when nothing matched."""
        pass

    # Schema cache

    @abstractmethod
    async def save_schema(self, snapshot: SchemaSnapshot) -> None:
        """Replace the cached snapshot for ``snapshot.connection_id``."""
        pass

    @abstractmethod
    async def get_schema(self, connection_id: str) -> SchemaSnapshot | None:
        pass

    # History

    @abstractmethod
    async def add_history(self, entry: QueryHistoryEntry) -> None:
        pass

    @abstractmethod
    async def list_history(
        self, user_id: str, connection_id: str, limit: int
    ) -> list[QueryHistoryEntry]:
        """Newest entries first."""
        pass

    @abstractmethod
    async def clear_history(self, user_id: str, connection_id: str) -> int:
        """Delete history for a connection. Returns the number of removed entries."""
        pass
