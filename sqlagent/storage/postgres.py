"""Connection registry, schema cache and query history in the system database."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from uuid import UUID

import asyncpg

from sqlagent.config import get_settings
from sqlagent.models import (
    ConnectionRecord,
    ConnectionStatus,
    QueryHistoryEntry,
    SchemaSnapshot,
)
from sqlagent.storage.base import SQLAgentStore

_CREATE_CONNECTIONS_TABLE = """
CREATE TABLE IF NOT EXISTS sqlagent_connections (
    connection_id UUID PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    dialect TEXT NOT NULL CHECK (dialect IN ('postgresql', 'mysql', 'sqlite')),
    credentials_encrypted TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'inactive', 'error')),
    last_connected_at TIMESTAMPTZ,
    last_error TEXT,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL
);
"""

_CREATE_CONNECTIONS_USER_INDEX = """
CREATE INDEX IF NOT EXISTS sqlagent_connections_user_idx
ON sqlagent_connections (user_id, created_at DESC);
"""

_CREATE_SCHEMA_CACHE_TABLE = """
CREATE TABLE IF NOT EXISTS sqlagent_schema_cache (
    connection_id UUID PRIMARY KEY
        REFERENCES sqlagent_connections (connection_id) ON DELETE CASCADE,
    snapshot JSONB NOT NULL,
    cached_at TIMESTAMPTZ NOT NULL
);
"""

_CREATE_HISTORY_TABLE = """
CREATE TABLE IF NOT EXISTS sqlagent_query_history (
    history_id UUID PRIMARY KEY,
    user_id TEXT NOT NULL,
    connection_id UUID NOT NULL
        REFERENCES sqlagent_connections (connection_id) ON DELETE CASCADE,
    question TEXT NOT NULL,
    generated_sql TEXT NOT NULL,
    success BOOLEAN NOT NULL,
    row_count INTEGER,
    execution_time_ms DOUBLE PRECISION,
    error TEXT,
    created_at TIMESTAMPTZ NOT NULL
);
"""

_CREATE_HISTORY_INDEX = """
CREATE INDEX IF NOT EXISTS sqlagent_query_history_lookup_idx
ON sqlagent_query_history (user_id, connection_id, created_at DESC);
"""

_CONNECTION_COLUMNS = """
    connection_id,
    user_id,
    name,
    description,
    dialect,
    credentials_encrypted,
    status,
    last_connected_at,
    last_error,
    created_at,
    updated_at
"""


class PostgresStore(SQLAgentStore):
    """asyncpg-backed store."""

    def __init__(
        self,
        database_url: str | None = None,
        pool: asyncpg.Pool | None = None,
        pool_size: int | None = None,
    ) -> None:
        settings = get_settings()
        self._database_url = database_url or (
            str(settings.system_database.url) if settings.system_database.url else None
        )
        self._pool_size = pool_size or settings.system_database.pool_size
        self._pool = pool

    async def initialize(self) -> None:
        if self._pool is None:
            if not self._database_url:
                raise ValueError("SYSTEM_DATABASE_URL must be set for connection storage.")
            dsn = self._normalize_postgres_url(self._database_url)
            self._pool = await asyncpg.create_pool(dsn=dsn, min_size=1, max_size=self._pool_size)
        await self._pool.execute(_CREATE_CONNECTIONS_TABLE)
        await self._pool.execute(_CREATE_CONNECTIONS_USER_INDEX)
        await self._pool.execute(_CREATE_SCHEMA_CACHE_TABLE)
        await self._pool.execute(_CREATE_HISTORY_TABLE)
        await self._pool.execute(_CREATE_HISTORY_INDEX)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def insert_connection(self, record: ConnectionRecord) -> ConnectionRecord:
        self._ensure_pool()
        row = await self._pool.fetchrow(
            f"""
            INSERT INTO sqlagent_connections ({_CONNECTION_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            RETURNING {_CONNECTION_COLUMNS}
            """,
            UUID(record.id),
            record.user_id,
            record.name,
            record.description,
            record.dialect.value,
            record.credentials_encrypted,
            record.status,
            record.last_connected_at,
            record.last_error,
            record.created_at,
            record.updated_at,
        )
        return self._row_to_record(row)

    async def list_connections(self, user_id: str) -> list[ConnectionRecord]:
        self._ensure_pool()
        rows = await self._pool.fetch(
            f"""
            SELECT {_CONNECTION_COLUMNS}
            FROM sqlagent_connections
            WHERE user_id = $1
            ORDER BY created_at DESC
            """,
            user_id,
        )
        return [self._row_to_record(row) for row in rows]

    async def get_connection(self, user_id: str, connection_id: str) -> ConnectionRecord | None:
        self._ensure_pool()
        connection_uuid = self._coerce_uuid(connection_id)
        if connection_uuid is None:
            return None
        row = await self._pool.fetchrow(
            f"""
            SELECT {_CONNECTION_COLUMNS}
            FROM sqlagent_connections
            WHERE connection_id = $1 AND user_id = $2
            """,
            connection_uuid,
            user_id,
        )
        return self._row_to_record(row) if row is not None else None

    async def update_connection(self, record: ConnectionRecord) -> ConnectionRecord:
        self._ensure_pool()
        row = await self._pool.fetchrow(
            f"""
            UPDATE sqlagent_connections SET
                name = $3,
                description = $4,
                credentials_encrypted = $5,
                status = $6,
                last_error = $7,
                updated_at = $8
            WHERE connection_id = $1 AND user_id = $2
            RETURNING {_CONNECTION_COLUMNS}
            """,
            UUID(record.id),
            record.user_id,
            record.name,
            record.description,
            record.credentials_encrypted,
            record.status,
            record.last_error,
            record.updated_at,
        )
        if row is None:
            raise KeyError(f"Connection not found: {record.id}")
        return self._row_to_record(row)

    async def set_connection_status(
        self,
        connection_id: str,
        status: ConnectionStatus,
        *,
        last_error: str | None = None,
        last_connected_at: datetime | None = None,
    ) -> None:
        self._ensure_pool()
        await self._pool.execute(
            """
            UPDATE sqlagent_connections SET
                status = $2,
                last_error = $3,
                last_connected_at = COALESCE($4, last_connected_at),
                updated_at = $5
            WHERE connection_id = $1
            """,
            UUID(connection_id),
            status,
            last_error,
            last_connected_at,
            datetime.now(UTC),
        )

    async def delete_connection(self, user_id: str, connection_id: str) -> bool:
        self._ensure_pool()
        connection_uuid = self._coerce_uuid(connection_id)
        if connection_uuid is None:
            return False
        result = await self._pool.execute(
            "DELETE FROM sqlagent_connections WHERE connection_id = $1 AND user_id = $2",
            connection_uuid,
            user_id,
        )
        deleted = int(result.split()[-1]) if result else 0
        return deleted > 0

    async def save_schema(self, snapshot: SchemaSnapshot) -> None:
        self._ensure_pool()
        payload = snapshot.model_dump(mode="json", exclude={"connection_id", "cached_at"})
        await self._pool.execute(
            """
            INSERT INTO sqlagent_schema_cache (connection_id, snapshot, cached_at)
            VALUES ($1, $2::jsonb, $3)
            ON CONFLICT (connection_id) DO UPDATE SET
                snapshot = EXCLUDED.snapshot,
                cached_at = EXCLUDED.cached_at
            """,
            UUID(snapshot.connection_id),
            json.dumps(payload),
            snapshot.cached_at,
        )

    async def get_schema(self, connection_id: str) -> SchemaSnapshot | None:
        self._ensure_pool()
        connection_uuid = self._coerce_uuid(connection_id)
        if connection_uuid is None:
            return None
        row = await self._pool.fetchrow(
            """
            SELECT snapshot, cached_at
            FROM sqlagent_schema_cache
            WHERE connection_id = $1
            """,
            connection_uuid,
        )
        if row is None:
            return None
        payload = row["snapshot"]
        if isinstance(payload, str):
            payload = json.loads(payload)
        return SchemaSnapshot.model_validate(
            {**payload, "connection_id": connection_id, "cached_at": row["cached_at"]}
        )

    async def add_history(self, entry: QueryHistoryEntry) -> None:
        self._ensure_pool()
        await self._pool.execute(
            """
            INSERT INTO sqlagent_query_history (
                history_id,
                user_id,
                connection_id,
                question,
                generated_sql,
                success,
                row_count,
                execution_time_ms,
                error,
                created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            """,
            UUID(entry.id),
            entry.user_id,
            UUID(entry.connection_id),
            entry.question,
            entry.generated_sql,
            entry.success,
            entry.row_count,
            entry.execution_time_ms,
            entry.error,
            entry.created_at,
        )

    async def list_history(
        self, user_id: str, connection_id: str, limit: int
    ) -> list[QueryHistoryEntry]:
        self._ensure_pool()
        connection_uuid = self._coerce_uuid(connection_id)
        if connection_uuid is None:
            return []
        bounded_limit = max(1, min(limit, 1000))
        rows = await self._pool.fetch(
            """
            SELECT
                history_id,
                user_id,
                connection_id,
                question,
                generated_sql,
                success,
                row_count,
                execution_time_ms,
                error,
                created_at
            FROM sqlagent_query_history
            WHERE user_id = $1 AND connection_id = $2
            ORDER BY created_at DESC
            LIMIT $3
            """,
            user_id,
            connection_uuid,
            bounded_limit,
        )
        return [
            QueryHistoryEntry(
                id=str(row["history_id"]),
                user_id=row["user_id"],
                connection_id=str(row["connection_id"]),
                question=row["question"],
                generated_sql=row["generated_sql"],
                success=row["success"],
                row_count=row["row_count"],
                execution_time_ms=row["execution_time_ms"],
                error=row["error"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    async def clear_history(self, user_id: str, connection_id: str) -> int:
        self._ensure_pool()
        connection_uuid = self._coerce_uuid(connection_id)
        if connection_uuid is None:
            return 0
        result = await self._pool.execute(
            "DELETE FROM sqlagent_query_history WHERE user_id = $1 AND connection_id = $2",
            user_id,
            connection_uuid,
        )
        return int(result.split()[-1]) if result else 0

    @staticmethod
    def _row_to_record(row: asyncpg.Record) -> ConnectionRecord:
        return ConnectionRecord(
            id=str(row["connection_id"]),
            user_id=row["user_id"],
            name=row["name"],
            description=row["description"],
            dialect=row["dialect"],
            credentials_encrypted=row["credentials_encrypted"],
            status=row["status"],
            last_connected_at=row["last_connected_at"],
            last_error=row["last_error"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _ensure_pool(self) -> None:
        if self._pool is None:
            raise RuntimeError("PostgresStore is not initialized")

    @staticmethod
    def _coerce_uuid(connection_id: str) -> UUID | None:
        try:
            return UUID(str(connection_id))
        except ValueError:
            return None

    @staticmethod
    def _normalize_postgres_url(database_url: str) -> str:
        if database_url.startswith("postgresql+asyncpg://"):
            return database_url.replace("postgresql+asyncpg://", "postgresql://", 1)
        return database_url
