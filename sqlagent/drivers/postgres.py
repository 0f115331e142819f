"""
PostgreSQL Driver

Async PostgreSQL driver using asyncpg.

Features:
- Bounded asyncpg pool per attached database
- Statements run inside a read-only transaction with ``statement_timeout``
- Rows fetched through a server-side cursor, capped at ``max_rows``
- Column types resolved from result OIDs
- Schema introspection over information_schema (system catalogs excluded)

Usage:
    driver = PostgresDriver(
        ConnectionCredentials(host="localhost", port=5432, database="shop",
                              username="readonly", password="secret"),
        PoolSettings(max_size=5),
    )
    await driver.open()
    result = await driver.execute("SELECT * FROM orders LIMIT 10", timeout=30, max_rows=1000)
    await driver.close()
"""

import asyncio
import logging
from typing import Any

import asyncpg

from sqlagent.drivers.base import UNKNOWN_TYPE, DatabaseDriver
from sqlagent.errors import DriverError, ExecutionTimeoutError
from sqlagent.models import ColumnInfo, DriverResult, ResultColumn

logger = logging.getLogger(__name__)

# Result column OIDs to canonical names.
POSTGRES_TYPE_NAMES: dict[int, str] = {
    16: "boolean",
    20: "bigint",
    21: "smallint",
    23: "integer",
    25: "text",
    700: "real",
    701: "double precision",
    1043: "varchar",
    1082: "date",
    1114: "timestamp",
    1184: "timestamptz",
    1700: "numeric",
}

_TABLES_QUERY = """
    SELECT table_schema, table_name
    FROM information_schema.tables
    WHERE table_schema NOT IN ('pg_catalog', 'information_schema')
    AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""

_COLUMNS_QUERY = """
    SELECT
        c.column_name,
        c.data_type,
        c.is_nullable,
        c.column_default,
        (pk.column_name IS NOT NULL) AS is_primary_key,
        fk.foreign_table_name,
        fk.foreign_column_name
    FROM information_schema.columns c
    LEFT JOIN (
        SELECT ku.column_name
        FROM information_schema.table_constraints tc
        JOIN information_schema.key_column_usage ku
            ON tc.constraint_name = ku.constraint_name
            AND tc.table_schema = ku.table_schema
        WHERE tc.constraint_type = 'PRIMARY KEY'
        AND tc.table_schema = $1
        AND tc.table_name = $2
    ) pk ON c.column_name = pk.column_name
    LEFT JOIN (
        SELECT
            kcu.column_name,
            ccu.table_name AS foreign_table_name,
            ccu.column_name AS foreign_column_name
        FROM information_schema.table_constraints tc
        JOIN information_schema.key_column_usage kcu
            ON tc.constraint_name = kcu.constraint_name
            AND tc.table_schema = kcu.table_schema
        JOIN information_schema.constraint_column_usage ccu
            ON ccu.constraint_name = tc.constraint_name
            AND ccu.table_schema = tc.table_schema
        WHERE tc.constraint_type = 'FOREIGN KEY'
        AND tc.table_schema = $1
        AND tc.table_name = $2
    ) fk ON c.column_name = fk.column_name
    WHERE c.table_schema = $1 AND c.table_name = $2
    ORDER BY c.ordinal_position
"""


class PostgresDriver(DatabaseDriver):
    """PostgreSQL driver backed by an asyncpg pool."""

    dialect = "postgresql"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._pool: asyncpg.Pool | None = None

    async def open(self) -> None:
        if self._opened and self._pool:
            logger.debug("Pool already open, skipping")
            return

        creds = self.credentials.reveal()
        connect_kwargs: dict[str, Any]
        if creds["connection_string"]:
            connect_kwargs = {"dsn": _normalize_dsn(creds["connection_string"])}
        else:
            connect_kwargs = {
                "host": creds["host"],
                "port": creds["port"] or 5432,
                "database": creds["database"],
                "user": creds["username"],
                "password": creds["password"],
            }

        try:
            logger.info(
                f"Opening PostgreSQL pool for {creds['host'] or 'dsn'}/{creds['database'] or ''}"
            )
            self._pool = await asyncpg.create_pool(
                min_size=0,
                max_size=self.pool_settings.max_size,
                max_inactive_connection_lifetime=self.pool_settings.idle_timeout,
                timeout=self.pool_settings.connect_timeout,
                **connect_kwargs,
            )
            self._opened = True
        except (asyncpg.PostgresError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"PostgreSQL connection failed: {e}")
            raise DriverError(f"Failed to connect to PostgreSQL: {e}") from e
        except Exception as e:
            logger.error(f"Unexpected error during connection: {e}")
            raise DriverError(f"Connection error: {e}") from e

    async def probe(self) -> None:
        pool = self._require_pool()
        try:
            async with pool.acquire(timeout=self.pool_settings.connect_timeout) as conn:
                await conn.fetchval("SELECT 1")
        except Exception as e:
            raise DriverError(f"Connection test failed: {e}") from e

    async def execute(self, sql: str, *, timeout: float, max_rows: int) -> DriverResult:
        # close() may drop self._pool mid-query; release goes back to this pool.
        pool = self._require_pool()
        timeout_ms = int(timeout * 1000)

        try:
            conn = await pool.acquire(timeout=self.pool_settings.connect_timeout)
        except asyncio.TimeoutError as e:
            raise DriverError("Timed out waiting for a pooled connection") from e
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"PostgreSQL connection failed: {e}")
            raise DriverError(f"Failed to acquire connection: {e}") from e

        try:
            async with conn.transaction(readonly=True):
                await conn.execute(f"SET LOCAL statement_timeout = {timeout_ms}")
                stmt = await conn.prepare(sql, timeout=timeout)
                cursor = await stmt.cursor(timeout=timeout)
                records = await cursor.fetch(max_rows, timeout=timeout)
                columns = [
                    ResultColumn(name=attr.name, type=self.map_type(attr.type.oid))
                    for attr in stmt.get_attributes()
                ]

            logger.debug(f"Query returned {len(records)} rows", extra={"row_count": len(records)})
            return DriverResult(rows=[dict(record) for record in records], columns=columns)

        except (asyncpg.QueryCanceledError, asyncio.TimeoutError) as e:
            logger.warning(f"Query timed out after {timeout}s: {sql[:100]}...")
            raise ExecutionTimeoutError(timeout) from e
        except asyncpg.PostgresError as e:
            logger.error(f"Query failed: {e}\nQuery: {sql[:200]}...")
            raise DriverError(f"Query execution failed: {e}") from e
        except Exception as e:
            logger.error(f"Unexpected error during query execution: {e}")
            raise DriverError(f"Query error: {e}") from e
        finally:
            await pool.release(conn)

    def map_type(self, code: Any) -> str:
        return POSTGRES_TYPE_NAMES.get(code, UNKNOWN_TYPE)

    async def close(self) -> None:
        if not self._pool:
            return
        pool, self._pool = self._pool, None
        self._opened = False
        try:
            await pool.close()
            logger.info("PostgreSQL pool closed")
        except Exception as e:
            logger.error(f"Error closing pool: {e}")
            raise DriverError(f"Failed to close pool: {e}") from e

    def _require_pool(self) -> asyncpg.Pool:
        self._ensure_open()
        pool = self._pool
        if pool is None:
            raise DriverError("Driver is not open. Call open() first.")
        return pool

    async def _list_tables(self) -> list[tuple[str | None, str]]:
        rows = await self._require_pool().fetch(_TABLES_QUERY)
        return [(row["table_schema"], row["table_name"]) for row in rows]

    async def _describe_columns(self, schema_name: str | None, table_name: str) -> list[ColumnInfo]:
        rows = await self._require_pool().fetch(_COLUMNS_QUERY, schema_name, table_name)
        return [
            ColumnInfo(
                name=row["column_name"],
                data_type=row["data_type"],
                is_nullable=row["is_nullable"] == "YES",
                default_value=row["column_default"],
                is_primary_key=bool(row["is_primary_key"]),
                is_foreign_key=row["foreign_table_name"] is not None,
                foreign_table=row["foreign_table_name"],
                foreign_column=row["foreign_column_name"],
            )
            for row in rows
        ]

    async def _count_rows(self, schema_name: str | None, table_name: str) -> int:
        target = self.quote_identifier(table_name)
        if schema_name:
            target = f"{self.quote_identifier(schema_name)}.{target}"
        value = await self._require_pool().fetchval(f"SELECT COUNT(*) FROM {target}")
        return int(value)


def _normalize_dsn(dsn: str) -> str:
    if dsn.startswith("postgresql+asyncpg://"):
        return dsn.replace("postgresql+asyncpg://", "postgresql://", 1)
    return dsn
