"""
MySQL Driver

Async-compatible MySQL driver using mysql-connector-python.

The underlying driver is synchronous, so every pool operation runs in a
worker thread via asyncio.to_thread. Concurrency is bounded by a semaphore
sized to the pool; a caller that cannot get a connection within the connect
timeout fails with a DriverError.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import unquote, urlparse
from uuid import uuid4

from mysql.connector import Error as MySQLError
from mysql.connector import pooling

from sqlagent.drivers.base import UNKNOWN_TYPE, DatabaseDriver
from sqlagent.errors import DriverError, ExecutionTimeoutError
from sqlagent.models import ColumnInfo, DriverResult, ResultColumn

logger = logging.getLogger(__name__)

# Field type codes reported in cursor.description.
MYSQL_TYPE_NAMES: dict[int, str] = {
    0: "decimal",
    1: "tiny",
    2: "short",
    3: "long",
    4: "float",
    5: "double",
    7: "timestamp",
    8: "longlong",
    9: "int24",
    10: "date",
    11: "time",
    12: "datetime",
    13: "year",
    15: "varchar",
    245: "json",
    246: "decimal",
    253: "varchar",
    254: "char",
}

# ER_QUERY_TIMEOUT: max_execution_time exceeded.
_QUERY_TIMEOUT_ERRNO = 3024

# Slack on top of the server-side limit before the client gives up waiting.
_CLIENT_TIMEOUT_GRACE = 1.0


class MySQLDriver(DatabaseDriver):
    """MySQL driver backed by a mysql-connector-python connection pool."""

    dialect = "mysql"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._pool: pooling.MySQLConnectionPool | None = None
        self._database: str | None = None

    async def open(self) -> None:
        if self._opened:
            return
        try:
            self._pool = await asyncio.to_thread(self._create_pool_sync)
            self._opened = True
            logger.info(f"Opened MySQL pool for {self._database or 'default database'}")
        except MySQLError as exc:
            logger.error(f"MySQL connection failed: {exc}")
            raise DriverError(f"Failed to connect to MySQL: {exc}") from exc
        except Exception as exc:
            logger.error(f"MySQL connection failed: {exc}")
            raise DriverError(f"Connection error: {exc}") from exc

    async def probe(self) -> None:
        pool = self._require_pool()
        try:
            async with self._slot():
                await asyncio.to_thread(self._probe_sync, pool)
        except MySQLError as exc:
            raise DriverError(f"Connection test failed: {exc}") from exc

    async def execute(self, sql: str, *, timeout: float, max_rows: int) -> DriverResult:
        pool = self._require_pool()
        try:
            async with self._slot():
                rows, description = await asyncio.wait_for(
                    asyncio.to_thread(self._execute_sync, pool, sql, timeout, max_rows),
                    timeout + _CLIENT_TIMEOUT_GRACE,
                )
        except asyncio.TimeoutError as exc:
            logger.warning(f"MySQL query timed out after {timeout}s: {sql[:100]}...")
            raise ExecutionTimeoutError(timeout) from exc
        except DriverError:
            raise
        except MySQLError as exc:
            if getattr(exc, "errno", None) == _QUERY_TIMEOUT_ERRNO:
                logger.warning(f"MySQL query timed out after {timeout}s: {sql[:100]}...")
                raise ExecutionTimeoutError(timeout) from exc
            logger.error(f"MySQL query failed: {exc}\nQuery: {sql[:200]}...")
            raise DriverError(f"Query execution failed: {exc}") from exc
        except Exception as exc:
            logger.error(f"MySQL query failed: {exc}\nQuery: {sql[:200]}...")
            raise DriverError(f"Query error: {exc}") from exc

        columns = [ResultColumn(name=col[0], type=self.map_type(col[1])) for col in description]
        return DriverResult(rows=rows, columns=columns)

    def map_type(self, code: Any) -> str:
        return MYSQL_TYPE_NAMES.get(code, UNKNOWN_TYPE)

    async def close(self) -> None:
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        self._opened = False
        await asyncio.to_thread(_drain_pool, pool)
        logger.info("MySQL pool closed")

    async def _list_tables(self) -> list[tuple[str | None, str]]:
        async with self._slot():
            return await asyncio.to_thread(self._list_tables_sync, self._require_pool())

    async def _describe_columns(self, schema_name: str | None, table_name: str) -> list[ColumnInfo]:
        async with self._slot():
            return await asyncio.to_thread(
                self._describe_columns_sync, self._require_pool(), table_name
            )

    async def _count_rows(self, schema_name: str | None, table_name: str) -> int:
        async with self._slot():
            return await asyncio.to_thread(self._count_rows_sync, self._require_pool(), table_name)

    def _require_pool(self) -> pooling.MySQLConnectionPool:
        self._ensure_open()
        pool = self._pool
        if pool is None:
            raise DriverError("Driver is not open. Call open() first.")
        return pool

    def _connection_kwargs(self) -> dict[str, Any]:
        creds = self.credentials.reveal()
        if creds["connection_string"]:
            parsed = urlparse(creds["connection_string"])
            return {
                "host": parsed.hostname,
                "port": parsed.port or 3306,
                "database": parsed.path.lstrip("/") or None,
                "user": unquote(parsed.username) if parsed.username else None,
                "password": unquote(parsed.password) if parsed.password else "",
            }
        return {
            "host": creds["host"],
            "port": creds["port"] or 3306,
            "database": creds["database"] or None,
            "user": creds["username"],
            "password": creds["password"] or "",
        }

    def _create_pool_sync(self) -> pooling.MySQLConnectionPool:
        kwargs = self._connection_kwargs()
        self._database = kwargs.get("database")
        return pooling.MySQLConnectionPool(
            pool_name=f"sqlagent_{uuid4().hex[:16]}",
            pool_size=self.pool_settings.max_size,
            pool_reset_session=True,
            autocommit=True,
            connection_timeout=int(self.pool_settings.connect_timeout),
            **kwargs,
        )

    def _probe_sync(self, pool: pooling.MySQLConnectionPool) -> None:
        conn = pool.get_connection()
        try:
            cursor = conn.cursor()
            try:
                cursor.execute("SELECT 1")
                cursor.fetchall()
            finally:
                cursor.close()
        finally:
            conn.close()

    def _execute_sync(
        self,
        pool: pooling.MySQLConnectionPool,
        sql: str,
        timeout: float,
        max_rows: int,
    ) -> tuple[list[dict[str, Any]], list[tuple]]:
        conn = pool.get_connection()
        try:
            setup = conn.cursor()
            try:
                setup.execute(f"SET SESSION max_execution_time = {int(timeout * 1000)}")
            finally:
                setup.close()

            conn.start_transaction(readonly=True)
            # Unbuffered, so at most max_rows rows are held client-side.
            cursor = conn.cursor(dictionary=True)
            try:
                cursor.execute(sql)
                if not cursor.with_rows:
                    return [], []
                rows = cursor.fetchmany(size=max_rows)
                return rows, list(cursor.description or [])
            finally:
                if conn.unread_result:
                    conn.consume_results()
                cursor.close()
                conn.rollback()
        finally:
            conn.close()

    def _list_tables_sync(self, pool: pooling.MySQLConnectionPool) -> list[tuple[str | None, str]]:
        conn = pool.get_connection()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute("SELECT DATABASE() AS db_name")
            db_name = cursor.fetchone()["db_name"]
            cursor.execute(
                """
                SELECT table_name AS table_name
                FROM information_schema.tables
                WHERE table_schema = %s
                AND table_type = 'BASE TABLE'
                ORDER BY table_name
                """,
                (db_name,),
            )
            return [(None, str(row["table_name"])) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    def _describe_columns_sync(
        self, pool: pooling.MySQLConnectionPool, table_name: str
    ) -> list[ColumnInfo]:
        conn = pool.get_connection()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute(
                """
                SELECT
                    c.column_name AS column_name,
                    c.data_type AS data_type,
                    c.is_nullable AS is_nullable,
                    c.column_default AS column_default,
                    c.column_key AS column_key,
                    k.referenced_table_name AS foreign_table_name,
                    k.referenced_column_name AS foreign_column_name
                FROM information_schema.columns c
                LEFT JOIN information_schema.key_column_usage k
                    ON c.table_schema = k.table_schema
                    AND c.table_name = k.table_name
                    AND c.column_name = k.column_name
                    AND k.referenced_table_name IS NOT NULL
                WHERE c.table_schema = DATABASE()
                AND c.table_name = %s
                ORDER BY c.ordinal_position
                """,
                (table_name,),
            )
            columns: list[ColumnInfo] = []
            for row in cursor.fetchall():
                foreign_table = row["foreign_table_name"]
                columns.append(
                    ColumnInfo(
                        name=str(row["column_name"]),
                        data_type=str(row["data_type"]),
                        is_nullable=str(row["is_nullable"]).upper() == "YES",
                        default_value=(
                            str(row["column_default"])
                            if row["column_default"] is not None
                            else None
                        ),
                        is_primary_key=str(row["column_key"]).upper() == "PRI",
                        is_foreign_key=foreign_table is not None,
                        foreign_table=str(foreign_table) if foreign_table else None,
                        foreign_column=(
                            str(row["foreign_column_name"]) if foreign_table else None
                        ),
                    )
                )
            return columns
        finally:
            cursor.close()
            conn.close()

    def _count_rows_sync(self, pool: pooling.MySQLConnectionPool, table_name: str) -> int:
        conn = pool.get_connection()
        cursor = conn.cursor()
        try:
            cursor.execute(f"SELECT COUNT(*) FROM {self.quote_identifier(table_name, '`')}")
            return int(cursor.fetchone()[0])
        finally:
            cursor.close()
            conn.close()


def _drain_pool(pool: pooling.MySQLConnectionPool) -> None:
    # Only idle connections can be closed; checked-out ones close on return.
    try:
        pool._remove_connections()
    except MySQLError as exc:
        logger.debug(f"Ignoring MySQL pool drain error: {exc}")


__all__ = ["MySQLDriver", "MYSQL_TYPE_NAMES"]
