"""
SQLite Driver

SQLite driver built on the standard library ``sqlite3`` module.

SQLite has no server-side statement timeout, so each query runs in a worker
thread and races an asyncio timer; when the timer wins the connection is
interrupted and the worker closes it. Databases are opened read-only through
a ``mode=ro`` URI, one connection per statement, with concurrency bounded by
the pool size.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sqlite3
from pathlib import Path
from typing import Any
from urllib.parse import quote

from sqlagent.drivers.base import UNKNOWN_TYPE, DatabaseDriver
from sqlagent.errors import DriverError, ExecutionTimeoutError
from sqlagent.models import ColumnInfo, DriverResult, ResultColumn

logger = logging.getLogger(__name__)

# SQLite reports no result column types, so types come from the first row's values.
SQLITE_TYPE_NAMES: dict[type, str] = {
    int: "integer",
    float: "real",
    str: "text",
    bytes: "blob",
    bool: "integer",
}

_SQLITE_URL_PREFIXES = ("sqlite:///", "sqlite://", "file:")


def _primary_key_column(conn: sqlite3.Connection, table_name: str) -> str:
    """First primary-key column of ``table_name``; ``rowid`` when it declares none."""
    quoted = '"' + table_name.replace('"', '""') + '"'
    keys = [
        (pk, name)
        for _cid, name, _type, _notnull, _default, pk in conn.execute(
            f"PRAGMA table_info({quoted})"
        ).fetchall()
        if pk > 0
    ]
    return min(keys)[1] if keys else "rowid"


class SQLiteDriver(DatabaseDriver):
    """Read-only SQLite driver."""

    dialect = "sqlite"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._path: Path | None = None

    @property
    def path(self) -> Path | None:
        return self._path

    async def open(self) -> None:
        if self._opened:
            return
        path = self._resolve_path()
        if not path.is_file():
            raise DriverError(f"SQLite database file not found: {path}")
        self._path = path
        try:
            conn = await asyncio.to_thread(self._connect)
            await asyncio.to_thread(conn.close)
        except sqlite3.Error as exc:
            logger.error(f"SQLite open failed: {exc}")
            raise DriverError(f"Failed to open SQLite database: {exc}") from exc
        self._opened = True
        logger.info(f"Opened SQLite database {path}")

    async def probe(self) -> None:
        self._ensure_open()
        try:
            await self._run(lambda conn: conn.execute("SELECT 1").fetchone())
        except sqlite3.Error as exc:
            raise DriverError(f"Connection test failed: {exc}") from exc

    async def execute(self, sql: str, *, timeout: float, max_rows: int) -> DriverResult:
        self._ensure_open()
        async with self._slot():
            try:
                conn = await asyncio.to_thread(self._connect)
            except sqlite3.Error as exc:
                raise DriverError(f"Failed to open SQLite database: {exc}") from exc

            try:
                rows, names = await asyncio.wait_for(
                    asyncio.to_thread(self._execute_sync, conn, sql, max_rows),
                    timeout,
                )
            except asyncio.TimeoutError as exc:
                with contextlib.suppress(sqlite3.ProgrammingError):
                    conn.interrupt()
                logger.warning(f"SQLite query timed out after {timeout}s: {sql[:100]}...")
                raise ExecutionTimeoutError(timeout) from exc
            except sqlite3.Error as exc:
                logger.error(f"SQLite query failed: {exc}\nQuery: {sql[:200]}...")
                raise DriverError(f"Query execution failed: {exc}") from exc

        first = rows[0] if rows else {}
        columns = [ResultColumn(name=name, type=self.map_type(type(first.get(name)))) for name in names]
        return DriverResult(rows=rows, columns=columns)

    def map_type(self, code: Any) -> str:
        return SQLITE_TYPE_NAMES.get(code, UNKNOWN_TYPE)

    async def close(self) -> None:
        # Connections are per statement; nothing stays open between calls.
        if self._opened:
            self._opened = False
            logger.info(f"Closed SQLite database {self._path}")

    async def _list_tables(self) -> list[tuple[str | None, str]]:
        rows = await self._run(
            lambda conn: conn.execute(
                """
                SELECT name FROM sqlite_master
                WHERE type = 'table'
                AND name NOT LIKE 'sqlite_%'
                ORDER BY name
                """
            ).fetchall()
        )
        return [(None, row[0]) for row in rows]

    async def _describe_columns(self, schema_name: str | None, table_name: str) -> list[ColumnInfo]:
        quoted = self.quote_identifier(table_name)

        def describe(conn: sqlite3.Connection) -> list[ColumnInfo]:
            info = conn.execute(f"PRAGMA table_info({quoted})").fetchall()
            # foreign_key_list leaves "to" NULL when the parent primary key is implied.
            foreign_keys = {
                row[3]: (row[2], row[4] or _primary_key_column(conn, row[2]))
                for row in conn.execute(f"PRAGMA foreign_key_list({quoted})").fetchall()
            }
            columns = []
            # table_info rows: cid, name, type, notnull, dflt_value, pk
            for _cid, name, data_type, notnull, default, pk in info:
                target = foreign_keys.get(name)
                columns.append(
                    ColumnInfo(
                        name=name,
                        data_type=data_type or "",
                        is_nullable=notnull == 0,
                        default_value=str(default) if default is not None else None,
                        is_primary_key=pk > 0,
                        is_foreign_key=target is not None,
                        foreign_table=target[0] if target else None,
                        foreign_column=target[1] if target else None,
                    )
                )
            return columns

        return await self._run(describe)

    async def _count_rows(self, schema_name: str | None, table_name: str) -> int:
        quoted = self.quote_identifier(table_name)
        row = await self._run(lambda conn: conn.execute(f"SELECT COUNT(*) FROM {quoted}").fetchone())
        return int(row[0])

    async def _run(self, fn):
        async with self._slot():
            return await asyncio.to_thread(self._call, fn)

    def _call(self, fn):
        conn = self._connect()
        try:
            return fn(conn)
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            f"file:{quote(str(self._path))}?mode=ro",
            uri=True,
            timeout=self.pool_settings.connect_timeout,
            check_same_thread=False,
        )
        conn.execute("PRAGMA query_only = ON")
        return conn

    @staticmethod
    def _execute_sync(
        conn: sqlite3.Connection, sql: str, max_rows: int
    ) -> tuple[list[dict[str, Any]], list[str]]:
        try:
            cursor = conn.execute(sql)
            names = [col[0] for col in cursor.description or []]
            rows = [dict(zip(names, row)) for row in cursor.fetchmany(max_rows)]
            return rows, names
        finally:
            conn.close()

    def _resolve_path(self) -> Path:
        creds = self.credentials.reveal()
        target = creds["connection_string"] or creds["database"]
        if not target:
            raise DriverError("SQLite connections require a database file path")
        for prefix in _SQLITE_URL_PREFIXES:
            if target.startswith(prefix):
                target = target[len(prefix):]
                break
        return Path(target.split("?", 1)[0]).expanduser()
