"""
Base Database Driver

Abstract base class for the per-dialect drivers. A driver instance *is* the
pool handle for one attached database: it is opened once, shared by every
caller for that connection, and closed when the connection's credentials
change, the connection is deleted, or the agent shuts down.

All drivers implement:
- open(): Create the connection pool (idempotent)
- probe(): Run ``SELECT 1`` against the pool
- execute(): Run one read-only statement under a timeout and a row cap
- introspect(): Enumerate base tables, ordered columns, keys and row counts
- map_type(): Translate native type codes to canonical names
- close(): Tear the pool down (idempotent)
"""

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from sqlagent.config import PoolSettings
from sqlagent.errors import DriverError
from sqlagent.models import ColumnInfo, ConnectionCredentials, DriverResult, TableInfo
from sqlagent.utils import attempt

logger = logging.getLogger(__name__)

UNKNOWN_TYPE = "unknown"


class DatabaseDriver(ABC):
    """
    Abstract base class for database drivers.

    Usage:
        driver = PostgresDriver(credentials, PoolSettings())
        await driver.open()

        result = await driver.execute("SELECT * FROM users LIMIT 10", timeout=30, max_rows=1000)
        print(f"Found {result.row_count} rows")

        tables = await driver.introspect()
        await driver.close()
    """

    dialect: str = ""

    def __init__(
        self,
        credentials: ConnectionCredentials,
        pool_settings: PoolSettings | None = None,
    ) -> None:
        self.credentials = credentials
        self.pool_settings = pool_settings or PoolSettings()
        self._opened = False
        self._slots = asyncio.Semaphore(self.pool_settings.max_size)

    @abstractmethod
    async def open(self) -> None:
        """
        Create the connection pool.

        Raises:
            DriverError: If the database cannot be reached
        """
        pass

    @abstractmethod
    async def execute(self, sql: str, *, timeout: float, max_rows: int) -> DriverResult:
        """
        Execute one read-only statement.

        Args:
            sql: Statement to run (already validated and limited)
            timeout: Seconds before the statement is abandoned
            max_rows: Maximum rows to fetch

        Raises:
            ExecutionTimeoutError: If the statement exceeds ``timeout``
            DriverError: If the database rejects the statement
        """
        pass

    @abstractmethod
    async def probe(self) -> None:
        """Run ``SELECT 1``. Raises DriverError on failure."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the pool. Safe to call multiple times."""
        pass

    @abstractmethod
    def map_type(self, code: Any) -> str:
        """Canonical type name for a native type code, ``"unknown"`` if unmapped."""
        pass

    # Introspection steps

    @abstractmethod
    async def _list_tables(self) -> list[tuple[str | None, str]]:
        """(schema, table) pairs for every base table outside system catalogs."""
        pass

    @abstractmethod
    async def _describe_columns(self, schema_name: str | None, table_name: str) -> list[ColumnInfo]:
        pass

    @abstractmethod
    async def _count_rows(self, schema_name: str | None, table_name: str) -> int:
        pass

    async def introspect(self) -> list[TableInfo]:
        """
        Introspect the attached database.

        Table enumeration and column description failures are fatal. A failed
        row count leaves ``row_count`` as ``None``.

        Raises:
            DriverError: If tables or columns cannot be read
        """
        self._ensure_open()
        try:
            table_names = await self._list_tables()
        except DriverError:
            raise
        except Exception as exc:
            logger.error(f"Table enumeration failed: {exc}")
            raise DriverError(f"Failed to list tables: {exc}") from exc

        tables: list[TableInfo] = []
        for schema_name, table_name in table_names:
            try:
                columns = await self._describe_columns(schema_name, table_name)
            except DriverError:
                raise
            except Exception as exc:
                logger.error(f"Column introspection failed for {table_name}: {exc}")
                raise DriverError(f"Failed to describe table {table_name}: {exc}") from exc

            count = await attempt(self._count_rows(schema_name, table_name))
            if not count.ok:
                logger.debug(
                    f"Row count unavailable for {table_name}: {count.error}",
                    extra={"table": table_name},
                )

            tables.append(
                TableInfo(
                    name=table_name,
                    schema_name=schema_name,
                    columns=columns,
                    row_count=count.unwrap_or(None),
                )
            )

        logger.info(
            f"Introspected {self.dialect} database: found {len(tables)} tables",
            extra={"dialect": self.dialect, "table_count": len(tables)},
        )
        return tables

    @contextlib.asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        """Hold one of ``max_size`` connection slots, waiting at most the connect timeout."""
        try:
            await asyncio.wait_for(self._slots.acquire(), self.pool_settings.connect_timeout)
        except asyncio.TimeoutError as exc:
            raise DriverError("Timed out waiting for a pooled connection") from exc
        try:
            yield
        finally:
            self._slots.release()

    @property
    def is_open(self) -> bool:
        return self._opened

    def _ensure_open(self) -> None:
        if not self._opened:
            raise DriverError("Driver is not open. Call open() first.")

    @staticmethod
    def quote_identifier(name: str, quote: str = '"') -> str:
        return f"{quote}{name.replace(quote, quote * 2)}{quote}"

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    def __repr__(self) -> str:
        status = "open" if self._opened else "closed"
        target = self.credentials.database or self.credentials.host or "?"
        return f"<{self.__class__.__name__} {target} ({status})>"
