"""
Query Executor

Runs SQL against an attached database and records natural-language query
attempts in history.

Every query-level failure (safety rejection, invalid SQL, timeout, driver
error) comes back as an ``ExecutionResult`` with ``success=False`` and an
``error_code``. Only failures that stop a request before it reaches the
query stage (unknown connection, model failure) are raised.

Usage:
    executor = QueryExecutor(connections, generator, store)
    result = await executor.execute_natural_language(
        user_id, connection_id, "how many orders are there", timeout=10
    )
    if result.success:
        print(result.rows)
"""

from __future__ import annotations

import logging
import time

from sqlagent.config import QuerySettings
from sqlagent.errors import (
    DriverError,
    ExecutionTimeoutError,
    HistoryPersistenceError,
    UnsafeQueryError,
)
from sqlagent.models import (
    NO_SQL_SENTINEL,
    ErrorCode,
    ExecutionResult,
    QueryHistoryEntry,
)
from sqlagent.services.connection_manager import ConnectionManager
from sqlagent.services.query_generator import QueryGenerator
from sqlagent.services.query_validator import ensure_limit, validate_sql
from sqlagent.storage import SQLAgentStore
from sqlagent.utils import attempt

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def error_code_for(exc: Exception) -> ErrorCode | None:
    """Result code for a failure raised before execution; None when no code fits."""
    if isinstance(exc, ExecutionTimeoutError):
        return "timeout"
    if isinstance(exc, DriverError):
        return "driver_error"
    if isinstance(exc, UnsafeQueryError):
        return "unsafe_query"
    return None


class QueryExecutor:
    """Validate, limit, time-bound and run queries; keep history."""

    def __init__(
        self,
        connections: ConnectionManager,
        generator: QueryGenerator,
        store: SQLAgentStore,
        settings: QuerySettings | None = None,
    ) -> None:
        self._connections = connections
        self._generator = generator
        self._store = store
        self.settings = settings or QuerySettings()

    def clamp_timeout(self, timeout: float | None) -> float:
        """Requested timeout in seconds, defaulted and capped at ``max_timeout``."""
        if timeout is None or timeout <= 0:
            timeout = self.settings.default_timeout
        return min(float(timeout), self.settings.max_timeout)

    async def execute_sql(
        self,
        user_id: str,
        connection_id: str,
        sql: str,
        timeout: float | None = None,
        max_rows: int | None = None,
    ) -> ExecutionResult:
        """
        Execute one SQL statement.

        Raises:
            ConnectionNotFoundError: The user has no such connection
        """
        started = time.perf_counter()
        connection = await self._connections.require_connection(user_id, connection_id)

        verdict = validate_sql(sql, connection.dialect)
        if not verdict.valid:
            logger.warning(
                f"Rejected SQL: {verdict.error}",
                extra={"connection_id": connection_id, "sql": sql[:200]},
            )
            return ExecutionResult.failure(
                verdict.error or "Invalid SQL", "invalid_sql", _elapsed_ms(started)
            )

        try:
            driver = await self._connections.get_or_create_pool(connection_id, user_id)
        except DriverError as exc:
            return ExecutionResult.failure(exc.message, "driver_error", _elapsed_ms(started))

        effective_timeout = self.clamp_timeout(timeout)
        row_cap = max_rows if max_rows and max_rows > 0 else self.settings.default_max_rows
        limited_sql = ensure_limit(sql, row_cap)

        logger.info(
            "Executing SQL query",
            extra={
                "connection_id": connection_id,
                "dialect": connection.dialect.value,
                "timeout": effective_timeout,
                "max_rows": row_cap,
            },
        )
        try:
            fetched = await driver.execute(limited_sql, timeout=effective_timeout, max_rows=row_cap)
        except ExecutionTimeoutError as exc:
            logger.warning(
                f"Query timed out after {effective_timeout:g}s",
                extra={"connection_id": connection_id},
            )
            return ExecutionResult.failure(exc.message, "timeout", _elapsed_ms(started))
        except DriverError as exc:
            logger.error(
                f"Query execution failed: {exc.message}",
                extra={"connection_id": connection_id},
            )
            return ExecutionResult.failure(exc.message, "driver_error", _elapsed_ms(started))

        warnings = []
        if fetched.row_count >= row_cap:
            warnings.append(f"Results limited to {row_cap} rows")

        result = ExecutionResult(
            success=True,
            rows=fetched.rows,
            row_count=fetched.row_count,
            columns=fetched.columns,
            execution_time_ms=_elapsed_ms(started),
            generated_sql=limited_sql,
            warnings=warnings,
        )
        logger.info(
            "SQL query executed",
            extra={
                "connection_id": connection_id,
                "row_count": result.row_count,
                "execution_time_ms": result.execution_time_ms,
            },
        )
        return result

    async def execute_natural_language(
        self,
        user_id: str,
        connection_id: str,
        question: str,
        timeout: float | None = None,
        max_rows: int | None = None,
        dry_run: bool = False,
    ) -> ExecutionResult:
        """
        Generate SQL for ``question`` and run it.

        A dry run stops after generation: no driver is touched and no history
        is written. Every other attempt writes exactly one history entry.

        Raises:
            ConnectionNotFoundError: The user has no such connection
            GenerationFailedError: The model call failed or the reply was unusable
            DriverError: Schema discovery could not reach the database
        """
        await self._connections.require_connection(user_id, connection_id)
        started = time.perf_counter()
        logger.info(
            "Executing natural language query",
            extra={"user_id": user_id, "connection_id": connection_id, "dry_run": dry_run},
        )

        try:
            generated = await self._generator.generate(
                user_id, connection_id, question, dry_run=dry_run
            )
        except UnsafeQueryError as exc:
            result = ExecutionResult.failure(exc.message, "unsafe_query", _elapsed_ms(started))
            result.generated_sql = exc.sql
            if not dry_run:
                await self._record_history(
                    user_id, connection_id, question, exc.sql or NO_SQL_SENTINEL, result
                )
            return result
        except Exception as exc:
            logger.error(
                f"Natural language query failed: {exc}",
                extra={"user_id": user_id, "connection_id": connection_id},
            )
            if not dry_run:
                failed = ExecutionResult.failure(
                    getattr(exc, "message", str(exc)), error_code_for(exc), _elapsed_ms(started)
                )
                await self._record_history(
                    user_id, connection_id, question, NO_SQL_SENTINEL, failed
                )
            raise

        if dry_run:
            return ExecutionResult(
                success=True,
                generated_sql=generated.sql,
                explanation=generated.explanation,
                warnings=list(generated.warnings),
                execution_time_ms=_elapsed_ms(started),
            )

        result = await self.execute_sql(user_id, connection_id, generated.sql, timeout, max_rows)
        result.generated_sql = generated.sql
        result.explanation = generated.explanation
        result.warnings = [*result.warnings, *generated.warnings]
        result.execution_time_ms = _elapsed_ms(started)

        await self._record_history(user_id, connection_id, question, generated.sql, result)
        logger.info(
            "Natural language query executed",
            extra={
                "connection_id": connection_id,
                "success": result.success,
                "row_count": result.row_count,
                "execution_time_ms": result.execution_time_ms,
            },
        )
        return result

    async def get_history(
        self, user_id: str, connection_id: str, limit: int | None = None
    ) -> list[QueryHistoryEntry]:
        return await self._store.list_history(
            user_id, connection_id, limit or self.settings.history_limit
        )

    async def clear_history(self, user_id: str, connection_id: str) -> int:
        removed = await self._store.clear_history(user_id, connection_id)
        logger.info(
            f"Cleared {removed} history entries",
            extra={"user_id": user_id, "connection_id": connection_id},
        )
        return removed

    async def _record_history(
        self,
        user_id: str,
        connection_id: str,
        question: str,
        sql: str,
        result: ExecutionResult,
    ) -> None:
        entry = QueryHistoryEntry(
            user_id=user_id,
            connection_id=connection_id,
            question=question,
            generated_sql=sql,
            success=result.success,
            row_count=result.row_count,
            execution_time_ms=result.execution_time_ms,
            error=result.error,
        )
        written = await attempt(self._write_history(entry))
        if not written.ok:
            logger.error(
                f"Failed to save query history: {written.error}",
                extra={"connection_id": connection_id},
            )

    async def _write_history(self, entry: QueryHistoryEntry) -> None:
        try:
            await self._store.add_history(entry)
        except Exception as exc:
            raise HistoryPersistenceError(
                f"Could not write history entry: {exc}",
                context={"connection_id": entry.connection_id},
            ) from exc
