"""Unit tests for QueryExecutor."""

import pytest

from sqlagent.errors import (
    ConnectionNotFoundError,
    DriverError,
    ExecutionTimeoutError,
    GenerationFailedError,
    UnsafeQueryError,
)
from sqlagent.models import NO_SQL_SENTINEL, DriverResult, ResultColumn
from sqlagent.services.query_executor import error_code_for


class TestExecuteSQL:
    """Test direct SQL execution."""

    @pytest.mark.asyncio
    async def test_success_appends_limit_and_returns_rows(
        self, manager, executor, drivers, pg_credentials
    ):
        """Test that a valid query runs with defaults applied."""
        conn = await manager.create_connection("user-1", "Shop", "postgresql", pg_credentials)

        result = await executor.execute_sql("user-1", conn.id, "SELECT COUNT(*) FROM orders")

        assert result.success is True
        assert result.row_count == 1
        assert result.rows == [{"count": 3}]
        assert result.columns[0].type == "integer"
        assert result.execution_time_ms is not None
        sql, timeout, max_rows = drivers.last.executed[0]
        assert sql == "SELECT COUNT(*) FROM orders LIMIT 1000"
        assert timeout == 30
        assert max_rows == 1000

    @pytest.mark.asyncio
    async def test_timeout_is_clamped(self, manager, executor, drivers, pg_credentials):
        """Test that timeouts above the ceiling are capped at two minutes."""
        conn = await manager.create_connection("user-1", "Shop", "postgresql", pg_credentials)

        await executor.execute_sql("user-1", conn.id, "SELECT 1", timeout=600)

        assert drivers.last.executed[0][1] == 120

    @pytest.mark.asyncio
    async def test_invalid_sql_is_structured_failure(
        self, manager, executor, drivers, pg_credentials
    ):
        """Test that invalid SQL never reaches a driver."""
        conn = await manager.create_connection("user-1", "Shop", "postgresql", pg_credentials)

        result = await executor.execute_sql("user-1", conn.id, "DROP TABLE orders")

        assert result.success is False
        assert result.error_code == "invalid_sql"
        assert "DROP" in result.error
        assert drivers.drivers == []

    @pytest.mark.asyncio
    async def test_driver_timeout_is_classified(self, manager, executor, drivers, pg_credentials):
        """Test that a driver timeout becomes a timeout failure."""
        drivers.configure = lambda d: setattr(d, "execute_error", ExecutionTimeoutError(5))
        conn = await manager.create_connection("user-1", "Shop", "postgresql", pg_credentials)

        result = await executor.execute_sql("user-1", conn.id, "SELECT 1", timeout=5)

        assert result.success is False
        assert result.error_code == "timeout"
        assert "timeout" in result.error.lower()

    @pytest.mark.asyncio
    async def test_driver_error_is_classified(self, manager, executor, drivers, pg_credentials):
        """Test that a driver failure becomes a driver_error failure."""
        drivers.configure = lambda d: setattr(
            d, "execute_error", DriverError('relation "nope" does not exist')
        )
        conn = await manager.create_connection("user-1", "Shop", "postgresql", pg_credentials)

        result = await executor.execute_sql("user-1", conn.id, "SELECT * FROM nope")

        assert result.success is False
        assert result.error_code == "driver_error"
        assert "nope" in result.error

    @pytest.mark.asyncio
    async def test_pool_failure_is_classified(self, manager, executor, drivers, pg_credentials):
        """Test that a failed pool open is returned, not raised."""
        drivers.configure = lambda d: setattr(d, "open_error", DriverError("refused"))
        conn = await manager.create_connection("user-1", "Shop", "postgresql", pg_credentials)

        result = await executor.execute_sql("user-1", conn.id, "SELECT 1")

        assert result.success is False
        assert result.error_code == "driver_error"

    @pytest.mark.asyncio
    async def test_row_cap_adds_warning(self, manager, executor, drivers, pg_credentials):
        """Test that hitting max_rows flags truncated results."""
        rows = [{"id": i} for i in range(5)]
        drivers.configure = lambda d: setattr(
            d, "result", DriverResult(rows=rows, columns=[ResultColumn(name="id")])
        )
        conn = await manager.create_connection("user-1", "Shop", "postgresql", pg_credentials)

        result = await executor.execute_sql("user-1", conn.id, "SELECT id FROM orders", max_rows=3)

        assert result.row_count == 3
        assert "Results limited to 3 rows" in result.warnings

    @pytest.mark.asyncio
    async def test_unknown_connection_raises(self, executor):
        """Test that connection resolution failures propagate."""
        with pytest.raises(ConnectionNotFoundError):
            await executor.execute_sql("user-1", "missing", "SELECT 1")


class TestExecuteNaturalLanguage:
    """Test the question-to-result flow."""

    @pytest.mark.asyncio
    async def test_success_records_history(
        self, manager, executor, llm, store, drivers, pg_credentials
    ):
        """Test that a successful run merges generation output and writes history."""
        conn = await manager.create_connection("user-1", "Shop", "postgresql", pg_credentials)
        llm.queue("Summary")
        llm.queue_query(
            "SELECT COUNT(*) FROM orders", explanation="Counts orders", warnings=["Approximate"]
        )

        result = await executor.execute_natural_language("user-1", conn.id, "how many orders")

        assert result.success is True
        assert result.generated_sql == "SELECT COUNT(*) FROM orders"
        assert result.explanation == "Counts orders"
        assert "Approximate" in result.warnings
        assert len(store.history) == 1
        entry = store.history[0]
        assert entry.success is True
        assert entry.row_count == 1
        assert entry.generated_sql == "SELECT COUNT(*) FROM orders"
        assert entry.question == "how many orders"

    @pytest.mark.asyncio
    async def test_dry_run_never_touches_driver(
        self, manager, executor, llm, store, drivers, pg_credentials
    ):
        """Test that a dry run returns SQL and explanation without rows."""
        conn = await manager.create_connection("user-1", "Shop", "postgresql", pg_credentials)
        llm.queue("Summary")
        llm.queue_query("SELECT COUNT(*) FROM orders", explanation="Counts orders")

        result = await executor.execute_natural_language(
            "user-1", conn.id, "how many orders", dry_run=True
        )

        assert result.success is True
        assert result.generated_sql == "SELECT COUNT(*) FROM orders"
        assert result.explanation == "Counts orders"
        assert result.rows is None
        assert all(driver.executed == [] for driver in drivers.drivers)
        assert store.history == []

    @pytest.mark.asyncio
    async def test_unsafe_generation_is_structured_failure(
        self, manager, executor, llm, store, drivers, pg_credentials
    ):
        """Test that an unsafe generated statement is returned and recorded."""
        conn = await manager.create_connection("user-1", "Shop", "postgresql", pg_credentials)
        llm.queue("Summary")
        llm.queue_query("DELETE FROM orders")

        result = await executor.execute_natural_language("user-1", conn.id, "remove orders")

        assert result.success is False
        assert result.error_code == "unsafe_query"
        assert "forbidden operation" in result.error
        assert all(driver.executed == [] for driver in drivers.drivers)
        assert len(store.history) == 1
        assert store.history[0].success is False
        assert store.history[0].generated_sql == "DELETE FROM orders"

    @pytest.mark.asyncio
    async def test_generation_failure_is_recorded_and_raised(
        self, manager, executor, llm, store, pg_credentials
    ):
        """Test that generation failures leave a sentinel history entry."""
        conn = await manager.create_connection("user-1", "Shop", "postgresql", pg_credentials)
        llm.queue("Summary", "no json here")

        with pytest.raises(GenerationFailedError):
            await executor.execute_natural_language("user-1", conn.id, "anything")

        assert len(store.history) == 1
        assert store.history[0].generated_sql == NO_SQL_SENTINEL
        assert store.history[0].success is False

    @pytest.mark.asyncio
    async def test_generation_failure_is_not_coded_as_driver_error(
        self, manager, executor, llm, pg_credentials, monkeypatch
    ):
        """Test that a model failure is recorded without a driver error code."""
        conn = await manager.create_connection("user-1", "Shop", "postgresql", pg_credentials)
        llm.queue("Summary", "no json here")
        recorded = []

        async def record(user_id, connection_id, question, sql, result):
            recorded.append(result)

        monkeypatch.setattr(executor, "_record_history", record)

        with pytest.raises(GenerationFailedError):
            await executor.execute_natural_language("user-1", conn.id, "anything")

        assert recorded[0].success is False
        assert recorded[0].error_code is None

    @pytest.mark.parametrize(
        "exc, code",
        [
            (ExecutionTimeoutError(5), "timeout"),
            (DriverError("Failed to list tables"), "driver_error"),
            (UnsafeQueryError("Query contains forbidden operation: DROP"), "unsafe_query"),
            (GenerationFailedError("Missing required fields"), None),
        ],
    )
    def test_error_code_follows_exception_type(self, exc, code):
        """Test failure codes for errors raised before execution."""
        assert error_code_for(exc) == code

    @pytest.mark.asyncio
    async def test_unknown_connection_writes_no_history(self, executor, store):
        """Test that an unresolved connection raises before any history."""
        with pytest.raises(ConnectionNotFoundError):
            await executor.execute_natural_language("user-1", "missing", "anything")

        assert store.history == []

    @pytest.mark.asyncio
    async def test_history_failure_does_not_fail_query(
        self, manager, executor, llm, store, pg_credentials
    ):
        """Test that history write errors are swallowed."""
        conn = await manager.create_connection("user-1", "Shop", "postgresql", pg_credentials)
        store.fail_history_writes = True
        llm.queue("Summary")
        llm.queue_query("SELECT COUNT(*) FROM orders")

        result = await executor.execute_natural_language("user-1", conn.id, "how many orders")

        assert result.success is True
        assert store.history == []

    @pytest.mark.asyncio
    async def test_execution_failure_is_recorded(
        self, manager, executor, llm, store, drivers, pg_credentials
    ):
        """Test that driver failures after generation are recorded, not raised."""
        conn = await manager.create_connection("user-1", "Shop", "postgresql", pg_credentials)
        llm.queue("Summary")
        llm.queue_query("SELECT * FROM missing_table")
        drivers.configure = lambda d: setattr(d, "execute_error", DriverError("no such table"))

        result = await executor.execute_natural_language("user-1", conn.id, "show missing")

        assert result.success is False
        assert result.error_code == "driver_error"
        assert store.history[0].success is False
        assert store.history[0].error == "no such table"


class TestHistory:
    """Test history reads and clears."""

    @pytest.mark.asyncio
    async def test_get_and_clear_history(self, manager, executor, llm, store, pg_credentials):
        """Test that history is scoped and cleared per connection."""
        conn = await manager.create_connection("user-1", "Shop", "postgresql", pg_credentials)
        llm.queue("Summary")
        for _ in range(3):
            llm.queue_query("SELECT 1")
            await executor.execute_natural_language("user-1", conn.id, "one")

        assert len(await executor.get_history("user-1", conn.id)) == 3
        assert len(await executor.get_history("user-1", conn.id, limit=2)) == 2
        assert await executor.get_history("user-2", conn.id) == []

        assert await executor.clear_history("user-1", conn.id) == 3
        assert await executor.get_history("user-1", conn.id) == []
