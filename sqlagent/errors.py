"""
Error taxonomy for SQLAgent.

Connection resolution and generation failures are raised to the caller.
Safety rejections, timeouts and driver failures are raised by the lower
layers but converted into structured ``ExecutionResult`` failures by the
query executor. History write failures are always caught and logged.
"""

from typing import Any


class SQLAgentError(Exception):
    """
    Base exception for SQLAgent errors.

    Attributes:
        message: Error description
        context: Additional context for debugging (never credentials)
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)


class ConnectionNotFoundError(SQLAgentError):
    """No connection with this id exists for the user."""

    def __init__(self, connection_id: str):
        super().__init__(
            f"Connection not found: {connection_id}",
            context={"connection_id": connection_id},
        )
        self.connection_id = connection_id


class UnsupportedDialectError(SQLAgentError):
    """The requested database dialect has no driver."""

    def __init__(self, dialect: Any):
        super().__init__(f"Unsupported database type: {dialect}", context={"dialect": str(dialect)})


class ValidationFailedError(SQLAgentError):
    """Bad input for creating or updating a connection."""

    pass


class GenerationFailedError(SQLAgentError):
    """The language model did not produce a usable SQL answer."""

    pass


class UnsafeQueryError(SQLAgentError):
    """The deterministic safety check rejected a SQL string."""

    def __init__(self, message: str, sql: str | None = None):
        super().__init__(message, context={"sql": (sql or "")[:200]})
        self.sql = sql


class DriverError(SQLAgentError):
    """Native failure while opening a pool, introspecting, or executing."""

    pass


class ExecutionTimeoutError(DriverError):
    """The statement did not finish within its timeout."""

    def __init__(self, timeout: float, message: str | None = None):
        super().__init__(
            message or f"Query timeout exceeded ({timeout:g}s)",
            context={"timeout": timeout},
        )
        self.timeout = timeout


class HistoryPersistenceError(SQLAgentError):
    """Writing a query history entry failed. Never escalated to callers."""

    pass
