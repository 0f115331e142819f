"""
SQLAgent

Natural-language questions to safe, read-only SQL over PostgreSQL, MySQL and
SQLite databases.
"""

__version__ = "0.1.0"

from sqlagent.agent import SQLAgent  # noqa: E402
from sqlagent.errors import (  # noqa: E402
    ConnectionNotFoundError,
    DriverError,
    ExecutionTimeoutError,
    GenerationFailedError,
    SQLAgentError,
    UnsafeQueryError,
    UnsupportedDialectError,
    ValidationFailedError,
)

__all__ = [
    "__version__",
    "SQLAgent",
    "SQLAgentError",
    "ConnectionNotFoundError",
    "DriverError",
    "ExecutionTimeoutError",
    "GenerationFailedError",
    "UnsafeQueryError",
    "UnsupportedDialectError",
    "ValidationFailedError",
]
