"""
Data models for connections, schema snapshots, and query execution.
"""

from sqlagent.models.connection import (
    ConnectionCredentials,
    ConnectionRecord,
    ConnectionStatus,
    ConnectionTestResult,
    ConnectionUpdate,
    DatabaseConnection,
    Dialect,
)
from sqlagent.models.query import (
    NO_SQL_SENTINEL,
    Confidence,
    DriverResult,
    ErrorCode,
    ExecutionResult,
    GeneratedQuery,
    QueryHistoryEntry,
    ResultColumn,
    ValidationResult,
)
from sqlagent.models.schema import ColumnInfo, Relationship, SchemaSnapshot, TableInfo

__all__ = [
    # Connections
    "ConnectionCredentials",
    "ConnectionRecord",
    "ConnectionStatus",
    "ConnectionTestResult",
    "ConnectionUpdate",
    "DatabaseConnection",
    "Dialect",
    # Schema
    "ColumnInfo",
    "Relationship",
    "SchemaSnapshot",
    "TableInfo",
    # Queries
    "NO_SQL_SENTINEL",
    "Confidence",
    "DriverResult",
    "ErrorCode",
    "ExecutionResult",
    "GeneratedQuery",
    "QueryHistoryEntry",
    "ResultColumn",
    "ValidationResult",
]
