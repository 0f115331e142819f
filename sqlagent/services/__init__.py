"""
SQL agent services: connection registry, schema discovery, generation and execution.
"""

from sqlagent.services.connection_manager import ConnectionManager, validate_credentials
from sqlagent.services.pool_registry import PoolRegistry
from sqlagent.services.query_executor import QueryExecutor
from sqlagent.services.query_generator import QueryGenerator, parse_generation
from sqlagent.services.query_validator import (
    FORBIDDEN_KEYWORDS,
    ensure_limit,
    forbidden_keyword,
    validate_sql,
)
from sqlagent.services.schema_discovery import (
    SchemaDiscovery,
    derive_relationships,
    describe_schema,
)

__all__ = [
    "ConnectionManager",
    "validate_credentials",
    "PoolRegistry",
    "QueryExecutor",
    "QueryGenerator",
    "parse_generation",
    "FORBIDDEN_KEYWORDS",
    "ensure_limit",
    "forbidden_keyword",
    "validate_sql",
    "SchemaDiscovery",
    "derive_relationships",
    "describe_schema",
]
