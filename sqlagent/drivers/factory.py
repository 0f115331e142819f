"""Driver factory for supported dialects."""

from __future__ import annotations

from sqlagent.config import PoolSettings
from sqlagent.drivers.base import DatabaseDriver
from sqlagent.drivers.mysql import MySQLDriver
from sqlagent.drivers.postgres import PostgresDriver
from sqlagent.drivers.sqlite import SQLiteDriver
from sqlagent.errors import UnsupportedDialectError
from sqlagent.models import ConnectionCredentials, Dialect

_DIALECT_ALIASES = {
    "postgres": Dialect.POSTGRESQL,
    "postgresql": Dialect.POSTGRESQL,
    "mysql": Dialect.MYSQL,
    "sqlite": Dialect.SQLITE,
    "sqlite3": Dialect.SQLITE,
}

_DRIVERS: dict[Dialect, type[DatabaseDriver]] = {
    Dialect.POSTGRESQL: PostgresDriver,
    Dialect.MYSQL: MySQLDriver,
    Dialect.SQLITE: SQLiteDriver,
}


def resolve_dialect(value: Dialect | str) -> Dialect:
    """Normalize a dialect name or alias."""
    if isinstance(value, Dialect):
        return value
    dialect = _DIALECT_ALIASES.get(str(value).strip().lower())
    if dialect is None:
        raise UnsupportedDialectError(value)
    return dialect


def create_driver(
    dialect: Dialect | str,
    credentials: ConnectionCredentials,
    pool_settings: PoolSettings | None = None,
) -> DatabaseDriver:
    """Create an unopened driver for ``dialect``."""
    driver_cls = _DRIVERS[resolve_dialect(dialect)]
    return driver_cls(credentials, pool_settings)
