"""
Database drivers for attached PostgreSQL, MySQL and SQLite databases.
"""

from sqlagent.drivers.base import UNKNOWN_TYPE, DatabaseDriver
from sqlagent.drivers.factory import create_driver, resolve_dialect
from sqlagent.drivers.mysql import MYSQL_TYPE_NAMES, MySQLDriver
from sqlagent.drivers.postgres import POSTGRES_TYPE_NAMES, PostgresDriver
from sqlagent.drivers.sqlite import SQLiteDriver

__all__ = [
    "UNKNOWN_TYPE",
    "DatabaseDriver",
    "create_driver",
    "resolve_dialect",
    "MYSQL_TYPE_NAMES",
    "MySQLDriver",
    "POSTGRES_TYPE_NAMES",
    "PostgresDriver",
    "SQLiteDriver",
]
