"""Persistence backends."""

from sqlagent.storage.base import SQLAgentStore
from sqlagent.storage.postgres import PostgresStore

__all__ = ["SQLAgentStore", "PostgresStore"]
