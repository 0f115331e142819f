"""
SQLAgent

Library facade over the connection manager, schema discovery, query generator
and query executor. One instance owns one pool registry; call ``close()`` at
shutdown to tear every attached-database pool down.

Usage:
    agent = await SQLAgent.from_settings()
    conn = await agent.create_connection(
        "user-1", "Shop", "postgresql",
        ConnectionCredentials(host="localhost", database="shop", username="ro", password="..."),
    )
    result = await agent.execute_natural_language_query(
        "user-1", conn.id, "how many orders are there"
    )
    await agent.close()
"""

from __future__ import annotations

import logging

from sqlagent.config import Settings, get_settings
from sqlagent.drivers import resolve_dialect
from sqlagent.llm import BaseLLMProvider, LLMProviderFactory
from sqlagent.models import (
    ConnectionCredentials,
    ConnectionTestResult,
    ConnectionUpdate,
    DatabaseConnection,
    Dialect,
    ExecutionResult,
    GeneratedQuery,
    QueryHistoryEntry,
    SchemaSnapshot,
    ValidationResult,
)
from sqlagent.prompts import PromptLoader
from sqlagent.security import CredentialCipher, FernetCredentialCipher
from sqlagent.services import (
    ConnectionManager,
    PoolRegistry,
    QueryExecutor,
    QueryGenerator,
    SchemaDiscovery,
)
from sqlagent.storage import PostgresStore, SQLAgentStore

logger = logging.getLogger(__name__)


class SQLAgent:
    """Natural-language to read-only SQL over attached databases."""

    def __init__(
        self,
        store: SQLAgentStore,
        cipher: CredentialCipher,
        llm: BaseLLMProvider,
        settings: Settings | None = None,
        prompts: PromptLoader | None = None,
        connections: ConnectionManager | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        prompts = prompts or PromptLoader()

        self.connections = connections or ConnectionManager(
            store, cipher, PoolRegistry(), pool_settings=self.settings.pool
        )
        self.schemas = SchemaDiscovery(
            self.connections,
            store,
            llm,
            prompts=prompts,
            max_age_hours=self.settings.query.schema_max_age_hours,
        )
        self.generator = QueryGenerator(self.connections, self.schemas, llm, prompts=prompts)
        self.executor = QueryExecutor(
            self.connections, self.generator, store, settings=self.settings.query
        )

    @classmethod
    async def from_settings(cls, settings: Settings | None = None) -> SQLAgent:
        """
        Build an agent from environment configuration.

        Opens the system database, creates its tables, and selects the
        configured LLM provider.

        Raises:
            ValueError: Missing system database URL, credentials key, or API key
        """
        settings = settings or get_settings()
        if not settings.database_credentials_key:
            raise ValueError("DATABASE_CREDENTIALS_KEY must be set to store connections.")

        store = PostgresStore(pool_size=settings.system_database.pool_size)
        await store.initialize()
        try:
            llm = LLMProviderFactory.create_sql_provider(settings.llm)
        except ValueError:
            await store.close()
            raise

        logger.info(
            "SQLAgent initialized",
            extra={"llm_provider": llm.provider_name, "model": llm.model},
        )
        return cls(
            store,
            FernetCredentialCipher(settings.database_credentials_key),
            llm,
            settings=settings,
        )

    # Connections

    async def create_connection(
        self,
        user_id: str,
        name: str,
        dialect: Dialect | str,
        credentials: ConnectionCredentials,
        description: str | None = None,
    ) -> DatabaseConnection:
        return await self.connections.create_connection(
            user_id, name, dialect, credentials, description=description
        )

    async def list_connections(self, user_id: str) -> list[DatabaseConnection]:
        return await self.connections.list_connections(user_id)

    async def get_connection(self, user_id: str, connection_id: str) -> DatabaseConnection | None:
        return await self.connections.get_connection(user_id, connection_id)

    async def update_connection(
        self, user_id: str, connection_id: str, patch: ConnectionUpdate
    ) -> DatabaseConnection:
        return await self.connections.update_connection(user_id, connection_id, patch)

    async def delete_connection(self, user_id: str, connection_id: str) -> None:
        await self.connections.delete_connection(user_id, connection_id)

    async def test_connection(
        self, credentials: ConnectionCredentials, dialect: Dialect | str
    ) -> ConnectionTestResult:
        return await self.connections.test_connection(credentials, dialect)

    async def check_connection(self, user_id: str, connection_id: str) -> ConnectionTestResult:
        return await self.connections.check_connection(user_id, connection_id)

    # Schema

    async def discover_schema(self, user_id: str, connection_id: str) -> SchemaSnapshot:
        return await self.schemas.discover(user_id, connection_id)

    async def get_cached_schema(
        self, user_id: str, connection_id: str, max_age_hours: float | None = None
    ) -> SchemaSnapshot | None:
        return await self.schemas.get_cached(user_id, connection_id, max_age_hours)

    # Queries

    async def generate_query(
        self, user_id: str, connection_id: str, question: str, dry_run: bool = False
    ) -> GeneratedQuery:
        return await self.generator.generate(user_id, connection_id, question, dry_run=dry_run)

    async def execute_sql_query(
        self,
        user_id: str,
        connection_id: str,
        sql: str,
        timeout: float | None = None,
        max_rows: int | None = None,
    ) -> ExecutionResult:
        return await self.executor.execute_sql(user_id, connection_id, sql, timeout, max_rows)

    async def execute_natural_language_query(
        self,
        user_id: str,
        connection_id: str,
        question: str,
        timeout: float | None = None,
        max_rows: int | None = None,
        dry_run: bool = False,
    ) -> ExecutionResult:
        return await self.executor.execute_natural_language(
            user_id, connection_id, question, timeout=timeout, max_rows=max_rows, dry_run=dry_run
        )

    async def explain_query(self, sql: str, dialect: Dialect | str) -> str:
        return await self.generator.explain(sql, resolve_dialect(dialect))

    def validate_query(self, sql: str, dialect: Dialect | str | None = None) -> ValidationResult:
        return self.generator.validate(sql, dialect)

    # History

    async def get_query_history(
        self, user_id: str, connection_id: str, limit: int | None = None
    ) -> list[QueryHistoryEntry]:
        return await self.executor.get_history(user_id, connection_id, limit)

    async def clear_query_history(self, user_id: str, connection_id: str) -> int:
        return await self.executor.clear_history(user_id, connection_id)

    async def close(self) -> None:
        await self.connections.close_all()
        await self.store.close()
        logger.info("SQLAgent closed")

    async def __aenter__(self) -> SQLAgent:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
