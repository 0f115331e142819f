"""
Schema Discovery

Introspects an attached database through its pooled driver, derives foreign
key relationships, asks the LLM for a short summary, and caches the result
per connection.

Usage:
    discovery = SchemaDiscovery(connections, store, llm_provider)
    snapshot = await discovery.get_cached(user_id, connection_id)
    if snapshot is None:
        snapshot = await discovery.discover(user_id, connection_id)
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlagent.llm import BaseLLMProvider
from sqlagent.models import Relationship, SchemaSnapshot, TableInfo
from sqlagent.prompts import PromptLoader
from sqlagent.services.connection_manager import ConnectionManager
from sqlagent.storage import SQLAgentStore
from sqlagent.utils import attempt

logger = logging.getLogger(__name__)

SUMMARY_UNAVAILABLE = "Database schema summary unavailable"
SUMMARY_PROMPT = "sql/schema_summary.md"


def derive_relationships(tables: list[TableInfo]) -> list[Relationship]:
    """One relationship per foreign-key column, whether or not the target table was seen."""
    relationships: list[Relationship] = []
    for table in tables:
        for column in table.columns:
            if column.is_foreign_key and column.foreign_table and column.foreign_column:
                relationships.append(
                    Relationship(
                        from_table=table.name,
                        from_column=column.name,
                        to_table=column.foreign_table,
                        to_column=column.foreign_column,
                    )
                )
    return relationships


def describe_schema(snapshot: SchemaSnapshot) -> str:
    """
    Compact text rendering of a snapshot for prompts.

    Example:
        Table: public.orders (42 rows)
          - id (integer) PRIMARY KEY NOT NULL
          - customer_id (integer) FK -> customers.id

        Relationships:
          orders.customer_id -> customers.id
    """
    blocks = []
    for table in snapshot.tables:
        header = f"Table: {table.qualified_name}"
        if table.row_count is not None:
            header += f" ({table.row_count} rows)"
        lines = [header]
        for column in table.columns:
            parts = [f"  - {column.name}", f"({column.data_type})"]
            if column.is_primary_key:
                parts.append("PRIMARY KEY")
            if column.is_foreign_key and column.foreign_table:
                parts.append(f"FK -> {column.foreign_table}.{column.foreign_column}")
            if not column.is_nullable:
                parts.append("NOT NULL")
            lines.append(" ".join(parts))
        blocks.append("\n".join(lines))

    text = "\n\n".join(blocks)
    if snapshot.relationships:
        edges = "\n".join(
            f"  {rel.from_table}.{rel.from_column} -> {rel.to_table}.{rel.to_column}"
            for rel in snapshot.relationships
        )
        text = f"{text}\n\nRelationships:\n{edges}"
    return text


class SchemaDiscovery:
    """Discover and cache schema snapshots."""

    def __init__(
        self,
        connections: ConnectionManager,
        store: SQLAgentStore,
        llm: BaseLLMProvider,
        prompts: PromptLoader | None = None,
        max_age_hours: float = 24.0,
    ) -> None:
        self._connections = connections
        self._store = store
        self._llm = llm
        self._prompts = prompts or PromptLoader()
        self.max_age_hours = max_age_hours

    async def discover(self, user_id: str, connection_id: str) -> SchemaSnapshot:
        """
        Introspect the database and replace the cached snapshot.

        Raises:
            ConnectionNotFoundError: Unknown connection
            DriverError: Pool creation or table enumeration failed
        """
        driver = await self._connections.get_or_create_pool(connection_id, user_id)

        tables = await driver.introspect()
        snapshot = SchemaSnapshot(
            connection_id=connection_id,
            tables=tables,
            relationships=derive_relationships(tables),
        )
        snapshot.ai_summary = await self._summarize(snapshot)
        snapshot.cached_at = datetime.now(UTC)

        await self._store.save_schema(snapshot)
        logger.info(
            "Schema discovery complete",
            extra={
                "connection_id": connection_id,
                "table_count": len(snapshot.tables),
                "relationship_count": len(snapshot.relationships),
            },
        )
        return snapshot

    async def get_cached(
        self,
        user_id: str,
        connection_id: str,
        max_age_hours: float | None = None,
    ) -> SchemaSnapshot | None:
        """Cached snapshot if it is no older than ``max_age_hours``. Never writes."""
        connection = await self._connections.get_connection(user_id, connection_id)
        if connection is None:
            return None
        snapshot = await self._store.get_schema(connection_id)
        if snapshot is None:
            return None
        window = self.max_age_hours if max_age_hours is None else max_age_hours
        if not snapshot.is_fresh(window):
            logger.debug("Cached schema expired", extra={"connection_id": connection_id})
            return None
        return snapshot

    async def _summarize(self, snapshot: SchemaSnapshot) -> str:
        params = self._prompts.get_metadata(SUMMARY_PROMPT)
        prompt = self._prompts.render(SUMMARY_PROMPT, schema_description=describe_schema(snapshot))
        reply = await attempt(
            self._llm.chat(
                [{"role": "user", "content": prompt}],
                temperature=params.get("temperature"),
                max_tokens=params.get("max_tokens"),
            )
        )
        if not reply.ok:
            logger.warning(f"Schema summary failed: {reply.error}")
            return SUMMARY_UNAVAILABLE
        summary = reply.value.content.strip()
        return summary or SUMMARY_UNAVAILABLE
