"""Unit tests for PostgresStore query behavior."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import pytest

from sqlagent.models import ConnectionRecord, QueryHistoryEntry, SchemaSnapshot, TableInfo
from sqlagent.storage import PostgresStore

CONNECTION_ID = str(uuid4())
CREATED = datetime(2026, 3, 1, 9, 30, tzinfo=UTC)


def connection_row(**overrides) -> dict:
    row = {
        "connection_id": UUID(CONNECTION_ID),
        "user_id": "user-1",
        "name": "Shop",
        "description": None,
        "dialect": "postgresql",
        "credentials_encrypted": "gAAAAA-bundle",
        "status": "active",
        "last_connected_at": None,
        "last_error": None,
        "created_at": CREATED,
        "updated_at": CREATED,
    }
    row.update(overrides)
    return row


def make_store(pool=None) -> tuple[PostgresStore, AsyncMock]:
    pool = pool or AsyncMock()
    return PostgresStore(database_url="postgresql://example/sqlagent", pool=pool), pool


@pytest.mark.asyncio
async def test_initialize_creates_tables() -> None:
    """Initialization should create the registry, schema cache and history tables."""
    store, pool = make_store()

    await store.initialize()

    statements = " ".join(call.args[0] for call in pool.execute.await_args_list)
    assert "CREATE TABLE IF NOT EXISTS sqlagent_connections" in statements
    assert "CREATE TABLE IF NOT EXISTS sqlagent_schema_cache" in statements
    assert "CREATE TABLE IF NOT EXISTS sqlagent_query_history" in statements
    assert "ON DELETE CASCADE" in statements


@pytest.mark.asyncio
async def test_initialize_requires_database_url() -> None:
    """Without a pool or URL the store cannot start."""
    store = PostgresStore()

    with pytest.raises(ValueError, match="SYSTEM_DATABASE_URL"):
        await store.initialize()


@pytest.mark.asyncio
async def test_methods_require_initialization() -> None:
    """Using the store before initialize() should fail loudly."""
    store = PostgresStore(database_url="postgresql://example/sqlagent")

    with pytest.raises(RuntimeError, match="not initialized"):
        await store.list_connections("user-1")


@pytest.mark.asyncio
async def test_get_connection_is_scoped_by_user() -> None:
    """Lookups filter on both connection id and owning user."""
    store, pool = make_store()
    pool.fetchrow = AsyncMock(return_value=connection_row())

    record = await store.get_connection("user-1", CONNECTION_ID)

    assert record.id == CONNECTION_ID
    assert record.dialect.value == "postgresql"
    sql = pool.fetchrow.await_args.args[0]
    assert "WHERE connection_id = $1 AND user_id = $2" in sql
    assert pool.fetchrow.await_args.args[1:] == (UUID(CONNECTION_ID), "user-1")


@pytest.mark.asyncio
async def test_malformed_ids_never_reach_the_database() -> None:
    """Non-UUID ids behave like missing connections."""
    store, pool = make_store()

    assert await store.get_connection("user-1", "not-a-uuid") is None
    assert await store.delete_connection("user-1", "not-a-uuid") is False
    assert await store.list_history("user-1", "not-a-uuid", 10) == []
    pool.fetchrow.assert_not_awaited()
    pool.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_insert_connection_round_trips_record() -> None:
    """Inserted records are returned from the RETURNING row."""
    store, pool = make_store()
    pool.fetchrow = AsyncMock(return_value=connection_row(description="Main shop"))
    record = ConnectionRecord(
        id=CONNECTION_ID,
        user_id="user-1",
        name="Shop",
        description="Main shop",
        dialect="postgresql",
        credentials_encrypted="gAAAAA-bundle",
    )

    stored = await store.insert_connection(record)

    assert stored.description == "Main shop"
    assert "INSERT INTO sqlagent_connections" in pool.fetchrow.await_args.args[0]


@pytest.mark.asyncio
async def test_update_missing_connection_raises() -> None:
    """Updating a row that no longer exists should raise."""
    store, pool = make_store()
    pool.fetchrow = AsyncMock(return_value=None)
    record = ConnectionRecord(
        id=CONNECTION_ID,
        user_id="user-1",
        name="Shop",
        dialect="postgresql",
        credentials_encrypted="gAAAAA-bundle",
    )

    with pytest.raises(KeyError):
        await store.update_connection(record)


@pytest.mark.asyncio
async def test_delete_connection_reports_row_count() -> None:
    """Delete parses the command tag to decide whether a row went away."""
    store, pool = make_store()
    pool.execute = AsyncMock(side_effect=["DELETE 1", "DELETE 0"])

    assert await store.delete_connection("user-1", CONNECTION_ID) is True
    assert await store.delete_connection("user-1", CONNECTION_ID) is False


@pytest.mark.asyncio
async def test_schema_snapshot_round_trip() -> None:
    """Snapshots are stored as JSONB and rebuilt with the row's cached_at."""
    store, pool = make_store()
    snapshot = SchemaSnapshot(
        connection_id=CONNECTION_ID,
        tables=[TableInfo(name="orders", row_count=3)],
        ai_summary="Orders.",
        cached_at=CREATED,
    )

    await store.save_schema(snapshot)

    sql, connection_uuid, payload, cached_at = pool.execute.await_args.args
    assert "ON CONFLICT (connection_id) DO UPDATE" in sql
    assert connection_uuid == UUID(CONNECTION_ID)
    assert cached_at == CREATED
    assert "connection_id" not in json.loads(payload)

    pool.fetchrow = AsyncMock(return_value={"snapshot": payload, "cached_at": CREATED})
    restored = await store.get_schema(CONNECTION_ID)

    assert restored.connection_id == CONNECTION_ID
    assert restored.tables[0].name == "orders"
    assert restored.ai_summary == "Orders."
    assert restored.cached_at == CREATED


@pytest.mark.asyncio
async def test_history_is_scoped_newest_first_and_bounded() -> None:
    """History reads filter by user and connection and clamp the limit."""
    store, pool = make_store()
    pool.fetch = AsyncMock(
        return_value=[
            {
                "history_id": uuid4(),
                "user_id": "user-1",
                "connection_id": UUID(CONNECTION_ID),
                "question": "how many orders",
                "generated_sql": "SELECT COUNT(*) FROM orders",
                "success": True,
                "row_count": 1,
                "execution_time_ms": 4.2,
                "error": None,
                "created_at": CREATED,
            }
        ]
    )

    entries = await store.list_history("user-1", CONNECTION_ID, 5000)

    assert entries[0].connection_id == CONNECTION_ID
    assert entries[0].row_count == 1
    sql, user_id, connection_uuid, limit = pool.fetch.await_args.args
    assert "ORDER BY created_at DESC" in sql
    assert (user_id, connection_uuid, limit) == ("user-1", UUID(CONNECTION_ID), 1000)


@pytest.mark.asyncio
async def test_add_and_clear_history() -> None:
    """History rows are inserted as-is and cleared per user and connection."""
    store, pool = make_store()
    pool.execute = AsyncMock(side_effect=["INSERT 0 1", "DELETE 3"])
    entry = QueryHistoryEntry(
        user_id="user-1", connection_id=CONNECTION_ID, question="anything", success=False
    )

    await store.add_history(entry)
    cleared = await store.clear_history("user-1", CONNECTION_ID)

    insert_args = pool.execute.await_args_list[0].args
    assert insert_args[5] == "N/A"
    assert cleared == 3
