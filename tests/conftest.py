"""
Pytest configuration and shared fixtures.

This module provides fixtures and configuration used across all tests:
an in-memory store, a scripted LLM provider, a fake database driver and a
small SQLite database with ``customers`` and ``orders`` tables.
"""

import json
import logging
import sqlite3
from collections import deque
from datetime import datetime

import pytest

from sqlagent.agent import SQLAgent
from sqlagent.config import PoolSettings, QuerySettings, Settings, get_settings
from sqlagent.drivers import DatabaseDriver
from sqlagent.errors import DriverError
from sqlagent.llm import BaseLLMProvider, LLMRequest, LLMResponse
from sqlagent.models import (
    ColumnInfo,
    ConnectionCredentials,
    ConnectionRecord,
    ConnectionStatus,
    DriverResult,
    QueryHistoryEntry,
    ResultColumn,
    SchemaSnapshot,
    TableInfo,
)
from sqlagent.prompts import PromptLoader
from sqlagent.security import FernetCredentialCipher
from sqlagent.services import (
    ConnectionManager,
    PoolRegistry,
    QueryExecutor,
    QueryGenerator,
    SchemaDiscovery,
)
from sqlagent.storage import SQLAgentStore

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (requires live databases or API keys)",
    )


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (may require external services)"
    )
    config.addinivalue_line("markers", "slow: mark test as slow (takes more than 1 second)")


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless explicitly enabled."""
    if config.getoption("--run-integration"):
        return
    skip_integration = pytest.mark.skip(
        reason="Integration tests disabled (use --run-integration to enable)."
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# ============================================================================
# Logging and Environment
# ============================================================================


@pytest.fixture(autouse=True)
def configure_test_logging(caplog):
    """Capture logs at DEBUG for every test."""
    caplog.set_level(logging.DEBUG)
    yield


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """
    Keep tests independent of the developer's environment.

    Points ``.env`` loading away from the repository and clears the
    settings cache before and after each test.
    """
    monkeypatch.setenv("SQLAGENT_ENV_SOURCE", "environment")
    monkeypatch.setenv("LLM_OPENAI_API_KEY", "sk-test-key-1234567890-abcdefghijklmnop")
    for name in ("SYSTEM_DATABASE_URL", "DATABASE_CREDENTIALS_KEY", "LLM_DEFAULT_PROVIDER"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ============================================================================
# In-memory Store
# ============================================================================


class InMemoryStore(SQLAgentStore):
    """Dict-backed ``SQLAgentStore`` with the same scoping rules as Postgres."""

    def __init__(self):
        self.connections: dict[str, ConnectionRecord] = {}
        self.schemas: dict[str, SchemaSnapshot] = {}
        self.history: list[QueryHistoryEntry] = []
        self.fail_history_writes = False
        self.closed = False

    async def close(self) -> None:
        self.closed = True

    async def insert_connection(self, record: ConnectionRecord) -> ConnectionRecord:
        self.connections[record.id] = record
        return record

    async def list_connections(self, user_id: str) -> list[ConnectionRecord]:
        owned = [r for r in self.connections.values() if r.user_id == user_id]
        return sorted(owned, key=lambda r: r.created_at, reverse=True)

    async def get_connection(self, user_id: str, connection_id: str) -> ConnectionRecord | None:
        record = self.connections.get(connection_id)
        if record is None or record.user_id != user_id:
            return None
        return record

    async def update_connection(self, record: ConnectionRecord) -> ConnectionRecord:
        self.connections[record.id] = record
        return record

    async def set_connection_status(
        self,
        connection_id: str,
        status: ConnectionStatus,
        *,
        last_error: str | None = None,
        last_connected_at: datetime | None = None,
    ) -> None:
        record = self.connections.get(connection_id)
        if record is None:
            return
        changes = {"status": status, "last_error": last_error}
        if last_connected_at is not None:
            changes["last_connected_at"] = last_connected_at
        self.connections[connection_id] = record.model_copy(update=changes)

    async def delete_connection(self, user_id: str, connection_id: str) -> bool:
        record = await self.get_connection(user_id, connection_id)
        if record is None:
            return False
        del self.connections[connection_id]
        self.schemas.pop(connection_id, None)
        self.history = [e for e in self.history if e.connection_id != connection_id]
        return True

    async def save_schema(self, snapshot: SchemaSnapshot) -> None:
        self.schemas[snapshot.connection_id] = snapshot.model_copy(deep=True)

    async def get_schema(self, connection_id: str) -> SchemaSnapshot | None:
        snapshot = self.schemas.get(connection_id)
        return snapshot.model_copy(deep=True) if snapshot else None

    async def add_history(self, entry: QueryHistoryEntry) -> None:
        if self.fail_history_writes:
            raise RuntimeError("history table unavailable")
        self.history.append(entry)

    async def list_history(
        self, user_id: str, connection_id: str, limit: int
    ) -> list[QueryHistoryEntry]:
        entries = [
            e for e in self.history if e.user_id == user_id and e.connection_id == connection_id
        ]
        return sorted(entries, key=lambda e: e.created_at, reverse=True)[:limit]

    async def clear_history(self, user_id: str, connection_id: str) -> int:
        before = len(self.history)
        self.history = [
            e
            for e in self.history
            if not (e.user_id == user_id and e.connection_id == connection_id)
        ]
        return before - len(self.history)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


# ============================================================================
# Scripted LLM Provider
# ============================================================================


class ScriptedLLMProvider(BaseLLMProvider):
    """
    LLM provider that replays queued replies.

    Each queued item is either a string (returned as content) or an
    exception (raised). When the queue is empty ``default_reply`` is used.
    """

    def __init__(self, default_reply: str = "A small test database."):
        super().__init__(provider_name="scripted", model="scripted-model")
        self.replies: deque = deque()
        self.default_reply = default_reply
        self.requests: list[LLMRequest] = []

    def queue(self, *replies) -> None:
        self.replies.extend(replies)

    def queue_query(
        self,
        sql: str,
        explanation: str = "Runs the query.",
        confidence: str = "high",
        warnings: list[str] | None = None,
    ) -> None:
        payload = {"sql": sql, "explanation": explanation, "confidence": confidence}
        if warnings is not None:
            payload["warnings"] = warnings
        self.queue(f"```json\n{json.dumps(payload)}\n```")

    async def generate(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        reply = self.replies.popleft() if self.replies else self.default_reply
        if isinstance(reply, Exception):
            raise reply
        return LLMResponse(content=reply, model=self.model, provider=self.provider_name)


@pytest.fixture
def llm() -> ScriptedLLMProvider:
    return ScriptedLLMProvider()


# ============================================================================
# Fake Database Driver
# ============================================================================


ORDERS_TABLES = [
    TableInfo(
        name="customers",
        columns=[
            ColumnInfo(name="id", data_type="integer", is_nullable=False, is_primary_key=True),
            ColumnInfo(name="name", data_type="text", is_nullable=False),
        ],
        row_count=2,
    ),
    TableInfo(
        name="orders",
        columns=[
            ColumnInfo(name="id", data_type="integer", is_nullable=False, is_primary_key=True),
            ColumnInfo(name="total", data_type="numeric", is_nullable=True),
            ColumnInfo(
                name="customer_id",
                data_type="integer",
                is_nullable=True,
                is_foreign_key=True,
                foreign_table="customers",
                foreign_column="id",
            ),
        ],
        row_count=3,
    ),
]


class FakeDriver(DatabaseDriver):
    """In-process driver that records every statement it is asked to run."""

    dialect = "fake"

    def __init__(self, credentials=None, pool_settings=None, tables=None, result=None):
        super().__init__(credentials or ConnectionCredentials(database="fake"), pool_settings)
        self.tables = list(ORDERS_TABLES if tables is None else tables)
        self.result = result or DriverResult(
            rows=[{"count": 3}], columns=[ResultColumn(name="count", type="integer")]
        )
        self.executed: list[tuple[str, float, int]] = []
        self.execute_error: Exception | None = None
        self.open_error: Exception | None = None
        self.probe_error: Exception | None = None
        self.failing_counts: set[str] = set()
        self.open_calls = 0
        self.close_calls = 0

    async def open(self) -> None:
        self.open_calls += 1
        if self.open_error:
            raise self.open_error
        self._opened = True

    async def probe(self) -> None:
        self._ensure_open()
        if self.probe_error:
            raise self.probe_error

    async def execute(self, sql: str, *, timeout: float, max_rows: int) -> DriverResult:
        self._ensure_open()
        self.executed.append((sql, timeout, max_rows))
        if self.execute_error:
            raise self.execute_error
        return DriverResult(rows=self.result.rows[:max_rows], columns=self.result.columns)

    async def close(self) -> None:
        self.close_calls += 1
        self._opened = False

    def map_type(self, code):
        return str(code) if code else "unknown"

    async def _list_tables(self):
        return [(t.schema_name, t.name) for t in self.tables]

    async def _describe_columns(self, schema_name, table_name):
        return next(t.columns for t in self.tables if t.name == table_name)

    async def _count_rows(self, schema_name, table_name):
        if table_name in self.failing_counts:
            raise DriverError(f"permission denied for table {table_name}")
        return next(t.row_count for t in self.tables if t.name == table_name)


class DriverRecorder:
    """``driver_builder`` that hands out a fresh ``FakeDriver`` per call and keeps them."""

    def __init__(self):
        self.drivers: list[FakeDriver] = []
        self.configure = None

    def __call__(self, dialect, credentials, pool_settings):
        driver = FakeDriver(credentials, pool_settings)
        if self.configure:
            self.configure(driver)
        self.drivers.append(driver)
        return driver

    @property
    def last(self) -> FakeDriver:
        return self.drivers[-1]


@pytest.fixture
def drivers() -> DriverRecorder:
    return DriverRecorder()


@pytest.fixture
def make_driver():
    """Factory for standalone ``FakeDriver`` instances."""
    return FakeDriver


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def cipher() -> FernetCredentialCipher:
    return FernetCredentialCipher(FernetCredentialCipher.generate_key())


@pytest.fixture
def pool_settings() -> PoolSettings:
    return PoolSettings(max_size=2, connect_timeout=0.5)


@pytest.fixture
def query_settings() -> QuerySettings:
    return QuerySettings()


@pytest.fixture
def manager(store, cipher, drivers, pool_settings) -> ConnectionManager:
    return ConnectionManager(
        store, cipher, PoolRegistry(), pool_settings=pool_settings, driver_builder=drivers
    )


@pytest.fixture
def prompts() -> PromptLoader:
    return PromptLoader()


@pytest.fixture
def discovery(manager, store, llm, prompts) -> SchemaDiscovery:
    return SchemaDiscovery(manager, store, llm, prompts=prompts)


@pytest.fixture
def generator(manager, discovery, llm, prompts) -> QueryGenerator:
    return QueryGenerator(manager, discovery, llm, prompts=prompts)


@pytest.fixture
def executor(manager, generator, store, query_settings) -> QueryExecutor:
    return QueryExecutor(manager, generator, store, settings=query_settings)


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def pg_credentials() -> ConnectionCredentials:
    return ConnectionCredentials(
        host="db.internal", port=5432, database="shop", username="reader", password="s3cret"
    )


@pytest.fixture
def agent(store, cipher, llm, settings) -> SQLAgent:
    """Agent over the in-memory store and scripted LLM, with real drivers."""
    return SQLAgent(store, cipher, llm, settings=settings)


# ============================================================================
# SQLite Database
# ============================================================================


@pytest.fixture
def sqlite_db(tmp_path):
    """SQLite file with ``customers`` and ``orders`` (FK to customers)."""
    path = tmp_path / "shop.db"
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE customers (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL
        );
        CREATE TABLE orders (
            id INTEGER PRIMARY KEY,
            total NUMERIC,
            customer_id INTEGER REFERENCES customers(id)
        );
        INSERT INTO customers (id, name) VALUES (1, 'Ada'), (2, 'Grace');
        INSERT INTO orders (id, total, customer_id) VALUES
            (1, 10.5, 1), (2, 20.0, 1), (3, 7.25, 2);
        """
    )
    conn.commit()
    conn.close()
    return path
