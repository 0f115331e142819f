"""
Connection Manager

Registry of user-owned database connections. Credentials are encrypted before
they reach the store and only decrypted to open a pool or run a probe; every
projection returned to callers is a ``DatabaseConnection`` without secrets.

Usage:
    manager = ConnectionManager(store, FernetCredentialCipher(key), PoolRegistry())
    conn = await manager.create_connection(
        "user-1", "Shop", Dialect.POSTGRESQL,
        ConnectionCredentials(host="db", database="shop", username="ro", password="..."),
    )
    driver = await manager.get_or_create_pool(conn.id, "user-1")
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from sqlagent.config import PoolSettings
from sqlagent.drivers import DatabaseDriver, create_driver, resolve_dialect
from sqlagent.errors import (
    ConnectionNotFoundError,
    DriverError,
    SQLAgentError,
    ValidationFailedError,
)
from sqlagent.models import (
    ConnectionCredentials,
    ConnectionRecord,
    ConnectionTestResult,
    ConnectionUpdate,
    DatabaseConnection,
    Dialect,
)
from sqlagent.security import CredentialCipher
from sqlagent.services.pool_registry import PoolRegistry
from sqlagent.storage import SQLAgentStore
from sqlagent.utils import attempt

logger = logging.getLogger(__name__)

DriverBuilder = Callable[[Dialect, ConnectionCredentials, PoolSettings], DatabaseDriver]


def validate_credentials(dialect: Dialect, credentials: ConnectionCredentials | None) -> None:
    """
    Check that ``credentials`` are usable for ``dialect``.

    Raises:
        ValidationFailedError: If required fields are missing
    """
    if credentials is None:
        raise ValidationFailedError("Connection credentials are required")
    if credentials.connection_string:
        return
    if not credentials.database:
        raise ValidationFailedError(
            "Either a database name (file path for SQLite) or a connection string is required"
        )
    if dialect != Dialect.SQLITE and not credentials.host:
        raise ValidationFailedError(f"A host is required for {dialect.value} connections")


class ConnectionManager:
    """Create, resolve and pool user database connections."""

    def __init__(
        self,
        store: SQLAgentStore,
        cipher: CredentialCipher,
        pools: PoolRegistry,
        pool_settings: PoolSettings | None = None,
        driver_builder: DriverBuilder = create_driver,
    ) -> None:
        self._store = store
        self._cipher = cipher
        self._pools = pools
        self._pool_settings = pool_settings or PoolSettings()
        self._driver_builder = driver_builder

    async def create_connection(
        self,
        user_id: str,
        name: str,
        dialect: Dialect | str,
        credentials: ConnectionCredentials,
        description: str | None = None,
    ) -> DatabaseConnection:
        """
        Register a new connection.

        Raises:
            ValidationFailedError: Missing name or credentials
            UnsupportedDialectError: Unknown dialect
        """
        if not name or not name.strip():
            raise ValidationFailedError("Connection name is required")
        resolved = resolve_dialect(dialect)
        validate_credentials(resolved, credentials)

        record = ConnectionRecord(
            user_id=user_id,
            name=name.strip(),
            description=description,
            dialect=resolved,
            credentials_encrypted=self._cipher.encrypt(credentials),
            status="active",
        )
        stored = await self._store.insert_connection(record)
        logger.info(
            f"Created {resolved.value} connection '{stored.name}'",
            extra={"user_id": user_id, "connection_id": stored.id},
        )
        return DatabaseConnection.from_record(stored)

    async def list_connections(self, user_id: str) -> list[DatabaseConnection]:
        records = await self._store.list_connections(user_id)
        return [DatabaseConnection.from_record(record) for record in records]

    async def get_connection(self, user_id: str, connection_id: str) -> DatabaseConnection | None:
        record = await self._store.get_connection(user_id, connection_id)
        return DatabaseConnection.from_record(record) if record else None

    async def require_connection(self, user_id: str, connection_id: str) -> DatabaseConnection:
        """Like ``get_connection`` but raises ``ConnectionNotFoundError`` when missing."""
        return DatabaseConnection.from_record(await self._require_record(user_id, connection_id))

    async def update_connection(
        self,
        user_id: str,
        connection_id: str,
        patch: ConnectionUpdate,
    ) -> DatabaseConnection:
        """
        Apply ``patch`` to a connection.

        Replacing credentials re-encrypts them and drops the cached pool so the
        next query opens a fresh one.
        """
        record = await self._require_record(user_id, connection_id)
        changes: dict = {"updated_at": datetime.now(UTC)}

        if patch.name is not None:
            if not patch.name.strip():
                raise ValidationFailedError("Connection name is required")
            changes["name"] = patch.name.strip()
        if patch.description is not None:
            changes["description"] = patch.description
        if patch.status is not None:
            changes["status"] = patch.status
            changes["last_error"] = None
        if patch.credentials is not None:
            validate_credentials(record.dialect, patch.credentials)
            changes["credentials_encrypted"] = self._cipher.encrypt(patch.credentials)

        stored = await self._store.update_connection(record.model_copy(update=changes))

        if patch.credentials is not None:
            await self._pools.invalidate(connection_id)
            logger.info(
                "Connection credentials replaced, pool invalidated",
                extra={"user_id": user_id, "connection_id": connection_id},
            )
        return DatabaseConnection.from_record(stored)

    async def delete_connection(self, user_id: str, connection_id: str) -> None:
        await self._require_record(user_id, connection_id)
        await self._pools.invalidate(connection_id)
        deleted = await self._store.delete_connection(user_id, connection_id)
        if not deleted:
            raise ConnectionNotFoundError(connection_id)
        logger.info(
            "Deleted connection",
            extra={"user_id": user_id, "connection_id": connection_id},
        )

    async def test_connection(
        self,
        credentials: ConnectionCredentials,
        dialect: Dialect | str,
    ) -> ConnectionTestResult:
        """
        Probe unsaved credentials with a throwaway driver.

        The driver is never cached and is always closed.
        """
        try:
            resolved = resolve_dialect(dialect)
            validate_credentials(resolved, credentials)
        except SQLAgentError as exc:
            return ConnectionTestResult(success=False, error=exc.message)

        driver = self._driver_builder(resolved, credentials, self._pool_settings)
        try:
            await driver.open()
            await driver.probe()
            return ConnectionTestResult(success=True)
        except DriverError as exc:
            logger.info(f"Connection test failed: {exc.message}", extra={"dialect": resolved.value})
            return ConnectionTestResult(success=False, error=exc.message)
        finally:
            closed = await attempt(driver.close())
            if not closed.ok:
                logger.debug(f"Ignoring close error after connection test: {closed.error}")

    async def check_connection(self, user_id: str, connection_id: str) -> ConnectionTestResult:
        """
        Probe a stored connection through its pool and record the outcome.

        Success marks the connection active; failure marks it ``error`` with
        ``last_error`` and drops the pool.
        """
        try:
            driver = await self.get_or_create_pool(connection_id, user_id)
        except DriverError as exc:
            return ConnectionTestResult(success=False, error=exc.message)

        try:
            await driver.probe()
        except DriverError as exc:
            await self._pools.invalidate(connection_id)
            await self._record_failure(connection_id, exc.message)
            return ConnectionTestResult(success=False, error=exc.message)

        await self._store.set_connection_status(
            connection_id, "active", last_error=None, last_connected_at=datetime.now(UTC)
        )
        return ConnectionTestResult(success=True)

    async def get_or_create_pool(self, connection_id: str, user_id: str) -> DatabaseDriver:
        """
        Return the shared driver for a connection, opening it on first use.

        Raises:
            ConnectionNotFoundError: The user has no such connection
            DriverError: The pool could not be opened (recorded on the connection)
        """
        record = await self._require_record(user_id, connection_id)

        async def open_driver() -> DatabaseDriver:
            credentials = self._cipher.decrypt(record.credentials_encrypted)
            driver = self._driver_builder(record.dialect, credentials, self._pool_settings)
            try:
                await driver.open()
            except DriverError as exc:
                await self._record_failure(connection_id, exc.message)
                raise

            status = "active" if record.status == "error" else record.status
            touched = await attempt(
                self._store.set_connection_status(
                    connection_id,
                    status,
                    last_error=None if status == "active" else record.last_error,
                    last_connected_at=datetime.now(UTC),
                )
            )
            if not touched.ok:
                logger.warning(f"Failed to record last_connected_at: {touched.error}")

            logger.info(
                f"Opened {record.dialect.value} pool",
                extra={"connection_id": connection_id, "dialect": record.dialect.value},
            )
            return driver

        return await self._pools.get_or_create(connection_id, open_driver)

    async def close_all(self) -> None:
        await self._pools.close_all()

    async def _require_record(self, user_id: str, connection_id: str) -> ConnectionRecord:
        record = await self._store.get_connection(user_id, connection_id)
        if record is None:
            raise ConnectionNotFoundError(connection_id)
        return record

    async def _record_failure(self, connection_id: str, error: str) -> None:
        recorded = await attempt(
            self._store.set_connection_status(connection_id, "error", last_error=error)
        )
        if not recorded.ok:
            logger.warning(f"Failed to record connection error: {recorded.error}")
        logger.error(
            f"Connection failed: {error}",
            extra={"connection_id": connection_id},
        )
