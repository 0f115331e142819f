"""
Pool Registry

Process-wide cache of opened drivers keyed by connection id. Creation is
serialized per key so concurrent callers for the same connection share one
pool; different keys never block each other.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from sqlagent.drivers import DatabaseDriver

logger = logging.getLogger(__name__)

DriverFactory = Callable[[], Awaitable[DatabaseDriver]]


class PoolRegistry:
    """Cache of open ``DatabaseDriver`` instances."""

    def __init__(self) -> None:
        self._drivers: dict[str, DatabaseDriver] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> DatabaseDriver | None:
        return self._drivers.get(key)

    def __contains__(self, key: str) -> bool:
        return key in self._drivers

    def __len__(self) -> int:
        return len(self._drivers)

    async def get_or_create(self, key: str, factory: DriverFactory) -> DatabaseDriver:
        """
        Return the cached driver for ``key`` or open one with ``factory``.

        A failing factory leaves nothing cached, so the next caller retries.
        """
        driver = self._drivers.get(key)
        if driver is not None:
            return driver

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            driver = self._drivers.get(key)
            if driver is None:
                driver = await factory()
                self._drivers[key] = driver
                logger.debug(f"Cached pool for connection {key}", extra={"connection_id": key})
            return driver

    async def invalidate(self, key: str) -> None:
        """Remove and close the driver for ``key`` if one is cached."""
        lock = self._locks.get(key)
        if lock is None:
            return
        async with lock:
            driver = self._drivers.pop(key, None)
        if self._locks.get(key) is lock:
            del self._locks[key]
        if driver is None:
            return
        try:
            await driver.close()
            logger.info(f"Closed pool for connection {key}", extra={"connection_id": key})
        except Exception as exc:
            logger.warning(f"Error closing pool for connection {key}: {exc}")

    async def close_all(self) -> None:
        """Close every cached driver. Individual close errors are logged and ignored."""
        drivers, self._drivers = self._drivers, {}
        self._locks.clear()
        for key, driver in drivers.items():
            try:
                await driver.close()
            except Exception as exc:
                logger.warning(f"Error closing pool for connection {key}: {exc}")
        if drivers:
            logger.info(f"Closed {len(drivers)} pools")
