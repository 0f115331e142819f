"""Unit tests for PoolRegistry."""

import asyncio

import pytest

from sqlagent.errors import DriverError
from sqlagent.services import PoolRegistry


class TestPoolRegistry:
    """Test driver caching and teardown."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_driver(self, make_driver):
        """Test that concurrent creation for one key opens a single driver."""
        registry = PoolRegistry()
        created = []

        async def factory():
            await asyncio.sleep(0.01)
            driver = make_driver()
            await driver.open()
            created.append(driver)
            return driver

        results = await asyncio.gather(*(registry.get_or_create("c1", factory) for _ in range(5)))

        assert len(created) == 1
        assert all(result is created[0] for result in results)
        assert "c1" in registry
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_failed_factory_caches_nothing(self, make_driver):
        """Test that a failing factory lets the next caller retry."""
        registry = PoolRegistry()

        async def failing():
            raise DriverError("refused")

        with pytest.raises(DriverError):
            await registry.get_or_create("c1", failing)
        assert "c1" not in registry

        async def working():
            return make_driver()

        assert await registry.get_or_create("c1", working) is not None

    @pytest.mark.asyncio
    async def test_invalidate_closes_driver(self, make_driver):
        """Test that invalidate removes and closes the cached driver."""
        registry = PoolRegistry()
        driver = make_driver()

        async def factory():
            return driver

        await registry.get_or_create("c1", factory)
        await registry.invalidate("c1")
        await registry.invalidate("c1")

        assert driver.close_calls == 1
        assert registry.get("c1") is None

    @pytest.mark.asyncio
    async def test_invalidate_leaves_no_lock_behind(self, make_driver):
        """Test that invalidated and never-cached keys hold no creation lock."""
        registry = PoolRegistry()

        async def factory():
            return make_driver()

        await registry.get_or_create("c1", factory)
        await registry.invalidate("c1")
        await registry.invalidate("never-cached")

        assert registry._locks == {}

        await registry.get_or_create("c1", factory)
        assert "c1" in registry

    @pytest.mark.asyncio
    async def test_close_all_ignores_close_errors(self, make_driver):
        """Test that one failing close does not stop the others."""
        registry = PoolRegistry()
        broken = make_driver()
        healthy = make_driver()

        async def explode():
            raise RuntimeError("socket already closed")

        broken.close = explode

        async def make_broken():
            return broken

        async def make_healthy():
            return healthy

        await registry.get_or_create("a", make_broken)
        await registry.get_or_create("b", make_healthy)

        await registry.close_all()

        assert healthy.close_calls == 1
        assert len(registry) == 0
