"""
Typed results for best-effort side channels.

Row counts, schema summaries and history writes may fail without failing the
operation that triggered them. ``attempt`` runs such a coroutine and records
either its value or the exception it raised, so callers decide explicitly
what a failure means instead of scattering catch blocks.

Usage:
    outcome = await attempt(store.add_history(entry))
    if not outcome.ok:
        logger.warning(f"History write failed: {outcome.error}")
"""

from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Attempt(Generic[T]):
    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        """Return the value on success, ``default`` otherwise."""
        if self.error is not None:
            return default
        return self.value  # type: ignore[return-value]


async def attempt(awaitable: Awaitable[T]) -> Attempt[T]:
    """Await ``awaitable`` and capture any ``Exception`` it raises."""
    try:
        return Attempt(value=await awaitable)
    except Exception as exc:
        return Attempt(error=exc)
