"""Shared helpers."""

from sqlagent.utils.attempt import Attempt, attempt

__all__ = ["Attempt", "attempt"]
