"""
Query generation, execution, and history models.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field

Confidence = Literal["high", "medium", "low"]
ErrorCode = Literal["unsafe_query", "invalid_sql", "timeout", "driver_error"]

# Stored in history when generation failed before producing any SQL.
NO_SQL_SENTINEL = "N/A"


class GeneratedQuery(BaseModel):
    """SQL proposed by the language model, after safety validation."""

    sql: str = Field(..., description="Generated SELECT/WITH statement")
    explanation: str = Field(..., description="Natural-language explanation")
    confidence: Confidence = Field(..., description="Model-reported confidence")
    warnings: list[str] = Field(default_factory=list, description="Advisory warnings")


class ValidationResult(BaseModel):
    """Outcome of the deterministic SQL safety check."""

    valid: bool
    error: str | None = None


class ResultColumn(BaseModel):
    """Column metadata for an executed query."""

    name: str
    type: str = Field(default="unknown", description="Canonical type name")


class DriverResult(BaseModel):
    """Rows returned by a driver for one statement."""

    rows: list[dict[str, Any]] = Field(default_factory=list)
    columns: list[ResultColumn] = Field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


class ExecutionResult(BaseModel):
    """Structured result for every execution path, successful or not."""

    success: bool
    rows: list[dict[str, Any]] | None = None
    row_count: int | None = None
    columns: list[ResultColumn] | None = None
    execution_time_ms: float | None = None
    generated_sql: str | None = None
    explanation: str | None = None
    error: str | None = None
    error_code: ErrorCode | None = None
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: ErrorCode | None,
        execution_time_ms: float | None = None,
    ) -> ExecutionResult:
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            execution_time_ms=execution_time_ms,
        )


class QueryHistoryEntry(BaseModel):
    """One natural-language query attempt. Append-only."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    connection_id: str
    question: str
    generated_sql: str = NO_SQL_SENTINEL
    success: bool
    row_count: int | None = None
    execution_time_ms: float | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
