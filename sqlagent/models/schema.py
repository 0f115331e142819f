"""
Schema snapshot models produced by introspection.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


class ColumnInfo(BaseModel):
    """Information about a database column."""

    name: str = Field(..., description="Column name")
    data_type: str = Field(..., description="Native column data type")
    is_nullable: bool = Field(..., description="Whether column can be NULL")
    default_value: str | None = Field(None, description="Default value if any")
    is_primary_key: bool = Field(default=False, description="Is part of primary key")
    is_foreign_key: bool = Field(default=False, description="Is a foreign key")
    foreign_table: str | None = Field(None, description="Referenced table if FK")
    foreign_column: str | None = Field(None, description="Referenced column if FK")

    model_config = ConfigDict(frozen=True)


class TableInfo(BaseModel):
    """Information about a database table."""

    name: str = Field(..., description="Table name")
    schema_name: str | None = Field(None, description="Schema namespace, if the engine has one")
    columns: list[ColumnInfo] = Field(default_factory=list, description="Ordered columns")
    row_count: int | None = Field(None, description="Best-effort row count")

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}" if self.schema_name else self.name


class Relationship(BaseModel):
    """Foreign-key edge between two columns."""

    from_table: str
    from_column: str
    to_table: str
    to_column: str

    model_config = ConfigDict(frozen=True)


class SchemaSnapshot(BaseModel):
    """Cached introspection result for one connection."""

    connection_id: str
    tables: list[TableInfo] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)
    ai_summary: str | None = None
    cached_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def is_fresh(self, max_age_hours: float, now: datetime | None = None) -> bool:
        """True when the snapshot is no older than ``max_age_hours``."""
        current = now or datetime.now(UTC)
        cached_at = self.cached_at
        if cached_at.tzinfo is None:
            cached_at = cached_at.replace(tzinfo=UTC)
        age_hours = (current - cached_at).total_seconds() / 3600
        return age_hours <= max_age_hours
