"""
Database connection models.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field, SecretStr


class Dialect(str, Enum):
    """Supported relational engines."""

    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"


ConnectionStatus = Literal["active", "inactive", "error"]


class ConnectionCredentials(BaseModel):
    """Plaintext connection details. Only lives inside the encryption boundary and pools."""

    host: str | None = Field(None, description="Database host")
    port: int | None = Field(None, gt=0, le=65535, description="Database port")
    database: str | None = Field(None, description="Database name, or file path for SQLite")
    username: str | None = Field(None, description="Database user")
    password: SecretStr | None = Field(None, description="Database password")
    connection_string: SecretStr | None = Field(
        None, description="Full connection URL, used instead of the individual fields"
    )

    def reveal(self) -> dict:
        """Plain dict including secret values (for encryption and driver setup only)."""
        return {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "username": self.username,
            "password": self.password.get_secret_value() if self.password else None,
            "connection_string": (
                self.connection_string.get_secret_value() if self.connection_string else None
            ),
        }


class ConnectionRecord(BaseModel):
    """Stored connection row, including the encrypted credential bundle."""

    id: str = Field(default_factory=lambda: str(uuid4()), description="Connection identifier")
    user_id: str = Field(..., description="Owning user")
    name: str = Field(..., min_length=1, description="User-friendly name")
    description: str | None = Field(None, description="Optional description")
    dialect: Dialect = Field(..., description="Database engine type")
    credentials_encrypted: str = Field(..., description="Opaque encrypted credential bundle")
    status: ConnectionStatus = Field(default="active", description="Connection status")
    last_connected_at: datetime | None = Field(None, description="Last successful pool creation")
    last_error: str | None = Field(None, description="Last fatal probe error")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class DatabaseConnection(BaseModel):
    """Connection as surfaced to callers. Carries no credential fields."""

    id: str
    user_id: str
    name: str
    description: str | None = None
    dialect: Dialect
    status: ConnectionStatus
    last_connected_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: ConnectionRecord) -> DatabaseConnection:
        return cls(
            id=record.id,
            user_id=record.user_id,
            name=record.name,
            description=record.description,
            dialect=record.dialect,
            status=record.status,
            last_connected_at=record.last_connected_at,
            last_error=record.last_error,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class ConnectionUpdate(BaseModel):
    """Patch for an existing connection. Unset fields are left alone."""

    name: str | None = Field(None, min_length=1)
    description: str | None = None
    status: Literal["active", "inactive"] | None = None
    credentials: ConnectionCredentials | None = None


class ConnectionTestResult(BaseModel):
    """Outcome of a connection probe."""

    success: bool
    error: str | None = None
