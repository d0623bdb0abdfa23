"""Pydantic models shared by the validation, connection and tool layers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_PORT = 1433
DEFAULT_CONNECTION_TIMEOUT_MS = 30_000
DEFAULT_REQUEST_TIMEOUT_MS = 60_000
DEFAULT_MAX_ROWS = 1000
MAX_ROW_LIMIT = 10_000
MAX_IDENTIFIER_LENGTH = 128
DEFAULT_IDLE_TIMEOUT_MS = 300_000
DEFAULT_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"


# --- Connection ---


class ConnectionConfig(BaseModel):
    """Immutable connection settings for one target database."""

    model_config = ConfigDict(frozen=True)

    server: str
    database: str | None = None
    user: str
    password: str = Field(repr=False)
    port: int = DEFAULT_PORT
    encrypt: bool = True
    trust_server_certificate: bool = True
    connection_timeout_ms: int = DEFAULT_CONNECTION_TIMEOUT_MS
    request_timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS
    max_rows: int = DEFAULT_MAX_ROWS
    driver: str = DEFAULT_ODBC_DRIVER

    def with_database(self, database: str) -> ConnectionConfig:
        """Return a copy of this config targeting *database*."""
        return self.model_copy(update={"database": database})


class QueryParam(BaseModel):
    """One bound parameter; ``name`` matches an ``@name`` placeholder."""

    name: str
    value: Any = None
    type: str | None = None


# --- Validation ---


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of query validation. Never raised, only returned."""

    is_valid: bool
    error: str | None = None


# --- Query Result ---


class QueryResult(BaseModel):
    """Result from a validated query execution."""

    sql: str  # as executed: sanitized and row-capped
    columns: list[str] = Field(default_factory=list)
    rows: list[list[Any]] = Field(default_factory=list)
    row_count: int = 0
    execution_time_ms: float = 0.0
