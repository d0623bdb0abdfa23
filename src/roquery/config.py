"""Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings

from roquery.models import (
    DEFAULT_CONNECTION_TIMEOUT_MS,
    DEFAULT_IDLE_TIMEOUT_MS,
    DEFAULT_MAX_ROWS,
    DEFAULT_ODBC_DRIVER,
    DEFAULT_PORT,
    DEFAULT_REQUEST_TIMEOUT_MS,
    ConnectionConfig,
)


class Settings(BaseSettings):
    """Settings loaded from environment with MSSQL_ prefix."""

    model_config = {
        "env_prefix": "MSSQL_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # Server
    server: str = "localhost"
    database: str | None = None
    user: str = "sa"
    password: str = ""
    port: int = DEFAULT_PORT
    driver: str = DEFAULT_ODBC_DRIVER

    # TLS
    encrypt: bool = True
    trust_server_certificate: bool = True

    # Timeouts (milliseconds)
    connection_timeout_ms: int = DEFAULT_CONNECTION_TIMEOUT_MS
    request_timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS
    idle_timeout_ms: int = DEFAULT_IDLE_TIMEOUT_MS

    # SQL safety
    max_rows: int = DEFAULT_MAX_ROWS

    verbose: bool = False

    def connection_config(self) -> ConnectionConfig:
        """Build the immutable base ``ConnectionConfig``."""
        return ConnectionConfig(
            server=self.server,
            database=self.database or None,
            user=self.user,
            password=self.password,
            port=self.port,
            encrypt=self.encrypt,
            trust_server_certificate=self.trust_server_certificate,
            connection_timeout_ms=self.connection_timeout_ms,
            request_timeout_ms=self.request_timeout_ms,
            max_rows=self.max_rows,
            driver=self.driver,
        )
