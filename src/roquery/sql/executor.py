"""Validated query execution with error classification and audit logging."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from roquery.errors import ErrorKind, QueryGatewayError, classify
from roquery.models import DEFAULT_MAX_ROWS, QueryParam
from roquery.sql.connection import SqlServerConnection
from roquery.sql.guard import add_row_limit, sanitize_query, validate_query
from roquery.sql.manager import ConnectionManager


@dataclass
class AuditEntry:
    """A single audit log entry for a query execution."""

    sql: str
    database: str | None
    execution_time_ms: float
    row_count: int
    error: str | None = None
    timestamp: float = 0.0


class QueryExecutor:
    """Runs the validate -> sanitize -> cap -> execute pipeline.

    Validation failures are raised as VALIDATION errors before any
    connection is requested. Execution failures are retried by the
    connection and then classified.
    """

    def __init__(self, manager: ConnectionManager, max_rows: int = DEFAULT_MAX_ROWS):
        self.manager = manager
        self.max_rows = max_rows
        self.audit_log: list[AuditEntry] = []
        self._audit_lock = threading.Lock()

    def _prepare(self, query: str, max_rows: int) -> str:
        validation = validate_query(query)
        if not validation.is_valid:
            raise QueryGatewayError(
                ErrorKind.VALIDATION, f"Query validation failed: {validation.error}"
            )
        return add_row_limit(sanitize_query(query), max_rows)

    def _run(
        self,
        sql: str,
        database: str | None,
        call: Callable[[SqlServerConnection], list[dict[str, Any]]],
    ) -> list[dict[str, Any]]:
        start = time.perf_counter()
        audit = AuditEntry(
            sql=sql, database=database, execution_time_ms=0, row_count=0, timestamp=time.time()
        )
        try:
            connection = self.manager.get_connection(database)
            connection.connect()
            rows = call(connection)
        except Exception as e:
            error = classify(e)
            audit.execution_time_ms = (time.perf_counter() - start) * 1000
            audit.error = error.message
            self._record(audit)
            if error is e:
                raise
            raise error from e

        audit.execution_time_ms = (time.perf_counter() - start) * 1000
        audit.row_count = len(rows)
        self._record(audit)
        return rows

    def _record(self, entry: AuditEntry) -> None:
        with self._audit_lock:
            self.audit_log.append(entry)

    def execute_validated(
        self,
        query: str,
        max_rows_override: int | None = None,
        database: str | None = None,
    ) -> list[dict[str, Any]]:
        """Validate, cap and execute a non-parameterized query."""
        _, rows = self.execute_validated_with_sql(query, max_rows_override, database)
        return rows

    def execute_validated_with_sql(
        self,
        query: str,
        max_rows_override: int | None = None,
        database: str | None = None,
    ) -> tuple[str, list[dict[str, Any]]]:
        """Like ``execute_validated`` but also return the sanitized, capped SQL that ran."""
        sql = self._prepare(query, max_rows_override or self.max_rows)
        return sql, self._run(sql, database, lambda conn: conn.query(sql))

    def execute_validated_with_params(
        self,
        query: str,
        params: Sequence[QueryParam],
        database: str | None = None,
    ) -> list[dict[str, Any]]:
        """Validate, cap and execute a query with bound parameters."""
        sql = self._prepare(query, self.max_rows)
        return self._run(sql, database, lambda conn: conn.query_with_params(sql, params))

    def get_audit_entries(self) -> list[dict]:
        """Return the audit log as a list of dicts."""
        with self._audit_lock:
            entries = list(self.audit_log)
        return [
            {
                "sql": e.sql,
                "database": e.database,
                "execution_time_ms": e.execution_time_ms,
                "row_count": e.row_count,
                "error": e.error,
                "timestamp": e.timestamp,
            }
            for e in entries
        ]

    def close(self) -> None:
        """Close every pool owned by the manager."""
        self.manager.close_all()
