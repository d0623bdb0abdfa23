"""Read-only SQL Server tools exposed to an LLM tool caller.

Each function is a plain callable with a rich docstring so the LLM
understands when and how to use it. Failures come back as a dict with
``error``, ``code`` and ``suggestions`` keys instead of raising.
"""

from __future__ import annotations

import time
from typing import Any

from roquery.errors import QueryGatewayError, to_error_response
from roquery.models import QueryResult
from roquery.sql import templates
from roquery.sql.executor import QueryExecutor
from roquery.sql.identifiers import validate_database_name, validate_query_parameters

# Module-level executor, set by the CLI or host process before tools run
_executor: QueryExecutor | None = None


def set_executor(executor: QueryExecutor) -> None:
    """Wire the shared QueryExecutor instance (called during setup)."""
    global _executor
    _executor = executor


def _get_executor() -> QueryExecutor:
    if _executor is None:
        raise RuntimeError("QueryExecutor not initialized — call set_executor() first")
    return _executor


def _database(database: str | None) -> str | None:
    return validate_database_name(database) if database else None


def _run_template(
    template_name: str, database: str | None = None, **kwargs: Any
) -> dict[str, Any]:
    try:
        db = _database(database)
        sql, params = templates.TEMPLATES[template_name](**kwargs)
        rows = _get_executor().execute_validated_with_params(sql, params, db)
    except QueryGatewayError as e:
        return to_error_response(e)
    return {"rows": rows, "row_count": len(rows)}


def execute_query(
    query: str, limit: int | None = None, database: str | None = None
) -> dict[str, Any]:
    """Execute a read-only SELECT query against the database.

    IMPORTANT GUIDELINES:
    - Only SELECT (and WITH/CTE, SHOW, DESCRIBE, EXPLAIN) statements are allowed
    - No INSERT, UPDATE, DELETE, DROP, CREATE, EXEC or stored procedures
    - No comments, stacked statements or UNION SELECT
    - Results are capped with TOP (default 1000 rows, max 10000)

    Args:
        query: SQL SELECT query to execute.
        limit: Maximum number of rows to return (1-10000, optional).
        database: Target database name (optional, uses default if omitted).

    Returns:
        Dict with keys: sql (as executed, with its TOP cap), columns, rows,
        row_count, execution_time_ms.
        On failure: error, code, suggestions.
    """
    start = time.perf_counter()
    try:
        db = _database(database)
        params = validate_query_parameters(query, limit)
        executed_sql, rows = _get_executor().execute_validated_with_sql(
            params.query, params.limit, db
        )
    except QueryGatewayError as e:
        elapsed = (time.perf_counter() - start) * 1000
        response = to_error_response(e)
        response["error"] = f"{response['error']} (execution time: {elapsed:.0f}ms)"
        return response

    columns = list(rows[0].keys()) if rows else []
    result = QueryResult(
        sql=executed_sql,
        columns=columns,
        rows=[[row[col] for col in columns] for row in rows],
        row_count=len(rows),
        execution_time_ms=(time.perf_counter() - start) * 1000,
    )
    return result.model_dump()


def list_tables(schema: str | None = None, database: str | None = None) -> dict[str, Any]:
    """List base tables in the database, optionally for one schema.

    Args:
        schema: Schema name to filter tables (optional).
        database: Target database name (optional).

    Returns:
        Dict with rows of table_catalog, table_schema, table_name, table_type.
    """
    return _run_template("list_tables", database, schema=schema)


def list_views(schema: str | None = None, database: str | None = None) -> dict[str, Any]:
    """List views and their definitions, optionally for one schema.

    Args:
        schema: Schema name to filter views (optional).
        database: Target database name (optional).
    """
    return _run_template("list_views", database, schema=schema)


def describe_table(
    table_name: str, schema: str | None = None, database: str | None = None
) -> dict[str, Any]:
    """Get column definitions (types, nullability, defaults) for a table.

    Args:
        table_name: Name of the table to describe.
        schema: Schema name (optional, defaults to dbo).
        database: Target database name (optional).
    """
    return _run_template("describe_table", database, table_name=table_name, schema=schema)


def get_foreign_keys(
    table_name: str | None = None, schema: str | None = None, database: str | None = None
) -> dict[str, Any]:
    """Get foreign key relationships for a table or the whole database.

    Args:
        table_name: Table to inspect (optional; all foreign keys if omitted).
        schema: Schema name (optional, defaults to dbo).
        database: Target database name (optional).
    """
    return _run_template("foreign_keys", database, table_name=table_name, schema=schema)


def get_table_stats(
    table_name: str | None = None, schema: str | None = None, database: str | None = None
) -> dict[str, Any]:
    """Get row counts and size information (KB) for user tables.

    Args:
        table_name: Table to inspect (optional; all tables if omitted).
        schema: Schema name (optional, defaults to dbo).
        database: Target database name (optional).
    """
    return _run_template("table_stats", database, table_name=table_name, schema=schema)


def list_databases() -> dict[str, Any]:
    """List all online databases on the SQL Server instance."""
    return _run_template("list_databases")


def get_server_info() -> dict[str, Any]:
    """Get SQL Server instance name, version, product level and edition."""
    result = _run_template("server_info")
    if "error" in result:
        return result
    return result["rows"][0] if result["rows"] else {}


def get_sample_data(
    table_name: str,
    schema: str | None = None,
    limit: int = 5,
    database: str | None = None,
) -> dict[str, Any]:
    """Get the first few rows of a table to see what its data looks like.

    Args:
        table_name: Table to sample.
        schema: Schema name (optional, defaults to dbo).
        limit: Number of rows (1-10000, default 5).
        database: Target database name (optional).
    """
    return _run_template(
        "sample_rows", database, table_name=table_name, schema=schema, limit=limit
    )


def test_connection(database: str | None = None) -> dict[str, Any]:
    """Test connectivity to the SQL Server instance or a specific database.

    Args:
        database: Target database name (optional).

    Returns:
        Dict with is_connected, database and connection_time_ms.
    """
    start = time.perf_counter()
    try:
        db = _database(database)
    except QueryGatewayError as e:
        return {"is_connected": False, **to_error_response(e)}

    connection = _get_executor().manager.get_connection(db)
    ok = connection.test_connection()
    response: dict[str, Any] = {
        "is_connected": ok,
        "database": connection.get_config().database,
        "connection_time_ms": (time.perf_counter() - start) * 1000,
    }
    if not ok:
        response["error"] = "Connection failed: check server, credentials and network"
    return response
