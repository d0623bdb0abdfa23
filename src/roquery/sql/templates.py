"""Read-only catalog query templates for SQL Server.

Each template validates its inputs and returns ``(sql, params)``. Caller
values are threaded through as ``@name`` bound parameters; only
``sample_rows`` interpolates bracket-escaped identifiers, because object
names cannot be bound in a FROM clause.
"""

from __future__ import annotations

from typing import Callable

from roquery.models import QueryParam
from roquery.sql.identifiers import (
    DEFAULT_SCHEMA,
    escape_identifier,
    validate_foreign_key_parameters,
    validate_list_tables_parameters,
    validate_row_limit,
    validate_table_description_parameters,
)

Template = tuple[str, list[QueryParam]]


# ── Templates ─────────────────────────────────────────────────────────────────


def list_tables(schema: str | None = None) -> Template:
    """Base tables, optionally filtered to one schema."""
    schema = validate_list_tables_parameters(schema)
    params: list[QueryParam] = []
    sql = """
SELECT
    TABLE_CATALOG AS table_catalog,
    TABLE_SCHEMA AS table_schema,
    TABLE_NAME AS table_name,
    TABLE_TYPE AS table_type
FROM INFORMATION_SCHEMA.TABLES
WHERE TABLE_TYPE = 'BASE TABLE'
"""
    if schema:
        sql += "    AND TABLE_SCHEMA = @schema\n"
        params.append(QueryParam(name="schema", value=schema, type="nvarchar"))
    sql += "ORDER BY TABLE_SCHEMA, TABLE_NAME"
    return sql, params


def list_views(schema: str | None = None) -> Template:
    """Views with their definitions, optionally filtered to one schema."""
    schema = validate_list_tables_parameters(schema)
    params: list[QueryParam] = []
    sql = """
SELECT
    TABLE_CATALOG AS table_catalog,
    TABLE_SCHEMA AS table_schema,
    TABLE_NAME AS table_name,
    VIEW_DEFINITION AS view_definition,
    CHECK_OPTION AS check_option,
    IS_UPDATABLE AS is_updatable
FROM INFORMATION_SCHEMA.VIEWS
"""
    if schema:
        sql += "WHERE TABLE_SCHEMA = @schema\n"
        params.append(QueryParam(name="schema", value=schema, type="nvarchar"))
    sql += "ORDER BY TABLE_SCHEMA, TABLE_NAME"
    return sql, params


def describe_table(table_name: str | None, schema: str | None = None) -> Template:
    """Column definitions for one table, in ordinal order."""
    table_name, schema = validate_table_description_parameters(table_name, schema)
    sql = """
SELECT
    TABLE_CATALOG AS table_catalog,
    TABLE_SCHEMA AS table_schema,
    TABLE_NAME AS table_name,
    COLUMN_NAME AS column_name,
    ORDINAL_POSITION AS ordinal_position,
    COLUMN_DEFAULT AS column_default,
    IS_NULLABLE AS is_nullable,
    DATA_TYPE AS data_type,
    CHARACTER_MAXIMUM_LENGTH AS character_maximum_length,
    CHARACTER_OCTET_LENGTH AS character_octet_length,
    NUMERIC_PRECISION AS numeric_precision,
    NUMERIC_PRECISION_RADIX AS numeric_precision_radix,
    NUMERIC_SCALE AS numeric_scale,
    DATETIME_PRECISION AS datetime_precision
FROM INFORMATION_SCHEMA.COLUMNS
WHERE TABLE_NAME = @tableName
    AND TABLE_SCHEMA = @schema
ORDER BY ORDINAL_POSITION"""
    return sql, [
        QueryParam(name="tableName", value=table_name, type="nvarchar"),
        QueryParam(name="schema", value=schema, type="nvarchar"),
    ]


def foreign_keys(table_name: str | None = None, schema: str | None = None) -> Template:
    """Foreign key column pairs for one table, or the whole database."""
    table_name, schema = validate_foreign_key_parameters(table_name, schema)
    params: list[QueryParam] = []
    sql = """
SELECT
    fk.name AS constraint_name,
    OBJECT_SCHEMA_NAME(fk.parent_object_id) AS table_schema,
    OBJECT_NAME(fk.parent_object_id) AS table_name,
    COL_NAME(fkc.parent_object_id, fkc.parent_column_id) AS column_name,
    OBJECT_SCHEMA_NAME(fk.referenced_object_id) AS referenced_table_schema,
    OBJECT_NAME(fk.referenced_object_id) AS referenced_table_name,
    COL_NAME(fkc.referenced_object_id, fkc.referenced_column_id) AS referenced_column_name
FROM sys.foreign_keys fk
INNER JOIN sys.foreign_key_columns fkc
    ON fk.object_id = fkc.constraint_object_id
"""
    if table_name:
        sql += (
            "WHERE OBJECT_NAME(fk.parent_object_id) = @tableName\n"
            "    AND OBJECT_SCHEMA_NAME(fk.parent_object_id) = @schema\n"
        )
        params.append(QueryParam(name="tableName", value=table_name, type="nvarchar"))
        params.append(
            QueryParam(name="schema", value=schema or DEFAULT_SCHEMA, type="nvarchar")
        )
    sql += "ORDER BY table_schema, table_name, constraint_name"
    return sql, params


def table_stats(table_name: str | None = None, schema: str | None = None) -> Template:
    """Row counts and allocated sizes (KB) for user tables."""
    table_name, schema = validate_foreign_key_parameters(table_name, schema or DEFAULT_SCHEMA)
    params: list[QueryParam] = []
    sql = """
SELECT
    s.name AS table_schema,
    t.name AS table_name,
    p.rows AS row_count,
    SUM(a.total_pages) * 8 AS total_size_kb,
    SUM(a.used_pages) * 8 AS data_size_kb,
    (SUM(a.total_pages) - SUM(a.used_pages)) * 8 AS index_size_kb
FROM sys.tables t
INNER JOIN sys.indexes i ON t.object_id = i.object_id
INNER JOIN sys.partitions p ON i.object_id = p.object_id AND i.index_id = p.index_id
INNER JOIN sys.allocation_units a ON p.partition_id = a.container_id
LEFT OUTER JOIN sys.schemas s ON t.schema_id = s.schema_id
WHERE t.name NOT LIKE 'dt%'
    AND t.is_ms_shipped = 0
    AND i.object_id > 255
"""
    if table_name:
        sql += "    AND t.name = @tableName\n    AND s.name = @schema\n"
        params.append(QueryParam(name="tableName", value=table_name, type="nvarchar"))
        params.append(QueryParam(name="schema", value=schema, type="nvarchar"))
    sql += "GROUP BY s.name, t.name, p.rows\nORDER BY table_schema, table_name"
    return sql, params


def list_databases() -> Template:
    """Online databases on the instance."""
    return (
        """
SELECT
    database_id,
    name,
    create_date,
    collation_name,
    state_desc
FROM sys.databases
WHERE state_desc = 'ONLINE'
ORDER BY name""",
        [],
    )


def server_info() -> Template:
    """Instance name, version and edition."""
    return (
        """
SELECT
    @@SERVERNAME AS server_name,
    @@VERSION AS product_version,
    SERVERPROPERTY('ProductLevel') AS product_level,
    SERVERPROPERTY('Edition') AS edition,
    SERVERPROPERTY('EngineEdition') AS engine_edition""",
        [],
    )


def sample_rows(table_name: str | None, schema: str | None = None, limit: int = 5) -> Template:
    """First *limit* rows of a table via escaped identifiers."""
    table_name, schema = validate_table_description_parameters(table_name, schema)
    limit = validate_row_limit(limit)
    sql = (
        f"SELECT TOP {limit} * FROM {escape_identifier(schema)}.{escape_identifier(table_name)}"
    )
    return sql, []


TEMPLATES: dict[str, Callable[..., Template]] = {
    "list_tables": list_tables,
    "list_views": list_views,
    "describe_table": describe_table,
    "foreign_keys": foreign_keys,
    "table_stats": table_stats,
    "list_databases": list_databases,
    "server_info": server_info,
    "sample_rows": sample_rows,
}
