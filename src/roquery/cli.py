"""Typer CLI for the read-only SQL Server query gateway."""

from __future__ import annotations

import logging
from typing import Any, Callable

import sqlparse
import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

# Load .env early so MSSQL_* settings are visible to Settings()
load_dotenv()

from roquery.config import Settings
from roquery.sql.executor import QueryExecutor
from roquery.sql.manager import ConnectionManager
from roquery.tools import sql_tools

app = typer.Typer(
    name="roq",
    help="Read-only SQL Server gateway — inspect schemas and run validated SELECT queries.",
    no_args_is_help=True,
)
console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _run(verbose: bool, tool: Callable[..., dict[str, Any]], **kwargs: Any) -> dict[str, Any]:
    """Wire an executor from settings, call *tool*, and close every pool."""
    settings = Settings()
    settings.verbose = verbose or settings.verbose
    _configure_logging(settings.verbose)

    manager = ConnectionManager(settings.connection_config(), settings.idle_timeout_ms)
    executor = QueryExecutor(manager, max_rows=settings.max_rows)
    sql_tools.set_executor(executor)
    try:
        return tool(**kwargs)
    finally:
        executor.close()


def _fail(result: dict[str, Any]) -> None:
    console.print(f"[red]Error:[/red] {result['error']}")
    for suggestion in result.get("suggestions", []):
        console.print(f"  [dim]- {suggestion}[/dim]")
    raise typer.Exit(code=1)


def _print_rows(rows: list[dict[str, Any]], title: str) -> None:
    table = Table(title=title)
    columns = list(rows[0].keys()) if rows else []
    for col in columns:
        table.add_column(str(col), overflow="fold")
    for row in rows:
        table.add_row(*["" if row[col] is None else str(row[col]) for col in columns])
    console.print(table)
    console.print(f"\n[dim]{len(rows)} row(s)[/dim]")


def _print_result(result: dict[str, Any], title: str) -> None:
    if "error" in result:
        _fail(result)
    _print_rows(result["rows"], title)


_VERBOSE = typer.Option(False, "--verbose", "-v", help="Verbose logging")
_DATABASE = typer.Option(None, "--database", "-d", help="Target database (default from settings)")
_SCHEMA = typer.Option(None, "--schema", "-s", help="Schema name")


@app.command("test-connection")
def test_connection_cmd(database: str | None = _DATABASE, verbose: bool = _VERBOSE) -> None:
    """Check that the server is reachable with the configured credentials."""
    result = _run(verbose, sql_tools.test_connection, database=database)
    if not result["is_connected"]:
        _fail(result)
    console.print(
        f"[green]Connected[/green] (database={result['database'] or '<default>'}, "
        f"{result['connection_time_ms']:.0f} ms)"
    )


@app.command()
def query(
    sql: str = typer.Argument(..., help="Read-only SELECT query"),
    limit: int | None = typer.Option(None, "--limit", "-n", help="Row cap (1-10000)"),
    database: str | None = _DATABASE,
    show_sql: bool = typer.Option(False, "--show-sql", help="Print the formatted query first"),
    verbose: bool = _VERBOSE,
) -> None:
    """Validate and run a read-only query."""
    if show_sql:
        console.print(sqlparse.format(sql, reindent=True, keyword_case="upper"))
        console.print()

    result = _run(verbose, sql_tools.execute_query, query=sql, limit=limit, database=database)
    if "error" in result:
        _fail(result)

    rows = [dict(zip(result["columns"], row)) for row in result["rows"]]
    _print_rows(rows, "Query Result")
    console.print(f"[dim]Time: {result['execution_time_ms']:.0f} ms[/dim]")


@app.command()
def tables(
    schema: str | None = _SCHEMA, database: str | None = _DATABASE, verbose: bool = _VERBOSE
) -> None:
    """List base tables."""
    _print_result(_run(verbose, sql_tools.list_tables, schema=schema, database=database), "Tables")


@app.command()
def views(
    schema: str | None = _SCHEMA, database: str | None = _DATABASE, verbose: bool = _VERBOSE
) -> None:
    """List views."""
    _print_result(_run(verbose, sql_tools.list_views, schema=schema, database=database), "Views")


@app.command()
def describe(
    table_name: str = typer.Argument(..., help="Table to describe"),
    schema: str | None = _SCHEMA,
    database: str | None = _DATABASE,
    verbose: bool = _VERBOSE,
) -> None:
    """Show column definitions for a table."""
    result = _run(
        verbose, sql_tools.describe_table, table_name=table_name, schema=schema, database=database
    )
    _print_result(result, f"Columns of {table_name}")


@app.command("foreign-keys")
def foreign_keys(
    table_name: str | None = typer.Option(None, "--table", "-t", help="Table (optional)"),
    schema: str | None = _SCHEMA,
    database: str | None = _DATABASE,
    verbose: bool = _VERBOSE,
) -> None:
    """Show foreign key relationships."""
    result = _run(
        verbose, sql_tools.get_foreign_keys, table_name=table_name, schema=schema, database=database
    )
    _print_result(result, "Foreign Keys")


@app.command()
def stats(
    table_name: str | None = typer.Option(None, "--table", "-t", help="Table (optional)"),
    schema: str | None = _SCHEMA,
    database: str | None = _DATABASE,
    verbose: bool = _VERBOSE,
) -> None:
    """Show row counts and sizes for tables."""
    result = _run(
        verbose, sql_tools.get_table_stats, table_name=table_name, schema=schema, database=database
    )
    _print_result(result, "Table Stats")


@app.command()
def databases(verbose: bool = _VERBOSE) -> None:
    """List online databases."""
    _print_result(_run(verbose, sql_tools.list_databases), "Databases")


@app.command("server-info")
def server_info(verbose: bool = _VERBOSE) -> None:
    """Show server name, version and edition."""
    result = _run(verbose, sql_tools.get_server_info)
    if "error" in result:
        _fail(result)
    for key, value in result.items():
        console.print(f"[cyan]{key}[/cyan]: {value}")


@app.command()
def sample(
    table_name: str = typer.Argument(..., help="Table to sample"),
    schema: str | None = _SCHEMA,
    limit: int = typer.Option(5, "--limit", "-n", help="Rows to show"),
    database: str | None = _DATABASE,
    verbose: bool = _VERBOSE,
) -> None:
    """Show the first rows of a table."""
    result = _run(
        verbose,
        sql_tools.get_sample_data,
        table_name=table_name,
        schema=schema,
        limit=limit,
        database=database,
    )
    _print_result(result, f"Sample of {table_name}")


if __name__ == "__main__":
    app()
