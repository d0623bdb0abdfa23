"""Identifier and tool-parameter validation.

Names coming from the tool caller are checked against SQL Server identifier
rules before they are bound as parameters or, on the legacy path, bracket
escaped and interpolated into query text.
"""

from __future__ import annotations

import re
from typing import Any, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from roquery.errors import ErrorKind, QueryGatewayError
from roquery.models import DEFAULT_MAX_ROWS, MAX_IDENTIFIER_LENGTH, MAX_ROW_LIMIT

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# SQL Server reserved words (subset)
RESERVED_WORDS = frozenset(
    {
        "SELECT", "INSERT", "UPDATE", "DELETE", "CREATE", "DROP", "ALTER", "TRUNCATE",
        "FROM", "WHERE", "JOIN", "INNER", "LEFT", "RIGHT", "OUTER", "ON", "AS",
        "ORDER", "BY", "GROUP", "HAVING", "UNION", "DISTINCT", "TOP", "NULL",
        "AND", "OR", "NOT", "IN", "LIKE", "BETWEEN", "EXISTS", "ALL", "ANY",
        "CASE", "WHEN", "THEN", "ELSE", "END", "IF", "WHILE", "BEGIN", "EXEC",
        "DECLARE", "SET", "PRINT", "RETURN", "FUNCTION", "PROCEDURE", "TRIGGER",
        "INDEX", "VIEW", "TABLE", "DATABASE", "SCHEMA", "USER", "ROLE", "GRANT",
        "REVOKE", "DENY", "PRIMARY", "FOREIGN", "KEY", "CONSTRAINT", "UNIQUE",
    }
)

DEFAULT_SCHEMA = "dbo"
MAX_QUERY_LENGTH = 10_000

M = TypeVar("M", bound=BaseModel)


def _fail(message: str) -> QueryGatewayError:
    return QueryGatewayError(ErrorKind.VALIDATION, message)


def is_reserved_word(word: str) -> bool:
    return word.upper() in RESERVED_WORDS


def _validate_name(name: Any, label: str, *, allow_reserved: bool = False) -> str:
    """Apply the shared identifier rules; *label* prefixes each message."""
    if not isinstance(name, str):
        raise _fail(f"{label} must be a string")
    if len(name) < 1:
        raise _fail(f"{label} cannot be empty")
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise _fail(f"{label} cannot exceed {MAX_IDENTIFIER_LENGTH} characters")
    if not _IDENTIFIER_RE.match(name):
        raise _fail(
            f"{label} must start with letter or underscore and contain only "
            "letters, numbers, and underscores"
        )
    if not allow_reserved and is_reserved_word(name):
        raise _fail(f"{label} cannot be a reserved word")
    return name


def validate_table_name(name: str) -> str:
    return _validate_name(name, "Table name")


def validate_schema_name(name: str) -> str:
    return _validate_name(name, "Schema name")


def validate_column_name(name: str) -> str:
    return _validate_name(name, "Column name", allow_reserved=True)


def validate_database_name(name: str) -> str:
    return _validate_name(name, "Database name")


def validate_row_limit(limit: Any) -> int:
    """Accept an integer row cap between 1 and 10,000."""
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise _fail("Row limit must be an integer")
    if limit < 1:
        raise _fail("Row limit must be at least 1")
    if limit > MAX_ROW_LIMIT:
        raise _fail("Row limit cannot exceed 10,000 for safety")
    return limit


def escape_identifier(identifier: Any) -> str:
    """Bracket-quote an identifier for direct interpolation into SQL text.

    Existing brackets are stripped first, so ``[My]Table`` becomes
    ``[MyTable]``. Prefer binding values as parameters where possible.
    """
    if not identifier or not isinstance(identifier, str):
        raise _fail("Identifier must be a non-empty string")

    cleaned = identifier.replace("[", "").replace("]", "")
    if not cleaned:
        raise _fail("Identifier cannot be empty after cleaning")
    if len(cleaned) > MAX_IDENTIFIER_LENGTH:
        raise _fail(f"Identifier cannot exceed {MAX_IDENTIFIER_LENGTH} characters")

    return f"[{cleaned}]"


# ── Schema-driven validation ──────────────────────────────────────────────────


def validate_parameters(params: Any, schema: type[M]) -> M:
    """Validate arbitrary input against a pydantic model.

    Every failing field is reported in one message, e.g.
    ``Parameter validation failed: limit: ..., filters.schema: ...``.
    """
    try:
        return schema.model_validate(params)
    except ValidationError as e:
        messages = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise _fail(f"Parameter validation failed: {', '.join(messages)}") from e


class QueryParameters(BaseModel):
    """Input schema for the execute_query tool."""

    query: str = Field(min_length=1, max_length=MAX_QUERY_LENGTH)
    limit: int = Field(default=DEFAULT_MAX_ROWS, ge=1, le=MAX_ROW_LIMIT, strict=True)

    @field_validator("query")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Query cannot be only whitespace")
        return value

    @field_validator("limit", mode="before")
    @classmethod
    def _default_when_none(cls, value: Any) -> Any:
        return DEFAULT_MAX_ROWS if value is None else value


def validate_query_parameters(query: Any, limit: Any = None) -> QueryParameters:
    return validate_parameters({"query": query, "limit": limit}, QueryParameters)


def validate_table_description_parameters(
    table_name: str | None, schema: str | None = None
) -> tuple[str, str]:
    """Return ``(table_name, schema)``; schema defaults to ``dbo``."""
    if not table_name:
        raise _fail("table_name parameter is required")
    return (
        validate_table_name(table_name),
        validate_schema_name(schema) if schema else DEFAULT_SCHEMA,
    )


def validate_foreign_key_parameters(
    table_name: str | None = None, schema: str | None = None
) -> tuple[str | None, str | None]:
    return (
        validate_table_name(table_name) if table_name else None,
        validate_schema_name(schema) if schema else None,
    )


def validate_list_tables_parameters(schema: str | None = None) -> str | None:
    return validate_schema_name(schema) if schema else None
