"""Read-only query guard for SQL Server.

Validates that queries:
- Start with a read-only statement (SELECT, WITH, SHOW, DESCRIBE, EXPLAIN)
- Contain no DDL, DML, EXEC or bulk/remote-data keywords
- Reference no system or extended stored procedures (SP_, XP_)
- Carry no comment, stacked-statement or UNION injection patterns

Checks run in a fixed order and return the first failure. Inspection uses an
upper-cased copy; the caller's original casing is what gets executed.
"""

from __future__ import annotations

import re

from roquery.models import ValidationResult

ALLOWED_STATEMENTS = ("SELECT", "WITH", "SHOW", "DESCRIBE", "EXPLAIN")

FORBIDDEN_KEYWORDS = (
    "INSERT",
    "UPDATE",
    "DELETE",
    "DROP",
    "CREATE",
    "ALTER",
    "TRUNCATE",
    "EXEC",
    "EXECUTE",
    "OPENROWSET",
    "OPENDATASOURCE",
    "BULK",
    "MERGE",
    "GRANT",
    "REVOKE",
    "DENY",
)

# Matched anywhere, including mid-identifier (e.g. XP_CMDSHELL)
FORBIDDEN_PREFIXES = ("SP_", "XP_")

# Whole-word match so create_date / is_deleted do not trip CREATE / DELETE
_KEYWORD_PATTERNS = [
    (keyword, re.compile(rf"\b{keyword}\b")) for keyword in FORBIDDEN_KEYWORDS
]

# Applied to the upper-cased query
_INJECTION_PATTERNS = [
    re.compile(r"--"),
    re.compile(r"/\*"),
    re.compile(r";.*SELECT", re.DOTALL),
    re.compile(r"UNION.*SELECT", re.DOTALL),
    re.compile(r"'\s*OR\s*'.*'", re.DOTALL),
    re.compile(r"'\s*AND\s*'.*'", re.DOTALL),
]

_WHITESPACE_RE = re.compile(r"\s+")
_LEADING_SELECT_RE = re.compile(r"^(\s*SELECT\s+)", re.IGNORECASE)


def _contains_injection_pattern(normalized: str) -> bool:
    return any(pattern.search(normalized) for pattern in _INJECTION_PATTERNS)


def validate_query(query: str) -> ValidationResult:
    """Classify a SQL string as permitted or rejected.

    Args:
        query: Raw SQL text from the caller.

    Returns:
        ValidationResult with ``is_valid`` and, on rejection, an ``error``
        naming the failed check.
    """
    normalized = (query or "").strip().upper()

    if not normalized:
        return ValidationResult(False, "Empty query not allowed")

    if not normalized.startswith(ALLOWED_STATEMENTS):
        return ValidationResult(
            False, f"Query must start with one of: {', '.join(ALLOWED_STATEMENTS)}"
        )

    for keyword, pattern in _KEYWORD_PATTERNS:
        if pattern.search(normalized):
            return ValidationResult(False, f"Forbidden keyword detected: {keyword}")

    for prefix in FORBIDDEN_PREFIXES:
        if prefix in normalized:
            return ValidationResult(False, f"Forbidden keyword detected: {prefix}")

    if _contains_injection_pattern(normalized):
        return ValidationResult(False, "Potential SQL injection pattern detected")

    return ValidationResult(True)


def sanitize_query(query: str) -> str:
    """Trim, collapse whitespace runs and drop one trailing semicolon."""
    collapsed = _WHITESPACE_RE.sub(" ", query.strip())
    if collapsed.endswith(";"):
        collapsed = collapsed[:-1].rstrip()
    return collapsed


def add_row_limit(query: str, max_rows: int) -> str:
    """Insert ``TOP {max_rows}`` after a leading SELECT.

    Queries that already mention ``TOP `` are returned unchanged. This is a
    textual rewrite: WITH (CTE) queries are not capped.
    """
    if "TOP " in query.strip().upper():
        return query
    return _LEADING_SELECT_RE.sub(rf"\g<1>TOP {max_rows} ", query, count=1)
