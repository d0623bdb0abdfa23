"""Error taxonomy and classification of raw driver failures.

Every user-facing failure is a ``QueryGatewayError`` carrying exactly one
``ErrorKind``. Driver exceptions are first reduced to a ``RawFault`` (optional
SQLSTATE-derived ``code``, optional native error ``number``, and ``message``)
and then classified by number, falling back to message heuristics.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    CONNECTION = "CONNECTION_ERROR"
    VALIDATION = "VALIDATION_ERROR"
    SECURITY = "SECURITY_ERROR"
    QUERY = "QUERY_ERROR"
    TIMEOUT = "TIMEOUT_ERROR"
    PERMISSION = "PERMISSION_ERROR"
    UNKNOWN = "UNKNOWN_ERROR"


class QueryGatewayError(Exception):
    """A classified failure: one kind, a human message, optional detail."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details or {}

    @property
    def code(self) -> str:
        return self.kind.value

    def __repr__(self) -> str:
        return f"QueryGatewayError({self.kind.name}, {self.message!r})"


@dataclass(frozen=True)
class RawFault:
    """Driver failure reduced to the fields the classifier dispatches on."""

    message: str = ""
    code: str | None = None
    number: int | None = None


class ErrorDescription(BaseModel):
    """User-facing rendering of a classified error."""

    message: str
    kind: ErrorKind
    suggestions: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Raw fault extraction
# ---------------------------------------------------------------------------

# ODBC SQLSTATE -> transient network code
_SQLSTATE_CODES = {
    "HYT00": "ETIMEOUT",
    "HYT01": "ETIMEOUT",
    "08S01": "ECONNRESET",
    "08003": "ECONNCLOSED",
    "08001": "ECONNREFUSED",
    "08007": "ESOCKET",
}

# "[Microsoft][ODBC Driver 18 for SQL Server][SQL Server]Login failed for
# user 'sa'. (18456) (SQLDriverConnect)"
_NATIVE_NUMBER_RE = re.compile(r"\[SQL Server\][^\[]*?\((-?\d+)\)")


def raw_fault_from_exception(exc: BaseException) -> RawFault:
    """Reduce a driver (or SQLAlchemy-wrapped) exception to a ``RawFault``.

    SQLAlchemy wraps DBAPI errors and exposes the original as ``.orig``.
    pyodbc errors carry ``args == (sqlstate, message)`` with the native SQL
    Server error number embedded in the message.
    """
    orig = getattr(exc, "orig", None) or exc
    args = getattr(orig, "args", ())

    sqlstate: str | None = None
    message = str(orig)
    if len(args) >= 2 and isinstance(args[0], str) and isinstance(args[1], str):
        sqlstate, message = args[0], args[1]

    code = getattr(orig, "code", None)
    if not (isinstance(code, str) and code.startswith("E")):
        code = _SQLSTATE_CODES.get(sqlstate or "")

    number = getattr(orig, "number", None)
    if not isinstance(number, int) or isinstance(number, bool):
        number = None
        match = _NATIVE_NUMBER_RE.search(message)
        if match:
            number = int(match.group(1))

    return RawFault(message=message, code=code, number=number)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

_NUMBER_TABLE: dict[int, tuple[ErrorKind, str]] = {
    18456: (ErrorKind.CONNECTION, "Authentication failed: Invalid username or password"),
    2: (ErrorKind.CONNECTION, "Connection failed: Server not found or not accessible"),
    53: (ErrorKind.CONNECTION, "Connection failed: Server not found or not accessible"),
    -2: (ErrorKind.TIMEOUT, "Connection timeout: Server took too long to respond"),
    208: (ErrorKind.VALIDATION, "Invalid table or object name specified"),
    207: (ErrorKind.VALIDATION, "Invalid column name specified"),
    262: (
        ErrorKind.PERMISSION,
        "Permission denied: Insufficient privileges to access this resource",
    ),
    229: (
        ErrorKind.PERMISSION,
        "Permission denied: Insufficient privileges to access this resource",
    ),
    1205: (ErrorKind.QUERY, "Query failed due to deadlock - please retry"),
    8152: (ErrorKind.VALIDATION, "Data too long for target column"),
    515: (ErrorKind.VALIDATION, "Cannot insert null value into non-nullable column"),
}

# Ordered: first match wins
_MESSAGE_RULES: list[tuple[tuple[str, ...], ErrorKind, str]] = [
    (("login failed",), ErrorKind.CONNECTION, "Authentication failed: Invalid username or password"),
    (
        ("server was not found", "network-related"),
        ErrorKind.CONNECTION,
        "Connection failed: Server not found or network issue",
    ),
    (("timeout",), ErrorKind.TIMEOUT, "Operation timed out"),
    (
        ("ssl", "certificate"),
        ErrorKind.CONNECTION,
        "SSL/Certificate error: Check encryption and certificate trust settings",
    ),
    (
        ("permission", "denied"),
        ErrorKind.PERMISSION,
        "Permission denied: Insufficient database privileges",
    ),
]


def classify(fault: RawFault | BaseException | None) -> QueryGatewayError:
    """Map a raw driver failure into the error taxonomy."""
    if fault is None:
        return QueryGatewayError(ErrorKind.UNKNOWN, "Unknown database error occurred")

    if isinstance(fault, QueryGatewayError):
        return fault

    if isinstance(fault, BaseException):
        fault = raw_fault_from_exception(fault)

    message = fault.message

    if fault.number is not None:
        details = {"original_error": message, "code": fault.number}
        entry = _NUMBER_TABLE.get(fault.number)
        if entry is None:
            return QueryGatewayError(
                ErrorKind.QUERY, f"Database error ({fault.number}): {message}", details
            )
        kind, text = entry
        return QueryGatewayError(kind, text, details)

    details = {"original_error": message}
    if fault.code:
        details["code"] = fault.code

    lowered = message.lower()
    for needles, kind, text in _MESSAGE_RULES:
        if any(needle in lowered for needle in needles):
            return QueryGatewayError(kind, text, details)

    return QueryGatewayError(
        ErrorKind.QUERY, f"Database operation failed: {message}", details
    )


# ---------------------------------------------------------------------------
# User-facing description
# ---------------------------------------------------------------------------

_SUGGESTIONS: dict[ErrorKind, list[str]] = {
    ErrorKind.CONNECTION: [
        "Verify server hostname and port number",
        "Check if SQL Server service is running",
        "Ensure network connectivity to the server",
        "Verify firewall settings allow SQL Server connections",
    ],
    ErrorKind.VALIDATION: [
        "Check spelling of table and column names",
        "Verify the object exists in the specified schema",
        "Ensure you have the correct database selected",
    ],
    ErrorKind.SECURITY: [
        "Only read-only SELECT queries are allowed",
        "Remove any INSERT, UPDATE, DELETE, or DDL statements",
        "Check for potentially dangerous keywords in your query",
    ],
    ErrorKind.PERMISSION: [
        "Contact your database administrator for access",
        "Verify you have SELECT permissions on the target tables",
        "Check if you need access to specific schemas or databases",
    ],
    ErrorKind.TIMEOUT: [
        "Try a simpler query with fewer rows",
        "Add WHERE clauses to limit the result set",
        "Check if the server is under heavy load",
    ],
    ErrorKind.QUERY: [
        "Check your SQL syntax",
        "Verify all referenced tables and columns exist",
        "Try breaking complex queries into simpler parts",
    ],
}


def describe(error: QueryGatewayError) -> ErrorDescription:
    """Attach remediation suggestions for the error's kind."""
    return ErrorDescription(
        message=error.message,
        kind=error.kind,
        suggestions=list(_SUGGESTIONS.get(error.kind, [])),
    )


def to_error_response(error: QueryGatewayError) -> dict[str, Any]:
    """Render an error in the dict shape tool functions return."""
    desc = describe(error)
    response: dict[str, Any] = {
        "error": desc.message,
        "code": desc.kind.value,
        "suggestions": desc.suggestions,
    }
    if error.details:
        response["details"] = dict(error.details)
    return response
