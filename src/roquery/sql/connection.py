"""Pooled SQL Server connection with transient-fault retry.

Wraps a SQLAlchemy engine (``mssql+pyodbc``) whose QueuePool owns the
physical connections. Queries that fail with a transient network fault are
retried with a fresh engine:
- ETIMEOUT, ECONNCLOSED, ECONNRESET, ESOCKET, ECONNREFUSED are retried
- Up to 3 retries (4 attempts) with ``(attempt + 1) ** 2 * 100`` ms backoff
- Anything else, or the last transient failure, propagates unchanged
"""

from __future__ import annotations

import logging
import re
import threading
import time
from typing import Any, Callable, Sequence, TypeVar

from sqlalchemy import Engine, bindparam, create_engine, event, text, types
from sqlalchemy.engine import URL

from roquery.errors import ErrorKind, QueryGatewayError, raw_fault_from_exception
from roquery.models import ConnectionConfig, QueryParam

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_CODES = frozenset(
    {"ETIMEOUT", "ECONNCLOSED", "ECONNRESET", "ESOCKET", "ECONNREFUSED"}
)
MAX_RETRIES = 3

# Collaborator pool sizing
_POOL_MAX = 10
_POOL_RECYCLE_S = 30

PROBE_QUERY = "SELECT 1 AS test"

_TYPE_HINTS: dict[str, Callable[[], types.TypeEngine]] = {
    "int": types.Integer,
    "integer": types.Integer,
    "smallint": types.SmallInteger,
    "tinyint": types.SmallInteger,
    "bigint": types.BigInteger,
    "bit": types.Boolean,
    "float": types.Float,
    "real": types.Float,
    "decimal": types.Numeric,
    "numeric": types.Numeric,
    "nvarchar": types.Unicode,
    "nchar": types.Unicode,
    "varchar": types.String,
    "char": types.String,
    "text": types.Text,
    "date": types.Date,
    "datetime": types.DateTime,
    "datetime2": types.DateTime,
    "time": types.Time,
    "uniqueidentifier": types.Uuid,
    "varbinary": types.LargeBinary,
}


def backoff_seconds(attempt: int) -> float:
    """Delay before retry number ``attempt + 1`` (0-based attempt index)."""
    return (attempt + 1) ** 2 * 100 / 1000


def build_url(config: ConnectionConfig) -> URL:
    """Build the ``mssql+pyodbc`` URL for *config*."""
    query = {
        "driver": config.driver,
        "Encrypt": "yes" if config.encrypt else "no",
        "TrustServerCertificate": "yes" if config.trust_server_certificate else "no",
    }
    return URL.create(
        "mssql+pyodbc",
        username=config.user,
        password=config.password,
        host=config.server,
        port=config.port,
        database=config.database or None,
        query=query,
    )


def _bind_type(hint: str | None) -> types.TypeEngine | None:
    if hint is None:
        return None
    factory = _TYPE_HINTS.get(hint.strip().lower())
    if factory is None:
        raise QueryGatewayError(
            ErrorKind.VALIDATION,
            f"Unsupported parameter type: {hint}",
        )
    return factory()


def translate_named_params(sql: str, params: Sequence[QueryParam]) -> str:
    """Rewrite ``@name`` placeholders into SQLAlchemy ``:name`` binds.

    System functions such as ``@@SERVERNAME`` are left alone. Every param
    must appear in *sql*.
    """
    for param in params:
        pattern = re.compile(rf"(?<![@\w])@{re.escape(param.name)}\b")
        if not pattern.search(sql):
            raise QueryGatewayError(
                ErrorKind.VALIDATION,
                f"Parameter '{param.name}' has no matching @{param.name} placeholder",
            )
        sql = pattern.sub(f":{param.name}", sql)
    return sql


class SqlServerConnection:
    """One logical database connection backed by a pooled engine."""

    def __init__(self, config: ConnectionConfig, *, sleep: Callable[[float], None] = time.sleep):
        self._config = config
        self._engine: Engine | None = None
        self._sleep = sleep
        self._lock = threading.Lock()

    # -- lifecycle ----------------------------------------------------------

    def _create_engine(self) -> Engine:
        request_timeout_s = max(1, self._config.request_timeout_ms // 1000)
        engine = create_engine(
            build_url(self._config),
            pool_size=_POOL_MAX,
            max_overflow=0,
            pool_recycle=_POOL_RECYCLE_S,
            pool_pre_ping=False,
            connect_args={"timeout": max(1, self._config.connection_timeout_ms // 1000)},
        )

        @event.listens_for(engine, "connect")
        def _set_query_timeout(dbapi_connection: Any, _record: Any) -> None:
            dbapi_connection.timeout = request_timeout_s

        return engine

    def connect(self) -> None:
        """Create the pool and verify one connection. No-op if connected."""
        with self._lock:
            if self._engine is not None:
                return
            engine = self._create_engine()
            try:
                with engine.connect():
                    pass
            except Exception:
                engine.dispose()
                raise
            self._engine = engine
        logger.debug(
            "Connected to %s:%s (database=%s)",
            self._config.server,
            self._config.port,
            self._config.database or "<default>",
        )

    def disconnect(self) -> None:
        """Dispose the pool. Safe to call when already disconnected."""
        with self._lock:
            engine, self._engine = self._engine, None
        if engine is not None:
            engine.dispose()

    def is_connected(self) -> bool:
        return self._engine is not None

    def get_config(self) -> ConnectionConfig:
        return self._config

    # -- execution ----------------------------------------------------------

    def _require_engine(self) -> Engine:
        engine = self._engine
        if engine is None:
            raise QueryGatewayError(
                ErrorKind.CONNECTION, "Database connection not established"
            )
        return engine

    def _attempt_engine(self) -> Engine:
        """Engine for one retry attempt, reconnecting if a prior reconnect failed.

        A connect failure here is the attempt's own failure and goes through
        the same transient check as a query failure.
        """
        if self._engine is None:
            self.connect()
        return self._require_engine()

    def _with_retry(self, operation: Callable[[], T]) -> T:
        attempt = 0
        while True:
            try:
                return operation()
            except QueryGatewayError:
                raise
            except Exception as exc:
                code = raw_fault_from_exception(exc).code
                if code not in TRANSIENT_CODES or attempt >= MAX_RETRIES:
                    raise

                delay = backoff_seconds(attempt)
                logger.warning(
                    "Transient error %s (attempt %d/%d) — reconnecting and retrying in %.1fs",
                    code, attempt + 1, MAX_RETRIES, delay,
                )
                self.disconnect()
                try:
                    self.connect()
                except Exception as reconnect_error:
                    # The next attempt surfaces a persisting problem
                    logger.debug("Reconnect failed: %s", reconnect_error)
                self._sleep(delay)
                attempt += 1

    @staticmethod
    def _rows(result: Any) -> list[dict[str, Any]]:
        if not result.returns_rows:
            return []
        return [dict(row._mapping) for row in result]

    def query(self, sql: str) -> list[dict[str, Any]]:
        """Execute *sql* as-is and return rows as dicts."""
        self._require_engine()

        def run() -> list[dict[str, Any]]:
            with self._attempt_engine().connect() as conn:
                return self._rows(conn.exec_driver_sql(sql))

        return self._with_retry(run)

    def query_with_params(
        self, sql: str, params: Sequence[QueryParam]
    ) -> list[dict[str, Any]]:
        """Execute *sql* with each ``QueryParam`` bound to its ``@name``."""
        self._require_engine()

        statement = text(translate_named_params(sql, params))
        if params:
            statement = statement.bindparams(
                *[
                    bindparam(p.name, p.value, type_=_bind_type(p.type))
                    for p in params
                ]
            )

        def run() -> list[dict[str, Any]]:
            with self._attempt_engine().connect() as conn:
                return self._rows(conn.execute(statement))

        return self._with_retry(run)

    def test_connection(self) -> bool:
        """Connect and probe; never raises."""
        try:
            self.connect()
            return len(self.query(PROBE_QUERY)) > 0
        except Exception as e:
            logger.debug("Connection test failed: %s", e)
            return False
