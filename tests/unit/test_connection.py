"""Unit tests for the retrying SQL Server connection."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from roquery.errors import ErrorKind, QueryGatewayError
from roquery.models import ConnectionConfig, QueryParam
from roquery.sql.connection import (
    MAX_RETRIES,
    SqlServerConnection,
    backoff_seconds,
    build_url,
    translate_named_params,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _TransientError(Exception):
    def __init__(self, code: str):
        super().__init__(f"transient {code}")
        self.code = code


def _make_result(rows: list[dict]) -> MagicMock:
    result = MagicMock()
    result.returns_rows = True
    result.__iter__.return_value = iter([MagicMock(_mapping=row) for row in rows])
    return result


def _engine_with(side_effect) -> MagicMock:
    """Engine whose connections run exec_driver_sql/execute with *side_effect*."""
    engine = MagicMock(name="engine")
    conn = engine.connect.return_value.__enter__.return_value
    conn.exec_driver_sql.side_effect = side_effect
    conn.execute.side_effect = side_effect
    return engine


@pytest.fixture
def config() -> ConnectionConfig:
    return ConnectionConfig(server="db.local", database="Sales", user="reader", password="pw")


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def connection(config, sleeps) -> SqlServerConnection:
    return SqlServerConnection(config, sleep=sleeps.append)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_not_connected_initially(self, connection):
        assert connection.is_connected() is False

    def test_connect_creates_engine_once(self, connection):
        engine = MagicMock()
        with patch.object(SqlServerConnection, "_create_engine", return_value=engine) as create:
            connection.connect()
            connection.connect()

        assert create.call_count == 1
        assert connection.is_connected() is True
        engine.connect.assert_called_once()

    def test_failed_connect_disposes_engine(self, connection):
        engine = MagicMock()
        engine.connect.side_effect = RuntimeError("Login failed")
        with patch.object(SqlServerConnection, "_create_engine", return_value=engine):
            with pytest.raises(RuntimeError):
                connection.connect()

        engine.dispose.assert_called_once()
        assert connection.is_connected() is False

    def test_disconnect_disposes(self, connection):
        engine = MagicMock()
        with patch.object(SqlServerConnection, "_create_engine", return_value=engine):
            connection.connect()
        connection.disconnect()

        engine.dispose.assert_called_once()
        assert connection.is_connected() is False

    def test_disconnect_when_not_connected_is_safe(self, connection):
        connection.disconnect()
        connection.disconnect()
        assert connection.is_connected() is False

    def test_get_config(self, connection, config):
        assert connection.get_config() is config


class TestBuildUrl:
    def test_url_fields(self, config):
        url = build_url(config)
        assert url.drivername == "mssql+pyodbc"
        assert url.host == "db.local"
        assert url.port == 1433
        assert url.database == "Sales"
        assert url.query["Encrypt"] == "yes"
        assert url.query["TrustServerCertificate"] == "yes"

    def test_no_database(self):
        cfg = ConnectionConfig(server="s", user="u", password="p", encrypt=False)
        url = build_url(cfg)
        assert url.database is None
        assert url.query["Encrypt"] == "no"


# ---------------------------------------------------------------------------
# Query execution
# ---------------------------------------------------------------------------


class TestQuery:
    def test_query_requires_connect(self, connection):
        with pytest.raises(QueryGatewayError, match="not established") as exc_info:
            connection.query("SELECT 1")
        assert exc_info.value.kind is ErrorKind.CONNECTION

    def test_query_with_params_requires_connect(self, connection):
        with pytest.raises(QueryGatewayError) as exc_info:
            connection.query_with_params("SELECT @a", [QueryParam(name="a", value=1)])
        assert exc_info.value.kind is ErrorKind.CONNECTION

    def test_query_returns_dict_rows(self, connection):
        engine = _engine_with([_make_result([{"id": 1}, {"id": 2}])])
        with patch.object(SqlServerConnection, "_create_engine", return_value=engine):
            connection.connect()
            rows = connection.query("SELECT id FROM Users")

        assert rows == [{"id": 1}, {"id": 2}]
        conn = engine.connect.return_value.__enter__.return_value
        conn.exec_driver_sql.assert_called_once_with("SELECT id FROM Users")

    def test_query_with_params_binds_values(self, connection):
        engine = _engine_with([_make_result([{"n": 1}])])
        with patch.object(SqlServerConnection, "_create_engine", return_value=engine):
            connection.connect()
            rows = connection.query_with_params(
                "SELECT COUNT(*) AS n FROM Users WHERE name = @name AND age > @age",
                [
                    QueryParam(name="name", value="bob", type="nvarchar"),
                    QueryParam(name="age", value=30),
                ],
            )

        assert rows == [{"n": 1}]
        conn = engine.connect.return_value.__enter__.return_value
        statement = conn.execute.call_args.args[0]
        assert ":name" in statement.text
        assert ":age" in statement.text
        assert statement._bindparams["name"].value == "bob"
        assert statement._bindparams["age"].value == 30

    def test_unknown_type_hint_rejected(self, connection):
        with patch.object(SqlServerConnection, "_create_engine", return_value=MagicMock()):
            connection.connect()
            with pytest.raises(QueryGatewayError, match="Unsupported parameter type"):
                connection.query_with_params(
                    "SELECT @a", [QueryParam(name="a", value=1, type="geometry")]
                )


class TestTranslateNamedParams:
    def test_rewrites_placeholders(self):
        sql = translate_named_params(
            "SELECT * FROM t WHERE a = @a AND b = @b", [QueryParam(name="a"), QueryParam(name="b")]
        )
        assert sql == "SELECT * FROM t WHERE a = :a AND b = :b"

    def test_leaves_system_functions(self):
        sql = translate_named_params(
            "SELECT @@VERSION, @version", [QueryParam(name="version", value="x")]
        )
        assert sql == "SELECT @@VERSION, :version"

    def test_prefix_names_not_confused(self):
        sql = translate_named_params(
            "SELECT @schemaName, @schema", [QueryParam(name="schema", value="dbo")]
        )
        assert sql == "SELECT @schemaName, :schema"

    def test_missing_placeholder_rejected(self):
        with pytest.raises(QueryGatewayError, match="no matching @missing"):
            translate_named_params("SELECT 1", [QueryParam(name="missing")])


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


class TestRetry:
    def test_backoff_schedule(self):
        assert [backoff_seconds(i) for i in range(3)] == [0.1, 0.4, 0.9]

    @pytest.mark.parametrize(
        "code", ["ETIMEOUT", "ECONNCLOSED", "ECONNRESET", "ESOCKET", "ECONNREFUSED"]
    )
    def test_transient_retried_then_succeeds(self, connection, sleeps, code):
        engine = _engine_with([_TransientError(code), _make_result([{"ok": 1}])])
        with patch.object(SqlServerConnection, "_create_engine", return_value=engine) as create:
            connection.connect()
            rows = connection.query("SELECT 1 AS ok")

        assert rows == [{"ok": 1}]
        assert sleeps == [0.1]
        # Initial connect + reconnect after the transient failure
        assert create.call_count == 2
        assert engine.dispose.call_count == 1

    def test_exhausts_retries(self, connection, sleeps):
        error = _TransientError("ECONNRESET")
        engine = _engine_with(error)
        with patch.object(SqlServerConnection, "_create_engine", return_value=engine):
            connection.connect()
            with pytest.raises(_TransientError) as exc_info:
                connection.query("SELECT 1")

        assert exc_info.value is error
        conn = engine.connect.return_value.__enter__.return_value
        # 1 initial + 3 retries = 4 calls, 3 sleeps
        assert conn.exec_driver_sql.call_count == MAX_RETRIES + 1
        assert sleeps == [0.1, 0.4, 0.9]

    def test_non_transient_not_retried(self, connection, sleeps):
        engine = _engine_with(RuntimeError("Invalid object name 'Nope'"))
        with patch.object(SqlServerConnection, "_create_engine", return_value=engine):
            connection.connect()
            with pytest.raises(RuntimeError, match="Invalid object name"):
                connection.query("SELECT * FROM Nope")

        conn = engine.connect.return_value.__enter__.return_value
        assert conn.exec_driver_sql.call_count == 1
        assert sleeps == []

    def test_failed_reconnect_then_recovery(self, connection, sleeps):
        first = _engine_with(_TransientError("ECONNRESET"))
        broken = MagicMock(name="broken")
        broken.connect.side_effect = RuntimeError("still down")
        good = _engine_with([_make_result([{"ok": 1}])])
        with patch.object(
            SqlServerConnection, "_create_engine", side_effect=[first, broken, good]
        ):
            connection.connect()
            rows = connection.query("SELECT 1 AS ok")

        assert rows == [{"ok": 1}]
        assert sleeps == [0.1]
        broken.dispose.assert_called_once()
        assert connection.is_connected() is True

    def test_persisting_non_transient_connect_error_surfaces(self, connection, sleeps):
        first = _engine_with(_TransientError("ESOCKET"))
        broken = MagicMock(name="broken")
        broken.connect.side_effect = RuntimeError("still down")
        with patch.object(SqlServerConnection, "_create_engine", side_effect=[first, broken, broken]):
            connection.connect()
            with pytest.raises(RuntimeError, match="still down"):
                connection.query("SELECT 1")

        assert sleeps == [0.1]

    def test_transient_connect_errors_use_full_budget(self, connection, sleeps):
        first = _engine_with(_TransientError("ECONNRESET"))
        refused = _TransientError("ECONNREFUSED")
        broken = MagicMock(name="broken")
        broken.connect.side_effect = refused
        engines = iter([first])

        def create():
            return next(engines, broken)

        with patch.object(SqlServerConnection, "_create_engine", side_effect=create):
            connection.connect()
            with pytest.raises(_TransientError) as exc_info:
                connection.query("SELECT 1")

        assert exc_info.value is refused
        assert sleeps == [0.1, 0.4, 0.9]

    def test_params_path_retried(self, connection, sleeps):
        engine = _engine_with([_TransientError("ETIMEOUT"), _make_result([{"x": 1}])])
        with patch.object(SqlServerConnection, "_create_engine", return_value=engine):
            connection.connect()
            rows = connection.query_with_params("SELECT @x AS x", [QueryParam(name="x", value=1)])

        assert rows == [{"x": 1}]
        assert sleeps == [0.1]


# ---------------------------------------------------------------------------
# Connection probe
# ---------------------------------------------------------------------------


class TestTestConnection:
    def test_true_when_probe_returns_row(self, connection):
        engine = _engine_with([_make_result([{"test": 1}])])
        with patch.object(SqlServerConnection, "_create_engine", return_value=engine):
            assert connection.test_connection() is True

    def test_false_when_no_rows(self, connection):
        engine = _engine_with([_make_result([])])
        with patch.object(SqlServerConnection, "_create_engine", return_value=engine):
            assert connection.test_connection() is False

    def test_false_when_connect_fails(self, connection):
        engine = MagicMock()
        engine.connect.side_effect = RuntimeError("Login failed for user")
        with patch.object(SqlServerConnection, "_create_engine", return_value=engine):
            assert connection.test_connection() is False

    def test_false_when_query_fails(self, connection):
        engine = _engine_with(RuntimeError("boom"))
        with patch.object(SqlServerConnection, "_create_engine", return_value=engine):
            assert connection.test_connection() is False
