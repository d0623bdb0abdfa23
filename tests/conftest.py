"""Shared pytest fixtures for the query gateway test suite."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from roquery.models import ConnectionConfig
from roquery.sql.executor import QueryExecutor
from roquery.sql.manager import ConnectionManager


class FakeTimer:
    """Stand-in for threading.Timer that fires only when told to."""

    def __init__(self, interval: float, callback):
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.callback()


class TimerRecorder:
    """Timer factory that keeps every timer it creates."""

    def __init__(self):
        self.timers: list[FakeTimer] = []

    def __call__(self, interval: float, callback) -> FakeTimer:
        timer = FakeTimer(interval, callback)
        self.timers.append(timer)
        return timer

    @property
    def live(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]


@pytest.fixture
def base_config() -> ConnectionConfig:
    """Connection settings with a default database."""
    return ConnectionConfig(
        server="sql.example.com",
        database="master",
        user="reader",
        password="secret",
    )


@pytest.fixture
def timers() -> TimerRecorder:
    return TimerRecorder()


@pytest.fixture
def connection_factory():
    """Factory producing one MagicMock connection per config."""

    def _make(config: ConnectionConfig) -> MagicMock:
        conn = MagicMock(name=f"conn[{config.database}]")
        conn.get_config.return_value = config
        return conn

    return MagicMock(side_effect=_make)


@pytest.fixture
def manager(base_config, timers, connection_factory) -> ConnectionManager:
    """ConnectionManager with fake timers and mock connections."""
    mgr = ConnectionManager(
        base_config,
        idle_timeout_ms=1000,
        connection_factory=connection_factory,
        timer_factory=timers,
    )
    yield mgr
    mgr.close_all()


@pytest.fixture
def executor(manager) -> QueryExecutor:
    """QueryExecutor over the mocked manager."""
    return QueryExecutor(manager, max_rows=1000)
