"""One pooled connection per target database, with idle eviction.

The default database (the base config's, or ``""`` when none is set) lives
for the manager's whole lifetime. Every other database gets a sliding idle
timer: each ``get_connection`` re-arms it, and expiry disconnects and drops
the pool.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from roquery.models import DEFAULT_IDLE_TIMEOUT_MS, ConnectionConfig
from roquery.sql.connection import SqlServerConnection

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[ConnectionConfig], SqlServerConnection]
TimerFactory = Callable[[float, Callable[[], None]], Any]


def _daemon_timer(interval_s: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(interval_s, callback)
    timer.daemon = True
    return timer


class ConnectionManager:
    """Owns the pool map and idle-timer map; nothing else touches them."""

    def __init__(
        self,
        base_config: ConnectionConfig,
        idle_timeout_ms: int = DEFAULT_IDLE_TIMEOUT_MS,
        *,
        connection_factory: ConnectionFactory = SqlServerConnection,
        timer_factory: TimerFactory = _daemon_timer,
    ) -> None:
        self.base_config = base_config
        self.idle_timeout_ms = idle_timeout_ms
        self._connection_factory = connection_factory
        self._timer_factory = timer_factory

        self._pools: dict[str, SqlServerConnection] = {}
        self._idle_timers: dict[str, Any] = {}
        self._lock = threading.RLock()

    @property
    def default_key(self) -> str:
        return self.base_config.database or ""

    def pool_keys(self) -> list[str]:
        """Snapshot of the currently open pool keys."""
        with self._lock:
            return list(self._pools)

    def get_connection(self, database: str | None = None) -> SqlServerConnection:
        """Return the pooled connection for *database*, creating it if needed.

        The returned connection is not yet connected; callers ``connect()``
        before the first query.
        """
        key = database or self.default_key

        with self._lock:
            existing = self._pools.get(key)
            if existing is not None:
                self._reset_idle_timer(key)
                return existing

            config = (
                self.base_config.with_database(database)
                if database
                else self.base_config
            )
            connection = self._connection_factory(config)
            self._pools[key] = connection
            self._reset_idle_timer(key)

        logger.info("Created connection pool for database %r", key or "<default>")
        return connection

    def _reset_idle_timer(self, key: str) -> None:
        if key == self.default_key:
            return

        existing = self._idle_timers.pop(key, None)
        if existing is not None:
            existing.cancel()

        timer = self._timer_factory(
            self.idle_timeout_ms / 1000, lambda: self._expire(key, timer)
        )
        self._idle_timers[key] = timer
        timer.start()

    def _expire(self, key: str, timer: Any) -> None:
        # Check and removal are atomic with respect to get_connection
        with self._lock:
            # A re-armed or cancelled timer may still fire once
            if self._idle_timers.get(key) is not timer:
                return
            del self._idle_timers[key]
            connection = self._pools.pop(key, None)
        logger.info("Closing idle connection pool for database %r", key)
        if connection is not None:
            try:
                connection.disconnect()
            except Exception as e:
                logger.debug("Best-effort close of pool %r failed: %s", key, e)

    def close_all(self) -> None:
        """Cancel every timer and disconnect every pool concurrently."""
        with self._lock:
            timers = list(self._idle_timers.values())
            self._idle_timers.clear()
            connections = list(self._pools.items())
            self._pools.clear()

        for timer in timers:
            timer.cancel()

        if not connections:
            return

        def _disconnect(item: tuple[str, SqlServerConnection]) -> None:
            key, connection = item
            try:
                connection.disconnect()
            except Exception as e:
                logger.debug("Best-effort close of pool %r failed: %s", key, e)

        with ThreadPoolExecutor(max_workers=len(connections)) as pool:
            list(pool.map(_disconnect, connections))

        logger.info("Closed %d connection pool(s)", len(connections))
