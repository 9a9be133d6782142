"""Schema Sandbox - Binding pooled connections to a namespace.

A ConnectionHandle owns one connection checked out of the shared pool with
search_path set to its namespace alone, so unqualified names never resolve
into another test's namespace (or into public).

Pool exhaustion is retried a bounded number of times; any other connect
error is fatal at once.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from schema_sandbox import config
from schema_sandbox.db import create_session_factory, namespace_exists, quote_namespace
from schema_sandbox.errors import BindError

if TYPE_CHECKING:
    from sqlalchemy import Connection, CursorResult, Engine
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class ConnectionHandle:
    """A pooled connection bound to exactly one namespace.

    Owned by a single test. Once released it refuses further use and is
    never handed to another test.
    """

    def __init__(self, connection: Connection, namespace: str):
        self.connection = connection
        self.namespace = namespace
        self._released = False
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        state = "released" if self._released else "active"
        return f"<ConnectionHandle namespace={self.namespace} {state}>"

    @property
    def released(self) -> bool:
        return self._released

    def _active_connection(self) -> Connection:
        if self._released:
            raise RuntimeError(f"Connection handle for namespace '{self.namespace}' was released")
        return self.connection

    def execute(self, statement: Any, parameters: dict | None = None) -> CursorResult:
        """Execute a statement. Plain strings are wrapped in text()."""
        if isinstance(statement, str):
            statement = text(statement)
        return self._active_connection().execute(statement, parameters)

    def scalar(self, statement: Any, parameters: dict | None = None) -> Any:
        return self.execute(statement, parameters).scalar()

    def commit(self) -> None:
        self._active_connection().commit()

    def rollback(self) -> None:
        self._active_connection().rollback()

    def session(self) -> Session:
        """Create an ORM session on this handle's connection."""
        return create_session_factory(self._active_connection())()

    def release(self) -> bool:
        """Return the connection to the pool.

        The search_path is reset first. If that fails the DBAPI connection
        is invalidated so a dirty connection never re-enters the pool.

        Returns:
            True on the first call, False afterwards.
        """
        with self._lock:
            if self._released:
                return False
            self._released = True

        conn = self.connection
        try:
            if conn.in_transaction():
                conn.rollback()
            conn.execute(text("RESET search_path"))
            conn.commit()
        except SQLAlchemyError as exc:
            logger.warning(
                "Could not reset connection for namespace %s, invalidating: %s",
                self.namespace, exc,
            )
            conn.invalidate(exc)
        finally:
            conn.close()
        logger.debug("Released connection for namespace %s", self.namespace)
        return True


class SessionBinder:
    """Checks connections out of the shared pool and scopes them.

    Args:
        engine: Shared engine. Its pool_timeout bounds each checkout wait.
        retry_delays: Seconds to wait between checkout attempts on pool
            exhaustion. Defaults to config.CONNECT_RETRY_DELAYS_SECONDS.
        sleep: Injected for tests.
    """

    def __init__(
        self,
        engine: Engine,
        retry_delays: Sequence[float] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.engine = engine
        self.retry_delays = tuple(
            retry_delays if retry_delays is not None else config.CONNECT_RETRY_DELAYS_SECONDS
        )
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return 1 + len(self.retry_delays)

    def _checkout(self, namespace: str) -> tuple[Connection, int]:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return self.engine.connect(), attempt
            except PoolTimeoutError as exc:
                if attempt == self.max_attempts:
                    raise BindError(namespace, attempt, exc) from exc
                delay = self.retry_delays[attempt - 1]
                logger.warning(
                    "Pool exhausted binding %s (attempt %d/%d), retrying in %.2fs",
                    namespace, attempt, self.max_attempts, delay,
                )
                self._sleep(delay)
            except SQLAlchemyError as exc:
                raise BindError(namespace, attempt, exc) from exc
        # max_attempts >= 1, the loop always returns or raises
        raise AssertionError("unreachable")

    def bind(self, namespace: str) -> ConnectionHandle:
        """Get a connection whose unqualified names resolve into namespace.

        Args:
            namespace: An existing namespace.

        Returns:
            ConnectionHandle owning the checked-out connection.

        Raises:
            BindError: If no connection could be checked out, the namespace
                does not exist, or scoping the connection failed.
        """
        conn, attempts = self._checkout(namespace)
        try:
            if not namespace_exists(conn, namespace):
                raise LookupError(f"namespace '{namespace}' does not exist")
            # Session-level: survives rollbacks issued by the test
            conn.execute(text(f"SET search_path TO {quote_namespace(conn, namespace)}"))
            conn.commit()
        except (SQLAlchemyError, LookupError) as exc:
            conn.close()
            raise BindError(namespace, attempts, exc) from exc

        logger.debug("Bound connection to namespace %s", namespace)
        return ConnectionHandle(conn, namespace)
