"""Schema Sandbox - Guaranteed namespace teardown.

Each bound namespace gets a TeardownToken. Invoking it:
1. drops the namespace and everything in it (CASCADE),
2. returns the connection to the pool, whether or not the drop worked,
3. does nothing on any later invocation.

A failed drop is logged as a warning and never raised: a cleanup problem
must not change the outcome of the test that ran before it.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from schema_sandbox.db import drop_namespace
from schema_sandbox.errors import CleanupError
from schema_sandbox.models import AllocationState

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

    from schema_sandbox.models import Allocation
    from schema_sandbox.session import ConnectionHandle

logger = logging.getLogger(__name__)


class TeardownToken:
    """Call-once teardown for one namespace and its connection handle."""

    def __init__(
        self,
        coordinator: CleanupCoordinator,
        namespace: str,
        handle: ConnectionHandle,
        allocation: Allocation | None = None,
    ):
        self.namespace = namespace
        self.handle = handle
        self.allocation = allocation
        self._coordinator = coordinator
        self._invoked = False
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<TeardownToken namespace={self.namespace} invoked={self._invoked}>"

    @property
    def invoked(self) -> bool:
        return self._invoked

    def __call__(self) -> bool:
        """Tear down the namespace.

        Returns:
            True if this call performed the teardown, False if it had
            already been done.
        """
        with self._lock:
            if self._invoked:
                return False
            self._invoked = True

        try:
            self._coordinator.drop(self.namespace, self.handle)
        finally:
            self.handle.release()
            self._coordinator.forget(self)
            if self.allocation is not None:
                self.allocation.advance(AllocationState.TORN_DOWN)
        return True


class CleanupCoordinator:
    """Issues teardown tokens and tracks the ones not yet invoked."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._outstanding: dict[str, TeardownToken] = {}
        self._lock = threading.Lock()

    def register(
        self,
        namespace: str,
        handle: ConnectionHandle,
        allocation: Allocation | None = None,
    ) -> TeardownToken:
        """Create the teardown token for a bound namespace."""
        token = TeardownToken(self, namespace, handle, allocation)
        with self._lock:
            self._outstanding[namespace] = token
        return token

    def forget(self, token: TeardownToken) -> None:
        with self._lock:
            if self._outstanding.get(token.namespace) is token:
                del self._outstanding[token.namespace]

    def outstanding(self) -> list[str]:
        """Namespaces whose tokens have not been invoked yet."""
        with self._lock:
            return sorted(self._outstanding)

    def teardown_all(self) -> int:
        """Invoke every outstanding token.

        Returns:
            Number of tokens invoked.
        """
        with self._lock:
            tokens = list(self._outstanding.values())
        return sum(1 for token in tokens if token())

    def drop(self, namespace: str, handle: ConnectionHandle) -> bool:
        """Drop a namespace, preferring the handle's own connection.

        If the handle's connection is unusable (broken, already released),
        one more attempt is made through a fresh pool connection.

        Returns:
            True if the namespace was dropped.
        """
        conn = handle.connection
        try:
            if conn.in_transaction():
                conn.rollback()
            drop_namespace(conn, namespace)
            conn.commit()
        except SQLAlchemyError as exc:
            logger.debug("Drop of %s on bound connection failed, retrying: %s", namespace, exc)
            self._abandon_transaction(conn)
        else:
            logger.info("Dropped namespace %s", namespace)
            return True

        try:
            with self.engine.begin() as fresh:
                drop_namespace(fresh, namespace)
        except SQLAlchemyError as exc:
            logger.warning("%s", CleanupError(namespace, exc))
            return False
        logger.info("Dropped namespace %s", namespace)
        return True

    @staticmethod
    def _abandon_transaction(conn: Connection) -> None:
        # A failed drop keeps its locks until rollback
        if conn.closed or not conn.in_transaction():
            return
        try:
            conn.rollback()
        except SQLAlchemyError as exc:
            logger.debug("Rollback after failed drop raised, invalidating: %s", exc)
            conn.invalidate(exc)
