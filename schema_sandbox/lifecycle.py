"""Schema Sandbox - The per-test lifecycle object.

SchemaSandbox composes allocation, binding and cleanup. It holds no
process-wide state: create one (usually per test session) and pass it to
the tests that need it.

    sandbox = SchemaSandbox.from_url(url, statements=["CREATE TABLE items (id int)"])

    with sandbox.isolated(owner="test_items") as handle:
        handle.execute("INSERT INTO items VALUES (1)")

or, when setup and teardown are driven by a test runner:

    handle, token = sandbox.setup(owner="test_items")
    try:
        ...
    finally:
        sandbox.teardown(token)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from schema_sandbox.allocator import SchemaAllocator
from schema_sandbox.cleanup import CleanupCoordinator, TeardownToken
from schema_sandbox.db import create_db_engine
from schema_sandbox.errors import AllocationCancelled
from schema_sandbox.migrations import MigrationApplier
from schema_sandbox.models import AllocationState
from schema_sandbox.naming import NameGenerator
from schema_sandbox.session import ConnectionHandle, SessionBinder

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


class SchemaSandbox:
    """Setup and teardown of isolated namespaces on a shared instance.

    Args:
        engine: Shared engine (and pool).
        statements: Schema statements applied to every namespace.
        name_generator: Optional NameGenerator override.
        create_attempts: Optional collision retry budget override.
        connect_retry_delays: Optional pool exhaustion backoff override.
    """

    def __init__(
        self,
        engine: Engine,
        statements: Iterable[str] = (),
        name_generator: NameGenerator | None = None,
        create_attempts: int | None = None,
        connect_retry_delays: Sequence[float] | None = None,
    ):
        self.engine = engine
        self.applier = MigrationApplier(statements)
        self.allocator = SchemaAllocator(
            engine, self.applier, name_generator=name_generator, max_attempts=create_attempts
        )
        self.binder = SessionBinder(engine, retry_delays=connect_retry_delays)
        self.cleanup = CleanupCoordinator(engine)

    @classmethod
    def from_url(
        cls,
        database_url: str | None = None,
        statements: Iterable[str] = (),
        migrations_dir: str | Path | None = None,
        **pool_options,
    ) -> SchemaSandbox:
        """Build a sandbox with its own engine.

        Args:
            database_url: DSN. Defaults to config.TEST_DATABASE_URL.
            statements: Schema statements applied to every namespace.
            migrations_dir: Directory of *.sql files, applied after statements.
            **pool_options: Passed to create_db_engine.
        """
        engine = create_db_engine(database_url, **pool_options)
        statements = list(statements)
        if migrations_dir is not None:
            statements.extend(MigrationApplier.from_directory(migrations_dir).statements)
        return cls(engine, statements)

    def setup(
        self, owner: str | None = None, cancel: threading.Event | None = None
    ) -> tuple[ConnectionHandle, TeardownToken]:
        """Allocate, migrate and bind a namespace.

        Args:
            owner: Owning test identifier.
            cancel: Optional event that abandons the setup when set.

        Returns:
            (handle, token). The token must be invoked exactly once.

        Raises:
            AllocationError: Namespace could not be created.
            MigrationError: A schema statement failed.
            AllocationCancelled: cancel was set, including while waiting
                for a connection. Nothing is left behind.
            BindError: No connection could be bound. The namespace is
                dropped before this propagates.
        """
        allocation = self.allocator.allocate(owner=owner, cancel=cancel)
        name = allocation.name
        try:
            handle = self.binder.bind(name)
        except BaseException:
            self.allocator.discard(name)
            raise

        if cancel is not None and cancel.is_set():
            handle.release()
            self.allocator.discard(name)
            raise AllocationCancelled([name], "cancelled while binding")

        allocation.advance(AllocationState.BOUND)
        token = self.cleanup.register(name, handle, allocation)
        logger.info("Namespace %s ready (owner=%s)", name, owner)
        return handle, token

    def teardown(self, token: TeardownToken) -> bool:
        """Invoke a teardown token. Later calls with the same token do nothing."""
        return token()

    @contextmanager
    def isolated(self, owner: str | None = None) -> Iterator[ConnectionHandle]:
        """Scoped namespace: torn down on every exit path."""
        handle, token = self.setup(owner=owner)
        try:
            yield handle
        finally:
            token()

    def outstanding(self) -> list[str]:
        """Namespaces set up by this sandbox and not torn down yet."""
        return self.cleanup.outstanding()

    def close(self) -> None:
        """Tear down anything left over and dispose of the pool."""
        leftover = self.cleanup.teardown_all()
        if leftover:
            logger.warning("Tore down %d namespace(s) left over at close", leftover)
        self.engine.dispose()
