"""Schema Sandbox - Namespace allocation.

Creates a uniquely named namespace and migrates it. Name collisions are
handled locally with a bounded retry loop, not with a lock shared between
workers: PostgreSQL's catalog rejects the duplicate and we pick a new name.

A caller never sees a half-migrated namespace. If migration fails (or the
owner cancels after creation), the namespace is dropped before the error
propagates.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from schema_sandbox import config
from schema_sandbox.db import create_namespace, drop_namespace, is_duplicate_namespace_error
from schema_sandbox.errors import AllocationCancelled, AllocationError, CleanupError
from schema_sandbox.migrations import MigrationApplier
from schema_sandbox.models import Allocation, AllocationState, Namespace
from schema_sandbox.naming import NameGenerator

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def _is_cancelled(cancel: threading.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


class SchemaAllocator:
    """Creates and migrates namespaces.

    Args:
        engine: Shared engine.
        applier: Statements applied to every new namespace. Defaults to none.
        name_generator: Defaults to a NameGenerator with config.NAME_PREFIX.
        max_attempts: Total CREATE SCHEMA attempts. Defaults to config.CREATE_ATTEMPTS.
    """

    def __init__(
        self,
        engine: Engine,
        applier: MigrationApplier | None = None,
        name_generator: NameGenerator | None = None,
        max_attempts: int | None = None,
    ):
        self.engine = engine
        self.applier = applier if applier is not None else MigrationApplier()
        self.name_generator = name_generator if name_generator is not None else NameGenerator()
        self.max_attempts = max_attempts if max_attempts is not None else config.CREATE_ATTEMPTS
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def allocate(
        self, owner: str | None = None, cancel: threading.Event | None = None
    ) -> Allocation:
        """Create a namespace and apply the migrations into it.

        Args:
            owner: Owning test identifier, recorded on the Namespace.
            cancel: Optional event; when set the allocation is abandoned.

        Returns:
            Allocation in the migrated state.

        Raises:
            AllocationCancelled: If cancel was set. A namespace that was
                already created is dropped first.
            AllocationError: On exhausted collision retries, or on any other
                creation error (fatal, no retry).
            MigrationError: If a statement failed. The namespace is dropped first.
        """
        allocation = Allocation(owner=owner)
        name = self._create(cancel)
        allocation.assign(Namespace(name=name, owner=owner))
        logger.info("Created namespace %s (owner=%s)", name, owner)

        try:
            if _is_cancelled(cancel):
                raise AllocationCancelled([name], "cancelled after namespace creation")
            with self.engine.begin() as conn:
                self.applier.apply(conn, name)
            if _is_cancelled(cancel):
                raise AllocationCancelled([name], "cancelled during migration")
        except BaseException:
            # Includes KeyboardInterrupt: the namespace exists, so it must go
            self.discard(name)
            raise

        allocation.advance(AllocationState.MIGRATED)
        return allocation

    def _create(self, cancel: threading.Event | None) -> str:
        attempted: list[str] = []
        for attempt in range(1, self.max_attempts + 1):
            if _is_cancelled(cancel):
                raise AllocationCancelled(attempted, "cancelled before namespace creation")

            name = self.name_generator.generate()
            attempted.append(name)
            try:
                with self.engine.begin() as conn:
                    create_namespace(conn, name)
            except SQLAlchemyError as exc:
                if is_duplicate_namespace_error(exc):
                    logger.warning(
                        "Namespace %s already exists (attempt %d/%d)",
                        name, attempt, self.max_attempts,
                    )
                    continue
                raise AllocationError(attempted, f"could not create namespace: {exc}", exc) from exc
            return name

        raise AllocationError(
            attempted, f"name collisions exhausted {self.max_attempts} attempt(s)"
        )

    def discard(self, name: str) -> bool:
        """Drop a namespace that must not be handed out.

        Failures are logged, never raised, so they cannot hide the error
        that caused the discard.

        Returns:
            True if the drop succeeded.
        """
        try:
            with self.engine.begin() as conn:
                drop_namespace(conn, name)
        except SQLAlchemyError as exc:
            logger.warning("%s", CleanupError(name, exc))
            return False
        logger.info("Discarded namespace %s", name)
        return True
