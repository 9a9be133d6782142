"""Schema Sandbox - Applying schema statements into a namespace.

Statements are assumed to be validated elsewhere. They are applied in order,
unqualified names resolving into the target namespace only, and the first
failure stops the run. There is no partial rollback here: the allocator
discards a namespace whose migration failed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from schema_sandbox.db import quote_namespace
from schema_sandbox.errors import MigrationError

if TYPE_CHECKING:
    from sqlalchemy import Connection

logger = logging.getLogger(__name__)


def load_migrations(directory: str | Path) -> list[str]:
    """Load statements from *.sql files, ordered by file name.

    Each file is one unit; it may hold several statements separated by ";".
    Empty files are skipped.

    Args:
        directory: Directory holding the .sql files.

    Returns:
        List of statement texts.

    Raises:
        FileNotFoundError: If the directory does not exist.
    """
    path = Path(directory)
    if not path.is_dir():
        raise FileNotFoundError(f"Migrations directory not found: {path}")

    statements = []
    for sql_file in sorted(path.glob("*.sql")):
        body = sql_file.read_text(encoding="utf-8").strip()
        if not body:
            logger.debug("Skipping empty migration file %s", sql_file.name)
            continue
        statements.append(body)
    return statements


def apply_migrations(conn: Connection, namespace: str, statements: Sequence[str]) -> int:
    """Apply statements, in order, inside one namespace.

    The search_path change is transaction-local (SET LOCAL), so it ends with
    the caller's transaction.

    Note:
        This function does NOT commit. The caller owns the transaction.

    Args:
        conn: Active connection inside a transaction.
        namespace: Target namespace. Must already exist.
        statements: Ordered statement texts.

    Returns:
        Number of statements applied.

    Raises:
        MigrationError: On the first failing statement.
    """
    conn.execute(text(f"SET LOCAL search_path TO {quote_namespace(conn, namespace)}"))

    for index, statement in enumerate(statements):
        logger.debug("Applying statement %d to %s", index, namespace)
        try:
            # no_parameters: statements are sent as-is, "%" is not a placeholder
            conn.exec_driver_sql(statement, execution_options={"no_parameters": True})
        except SQLAlchemyError as exc:
            raise MigrationError(namespace, index, statement, exc) from exc

    return len(statements)


class MigrationApplier:
    """A fixed, ordered set of statements applied to every new namespace."""

    def __init__(self, statements: Iterable[str] = ()):
        self.statements = tuple(statements)

    @classmethod
    def from_directory(cls, directory: str | Path) -> MigrationApplier:
        return cls(load_migrations(directory))

    def apply(self, conn: Connection, namespace: str) -> int:
        count = apply_migrations(conn, namespace, self.statements)
        logger.info("Applied %d statement(s) to namespace %s", count, namespace)
        return count

    def __len__(self) -> int:
        return len(self.statements)
