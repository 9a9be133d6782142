"""Schema Sandbox - Database engine, pool and namespace catalog primitives.

SQLAlchemy sync engine backed by a QueuePool, shared by every test worker
in the process. Namespaces are PostgreSQL schemas.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import Engine, create_engine, inspect, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from schema_sandbox import config

if TYPE_CHECKING:
    from sqlalchemy import Connection

logger = logging.getLogger(__name__)

# SQLSTATE raised by CREATE SCHEMA when the name is taken
DUPLICATE_SCHEMA_SQLSTATE = "42P06"

# Raised instead when two sessions create the same name concurrently
UNIQUE_VIOLATION_SQLSTATE = "23505"
NAMESPACE_NAME_INDEX = "pg_namespace_nspname_index"

# Driver used when the DSN does not name one
DEFAULT_DRIVER_SCHEME = "postgresql+psycopg"


def get_database_url(database_url: str | None = None) -> str:
    """Get the SQLAlchemy database URL for the shared instance.

    Plain libpq style DSNs ("postgres://", "postgresql://") are rewritten to
    use the psycopg driver. URLs that already name a driver are kept.

    Args:
        database_url: Optional override. Defaults to config.TEST_DATABASE_URL.

    Returns:
        SQLAlchemy connection URL string.

    Raises:
        ValueError: If no URL is configured.
    """
    url = database_url if database_url is not None else config.TEST_DATABASE_URL
    if not url:
        raise ValueError("TEST_DATABASE_URL environment variable is required")

    scheme, sep, rest = url.partition("://")
    if not sep:
        raise ValueError(f"Not a database URL: {url!r}")
    if scheme in ("postgres", "postgresql"):
        return f"{DEFAULT_DRIVER_SCHEME}://{rest}"
    return url


def create_db_engine(
    database_url: str | None = None,
    echo: bool = False,
    pool_size: int | None = None,
    max_overflow: int | None = None,
    pool_timeout: float | None = None,
) -> Engine:
    """Create the shared SQLAlchemy engine.

    Args:
        database_url: Optional URL override.
        echo: If True, log all SQL statements.
        pool_size: Connections kept open. Defaults to config.POOL_SIZE.
        max_overflow: Extra connections allowed beyond pool_size.
        pool_timeout: Seconds a checkout waits before raising TimeoutError.

    Returns:
        SQLAlchemy Engine instance.
    """
    url = get_database_url(database_url)
    return create_engine(
        url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size if pool_size is not None else config.POOL_SIZE,
        max_overflow=max_overflow if max_overflow is not None else config.POOL_MAX_OVERFLOW,
        pool_timeout=pool_timeout if pool_timeout is not None else config.POOL_TIMEOUT_SECONDS,
        # Stale connections are replaced at checkout instead of failing a test
        pool_pre_ping=True,
    )


def create_session_factory(bind) -> sessionmaker:
    """Create a session factory bound to an engine or a single connection.

    Args:
        bind: SQLAlchemy Engine or Connection.

    Returns:
        Configured sessionmaker.
    """
    # - autoflush=False: explicit flush control in test code
    # - expire_on_commit=False: objects remain usable post-commit
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


def quote_namespace(conn: Connection | Engine, name: str) -> str:
    """Quote a namespace name for interpolation into DDL."""
    return conn.dialect.identifier_preparer.quote_identifier(name)


def is_duplicate_namespace_error(exc: BaseException) -> bool:
    """Check whether a DBAPI error means "schema already exists".

    A name taken before CREATE SCHEMA ran fails with 42P06. Two sessions
    creating the same name at once fail the loser with 23505 on the
    pg_namespace name index instead. Both count as a collision.

    Works for psycopg (sqlstate) and psycopg2 (pgcode).

    Args:
        exc: Exception raised by CREATE SCHEMA.

    Returns:
        True if the error is a namespace name collision.
    """
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    state = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if state == DUPLICATE_SCHEMA_SQLSTATE:
        return True
    if state != UNIQUE_VIOLATION_SQLSTATE:
        return False
    constraint = getattr(getattr(orig, "diag", None), "constraint_name", None)
    if constraint:
        return constraint == NAMESPACE_NAME_INDEX
    return NAMESPACE_NAME_INDEX in str(orig)


# --- Catalog primitives ---
#
# These functions do NOT commit. The caller owns the transaction.


def create_namespace(conn: Connection, name: str) -> None:
    """Issue CREATE SCHEMA. Fails if the name is already taken."""
    conn.execute(text(f"CREATE SCHEMA {quote_namespace(conn, name)}"))


def drop_namespace(conn: Connection, name: str) -> None:
    """Drop a namespace and every object in it. Missing namespaces are ignored."""
    conn.execute(text(f"DROP SCHEMA IF EXISTS {quote_namespace(conn, name)} CASCADE"))


def namespace_exists(conn: Connection, name: str) -> bool:
    """Look a namespace up in the catalog."""
    stmt = text("SELECT 1 FROM pg_catalog.pg_namespace WHERE nspname = :name")
    return conn.execute(stmt, {"name": name}).scalar_one_or_none() is not None


def list_namespaces(conn: Connection, prefix: str) -> list[str]:
    """List namespace names starting with prefix.

    Uses left() rather than LIKE since prefixes usually contain "_".

    Args:
        conn: Active connection.
        prefix: Name prefix to match literally.

    Returns:
        Sorted list of matching names.
    """
    stmt = text(
        "SELECT nspname FROM pg_catalog.pg_namespace "
        "WHERE left(nspname, length(:prefix)) = :prefix ORDER BY nspname"
    )
    return list(conn.execute(stmt, {"prefix": prefix}).scalars())


def list_tables(conn: Connection, name: str) -> list[str]:
    """List table names inside a namespace."""
    return inspect(conn).get_table_names(schema=name)


def pool_checked_out(engine: Engine) -> int:
    """Number of connections currently checked out of the shared pool."""
    return engine.pool.checkedout()
