"""pytest fixtures for isolated namespaces.

Loaded automatically through the ``pytest11`` entry point.

Fixtures:
- sandbox_database_url: TEST_DATABASE_URL; tests are skipped when unset.
- sandbox_migrations: statements applied to every namespace. Reads
  SANDBOX_MIGRATIONS_DIR by default; override it in a conftest.py.
- sandbox_engine: shared engine and pool for the test session (per xdist worker).
- sandbox: the SchemaSandbox lifecycle object.
- sandbox_handle: a connection bound to a fresh namespace, torn down after the test.
"""

from __future__ import annotations

import logging
import os

import pytest

from schema_sandbox.db import create_db_engine
from schema_sandbox.lifecycle import SchemaSandbox
from schema_sandbox.migrations import load_migrations

logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: needs a PostgreSQL instance at TEST_DATABASE_URL"
    )


@pytest.fixture(scope="session")
def sandbox_database_url() -> str:
    url = os.environ.get("TEST_DATABASE_URL")
    if not url:
        pytest.skip("TEST_DATABASE_URL must be set for integration tests")
    return url


@pytest.fixture(scope="session")
def sandbox_migrations() -> list[str]:
    directory = os.environ.get("SANDBOX_MIGRATIONS_DIR")
    if not directory:
        return []
    return load_migrations(directory)


@pytest.fixture(scope="session")
def sandbox_engine(sandbox_database_url):
    engine = create_db_engine(sandbox_database_url)
    yield engine
    engine.dispose()


@pytest.fixture(scope="session")
def sandbox(sandbox_engine, sandbox_migrations):
    """Session-wide SchemaSandbox.

    At session end, any namespace whose teardown never ran is dropped.
    """
    box = SchemaSandbox(sandbox_engine, sandbox_migrations)
    yield box
    leftover = box.cleanup.teardown_all()
    if leftover:
        logger.warning("Tore down %d namespace(s) left over at session end", leftover)


@pytest.fixture
def sandbox_handle(sandbox, request):
    """Connection bound to a namespace private to this test."""
    with sandbox.isolated(owner=request.node.nodeid) as handle:
        yield handle
