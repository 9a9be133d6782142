"""Shared pytest fixtures for Schema Sandbox tests."""

import pytest

from fakes import FakeCatalog, FakeEngine


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def engine(catalog):
    return FakeEngine(catalog)
