"""Tests for schema_sandbox.cleanup module."""

import threading
from contextlib import contextmanager

import pytest
from sqlalchemy.exc import OperationalError

from fakes import connect_failure
from schema_sandbox.cleanup import CleanupCoordinator
from schema_sandbox.session import SessionBinder


@pytest.fixture
def coordinator(engine):
    return CleanupCoordinator(engine)


@pytest.fixture
def bound(engine, catalog):
    """Bind a handle to a fresh namespace holding an items table."""

    def _bound(name="t_abc"):
        catalog.add(name, tables=["items"])
        return SessionBinder(engine, retry_delays=()).bind(name)

    return _bound


class TestTeardownToken:
    """Tests for the call-once teardown."""

    def test_drops_and_releases(self, coordinator, bound, engine, catalog):
        handle = bound()
        token = coordinator.register("t_abc", handle)

        assert token() is True

        assert "t_abc" not in catalog.namespaces
        assert handle.released
        assert engine.open_connections == []
        assert token.invoked

    def test_second_call_is_noop(self, coordinator, bound, engine, catalog):
        handle = bound()
        token = coordinator.register("t_abc", handle)
        token()
        statements_after_first = sum(len(c.statements) for c in engine.connections)

        assert token() is False
        assert sum(len(c.statements) for c in engine.connections) == statements_after_first

    def test_rolls_back_failed_transaction(self, coordinator, bound, catalog):
        """A test that died mid-transaction still gets its namespace dropped."""
        handle = bound()
        handle.execute("INSERT INTO items VALUES (1)")
        token = coordinator.register("t_abc", handle)

        token()

        assert "t_abc" not in catalog.namespaces

    def test_concurrent_invocations_run_once(self, coordinator, bound, engine):
        handle = bound()
        token = coordinator.register("t_abc", handle)
        results = []
        barrier = threading.Barrier(8)

        def invoke():
            barrier.wait()
            results.append(token())

        threads = [threading.Thread(target=invoke) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert results.count(False) == 7


class TestDropFailure:
    """Cleanup problems are logged, never raised."""

    def test_warning_and_connection_still_released(
        self, coordinator, bound, engine, catalog, caplog
    ):
        handle = bound()
        token = coordinator.register("t_abc", handle)
        catalog.failures["DROP SCHEMA"] = connect_failure()

        with caplog.at_level("WARNING", logger="schema_sandbox.cleanup"):
            assert token() is True

        assert "CLEANUP_FAILURE: could not drop namespace 't_abc'" in caplog.text
        assert handle.released
        assert engine.open_connections == []
        assert coordinator.outstanding() == []

    def test_falls_back_to_fresh_connection(self, coordinator, bound, catalog):
        """A closed handle connection does not prevent the drop."""
        handle = bound()
        token = coordinator.register("t_abc", handle)
        handle.connection.close()

        token()

        assert "t_abc" not in catalog.namespaces

    def test_failed_drop_rolled_back_before_fallback(
        self, coordinator, bound, engine, catalog
    ):
        """The fallback drop never starts while the failed one holds its locks."""
        handle = bound()
        token = coordinator.register("t_abc", handle)
        catalog.failures["DROP SCHEMA"] = connect_failure()
        in_tx_at_fallback = []
        real_begin = engine.begin

        @contextmanager
        def begin():
            in_tx_at_fallback.append(handle.connection.in_transaction())
            catalog.failures.clear()
            with real_begin() as conn:
                yield conn

        engine.begin = begin
        token()

        assert in_tx_at_fallback == [False]
        assert "t_abc" not in catalog.namespaces

    def test_unrollbackable_connection_invalidated(self, coordinator, bound, catalog):
        handle = bound()
        token = coordinator.register("t_abc", handle)
        catalog.failures["DROP SCHEMA"] = connect_failure()

        def broken_rollback():
            raise OperationalError("ROLLBACK", {}, Exception("server closed the connection"))

        handle.connection.rollback = broken_rollback
        token()

        assert handle.connection.invalidated
        assert handle.released

    def test_test_failure_not_masked(self, coordinator, bound, catalog):
        """The test's own exception survives a failing teardown."""
        handle = bound()
        token = coordinator.register("t_abc", handle)
        catalog.failures["DROP SCHEMA"] = connect_failure()

        with pytest.raises(AssertionError, match="real failure"):
            try:
                raise AssertionError("real failure")
            finally:
                token()


class TestOutstanding:
    """Tests for tracking tokens not yet invoked."""

    def test_tracks_until_invoked(self, coordinator, bound):
        token_a = coordinator.register("t_a", bound("t_a"))
        coordinator.register("t_b", bound("t_b"))

        assert coordinator.outstanding() == ["t_a", "t_b"]
        token_a()
        assert coordinator.outstanding() == ["t_b"]

    def test_teardown_all(self, coordinator, bound, catalog):
        coordinator.register("t_a", bound("t_a"))
        coordinator.register("t_b", bound("t_b"))

        assert coordinator.teardown_all() == 2
        assert coordinator.outstanding() == []
        assert catalog.namespaces == {}
        assert coordinator.teardown_all() == 0
