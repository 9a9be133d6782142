"""Tests for schema_sandbox.migrations module."""

import pytest

from schema_sandbox.errors import MigrationError
from schema_sandbox.migrations import MigrationApplier, apply_migrations, load_migrations


class TestLoadMigrations:
    """Tests for reading *.sql files."""

    def test_sorted_by_file_name(self, tmp_path):
        (tmp_path / "002_orders.sql").write_text("CREATE TABLE orders (id int);\n")
        (tmp_path / "001_items.sql").write_text("CREATE TABLE items (id int);\n")
        (tmp_path / "010_tags.sql").write_text("CREATE TABLE tags (id int);\n")

        assert load_migrations(tmp_path) == [
            "CREATE TABLE items (id int);",
            "CREATE TABLE orders (id int);",
            "CREATE TABLE tags (id int);",
        ]

    def test_skips_empty_and_non_sql(self, tmp_path):
        (tmp_path / "001_empty.sql").write_text("  \n")
        (tmp_path / "002_items.sql").write_text("CREATE TABLE items (id int)")
        (tmp_path / "README.md").write_text("not a migration")

        assert load_migrations(tmp_path) == ["CREATE TABLE items (id int)"]

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_migrations(tmp_path / "nope")


class TestApplyMigrations:
    """Tests for applying statements into one namespace."""

    def test_scopes_then_applies_in_order(self, engine, catalog):
        catalog.add("t_abc")
        statements = ["CREATE TABLE items (id int)", "CREATE TABLE orders (id int)"]

        with engine.begin() as conn:
            applied = apply_migrations(conn, "t_abc", statements)

        assert applied == 2
        assert conn.statements == ['SET LOCAL search_path TO "t_abc"', *statements]
        assert set(catalog.namespaces["t_abc"]) == {"items", "orders"}

    def test_only_target_namespace_mutated(self, engine, catalog):
        catalog.add("t_abc")
        catalog.add("t_other")

        with engine.begin() as conn:
            apply_migrations(conn, "t_abc", ["CREATE TABLE items (id int)"])

        assert catalog.namespaces["t_other"] == {}

    def test_fails_fast_with_index(self, engine, catalog):
        """The first failure stops the run and names the statement."""
        catalog.add("t_abc")
        statements = [
            "CREATE TABLE items (id int)",
            "CREATE TABL broken (",
            "CREATE TABLE never (id int)",
        ]

        with pytest.raises(MigrationError) as excinfo:
            with engine.begin() as conn:
                apply_migrations(conn, "t_abc", statements)

        err = excinfo.value
        assert err.namespace == "t_abc"
        assert err.index == 1
        assert err.statement == "CREATE TABL broken ("
        assert err.cause is not None
        assert str(err).startswith("MIGRATION_FAILURE: statement 1 failed in namespace 't_abc'")
        assert "never" not in catalog.namespaces["t_abc"]

    def test_long_statement_truncated_in_message(self, engine, catalog):
        catalog.add("t_abc")
        statement = "CREATE TABL " + "x" * 500

        with pytest.raises(MigrationError) as excinfo:
            with engine.begin() as conn:
                apply_migrations(conn, "t_abc", [statement])

        assert excinfo.value.statement == statement
        assert str(excinfo.value).splitlines()[-1].strip() == statement[:200] + "..."

    def test_empty_list(self, engine, catalog):
        catalog.add("t_abc")
        with engine.begin() as conn:
            assert apply_migrations(conn, "t_abc", []) == 0


class TestMigrationApplier:
    """Tests for the reusable applier."""

    def test_from_directory(self, tmp_path, engine, catalog):
        (tmp_path / "001_items.sql").write_text("CREATE TABLE items (id int)")
        applier = MigrationApplier.from_directory(tmp_path)
        catalog.add("t_abc")

        with engine.begin() as conn:
            assert applier.apply(conn, "t_abc") == 1

        assert len(applier) == 1
        assert "items" in catalog.namespaces["t_abc"]
