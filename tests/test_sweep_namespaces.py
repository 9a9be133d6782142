from __future__ import annotations

from datetime import timedelta

import scripts.sweep_namespaces as sweep
from fakes import connect_failure


def test_main_requires_database_url(monkeypatch, capsys):
    monkeypatch.delenv("TEST_DATABASE_URL", raising=False)

    result = sweep.main([])

    assert result == 2
    assert "No database URL" in capsys.readouterr().err


def test_main_dry_run_lists_names(monkeypatch, capsys, engine):
    calls = {}

    def fake_create(url, **options):
        calls["url"] = url
        calls["options"] = options
        return engine

    def fake_sweep(eng, prefix, older_than, dry_run):
        calls["sweep"] = (eng, prefix, older_than, dry_run)
        return ["t_a", "t_b"]

    monkeypatch.setattr(sweep, "create_db_engine", fake_create)
    monkeypatch.setattr(sweep, "sweep_stale_namespaces", fake_sweep)

    result = sweep.main(
        ["--database-url", "postgres://db/x", "--older-than-minutes", "30", "--dry-run"]
    )

    out = capsys.readouterr().out
    assert result == 0
    assert calls["url"] == "postgres://db/x"
    assert calls["sweep"] == (engine, sweep.config.NAME_PREFIX, timedelta(minutes=30), True)
    assert "Would drop 2 namespace(s)" in out
    assert "  t_a" in out
    assert engine.disposed


def test_main_reports_database_errors(monkeypatch, capsys, engine):
    def failing_sweep(*args, **kwargs):
        raise connect_failure()

    monkeypatch.setattr(sweep, "create_db_engine", lambda url, **options: engine)
    monkeypatch.setattr(sweep, "sweep_stale_namespaces", failing_sweep)

    result = sweep.main(["--database-url", "postgres://db/x"])

    assert result == 1
    assert "Sweep failed" in capsys.readouterr().err
    assert engine.disposed
