"""Tests for fundsync.cli: argument parsing and command handlers.

Commands run through main(argv=[...]) against a temporary SQLite file
and the fixture config directory.
"""

from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from fundsync.cli import main
from fundsync.database.models import TransactionFilters
from fundsync.database.repository import Repository
from tests.conftest import FIXTURE_CONFIG_DIR

PROJECT_ROOT = Path(__file__).parent.parent


# ── Helpers ──────────────────────────────────────────────


@pytest.fixture
def env(tmp_path, monkeypatch):
    db_path = tmp_path / "fundsync.db"
    monkeypatch.setenv("FUNDSYNC_DB_PATH", str(db_path))
    monkeypatch.setenv("FUNDSYNC_CONFIG_DIR", str(FIXTURE_CONFIG_DIR))
    monkeypatch.delenv("FUNDSYNC_MIGRATIONS_DIR", raising=False)
    with patch("fundsync.cli._setup_logging"):
        yield db_path


def _run(*argv: str) -> int:
    with pytest.raises(SystemExit) as exc:
        main(list(argv))
    return exc.value.code


def _add_account(db_path: Path, institution: str = "leumi") -> str:
    assert _run("account", "add", "u1", institution, "12-345", "main") == 0
    repo = Repository(str(db_path))
    try:
        return repo.list_accounts()[0].id
    finally:
        repo.close()


def _write_records(tmp_path: Path, records) -> Path:
    path = tmp_path / "export.json"
    path.write_text(json.dumps(records, ensure_ascii=False), encoding="utf-8")
    return path


def _record(description: str, amount: float, day: int = 5) -> dict:
    return {
        "date": f"2024-01-{day:02d}T00:00:00.000Z",
        "originalAmount": amount,
        "originalCurrency": "ILS",
        "chargedAmount": amount,
        "description": description,
        "status": "completed",
    }


# ── Argument parsing (subprocess) ────────────────────────


class TestCliHelp:
    def test_help_lists_subcommands(self):
        result = subprocess.run(
            [sys.executable, "-m", "fundsync.cli", "--help"],
            capture_output=True, text=True, cwd=PROJECT_ROOT,
        )
        assert result.returncode == 0
        for cmd in ["init", "status", "account", "import", "transactions", "category",
                    "recategorize", "report"]:
            assert cmd in result.stdout, f"Subcommand '{cmd}' not in help output"

    def test_import_requires_account(self):
        result = subprocess.run(
            [sys.executable, "-m", "fundsync.cli", "import", "file.json"],
            capture_output=True, text=True, cwd=PROJECT_ROOT,
        )
        assert result.returncode != 0


# ── main() dispatch ──────────────────────────────────────


class TestMainDispatch:
    def test_dispatches_to_handler(self):
        handler = MagicMock(return_value=0)
        with patch("fundsync.cli._COMMANDS", {"status": handler}), \
             patch("fundsync.cli._setup_logging"):
            assert _run("status") == 0
        handler.assert_called_once()

    def test_no_command_shows_help(self, capsys):
        with patch("fundsync.cli._setup_logging"):
            assert _run() == 0
        assert "usage:" in capsys.readouterr().out.lower()

    def test_handler_exit_code_propagates(self):
        with patch("fundsync.cli._COMMANDS", {"status": MagicMock(return_value=1)}), \
             patch("fundsync.cli._setup_logging"):
            assert _run("status") == 1


# ── Commands ─────────────────────────────────────────────


class TestInitAndStatus:
    def test_init_seeds_categories(self, env, capsys):
        assert _run("init") == 0
        assert "6 categories seeded" in capsys.readouterr().out
        repo = Repository(str(env))
        try:
            assert repo.get_category_by_name("Groceries") is not None
            assert repo.get_category_by_name("Unknown") is not None
        finally:
            repo.close()

    def test_init_twice(self, env, capsys):
        _run("init")
        assert _run("init") == 0
        assert "0 categories seeded" in capsys.readouterr().out

    def test_init_without_config_dir(self, env, monkeypatch, tmp_path, capsys):
        monkeypatch.setenv("FUNDSYNC_CONFIG_DIR", str(tmp_path / "missing"))
        assert _run("init") == 0
        assert "skipping category seed" in capsys.readouterr().out

    def test_status(self, env, capsys):
        _run("init")
        assert _run("status") == 0
        out = capsys.readouterr().out
        assert "Total transactions:" in out
        assert "Categories:" in out


class TestAccountCommands:
    def test_add_and_list(self, env, capsys):
        _add_account(env)
        assert _run("account", "list") == 0
        out = capsys.readouterr().out
        assert "main" in out
        assert "active" in out

    def test_list_for_other_user(self, env, capsys):
        _add_account(env)
        capsys.readouterr()
        assert _run("account", "list", "--user", "nobody") == 0
        assert "No accounts." in capsys.readouterr().out

    def test_no_subcommand(self, env):
        assert _run("account") == 1


class TestImport:
    def test_import_and_reimport(self, env, tmp_path, capsys):
        _run("init")
        account_id = _add_account(env)
        path = _write_records(tmp_path, [
            _record("SHUFERSAL DEAL", -120.0),
            _record("NETFLIX", -40.0),
            {"date": "bad", "chargedAmount": -1, "description": "broken"},
        ])

        assert _run("import", str(path), "--account", account_id) == 0
        assert "new=2, dup=0, skipped=1" in capsys.readouterr().out

        assert _run("import", str(path), "--account", account_id) == 0
        assert "new=0, dup=2, skipped=1" in capsys.readouterr().out

    def test_accepts_transactions_wrapper(self, env, tmp_path, capsys):
        account_id = _add_account(env)
        path = _write_records(tmp_path, {"transactions": [_record("A", -1.0)]})
        assert _run("import", str(path), "--account", account_id) == 0
        assert "new=1" in capsys.readouterr().out

    def test_missing_file(self, env, tmp_path):
        assert _run("import", str(tmp_path / "nope.json"), "--account", "x") == 1

    def test_unknown_account(self, env, tmp_path, capsys):
        path = _write_records(tmp_path, [_record("A", -1.0)])
        assert _run("import", str(path), "--account", "no-such-account") == 1
        assert "not found" in capsys.readouterr().out

    def test_invalid_json(self, env, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        assert _run("import", str(path), "--account", "x") == 1


class TestTransactions:
    @pytest.fixture
    def account_id(self, env, tmp_path):
        _run("init")
        account_id = _add_account(env)
        records = [
            _record("SHUFERSAL DEAL", -120.0, day=3),
            _record("HAREL BITUACH", -300.0, day=10),
            {**_record("NETFLIX", -40.0, day=20), "status": "pending"},
        ]
        _run("import", str(_write_records(tmp_path, records)), "--account", account_id)
        return account_id

    def _txn(self, db_path, description):
        repo = Repository(str(db_path))
        try:
            return next(
                t for t in repo.find_transactions(TransactionFilters())
                if t.description == description
            )
        finally:
            repo.close()

    def test_list_newest_first(self, account_id, capsys):
        capsys.readouterr()
        assert _run("transactions", "list", "--account", account_id) == 0
        out = capsys.readouterr().out
        assert out.index("NETFLIX") < out.index("HAREL") < out.index("SHUFERSAL")
        assert "(pending)" in out
        assert "3 transaction(s)" in out

    def test_list_filters(self, account_id, capsys):
        capsys.readouterr()
        assert _run("transactions", "list", "--category", "Groceries") == 0
        out = capsys.readouterr().out
        assert "SHUFERSAL" in out
        assert "1 transaction(s)" in out

        assert _run("transactions", "list", "--start", "2024-01-05", "--end", "2024-01-15") == 0
        out = capsys.readouterr().out
        assert "HAREL" in out
        assert "1 transaction(s)" in out

        assert _run("transactions", "list", "--status", "pending") == 0
        assert "NETFLIX" in capsys.readouterr().out

    def test_list_limit_offset(self, account_id, capsys):
        capsys.readouterr()
        assert _run("transactions", "list", "--limit", "1", "--offset", "1") == 0
        out = capsys.readouterr().out
        assert "HAREL" in out
        assert "1 transaction(s)" in out

    def test_list_other_user(self, account_id, capsys):
        capsys.readouterr()
        assert _run("transactions", "list", "--user", "nobody") == 0
        assert "No transactions." in capsys.readouterr().out

    def test_list_unknown_category(self, account_id):
        assert _run("transactions", "list", "--category", "Nope") == 1

    def test_show(self, env, account_id, capsys):
        txn = self._txn(env, "SHUFERSAL DEAL")
        capsys.readouterr()
        assert _run("transactions", "show", txn.id) == 0
        out = capsys.readouterr().out
        assert "SHUFERSAL DEAL" in out
        assert "Groceries" in out

    def test_show_missing(self, account_id):
        assert _run("transactions", "show", "no-such-txn") == 1

    def test_set_category_survives_recategorize(self, env, account_id):
        txn = self._txn(env, "HAREL BITUACH")
        assert _run("transactions", "set-category", txn.id, "Insurance") == 0
        _run("category", "keywords", "Entertainment", "harel")
        _run("recategorize")

        repo = Repository(str(env))
        try:
            stored = repo.get_transaction(txn.id)
            assert stored.category_id == repo.get_category_by_name("Insurance").id
        finally:
            repo.close()

    def test_set_category_errors(self, env, account_id):
        txn = self._txn(env, "HAREL BITUACH")
        assert _run("transactions", "set-category", txn.id, "Nope") == 1
        assert _run("transactions", "set-category", "no-such-txn", "Insurance") == 1

    def test_no_subcommand(self, env):
        assert _run("transactions") == 1


class TestCategoryCommands:
    def test_add_and_list(self, env, capsys):
        _run("init")
        assert _run("category", "add", "Pets", "vet", "petshop", "--parent", "Food") == 0
        assert _run("category", "list") == 0
        out = capsys.readouterr().out
        assert "Pets" in out
        assert "vet, petshop" in out

    def test_add_duplicate(self, env):
        _run("init")
        assert _run("category", "add", "Food") == 1

    def test_keywords(self, env, capsys):
        _run("init")
        assert _run("category", "keywords", "Insurance", "harel", "migdal") == 0
        repo = Repository(str(env))
        try:
            assert repo.get_category_by_name("Insurance").keywords == ["harel", "migdal"]
        finally:
            repo.close()

    def test_keywords_unknown_category(self, env):
        _run("init")
        assert _run("category", "keywords", "Nope", "x") == 1

    def test_suggest(self, env, capsys):
        _run("init")
        capsys.readouterr()
        assert _run("category", "suggest", "PAZ GAS STATION") == 0
        assert "Transportation" in capsys.readouterr().out


class TestRecategorize:
    def test_picks_up_new_keywords(self, env, tmp_path, capsys):
        _run("init")
        account_id = _add_account(env)
        _run("import", str(_write_records(tmp_path, [_record("HAREL BITUACH", -300.0)])),
             "--account", account_id)
        _run("category", "keywords", "Insurance", "harel")
        capsys.readouterr()

        assert _run("recategorize") == 0
        assert "Recategorized 1 of 1" in capsys.readouterr().out


class TestReport:
    @pytest.fixture
    def account_id(self, env, tmp_path):
        _run("init")
        account_id = _add_account(env)
        records = [
            _record("NETFLIX 1234", -40.0, day=1),
            _record("NETFLIX 5678", -40.0, day=15),
            _record("SALARY", 1000.0, day=10),
            _record("TV", -900.0, day=20),
        ]
        _run("import", str(_write_records(tmp_path, records)), "--account", account_id)
        return account_id

    def _report(self, kind, account_id, *extra):
        return _run("report", kind, "--account", account_id,
                    "--start", "2024-01-01", "--end", "2024-01-31", *extra)

    def test_summary(self, account_id, capsys):
        capsys.readouterr()
        assert self._report("summary", account_id) == 0
        out = capsys.readouterr().out
        assert "1,000.00" in out
        assert "980.00" in out

    def test_highest(self, account_id, capsys):
        capsys.readouterr()
        assert self._report("highest", account_id) == 0
        assert "900.00" in capsys.readouterr().out

    def test_recurring(self, account_id, capsys):
        capsys.readouterr()
        assert self._report("recurring", account_id, "--top", "3") == 0
        out = capsys.readouterr().out
        assert "NETFLIX" in out
        assert "x2" in out

    def test_trends(self, account_id, capsys):
        capsys.readouterr()
        assert self._report("trends", account_id, "--granularity", "monthly") == 0
        assert "2024-01" in capsys.readouterr().out

    def test_distribution(self, account_id, capsys):
        capsys.readouterr()
        assert self._report("distribution", account_id) == 0
        assert "Entertainment" in capsys.readouterr().out

    def test_start_after_end(self, env):
        assert _run("report", "summary", "--start", "2024-02-01", "--end", "2024-01-01") == 1

    def test_no_report_kind(self, env):
        assert _run("report") == 1
