"""Tests for fundsync.config: YAML configuration loader."""

from pathlib import Path

import pytest

from fundsync.config import (
    DEFAULT_DB_PATH,
    Config,
    ScrapingSettings,
    db_path_from_env,
    migrations_dir_from_env,
)
from tests.conftest import FIXTURE_CONFIG_DIR


class TestConfigInit:
    def test_loads_from_config_dir(self):
        config = Config(FIXTURE_CONFIG_DIR)
        assert config.config_dir == FIXTURE_CONFIG_DIR

    def test_raises_on_missing_directory(self):
        with pytest.raises(FileNotFoundError, match="Config directory not found"):
            Config("/nonexistent/path")

    def test_raises_on_file_not_directory(self, tmp_path):
        f = tmp_path / "not_a_dir.yaml"
        f.write_text("test: true")
        with pytest.raises(FileNotFoundError, match="Config directory not found"):
            Config(f)

    def test_dir_from_env(self, monkeypatch):
        monkeypatch.setenv("FUNDSYNC_CONFIG_DIR", str(FIXTURE_CONFIG_DIR))
        assert Config().config_dir == FIXTURE_CONFIG_DIR


class TestConfigErrors:
    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="settings.yaml"):
            Config(tmp_path).settings

    def test_empty_file(self, tmp_path):
        (tmp_path / "settings.yaml").write_text("# nothing here\n")
        with pytest.raises(ValueError, match="Empty config file"):
            Config(tmp_path).settings

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "categories.yaml").write_text("categories: [unclosed\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            Config(tmp_path).categories

    def test_settings_must_be_mapping(self, tmp_path):
        (tmp_path / "settings.yaml").write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="Expected a mapping"):
            Config(tmp_path).settings

    def test_categories_must_be_list(self, tmp_path):
        (tmp_path / "categories.yaml").write_text("categories: 5\n")
        with pytest.raises(ValueError, match="Expected a category list"):
            Config(tmp_path).categories


class TestSettings:
    def test_default_currency_uppercased(self):
        assert Config(FIXTURE_CONFIG_DIR).default_currency == "ILS"

    def test_recurring_top_n(self):
        assert Config(FIXTURE_CONFIG_DIR).recurring_top_n == 3

    def test_defaults_when_keys_absent(self, tmp_path):
        (tmp_path / "settings.yaml").write_text("other: 1\n")
        config = Config(tmp_path)
        assert config.default_currency == "ILS"
        assert config.recurring_top_n == 5
        assert config.scraping == ScrapingSettings()


class TestScraping:
    def test_loads_values(self):
        s = Config(FIXTURE_CONFIG_DIR).scraping
        assert s.days_back == 45
        assert s.timeout == 60
        assert s.show_browser is True
        assert s.combine_installments is False

    def test_clamps_limits(self):
        s = Config(FIXTURE_CONFIG_DIR).scraping
        assert s.max_parallel == 10
        assert s.future_months == 6

    def test_clamps_low_values(self, tmp_path):
        (tmp_path / "settings.yaml").write_text(
            "scraping:\n  max_parallel: 0\n  future_months: -2\n"
        )
        s = Config(tmp_path).scraping
        assert s.max_parallel == 1
        assert s.future_months == 0

    def test_cached(self):
        config = Config(FIXTURE_CONFIG_DIR)
        assert config.scraping is config.scraping


class TestCategories:
    def test_loads_seed_list(self):
        cats = Config(FIXTURE_CONFIG_DIR).categories
        assert [c["name"] for c in cats] == [
            "Food", "Groceries", "Transportation", "Entertainment", "Insurance", "Unknown",
        ]

    def test_bare_list_accepted(self, tmp_path):
        (tmp_path / "categories.yaml").write_text("- name: A\n- name: B\n")
        assert [c["name"] for c in Config(tmp_path).categories] == ["A", "B"]


class TestEnvironment:
    def test_db_path_default(self, monkeypatch):
        monkeypatch.delenv("FUNDSYNC_DB_PATH", raising=False)
        assert db_path_from_env() == DEFAULT_DB_PATH

    def test_db_path_override(self, monkeypatch):
        monkeypatch.setenv("FUNDSYNC_DB_PATH", "/data/f.db")
        assert db_path_from_env() == "/data/f.db"

    def test_migrations_dir(self, monkeypatch):
        monkeypatch.delenv("FUNDSYNC_MIGRATIONS_DIR", raising=False)
        assert migrations_dir_from_env() is None
        monkeypatch.setenv("FUNDSYNC_MIGRATIONS_DIR", "/opt/migrations")
        assert migrations_dir_from_env() == Path("/opt/migrations")
