"""YAML configuration loader for fundsync.

Loads the seed config files from the config/ directory:
  settings.yaml, categories.yaml

Environment variables:
  FUNDSYNC_CONFIG_DIR      config directory (default: config)
  FUNDSYNC_DB_PATH         SQLite database path (default: fundsync.db)
  FUNDSYNC_LOG_LEVEL       logging level (default: INFO)
  FUNDSYNC_MIGRATIONS_DIR  SQL migrations (default: shipped with the package)
"""

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

DEFAULT_CONFIG_DIR = "config"
DEFAULT_DB_PATH = "fundsync.db"

MAX_PARALLEL_LIMIT = 10
FUTURE_MONTHS_LIMIT = 6


@dataclass
class ScrapingSettings:
    days_back: int = 30
    future_months: int = 0
    max_parallel: int = 2
    timeout: int = 120  # seconds per account
    combine_installments: bool = False
    show_browser: bool = False
    screenshot_on_error: bool = False
    screenshot_path: str | None = None


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


class Config:
    """Loads and provides access to all YAML configuration files."""

    def __init__(self, config_dir: Path | str | None = None):
        if config_dir is None:
            config_dir = os.environ.get("FUNDSYNC_CONFIG_DIR", DEFAULT_CONFIG_DIR)
        self.config_dir = Path(config_dir)
        if not self.config_dir.is_dir():
            raise FileNotFoundError(f"Config directory not found: {self.config_dir}")

        self._settings: dict | None = None
        self._categories: list[dict] | None = None
        self._scraping: ScrapingSettings | None = None

    def _load(self, filename: str) -> dict | list:
        path = self.config_dir / filename
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            raise ValueError(f"Empty config file: {path}")
        return data

    @property
    def settings(self) -> dict:
        if self._settings is None:
            data = self._load("settings.yaml")
            if not isinstance(data, dict):
                raise ValueError(
                    f"Expected a mapping in {self.config_dir / 'settings.yaml'}"
                )
            self._settings = data
        return self._settings

    @property
    def categories(self) -> list[dict]:
        """Seed categories: [{name, parent?, keywords?}, ...]."""
        if self._categories is None:
            data = self._load("categories.yaml")
            if isinstance(data, dict):
                data = data.get("categories", [])
            if not isinstance(data, list):
                raise ValueError(
                    f"Expected a category list in {self.config_dir / 'categories.yaml'}"
                )
            self._categories = data
        return self._categories

    @property
    def scraping(self) -> ScrapingSettings:
        """Scrape options from settings.yaml; unknown keys are ignored."""
        if self._scraping is None:
            raw = self.settings.get("scraping") or {}
            known = {
                k: v for k, v in raw.items()
                if k in ScrapingSettings.__dataclass_fields__
            }
            s = ScrapingSettings(**known)
            s.max_parallel = _clamp(int(s.max_parallel), 1, MAX_PARALLEL_LIMIT)
            s.future_months = _clamp(int(s.future_months), 0, FUTURE_MONTHS_LIMIT)
            self._scraping = s
        return self._scraping

    @property
    def default_currency(self) -> str:
        return str(self.settings.get("default_currency", "ILS")).upper()

    @property
    def recurring_top_n(self) -> int:
        return int(self.settings.get("recurring_top_n", 5))


def db_path_from_env() -> str:
    return os.environ.get("FUNDSYNC_DB_PATH", DEFAULT_DB_PATH)


def migrations_dir_from_env() -> Path | None:
    value = os.environ.get("FUNDSYNC_MIGRATIONS_DIR")
    return Path(value) if value else None
