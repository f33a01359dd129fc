"""Shared test fixtures."""

from pathlib import Path

# Test fixture config directory with synthetic data
FIXTURE_CONFIG_DIR = Path(__file__).parent / "fixtures" / "config"

MIGRATIONS_DIR = Path(__file__).parent.parent / "fundsync" / "database" / "migrations"
