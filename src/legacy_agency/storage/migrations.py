"""Programmatic Alembic upgrades for the task store."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from sqlalchemy.engine import Engine

from legacy_agency.storage.common import sqlite_url

# src/legacy_agency/storage -> project root holding alembic.ini
PROJECT_ROOT = Path(__file__).resolve().parents[3]


def alembic_config(db_path: Path) -> Config:
    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", sqlite_url(db_path))
    return config


def upgrade(db_path: Path, revision: str = "head") -> None:
    """Apply migrations up to ``revision`` for the given SQLite database."""

    command.upgrade(alembic_config(db_path), revision)


def current_revision(engine: Engine) -> str | None:
    with engine.connect() as connection:
        return MigrationContext.configure(connection).get_current_revision()
