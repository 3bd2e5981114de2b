"""Alembic migration helpers."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from flask import Flask

from clinic_timefix.services.errors import ConfigError


def _alembic_config(app: Flask) -> Config:
    uri = app.config.get("SQLALCHEMY_DATABASE_URI")
    if not uri:
        raise ConfigError("DATABASE_URL is not set; export it or add it to .env")
    root = Path(app.root_path).parent
    cfg = Config(str(root / "alembic.ini"))
    cfg.set_main_option("script_location", str(root / "migrations"))
    cfg.set_main_option("sqlalchemy.url", uri.replace("%", "%%"))
    cfg.attributes["configure_logger"] = False
    return cfg


def run_migrations(app: Flask) -> None:
    """Upgrade the database to the latest revision."""

    cfg = _alembic_config(app)
    command.upgrade(cfg, "head")
