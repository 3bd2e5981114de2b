"""Clinic timestamp drift fixer exposing the Flask application factory."""

from __future__ import annotations

import os
from pathlib import Path

from flask import Flask

from .extensions import init_extensions
from .cli import register_cli


def _data_root(override: str | None = None) -> Path:
    root = Path(override) if override else Path.cwd() / "data"
    root.mkdir(parents=True, exist_ok=True)
    for sub in ("backups", "reports", "logs"):
        (root / sub).mkdir(parents=True, exist_ok=True)
    return root


def _database_uri(raw: str | None) -> str | None:
    """Accept Heroku/Railway style ``postgres://`` URLs."""
    if not raw or not raw.strip():
        return None
    uri = raw.strip()
    if uri.startswith("postgres://"):
        uri = "postgresql://" + uri[len("postgres://"):]
    return uri


def create_app() -> Flask:
    data_root = _data_root(os.getenv("CLINIC_DATA_ROOT"))

    app = Flask(__name__)
    app.config.update(
        SQLALCHEMY_DATABASE_URI=_database_uri(os.getenv("DATABASE_URL")),
        SQLALCHEMY_ENGINE_OPTIONS={"pool_pre_ping": True},
        DATA_ROOT=str(data_root),
        DRIFT_OFFSET_HOURS=os.getenv("DRIFT_OFFSET_HOURS", "3"),
        DRIFT_SUSPECT_FROM_HOUR=os.getenv("DRIFT_SUSPECT_FROM_HOUR", "0"),
        DRIFT_SUSPECT_TO_HOUR=os.getenv("DRIFT_SUSPECT_TO_HOUR", "6"),
        DRIFT_TIMEZONE=os.getenv("DRIFT_TIMEZONE", ""),
    )

    init_extensions(app)
    register_cli(app)
    return app


__all__ = ["create_app"]
