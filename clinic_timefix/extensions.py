"""Application extensions (SQLAlchemy engine for the clinic store)."""

from __future__ import annotations

from typing import Any

from flask import Flask
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine

from clinic_timefix.services.errors import ConfigError


class SQLAlchemyEngine:
    """Minimal SQLAlchemy integration for the app.

    The engine is created on first use so the app (and its CLI help) loads
    even when no store URL is configured.
    """

    def __init__(self) -> None:
        self._engine: Engine | None = None
        self._uri: str | None = None
        self._engine_options: dict[str, Any] = {}

    def init_app(self, app: Flask) -> None:
        self.dispose()
        self._uri = app.config.get("SQLALCHEMY_DATABASE_URI") or None
        self._engine_options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {}))
        app.extensions["db"] = self

    @property
    def configured(self) -> bool:
        return bool(self._uri)

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            if not self._uri:
                raise ConfigError("DATABASE_URL is not set; export it or add it to .env")
            engine = create_engine(self._uri, future=True, **self._engine_options)
            if engine.dialect.name == "sqlite":

                @event.listens_for(engine, "connect")
                def _set_pragmas(dbapi_connection, connection_record) -> None:  # type: ignore[override]
                    cursor = dbapi_connection.cursor()
                    cursor.execute("PRAGMA busy_timeout=5000")
                    cursor.execute("PRAGMA foreign_keys=ON")
                    cursor.close()

            self._engine = engine
        return self._engine

    def connect(self) -> Connection:
        return self.engine.connect()

    def begin(self):  # type: ignore[no-untyped-def]
        """Connection with a transaction committed on clean exit."""
        return self.engine.begin()

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None


db = SQLAlchemyEngine()


def init_extensions(app: Flask) -> None:
    db.init_app(app)
