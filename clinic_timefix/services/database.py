"""Database helpers backed by SQLAlchemy."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from flask import Flask, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from clinic_timefix.extensions import SQLAlchemyEngine, db as sa_db
from clinic_timefix.services.errors import StoreUnavailable


def check_connection(store: SQLAlchemyEngine) -> None:
    """Issue ``SELECT 1`` so an unreachable store fails before any work."""

    try:
        with store.connect() as conn:
            conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, ImportError) as exc:
        raise StoreUnavailable(f"Cannot connect to the store: {exc}") from exc


@contextmanager
def store_scope(app: Flask | None = None) -> Iterator[SQLAlchemyEngine]:
    """Hold the store for one run and release it on every exit path."""

    app = app or current_app
    store = app.extensions.get("db", sa_db)
    try:
        check_connection(store)
        yield store
    finally:
        store.dispose()
