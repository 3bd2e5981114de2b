import os
import pathlib
import shutil
import sys

import pytest
import sqlalchemy as sa

root = pathlib.Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

from clinic_timefix import create_app
from clinic_timefix.extensions import db as sa_db
from clinic_timefix.services.migrations import run_migrations


DRIFT_ENV = ("DRIFT_OFFSET_HOURS", "DRIFT_SUSPECT_FROM_HOUR", "DRIFT_SUSPECT_TO_HOUR", "DRIFT_TIMEZONE")


@pytest.fixture(scope="session")
def _template_db(tmp_path_factory):
    """Build a migrated DB once per test session.

    Every function-scoped ``app`` fixture copies this file instead of
    running Alembic again.
    """
    base = tmp_path_factory.mktemp("template")
    db_path = base / "clinic.db"
    saved = {key: os.environ.get(key) for key in ("DATABASE_URL", "CLINIC_DATA_ROOT")}
    os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"
    os.environ["CLINIC_DATA_ROOT"] = str(base / "data")
    try:
        run_migrations(create_app())
    finally:
        # Restore environment so monkeypatch in tests can work normally.
        for key, value in saved.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
        sa_db.dispose()
    return db_path


@pytest.fixture
def app(tmp_path, monkeypatch, _template_db):
    db_path = tmp_path / "clinic.db"
    shutil.copy2(_template_db, db_path)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("CLINIC_DATA_ROOT", str(tmp_path / "data"))
    for key in DRIFT_ENV:
        monkeypatch.delenv(key, raising=False)
    app = create_app()
    app.config.update(TESTING=True)
    yield app
    sa_db.dispose()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def engine(app):
    """Separate engine for seeding and re-reading rows behind the tool's back."""
    eng = sa.create_engine(app.config["SQLALCHEMY_DATABASE_URI"], future=True)
    yield eng
    eng.dispose()


class ClinicRows:
    def __init__(self, engine):
        self.engine = engine

    def add_appointment(self, appointment_id, date, patient_id="p1", doctor_id="d1"):
        with self.engine.begin() as conn:
            conn.execute(
                sa.text(
                    "INSERT INTO appointments(id, date, patient_id, doctor_id) "
                    "VALUES (:id, :date, :patient_id, :doctor_id)"
                ),
                {"id": appointment_id, "date": date, "patient_id": patient_id, "doctor_id": doctor_id},
            )

    def add_cash(self, cash_id, opening_time, status="open", user_id="u1"):
        with self.engine.begin() as conn:
            conn.execute(
                sa.text(
                    "INSERT INTO daily_cash(id, user_id, date, opening_time, status) "
                    "VALUES (:id, :user_id, :date, :opening_time, :status)"
                ),
                {
                    "id": cash_id,
                    "user_id": user_id,
                    "date": opening_time[:10] + " 00:00:00",
                    "opening_time": opening_time,
                    "status": status,
                },
            )

    def appointment_date(self, appointment_id):
        with self.engine.connect() as conn:
            return conn.execute(
                sa.text("SELECT date FROM appointments WHERE id = :id"), {"id": appointment_id}
            ).scalar_one()

    def cash_opening(self, cash_id):
        with self.engine.connect() as conn:
            return conn.execute(
                sa.text("SELECT opening_time FROM daily_cash WHERE id = :id"), {"id": cash_id}
            ).scalar_one()

    def drop_table(self, table):
        with self.engine.begin() as conn:
            conn.execute(sa.text(f"DROP TABLE {table}"))


@pytest.fixture
def clinic(engine):
    """Seed one patient, one doctor and one cash user."""
    with engine.begin() as conn:
        conn.execute(sa.text("INSERT INTO users(id, name, email) VALUES ('u1', 'Carla', 'carla@example.com')"))
        conn.execute(sa.text("INSERT INTO patients(id, name) VALUES ('p1', 'Ana Souza')"))
        conn.execute(sa.text("INSERT INTO doctors(id, name) VALUES ('d1', 'Dr. Lima')"))
    return ClinicRows(engine)
