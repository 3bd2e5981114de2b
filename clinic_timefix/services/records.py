"""Timestamped clinic records the drift fix reads and patches."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

import sqlalchemy as sa
from sqlalchemy.engine import Connection

from clinic_timefix.services.errors import RecordMissing


@dataclass(frozen=True)
class TimestampedRecord:
    id: str
    timestamp: Any
    label: str = ""


@dataclass(frozen=True)
class EntitySpec:
    """Where an entity's timestamp lives and how to read it for display."""

    name: str
    table: str
    column: str
    select_sql: str
    label: Callable[[Mapping[str, Any]], str]

    def update_sql(self) -> sa.TextClause:
        return sa.text(f"UPDATE {self.table} SET {self.column} = :value WHERE id = :id")


def _name(value: Any) -> str:
    return str(value) if value else "?"


def _appointment_label(row: Mapping[str, Any]) -> str:
    return f"{_name(row.get('patient_name'))} with {_name(row.get('doctor_name'))}"


def _cash_label(row: Mapping[str, Any]) -> str:
    status = row.get("status")
    owner = _name(row.get("user_name"))
    return f"{owner} ({status})" if status else owner


APPOINTMENTS = EntitySpec(
    name="appointments",
    table="appointments",
    column="date",
    select_sql="""
        SELECT a.id, a.date AS ts, p.name AS patient_name, d.name AS doctor_name
          FROM appointments a
          LEFT JOIN patients p ON a.patient_id = p.id
          LEFT JOIN doctors d ON a.doctor_id = d.id
         ORDER BY a.created_at DESC
    """,
    label=_appointment_label,
)

CASH = EntitySpec(
    name="cash",
    table="daily_cash",
    column="opening_time",
    select_sql="""
        SELECT dc.id, dc.opening_time AS ts, dc.status, u.name AS user_name
          FROM daily_cash dc
          LEFT JOIN users u ON dc.user_id = u.id
         ORDER BY dc.created_at DESC
    """,
    label=_cash_label,
)

ENTITIES: dict[str, EntitySpec] = {spec.name: spec for spec in (APPOINTMENTS, CASH)}


def get_entity(name: str) -> EntitySpec:
    try:
        return ENTITIES[name]
    except KeyError:
        raise KeyError(f"Unknown entity {name!r}; expected one of {sorted(ENTITIES)}") from None


def fetch_records(conn: Connection, entity: EntitySpec) -> list[TimestampedRecord]:
    rows = conn.execute(sa.text(entity.select_sql)).mappings().all()
    return [
        TimestampedRecord(id=str(row["id"]), timestamp=row["ts"], label=entity.label(row))
        for row in rows
    ]


def fetch_rows(conn: Connection, entity: EntitySpec) -> list[dict[str, Any]]:
    """Every column of every row, unjoined, for backups."""

    rows = conn.execute(sa.text(f"SELECT * FROM {entity.table} ORDER BY created_at DESC")).mappings()
    return [dict(row) for row in rows]


def update_timestamp(conn: Connection, entity: EntitySpec, record_id: str, value: Any) -> None:
    result = conn.execute(entity.update_sql(), {"value": value, "id": record_id})
    if result.rowcount == 0:
        raise RecordMissing(f"{entity.table} row {record_id} no longer exists")
