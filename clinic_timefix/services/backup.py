"""Backups taken before a drift fix, and restoring from them.

A backup is a JSON dump of every row of the entity's table plus a plain SQL
script that puts the timestamp column back, one UPDATE per row.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from clinic_timefix.extensions import SQLAlchemyEngine
from clinic_timefix.services.errors import DriftError, RecordMissing, record_exception
from clinic_timefix.services.records import EntitySpec, fetch_rows, get_entity, update_timestamp


BACKUP_FORMAT = 1


@dataclass(frozen=True)
class BackupFiles:
    json_path: Path
    sql_path: Path
    count: int


@dataclass(frozen=True)
class RestoreResult:
    entity: str
    restored: int
    errored: int


def utc_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S-%f")


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _sql_literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, (datetime, date)):
        value = value.isoformat()
    return "'" + str(value).replace("'", "''") + "'"


def _restore_script(entity: EntitySpec, rows: list[dict[str, Any]], taken_at: str) -> str:
    lines = [
        f"-- Backup of {entity.table}.{entity.column} before drift correction",
        f"-- Taken at: {taken_at}",
        f"-- Rows: {len(rows)}",
        "",
    ]
    for row in rows:
        lines.append(
            f"UPDATE {entity.table} SET {entity.column} = {_sql_literal(row.get(entity.column))} "
            f"WHERE id = {_sql_literal(row['id'])};"
        )
    return "\n".join(lines) + "\n"


def backup_entity(
    store: SQLAlchemyEngine,
    entity: EntitySpec,
    backup_dir: Path,
    *,
    stamp: str | None = None,
) -> BackupFiles:
    """Write the JSON and SQL backup files for ``entity``.

    Read failures propagate: a fix must not run without its backup. An
    existing backup with the same stamp is never overwritten.
    """

    stamp = stamp or utc_stamp()
    with store.connect() as conn:
        rows = fetch_rows(conn, entity)

    backup_dir.mkdir(parents=True, exist_ok=True)
    json_path = backup_dir / f"{entity.name}-backup-{stamp}.json"
    sql_path = backup_dir / f"{entity.name}-backup-{stamp}.sql"
    for path in (json_path, sql_path):
        if path.exists():
            raise FileExistsError(f"Backup {path} already exists")
    taken_at = datetime.now(timezone.utc).isoformat()
    payload = {
        "format": BACKUP_FORMAT,
        "entity": entity.name,
        "table": entity.table,
        "column": entity.column,
        "taken_at": taken_at,
        "rows": rows,
    }
    json_path.write_text(
        json.dumps(payload, indent=2, default=_json_default, ensure_ascii=False),
        encoding="utf-8",
    )
    sql_path.write_text(_restore_script(entity, rows, taken_at), encoding="utf-8")
    current_app.logger.info("Backed up %d %s rows to %s", len(rows), entity.table, json_path)
    return BackupFiles(json_path=json_path, sql_path=sql_path, count=len(rows))


def load_backup(path: Path) -> tuple[EntitySpec, list[dict[str, Any]]]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise DriftError(f"Cannot read backup {path}: {exc}") from exc
    if not isinstance(payload, dict) or payload.get("format") != BACKUP_FORMAT:
        raise DriftError(f"{path} is not a drift backup file")
    try:
        entity = get_entity(str(payload.get("entity")))
    except KeyError as exc:
        raise DriftError(str(exc.args[0])) from exc
    rows = payload.get("rows") or []
    return entity, [row for row in rows if isinstance(row, dict) and row.get("id") is not None]


def restore_entity(store: SQLAlchemyEngine, path: Path) -> RestoreResult:
    """Put every backed-up timestamp back, one transaction per row."""

    entity, rows = load_backup(path)

    def _restore(row: dict[str, Any]) -> bool:
        try:
            with store.begin() as conn:
                update_timestamp(conn, entity, str(row["id"]), row.get(entity.column))
        except (SQLAlchemyError, RecordMissing) as exc:
            current_app.logger.error("Failed to restore %s %s: %s", entity.name, row["id"], exc)
            record_exception(f"drift restore {entity.name} {row['id']}", exc)
            return False
        return True

    results = [_restore(row) for row in rows]
    restored = sum(results)
    current_app.logger.info("Restored %d of %d %s rows from %s", restored, len(rows), entity.table, path)
    return RestoreResult(entity=entity.name, restored=restored, errored=len(results) - restored)
