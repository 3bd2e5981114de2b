"""Drift correction runs: classify each record, shift suspects, summarise."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from functools import reduce
from typing import Any, Callable

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from clinic_timefix.extensions import SQLAlchemyEngine
from clinic_timefix.services.drift import (
    NORMAL,
    DriftWindow,
    classify_timestamp,
    format_timestamp,
    parse_timestamp,
    shift,
    to_storage,
)
from clinic_timefix.services.errors import (
    FetchFailed,
    RecordMissing,
    TimestampError,
    record_exception,
)
from clinic_timefix.services.records import (
    EntitySpec,
    TimestampedRecord,
    fetch_records,
    update_timestamp,
)


CORRECTED = "corrected"
SKIPPED = "skipped"
ERRORED = "errored"


@dataclass(frozen=True)
class RecordOutcome:
    record: TimestampedRecord
    status: str
    before: datetime | None = None
    after: datetime | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.record.id,
            "label": self.record.label,
            "status": self.status,
            "before": self.before.isoformat() if self.before else None,
            "after": self.after.isoformat() if self.after else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class CorrectionSummary:
    entity: str
    corrected: int = 0
    skipped: int = 0
    errored: int = 0

    @property
    def total(self) -> int:
        return self.corrected + self.skipped + self.errored

    def add(self, outcome: RecordOutcome) -> "CorrectionSummary":
        return replace(self, **{outcome.status: getattr(self, outcome.status) + 1})

    def as_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "corrected": self.corrected,
            "skipped": self.skipped,
            "errored": self.errored,
            "total": self.total,
        }


def correct_record(
    store: SQLAlchemyEngine,
    entity: EntitySpec,
    record: TimestampedRecord,
    window: DriftWindow,
    *,
    apply: bool = True,
) -> RecordOutcome:
    """Classify one record and, when suspect, write the shifted timestamp.

    Exactly one write is attempted per suspect record, in its own transaction.
    Unusable timestamps and write failures come back as ``ERRORED`` outcomes.
    """

    original = None
    try:
        original = parse_timestamp(record.timestamp)
        if classify_timestamp(original, window) == NORMAL:
            return RecordOutcome(record, SKIPPED, before=original)
        corrected = shift(original, window)
    except TimestampError as exc:
        current_app.logger.warning("Cannot correct %s %s: %s", entity.name, record.id, exc)
        return RecordOutcome(record, ERRORED, before=original, error=str(exc))

    if apply:
        try:
            with store.begin() as conn:
                update_timestamp(conn, entity, record.id, to_storage(corrected, record.timestamp))
        except (SQLAlchemyError, RecordMissing) as exc:
            current_app.logger.error("Failed to correct %s %s: %s", entity.name, record.id, exc)
            record_exception(f"drift fix {entity.name} {record.id}", exc)
            return RecordOutcome(record, ERRORED, before=original, error=str(exc))
        current_app.logger.info(
            "Corrected %s %s: %s -> %s",
            entity.name,
            record.id,
            format_timestamp(original),
            format_timestamp(corrected),
        )
    return RecordOutcome(record, CORRECTED, before=original, after=corrected)


def load_records(store: SQLAlchemyEngine, entity: EntitySpec) -> list[TimestampedRecord]:
    try:
        with store.connect() as conn:
            return fetch_records(conn, entity)
    except SQLAlchemyError as exc:
        raise FetchFailed(f"Could not read {entity.table}: {exc}") from exc


def run_correction(
    store: SQLAlchemyEngine,
    entity: EntitySpec,
    window: DriftWindow,
    *,
    apply: bool = True,
    report: Callable[[RecordOutcome], None] | None = None,
) -> CorrectionSummary:
    """Process every record of ``entity`` once, sequentially.

    ``report`` sees each outcome as it is produced. With ``apply=False`` no
    write is issued and suspects are counted as corrected (would correct).
    """

    records = load_records(store, entity)
    current_app.logger.info(
        "Drift %s on %s: %d records, window %s",
        "fix" if apply else "analysis",
        entity.name,
        len(records),
        window.describe(),
    )

    def _step(summary: CorrectionSummary, record: TimestampedRecord) -> CorrectionSummary:
        outcome = correct_record(store, entity, record, window, apply=apply)
        if report is not None:
            report(outcome)
        return summary.add(outcome)

    summary = reduce(_step, records, CorrectionSummary(entity=entity.name))
    current_app.logger.info("Drift %s summary: %s", entity.name, summary.as_dict())
    return summary
