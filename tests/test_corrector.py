from datetime import timezone
from pathlib import Path

import pytest
from sqlalchemy.exc import OperationalError

from clinic_timefix.services import corrector
from clinic_timefix.services.corrector import CORRECTED, ERRORED, SKIPPED, CorrectionSummary, run_correction
from clinic_timefix.services.database import store_scope
from clinic_timefix.services.drift import DriftWindow
from clinic_timefix.services.errors import FetchFailed
from clinic_timefix.services.records import APPOINTMENTS, CASH


def _run(app, entity=APPOINTMENTS, window=None, **kwargs):
    with app.app_context(), store_scope(app) as store:
        return run_correction(store, entity, window or DriftWindow(), **kwargs)


def test_suspect_appointment_is_shifted_and_persisted(app, clinic):
    clinic.add_appointment("a1", "2024-05-10T02:00:00")

    summary = _run(app)

    assert summary == CorrectionSummary(entity="appointments", corrected=1)
    assert clinic.appointment_date("a1") == "2024-05-10T05:00:00"


def test_normal_appointment_is_left_alone(app, clinic):
    clinic.add_appointment("a1", "2024-05-10T09:30:00")

    summary = _run(app)

    assert summary.skipped == 1
    assert summary.corrected == 0
    assert clinic.appointment_date("a1") == "2024-05-10T09:30:00"


def test_counts_cover_every_fetched_record(app, clinic):
    clinic.add_appointment("a1", "2024-05-10T02:00:00")
    clinic.add_appointment("a2", "2024-05-10 06:45:00")
    clinic.add_appointment("a3", "2024-05-10T14:00:00")
    clinic.add_appointment("a4", "garbage")

    summary = _run(app)

    assert (summary.corrected, summary.skipped, summary.errored) == (2, 1, 1)
    assert summary.corrected + summary.skipped + summary.errored == summary.total == 4
    assert clinic.appointment_date("a2") == "2024-05-10 09:45:00"
    assert clinic.appointment_date("a4") == "garbage"


def test_second_run_skips_corrected_records(app, clinic):
    clinic.add_appointment("a1", "2024-05-10T04:00:00")
    clinic.add_appointment("a2", "2024-05-10T09:30:00")

    first = _run(app)
    second = _run(app)

    assert (first.corrected, first.skipped) == (1, 1)
    assert (second.corrected, second.skipped) == (0, 2)
    assert clinic.appointment_date("a1") == "2024-05-10T07:00:00"


def test_record_still_inside_window_is_shifted_again(app, clinic):
    # Known hazard: a shift that lands back inside the window is not guarded.
    clinic.add_appointment("a1", "2024-05-10T00:15:00")

    _run(app)
    assert clinic.appointment_date("a1") == "2024-05-10T03:15:00"
    _run(app)
    assert clinic.appointment_date("a1") == "2024-05-10T06:15:00"


def test_dry_run_writes_nothing(app, clinic):
    clinic.add_appointment("a1", "2024-05-10T02:00:00")

    summary = _run(app, apply=False)

    assert summary.corrected == 1
    assert clinic.appointment_date("a1") == "2024-05-10T02:00:00"


def test_report_sees_each_outcome_with_labels(app, clinic):
    clinic.add_appointment("a1", "2024-05-10T02:00:00")
    clinic.add_appointment("a2", "2024-05-10T10:00:00")
    seen = []

    _run(app, report=seen.append)

    by_id = {outcome.record.id: outcome for outcome in seen}
    assert by_id["a1"].status == CORRECTED
    assert by_id["a1"].record.label == "Ana Souza with Dr. Lima"
    assert by_id["a1"].after.hour == 5
    assert by_id["a2"].status == SKIPPED
    assert by_id["a2"].after is None


def test_write_failure_is_counted_and_batch_continues(app, clinic, monkeypatch):
    clinic.add_appointment("a1", "2024-05-10T01:00:00")
    clinic.add_appointment("a2", "2024-05-10T02:00:00")
    real_update = corrector.update_timestamp

    def flaky_update(conn, entity, record_id, value):
        if record_id == "a1":
            raise OperationalError("UPDATE appointments", {}, Exception("disk I/O error"))
        return real_update(conn, entity, record_id, value)

    monkeypatch.setattr(corrector, "update_timestamp", flaky_update)
    seen = []

    summary = _run(app, report=seen.append)

    assert (summary.corrected, summary.errored) == (1, 1)
    failed = next(outcome for outcome in seen if outcome.status == ERRORED)
    assert failed.record.id == "a1"
    assert "disk I/O error" in failed.error
    assert clinic.appointment_date("a1") == "2024-05-10T01:00:00"
    assert clinic.appointment_date("a2") == "2024-05-10T05:00:00"
    log_path = Path(app.config["DATA_ROOT"]) / "logs" / "app_errors.log"
    assert "drift fix appointments a1" in log_path.read_text(encoding="utf-8")


def test_cash_sessions_use_opening_time(app, clinic):
    clinic.add_cash("c1", "2024-05-10 05:30:00")
    clinic.add_cash("c2", "2024-05-10 08:00:00", status="closed")
    seen = []

    summary = _run(app, entity=CASH, report=seen.append)

    assert (summary.corrected, summary.skipped) == (1, 1)
    assert clinic.cash_opening("c1") == "2024-05-10 08:30:00"
    assert clinic.cash_opening("c2") == "2024-05-10 08:00:00"
    labels = {outcome.record.id: outcome.record.label for outcome in seen}
    assert labels == {"c1": "Carla (open)", "c2": "Carla (closed)"}


def test_custom_window_is_honoured(app, clinic):
    clinic.add_appointment("a1", "2024-05-10T06:00:00")
    clinic.add_appointment("a2", "2024-05-10T04:00:00")

    summary = _run(app, window=DriftWindow(offset_hours=2, from_hour=0, to_hour=5))

    assert (summary.corrected, summary.skipped) == (1, 1)
    assert clinic.appointment_date("a2") == "2024-05-10T06:00:00"
    assert clinic.appointment_date("a1") == "2024-05-10T06:00:00"


def test_missing_table_raises_fetch_failed(app, clinic):
    clinic.drop_table("daily_cash")

    with pytest.raises(FetchFailed):
        _run(app, entity=CASH)


def test_unconvertible_timestamp_is_errored_and_batch_continues(app, clinic):
    clinic.add_appointment("a1", "0001-01-01T02:00:00+05:00")
    clinic.add_appointment("a2", "2024-05-10T02:00:00")
    seen = []

    summary = _run(app, window=DriftWindow(timezone=timezone.utc), report=seen.append)

    assert (summary.corrected, summary.errored) == (1, 1)
    failed = next(outcome for outcome in seen if outcome.status == ERRORED)
    assert failed.record.id == "a1"
    assert clinic.appointment_date("a1") == "0001-01-01T02:00:00+05:00"
    assert clinic.appointment_date("a2") == "2024-05-10T05:00:00"


def test_shift_past_max_datetime_is_errored_and_batch_continues(app, clinic):
    clinic.add_appointment("a1", "9999-12-31T02:00:00")
    clinic.add_appointment("a2", "2024-05-10T02:00:00")
    seen = []

    summary = _run(app, window=DriftWindow(offset_hours=24), report=seen.append)

    assert (summary.corrected, summary.errored) == (1, 1)
    failed = next(outcome for outcome in seen if outcome.status == ERRORED)
    assert failed.record.id == "a1"
    assert "cannot be shifted" in failed.error
    assert clinic.appointment_date("a1") == "9999-12-31T02:00:00"
    assert clinic.appointment_date("a2") == "2024-05-11T02:00:00"
