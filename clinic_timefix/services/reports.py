"""JSON run reports written after each drift fix."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from clinic_timefix.services.corrector import CorrectionSummary, RecordOutcome
from clinic_timefix.services.drift import DriftWindow


def write_run_report(
    report_dir: Path,
    window: DriftWindow,
    summary: CorrectionSummary,
    outcomes: Sequence[RecordOutcome],
    *,
    stamp: str,
) -> Path:
    report_dir.mkdir(parents=True, exist_ok=True)
    report_path = report_dir / f"drift-{summary.entity}-{stamp}.json"
    report = {
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "window": window.describe(),
        "summary": summary.as_dict(),
        "records": [outcome.as_dict() for outcome in outcomes],
    }
    report_path.write_text(json.dumps(report, indent=2, ensure_ascii=False), encoding="utf-8")
    return report_path
