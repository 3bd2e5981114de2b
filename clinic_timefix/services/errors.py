"""Error types for drift correction runs and lightweight error logging."""

from __future__ import annotations

from datetime import datetime, UTC
from pathlib import Path
import traceback

from flask import current_app


class DriftError(Exception):
    """Base exception for drift correction operations."""


class ConfigError(DriftError):
    """Raised when the store URL is missing or the drift window is invalid."""


class StoreUnavailable(DriftError):
    """Raised when the store cannot be reached at all."""


class FetchFailed(DriftError):
    """Raised when the bulk read of one entity fails."""


class TimestampError(DriftError):
    """Raised when a stored timestamp cannot be parsed or classified."""


class RecordMissing(DriftError):
    """Raised when an update matched no row for the record id."""


def record_exception(context: str, exc: BaseException) -> None:
    """Append exception details to data/logs/app_errors.log for offline inspection."""

    try:
        root = Path(current_app.config["DATA_ROOT"]) / "logs"
        root.mkdir(parents=True, exist_ok=True)
        log_path = root / "app_errors.log"
        with log_path.open("a", encoding="utf-8") as handle:
            handle.write(f"[{datetime.now(UTC).isoformat()}] {context}\n")
            handle.write("".join(traceback.format_exception(exc)))
            handle.write("\n")
    except Exception:
        # A failing error log must not abort the batch.
        pass
