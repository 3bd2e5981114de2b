"""Timezone drift heuristics for stored appointment and cash timestamps.

Rows written while the app mixed UTC and local wall-clock time ended up a few
hours behind their real value. Those rows cluster in the small hours of the
morning, so a stored hour inside the suspect window is taken as drifted and
shifted forward by a fixed offset.

Everything here is pure: no store access, no app context.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from clinic_timefix.services.errors import ConfigError, TimestampError


SUSPECT = "suspect"
NORMAL = "normal"

DEFAULT_OFFSET_HOURS = 3
DEFAULT_FROM_HOUR = 0
DEFAULT_TO_HOUR = 6

_DATE_ONLY_LENGTH = len("YYYY-MM-DD")


@dataclass(frozen=True)
class DriftWindow:
    """Suspect hour range (inclusive) and the offset applied to suspects."""

    offset_hours: int = DEFAULT_OFFSET_HOURS
    from_hour: int = DEFAULT_FROM_HOUR
    to_hour: int = DEFAULT_TO_HOUR
    timezone: tzinfo | None = None

    def __post_init__(self) -> None:
        if self.offset_hours <= 0:
            raise ConfigError(f"Drift offset must be a positive number of hours, got {self.offset_hours}")
        for hour in (self.from_hour, self.to_hour):
            if not 0 <= hour <= 23:
                raise ConfigError(f"Suspect hour {hour} is outside 0-23")
        if self.from_hour > self.to_hour:
            raise ConfigError(
                f"Suspect window starts after it ends ({self.from_hour} > {self.to_hour})"
            )

    @property
    def offset(self) -> timedelta:
        return timedelta(hours=self.offset_hours)

    def describe(self) -> dict[str, Any]:
        return {
            "offset_hours": self.offset_hours,
            "from_hour": self.from_hour,
            "to_hour": self.to_hour,
            "timezone": str(self.timezone) if self.timezone is not None else None,
        }


def _int_setting(config: Mapping[str, Any], key: str, default: int) -> int:
    raw = config.get(key)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


def window_from_config(config: Mapping[str, Any]) -> DriftWindow:
    """Build the drift window from ``DRIFT_*`` app config values."""

    tz_name = (config.get("DRIFT_TIMEZONE") or "").strip()
    tz: tzinfo | None = None
    if tz_name:
        try:
            tz = ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigError(f"Unknown DRIFT_TIMEZONE {tz_name!r}") from None
    return DriftWindow(
        offset_hours=_int_setting(config, "DRIFT_OFFSET_HOURS", DEFAULT_OFFSET_HOURS),
        from_hour=_int_setting(config, "DRIFT_SUSPECT_FROM_HOUR", DEFAULT_FROM_HOUR),
        to_hour=_int_setting(config, "DRIFT_SUSPECT_TO_HOUR", DEFAULT_TO_HOUR),
        timezone=tz,
    )


def parse_timestamp(value: Any) -> datetime:
    """Return ``value`` as a datetime.

    Drivers that map timestamp columns hand back datetimes; SQLite and text
    columns hand back ISO-8601 strings. Anything without an hour is rejected.
    """

    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise TimestampError(f"Unsupported timestamp value {value!r}")
    text = value.strip()
    if not text:
        raise TimestampError("Timestamp is empty")
    if len(text) <= _DATE_ONLY_LENGTH:
        raise TimestampError(f"Timestamp {text!r} has no time component")
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        raise TimestampError(f"Unrecognized timestamp format: {text!r}") from None


def local_hour(ts: datetime, tz: tzinfo | None = None) -> int:
    """Wall-clock hour of ``ts``.

    Naive values are already wall-clock time. Aware values are converted to
    ``tz`` first, or to the host zone when ``tz`` is None.
    """

    if ts.tzinfo is None or ts.utcoffset() is None:
        return ts.hour
    try:
        return ts.astimezone(tz).hour
    except OverflowError:
        raise TimestampError(f"Timestamp {ts.isoformat()} cannot be converted to local time") from None


def classify_timestamp(ts: datetime, window: DriftWindow) -> str:
    hour = local_hour(ts, window.timezone)
    if window.from_hour <= hour <= window.to_hour:
        return SUSPECT
    return NORMAL


def classify(value: Any, window: DriftWindow) -> str:
    """Classify a raw stored value as ``SUSPECT`` or ``NORMAL``."""

    return classify_timestamp(parse_timestamp(value), window)


def shift(ts: datetime, window: DriftWindow) -> datetime:
    try:
        return ts + window.offset
    except OverflowError:
        raise TimestampError(
            f"Timestamp {ts.isoformat()} cannot be shifted by {window.offset_hours}h"
        ) from None


def to_storage(corrected: datetime, original: Any) -> Any:
    """Render ``corrected`` the way the original value was stored."""

    if not isinstance(original, str):
        return corrected
    text = original.strip()
    rendered = corrected.isoformat(sep="T" if "T" in text else " ")
    if text.endswith("Z") and rendered.endswith("+00:00"):
        rendered = rendered[: -len("+00:00")] + "Z"
    return rendered


def format_timestamp(ts: datetime | None) -> str:
    if ts is None:
        return "-"
    return ts.isoformat(sep=" ")
