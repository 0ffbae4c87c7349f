"""Timezone helpers for Google Calendar start/end payloads.

Google Calendar payloads (examples)
- All-day:
  {"date": "2025-08-23"}
- Timed:
  {"dateTime": "2025-08-23T14:00:00-04:00", "timeZone": "America/New_York"}
  {"dateTime": "2025-08-23T18:00:00", "timeZone": "UTC"}  # naive dt with explicit tzid

Public API
- get_zoneinfo(tzid: str | None) -> ZoneInfo | None
- ensure_tz(dt: datetime, tzid: str | None, default_tz: str = "UTC") -> datetime
- parse_google_datetime(payload, default_tz="UTC") -> tuple[date|datetime, bool, str]
- to_instant(payload, default_tz="UTC") -> datetime
- to_rfc3339(value: datetime) -> str

Notes
- Calendar API query bounds (timeMin/timeMax/updatedMin) must be RFC3339 timestamps
  with an offset; an all-day payload is turned into midnight of that date in its
  timeZone (or UTC).
- If a tzid is unknown, fallback to UTC.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, date, datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as dtparser

__all__ = [
    "ensure_tz",
    "get_zoneinfo",
    "parse_google_datetime",
    "parse_rfc3339",
    "to_instant",
    "to_rfc3339",
]

DateOrDateTime = date | datetime


def get_zoneinfo(tzid: str | None) -> ZoneInfo | None:
    """Resolve a TZID to ZoneInfo, returning None if not found or not provided."""
    if not tzid:
        return None
    try:
        return ZoneInfo(tzid)
    except (ZoneInfoNotFoundError, ValueError):
        if tzid.upper() in {"UTC", "Z"}:
            return ZoneInfo("UTC")
        return None


def ensure_tz(dt: datetime, tzid: str | None, default_tz: str = "UTC") -> datetime:
    """Ensure a datetime is timezone-aware.

    - If dt already timezone-aware, return as-is.
    - If naive, try tzid; else default_tz; else UTC.
    """
    if dt.tzinfo is not None:
        return dt
    z = get_zoneinfo(tzid) or get_zoneinfo(default_tz) or ZoneInfo("UTC")
    return dt.replace(tzinfo=z)


def _parse_all_day(payload: Mapping[str, object]) -> tuple[date, bool, str]:
    s = str(payload.get("date"))
    y, m, d = [int(x) for x in s.split("-")]
    tzid = str(payload.get("timeZone")) if payload.get("timeZone") else "UTC"
    return date(y, m, d), True, tzid


def _parse_timed(payload: Mapping[str, object], default_tz: str) -> tuple[datetime, bool, str]:
    raw = str(payload.get("dateTime"))
    tzid = str(payload.get("timeZone")) if payload.get("timeZone") else None
    dt = dtparser.isoparse(raw)
    dt = ensure_tz(dt, tzid, default_tz=default_tz)
    return dt, False, (tzid or default_tz or "UTC")


def parse_google_datetime(
    payload: Mapping[str, object], default_tz: str = "UTC"
) -> tuple[DateOrDateTime, bool, str]:
    """Parse Google Calendar 'start'/'end' payload to (value, is_all_day, tzid_used).

    - If payload contains "date" => return date object, is_all_day=True (tzid is informational).
    - If payload contains "dateTime" => return timezone-aware datetime, is_all_day=False.
    """
    if payload.get("date") is not None:
        return _parse_all_day(payload)
    if payload.get("dateTime") is not None:
        return _parse_timed(payload, default_tz=default_tz)
    raise ValueError("Google datetime payload must contain either 'date' or 'dateTime'.")


def to_instant(payload: Mapping[str, object], default_tz: str = "UTC") -> datetime:
    """Return an aware datetime for a start/end payload (all-day -> local midnight)."""
    value, _, tzid = parse_google_datetime(payload, default_tz=default_tz)
    if isinstance(value, datetime):
        return value
    z = get_zoneinfo(tzid) or ZoneInfo("UTC")
    return datetime.combine(value, time.min, tzinfo=z)


def to_rfc3339(value: datetime) -> str:
    """Format an aware datetime as RFC3339 in UTC with a trailing 'Z'."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def parse_rfc3339(raw: str | None) -> datetime | None:
    """Parse a provider timestamp such as event 'updated'; None for empty input."""
    if not raw:
        return None
    return ensure_tz(dtparser.isoparse(raw), None)
