"""Data models shared by the classifier, reconciler and sync controller.

- SourceEvent: one entry on the owner's calendar as observed from the provider.
- MirrorDraft / MirroredEvent: a mirror before and after insertion on a team calendar.
- SyncState: caller-owned per-owner record (targets, display name, last sync).
- FetchParams: the source listing window chosen by the planner.
- SyncResult / ProcessResult: aggregated per-run outcome.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from .utils.timezones import parse_rfc3339, to_instant

__all__ = [
    "FailedEntry",
    "FetchParams",
    "MirrorDraft",
    "MirroredEvent",
    "ProcessResult",
    "SourceEvent",
    "SyncEntry",
    "SyncResult",
    "SyncState",
]

STATUS_CONFIRMED = "confirmed"
STATUS_CANCELLED = "cancelled"
TRANSPARENCY_OPAQUE = "opaque"
TRANSPARENCY_TRANSPARENT = "transparent"


@dataclass(frozen=True)
class SourceEvent:
    id: str
    summary: str = ""
    description: str = ""
    start: Mapping[str, Any] = field(default_factory=dict)
    end: Mapping[str, Any] = field(default_factory=dict)
    transparency: str = TRANSPARENCY_OPAQUE
    status: str = STATUS_CONFIRMED
    updated: datetime | None = None
    event_type: str | None = None

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> SourceEvent:
        """Build from a Calendar API Events resource; missing fields get defaults."""
        try:
            updated = parse_rfc3339(payload.get("updated"))
        except (ValueError, OverflowError):
            updated = None
        return cls(
            id=str(payload.get("id") or ""),
            summary=payload.get("summary") or "",
            description=payload.get("description") or "",
            start=dict(payload.get("start") or {}),
            end=dict(payload.get("end") or {}),
            transparency=payload.get("transparency") or TRANSPARENCY_OPAQUE,
            status=payload.get("status") or STATUS_CONFIRMED,
            updated=updated,
            event_type=payload.get("eventType"),
        )

    @property
    def cancelled(self) -> bool:
        return (self.status or "").lower() == STATUS_CANCELLED

    @property
    def is_all_day(self) -> bool:
        return self.start.get("date") is not None

    def window(self) -> tuple[datetime, datetime]:
        """Return the [start, end) interval as aware datetimes."""
        return to_instant(self.start), to_instant(self.end)


@dataclass(frozen=True)
class MirrorDraft:
    summary: str
    description: str
    start: Mapping[str, Any]
    end: Mapping[str, Any]
    transparency: str = TRANSPARENCY_TRANSPARENT

    def to_api(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "description": self.description,
            "start": dict(self.start),
            "end": dict(self.end),
            "transparency": self.transparency,
            "reminders": {"useDefault": False},
        }


@dataclass(frozen=True)
class MirroredEvent:
    calendar_id: str
    id: str
    summary: str
    start: Mapping[str, Any] = field(default_factory=dict)
    end: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SyncState:
    target_calendar_ids: tuple[str, ...]
    display_name: str
    last_sync: datetime | None = None

    def advanced(self, now: datetime | None = None) -> SyncState:
        return replace(self, last_sync=now or datetime.now(tz=UTC))


@dataclass(frozen=True)
class FetchParams:
    time_min: datetime
    time_max: datetime
    modified_since: datetime | None = None
    sync_type: str = "full"

    @property
    def incremental(self) -> bool:
        return self.modified_since is not None


@dataclass(frozen=True)
class SyncEntry:
    calendar_id: str
    summary: str
    event_id: str | None = None


@dataclass(frozen=True)
class FailedEntry:
    calendar_id: str
    summary: str
    error: str


@dataclass
class SyncResult:
    created: list[SyncEntry] = field(default_factory=list)
    skipped: list[SyncEntry] = field(default_factory=list)
    deleted: list[SyncEntry] = field(default_factory=list)
    failed: list[FailedEntry] = field(default_factory=list)

    def merge(self, other: SyncResult) -> SyncResult:
        self.created.extend(other.created)
        self.skipped.extend(other.skipped)
        self.deleted.extend(other.deleted)
        self.failed.extend(other.failed)
        return self

    def counts(self) -> dict[str, int]:
        return {
            "created": len(self.created),
            "skipped": len(self.skipped),
            "deleted": len(self.deleted),
            "failed": len(self.failed),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": [vars(e) for e in self.created],
            "skipped": [vars(e) for e in self.skipped],
            "deleted": [vars(e) for e in self.deleted],
            "failed": [vars(e) for e in self.failed],
        }


@dataclass(frozen=True)
class ProcessResult:
    result: SyncResult
    event_count: int
    sync_type: str
    fetch_params: FetchParams
    finished_at: datetime

    @property
    def deleted_count(self) -> int:
        return len(self.result.deleted)

    @property
    def created(self) -> list[SyncEntry]:
        return self.result.created

    @property
    def skipped(self) -> list[SyncEntry]:
        return self.result.skipped

    @property
    def deleted(self) -> list[SyncEntry]:
        return self.result.deleted

    @property
    def failed(self) -> list[FailedEntry]:
        return self.result.failed
