"""OOO reconciler: mirror the current OOO set onto team calendars.

Per run, for every target calendar:
- creation/skip pass: for each live OOO event, look for an existing mirror in the
  event's window and insert one if none exists;
- cleanup pass: list mirrors of this owner over a wide window and delete those that
  no live OOO event accounts for. A mirror is accounted for when a live event with the
  same original title (case-insensitive) overlaps the mirror's [start, end).

All creation passes (across every target) finish before any cleanup pass starts, so a
renamed or moved event gets its new mirror before the old one is removed.

Pruning (deleting mirrors whose source event was not seen) is limited to mirrors
overlapping `prune_window`, the interval the source events were read from. Mirrors of
past absences or of absences beyond the lookahead are left alone.

Failures are isolated to one (calendar, event) pair and land in SyncResult.failed.
The existence check is best effort: with LookupFailurePolicy.INSERT_ANYWAY a failed
lookup still attempts the insert, which can leave a duplicate mirror behind. A later
run does not remove such duplicates because both overlap the live event.

Notes
- Every write is preceded by a fresh read of the target; no snapshot is reused
  across events. Concurrent edits on a team calendar are last-write-wins.
- Target calendars are independent and may run on a bounded thread pool.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Protocol

from ..errors import ProviderError
from ..models import (
    FailedEntry,
    MirrorDraft,
    MirroredEvent,
    SourceEvent,
    SyncEntry,
    SyncResult,
)
from .naming import (
    build_mirror_draft,
    is_mirror_of,
    mirror_prefix,
    mirror_title,
    original_title_from,
)

__all__ = ["EventStore", "LookupFailurePolicy", "Reconciler"]

log = logging.getLogger(__name__)


class EventStore(Protocol):
    """Narrow calendar provider interface consumed by the engine."""

    def list_events(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        *,
        modified_since: datetime | None = None,
        query: str | None = None,
    ) -> list[SourceEvent]: ...

    def insert_event(self, calendar_id: str, draft: MirrorDraft) -> MirroredEvent: ...

    def delete_event(self, calendar_id: str, event_id: str) -> None: ...


class LookupFailurePolicy(str, Enum):
    INSERT_ANYWAY = "insert_anyway"
    STRICT = "strict"


_Window = tuple[datetime, datetime] | None


def _safe_window(ev: SourceEvent) -> _Window:
    # cancelled instances can come back without start/end; None matches any window
    try:
        return ev.window()
    except ValueError:
        return None


def _overlaps(a: _Window, b: _Window) -> bool:
    if a is None or b is None:
        return True
    return a == b or (a[0] < b[1] and b[0] < a[1])


def _describe(exc: Exception) -> str:
    if isinstance(exc, ProviderError):
        return exc.message
    return str(exc) or type(exc).__name__


class Reconciler:
    def __init__(
        self,
        client: EventStore,
        *,
        policy: LookupFailurePolicy = LookupFailurePolicy.INSERT_ANYWAY,
        cleanup_back_days: int = 30,
        cleanup_ahead_days: int = 180,
        max_workers: int = 1,
        dry_run: bool = False,
        match_any_owner_mirror: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client
        self.policy = LookupFailurePolicy(policy)
        self.cleanup_back = timedelta(days=cleanup_back_days)
        self.cleanup_ahead = timedelta(days=cleanup_ahead_days)
        self.max_workers = max(1, int(max_workers))
        self.dry_run = dry_run
        self.match_any_owner_mirror = match_any_owner_mirror
        self._clock = clock or (lambda: datetime.now(tz=UTC))

    def reconcile(
        self,
        ooo_events: Sequence[SourceEvent],
        target_calendars: Iterable[str],
        owner_display_name: str,
        *,
        prune_missing: bool = True,
        prune_window: tuple[datetime, datetime] | None = None,
    ) -> SyncResult:
        """Create missing mirrors, then delete stale ones, on every target calendar.

        `prune_missing=False` limits deletions to mirrors of events present in
        `ooo_events` as cancelled (used for incremental runs, where an absent event
        was simply not modified). `prune_window` restricts pruning to mirrors that
        overlap it; None prunes across the whole cleanup listing.
        """
        targets = list(dict.fromkeys(target_calendars))
        live = [ev for ev in ooo_events if not ev.cancelled]
        log.info(
            "Starting sync of %d OOO events to %d team calendars", len(live), len(targets)
        )

        result = SyncResult()
        for part in self._fan_out(
            lambda cal: self._creation_pass(cal, live, owner_display_name), targets
        ):
            result.merge(part)
        for part in self._fan_out(
            lambda cal: self._cleanup_pass(
                cal, ooo_events, owner_display_name, prune_missing, prune_window
            ),
            targets,
        ):
            result.merge(part)

        counts = result.counts()
        log.info(
            "Sync completed: %d created, %d skipped, %d deleted, %d failed",
            counts["created"],
            counts["skipped"],
            counts["deleted"],
            counts["failed"],
        )
        return result

    # -------------
    # Passes
    # -------------

    def _fan_out(
        self, fn: Callable[[str], SyncResult], targets: list[str]
    ) -> list[SyncResult]:
        if self.max_workers == 1 or len(targets) <= 1:
            return [fn(cal) for cal in targets]
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(targets))) as pool:
            return list(pool.map(fn, targets))

    def _creation_pass(
        self, calendar_id: str, events: Sequence[SourceEvent], owner: str
    ) -> SyncResult:
        result = SyncResult()
        log.debug("creation-pass %s", calendar_id, extra={"calendar_id": calendar_id})
        for ev in events:
            title = mirror_title(owner, ev.summary)
            try:
                existing = self._lookup(calendar_id, ev, owner)
            except Exception as exc:
                if self.policy is LookupFailurePolicy.STRICT:
                    log.warning(
                        "mirror-lookup-failed %r: %s",
                        title,
                        exc,
                        extra={"calendar_id": calendar_id},
                    )
                    result.failed.append(
                        FailedEntry(calendar_id, title, f"lookup failed: {_describe(exc)}")
                    )
                    continue
                log.warning(
                    "mirror-lookup-failed %r: %s; inserting anyway",
                    title,
                    exc,
                    extra={"calendar_id": calendar_id},
                )
                existing = []

            match = self._find_mirror(existing, ev, owner)
            if match is not None:
                log.debug("mirror-exists %r", title, extra={"calendar_id": calendar_id})
                result.skipped.append(SyncEntry(calendar_id, title, match.id or None))
                continue

            if self.dry_run:
                log.info("dry-run mirror-create %r", title, extra={"calendar_id": calendar_id})
                result.created.append(SyncEntry(calendar_id, title))
                continue
            try:
                mirrored = self.client.insert_event(calendar_id, build_mirror_draft(owner, ev))
            except Exception as exc:
                log.error(
                    "mirror-create-failed %r: %s", title, exc, extra={"calendar_id": calendar_id}
                )
                result.failed.append(FailedEntry(calendar_id, title, _describe(exc)))
                continue
            log.info("mirror-created %r", title, extra={"calendar_id": calendar_id})
            result.created.append(SyncEntry(calendar_id, mirrored.summary or title, mirrored.id))
        return result

    def _cleanup_pass(
        self,
        calendar_id: str,
        ooo_events: Sequence[SourceEvent],
        owner: str,
        prune_missing: bool,
        prune_window: tuple[datetime, datetime] | None,
    ) -> SyncResult:
        result = SyncResult()
        # casefolded source title -> windows of the live / cancelled events carrying it
        live: dict[str, list[_Window]] = {}
        cancelled: dict[str, list[_Window]] = {}
        for ev in ooo_events:
            index = cancelled if ev.cancelled else live
            index.setdefault(ev.summary.casefold(), []).append(_safe_window(ev))

        now = self._clock()
        try:
            candidates = self.client.list_events(
                calendar_id, now - self.cleanup_back, now + self.cleanup_ahead, query=owner
            )
        except Exception as exc:
            log.error("cleanup-list-failed: %s", exc, extra={"calendar_id": calendar_id})
            result.failed.append(
                FailedEntry(calendar_id, f"{mirror_prefix(owner)}*", _describe(exc))
            )
            return result

        for mirror in candidates:
            if mirror.cancelled or not is_mirror_of(mirror.summary, owner):
                continue
            key = original_title_from(mirror.summary, owner).casefold()
            window = _safe_window(mirror)
            if any(_overlaps(window, w) for w in live.get(key, ())):
                continue
            was_cancelled = any(_overlaps(window, w) for w in cancelled.get(key, ()))
            if not was_cancelled and not (prune_missing and _overlaps(window, prune_window)):
                continue

            if self.dry_run:
                log.info(
                    "dry-run mirror-delete %r", mirror.summary, extra={"calendar_id": calendar_id}
                )
                result.deleted.append(SyncEntry(calendar_id, mirror.summary, mirror.id))
                continue
            try:
                self.client.delete_event(calendar_id, mirror.id)
            except Exception as exc:
                log.error(
                    "mirror-delete-failed %r: %s",
                    mirror.summary,
                    exc,
                    extra={"calendar_id": calendar_id},
                )
                result.failed.append(FailedEntry(calendar_id, mirror.summary, _describe(exc)))
                continue
            log.info("mirror-deleted %r", mirror.summary, extra={"calendar_id": calendar_id})
            result.deleted.append(SyncEntry(calendar_id, mirror.summary, mirror.id))
        return result

    # -------------
    # Helpers
    # -------------

    def _lookup(self, calendar_id: str, ev: SourceEvent, owner: str) -> list[SourceEvent]:
        time_min, time_max = ev.window()
        return self.client.list_events(calendar_id, time_min, time_max, query=owner)

    def _find_mirror(
        self, existing: Iterable[SourceEvent], ev: SourceEvent, owner: str
    ) -> SourceEvent | None:
        wanted = mirror_title(owner, ev.summary)
        wanted_original = ev.summary.casefold()
        for cand in existing:
            if cand.cancelled:
                continue
            if cand.summary == wanted:
                return cand
            if not is_mirror_of(cand.summary, owner):
                continue
            if self.match_any_owner_mirror:
                return cand
            if original_title_from(cand.summary, owner).casefold() == wanted_original:
                return cand
        return None
