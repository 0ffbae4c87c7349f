"""Incremental sync planning.

A run is either:
- full: [now, now + lookahead] with no modification filter (first run, or forced);
- incremental: the same window restricted to events modified since the last
  successful sync. The client lists with showDeleted so cancellations are included.

The planner only computes values; persisting SyncState is the caller's job.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from ..models import FetchParams, SyncState

__all__ = ["SYNC_FULL", "SYNC_INCREMENTAL", "advance_state", "plan_fetch_window"]

SYNC_FULL = "full"
SYNC_INCREMENTAL = "incremental"


def plan_fetch_window(
    last_sync: datetime | None,
    force_full: bool = False,
    *,
    lookahead_days: int = 90,
    now: datetime | None = None,
) -> FetchParams:
    now = now or datetime.now(tz=UTC)
    time_max = now + timedelta(days=lookahead_days)
    if force_full or last_sync is None:
        return FetchParams(time_min=now, time_max=time_max, sync_type=SYNC_FULL)
    return FetchParams(
        time_min=now,
        time_max=time_max,
        modified_since=last_sync,
        sync_type=SYNC_INCREMENTAL,
    )


def advance_state(state: SyncState, now: datetime | None = None) -> SyncState:
    """Return `state` with last_sync moved to now (partial failures included)."""
    return state.advanced(now)
