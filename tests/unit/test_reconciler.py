from __future__ import annotations

from datetime import timedelta

from fakes import NOW, OWNER, TEAM_1, TEAM_2, FakeEventStore, event_payload, make_event

from ooosync.models import SourceEvent, SyncEntry
from ooosync.sync.reconciler import LookupFailurePolicy, Reconciler

TITLE = "Alex - OOO: Vacation — Italy"


def _vacation(**kwargs):
    return make_event("src-1", "Vacation — Italy", **kwargs)


def _seed_mirror(store: FakeEventStore, calendar_id: str, summary: str, event_id: str) -> str:
    return store.add(calendar_id, event_payload(event_id, summary, transparency="transparent"))


def _is_lookup(_cal, time_min, time_max) -> bool:
    # lookups span one event (a week here); the cleanup listing spans months
    return time_max - time_min < timedelta(days=30)


def test_creates_missing_mirror(store, reconciler) -> None:
    result = reconciler.reconcile([_vacation()], [TEAM_1], OWNER)

    assert result.counts() == {"created": 1, "skipped": 0, "deleted": 0, "failed": 0}
    entry = result.created[0]
    assert entry.calendar_id == TEAM_1
    assert entry.summary == TITLE
    assert entry.event_id
    assert store.summaries(TEAM_1) == [TITLE]

    stored = store.calendars[TEAM_1][entry.event_id]
    assert stored["transparency"] == "transparent"
    assert stored["start"] == {"date": "2025-06-01"}
    assert stored["end"] == {"date": "2025-06-08"}


def test_second_run_is_idempotent(store, reconciler) -> None:
    reconciler.reconcile([_vacation()], [TEAM_1], OWNER)
    store.reset_counters()

    result = reconciler.reconcile([_vacation()], [TEAM_1], OWNER)

    assert result.counts() == {"created": 0, "skipped": 1, "deleted": 0, "failed": 0}
    assert store.inserts == []
    assert store.deletes == []
    assert store.summaries(TEAM_1) == [TITLE]


def test_existing_mirror_is_matched_case_insensitively(store, reconciler) -> None:
    _seed_mirror(store, TEAM_1, "Alex - OOO: vacation — italy", "old")

    result = reconciler.reconcile([_vacation()], [TEAM_1], OWNER)

    assert result.created == []
    assert result.skipped == [SyncEntry(TEAM_1, TITLE, "old")]
    assert result.deleted == []


def test_mirror_of_vanished_event_is_deleted(store, reconciler) -> None:
    _seed_mirror(store, TEAM_1, TITLE, "old")

    result = reconciler.reconcile([], [TEAM_1], OWNER)

    assert result.deleted == [SyncEntry(TEAM_1, TITLE, "old")]
    assert store.summaries(TEAM_1) == []


def test_cancelled_event_removes_mirror_and_is_not_recreated(store, reconciler) -> None:
    _seed_mirror(store, TEAM_1, TITLE, "old")

    result = reconciler.reconcile([_vacation(status="cancelled")], [TEAM_1], OWNER)

    assert result.created == []
    assert [e.event_id for e in result.deleted] == ["old"]
    assert store.inserts == []


def test_live_event_wins_over_cancelled_event_with_same_title(store, reconciler) -> None:
    _seed_mirror(store, TEAM_1, TITLE, "old")
    cancelled = make_event("src-2", "Vacation — Italy", status="cancelled")

    result = reconciler.reconcile([_vacation(), cancelled], [TEAM_1], OWNER)

    assert result.deleted == []
    assert len(result.skipped) == 1


def test_foreign_events_are_never_touched(store, reconciler) -> None:
    _seed_mirror(store, TEAM_1, "Sam - OOO: Vacation", "sam")
    store.add(TEAM_1, event_payload("meet", "Planning with Alex"))
    store.add(TEAM_1, event_payload("solo", "Team Meeting"))

    result = reconciler.reconcile([], [TEAM_1], OWNER)

    assert result.deleted == []
    assert store.deletes == []
    assert store.summaries(TEAM_1) == ["Planning with Alex", "Sam - OOO: Vacation", "Team Meeting"]


def test_renamed_event_gets_new_mirror_and_old_one_is_removed(store, reconciler) -> None:
    _seed_mirror(store, TEAM_1, "Alex - OOO: Vacation", "old")

    result = reconciler.reconcile([_vacation()], [TEAM_1], OWNER)

    assert [e.summary for e in result.created] == [TITLE]
    assert result.deleted == [SyncEntry(TEAM_1, "Alex - OOO: Vacation", "old")]
    assert store.summaries(TEAM_1) == [TITLE]


def test_moved_event_replaces_mirror_at_old_dates(store, reconciler) -> None:
    reconciler.reconcile([_vacation()], [TEAM_1], OWNER)
    moved = _vacation(start="2025-07-01", end="2025-07-08")

    first = reconciler.reconcile([moved], [TEAM_1], OWNER)
    second = reconciler.reconcile([moved], [TEAM_1], OWNER)

    assert [e.event_id for e in first.created] == ["m2"]
    assert first.deleted == [SyncEntry(TEAM_1, TITLE, "m1")]
    assert second.counts() == {"created": 0, "skipped": 1, "deleted": 0, "failed": 0}
    mirrors = list(store.calendars[TEAM_1].values())
    assert [(m["summary"], m["start"]) for m in mirrors] == [(TITLE, {"date": "2025-07-01"})]


def test_same_title_on_different_dates_keeps_both_mirrors(store, reconciler) -> None:
    june = _vacation()
    august = make_event("src-2", "Vacation — Italy", start="2025-08-01", end="2025-08-08")
    reconciler.reconcile([june, august], [TEAM_1], OWNER)

    result = reconciler.reconcile([june, august], [TEAM_1], OWNER)

    assert result.counts() == {"created": 0, "skipped": 2, "deleted": 0, "failed": 0}
    assert store.summaries(TEAM_1) == [TITLE, TITLE]


def test_loose_matching_treats_any_owner_mirror_as_existing(store) -> None:
    _seed_mirror(store, TEAM_1, "Alex - OOO: Conference", "other")
    rec = Reconciler(store, match_any_owner_mirror=True, clock=lambda: NOW)

    result = rec.reconcile([_vacation(), make_event("src-2", "Conference")], [TEAM_1], OWNER)

    assert result.created == []
    assert len(result.skipped) == 2


def test_insert_failure_is_isolated_per_calendar(store, reconciler) -> None:
    store.fail_insert.add((TEAM_1, TITLE))

    result = reconciler.reconcile([_vacation()], [TEAM_1, TEAM_2], OWNER)

    assert [e.calendar_id for e in result.created] == [TEAM_2]
    assert len(result.failed) == 1
    failed = result.failed[0]
    assert (failed.calendar_id, failed.summary, failed.error) == (TEAM_1, TITLE, "insert rejected")
    assert store.summaries(TEAM_2) == [TITLE]


def test_insert_failure_does_not_stop_other_events(store, reconciler) -> None:
    store.fail_insert.add((TEAM_1, TITLE))
    other = make_event("src-2", "PTO", start="2025-07-01", end="2025-07-02")

    result = reconciler.reconcile([_vacation(), other], [TEAM_1], OWNER)

    assert [e.summary for e in result.created] == ["Alex - OOO: PTO"]
    assert [e.summary for e in result.failed] == [TITLE]


def test_lookup_failure_inserts_anyway_by_default(store, reconciler) -> None:
    _seed_mirror(store, TEAM_1, TITLE, "old")
    store.fail_list_if = _is_lookup

    result = reconciler.reconcile([_vacation()], [TEAM_1], OWNER)

    # best effort: the duplicate is accepted and survives cleanup
    assert [e.summary for e in result.created] == [TITLE]
    assert result.failed == []
    assert result.deleted == []
    assert store.summaries(TEAM_1) == [TITLE, TITLE]


def test_lookup_failure_is_recorded_in_strict_mode(store) -> None:
    store.fail_list_if = _is_lookup
    rec = Reconciler(store, policy=LookupFailurePolicy.STRICT, clock=lambda: NOW)

    result = rec.reconcile([_vacation()], [TEAM_1], OWNER)

    assert result.created == []
    assert len(result.failed) == 1
    assert result.failed[0].error == "lookup failed: backend error"
    assert store.inserts == []


def test_strict_policy_accepts_plain_string() -> None:
    rec = Reconciler(FakeEventStore(), policy="strict")
    assert rec.policy is LookupFailurePolicy.STRICT


def test_cleanup_listing_failure_is_one_failed_entry(store, reconciler) -> None:
    store.fail_list_if = lambda cal, lo, hi: not _is_lookup(cal, lo, hi)

    result = reconciler.reconcile([_vacation()], [TEAM_1], OWNER)

    assert len(result.created) == 1
    assert len(result.failed) == 1
    assert result.failed[0].summary == "Alex - OOO: *"
    assert result.failed[0].calendar_id == TEAM_1


def test_delete_failure_is_recorded_and_other_deletes_proceed(store, reconciler) -> None:
    _seed_mirror(store, TEAM_1, "Alex - OOO: Old trip", "a")
    _seed_mirror(store, TEAM_1, "Alex - OOO: Older trip", "b")
    store.fail_delete.add((TEAM_1, "a"))

    result = reconciler.reconcile([], [TEAM_1], OWNER)

    assert [e.event_id for e in result.deleted] == ["b"]
    assert [(f.summary, f.error) for f in result.failed] == [
        ("Alex - OOO: Old trip", "delete rejected")
    ]


def test_cleanup_window_bounds_follow_clock(store) -> None:
    rec = Reconciler(store, cleanup_back_days=7, cleanup_ahead_days=14, clock=lambda: NOW)

    rec.reconcile([], [TEAM_1], OWNER)

    assert store.lists == [(TEAM_1, NOW - timedelta(days=7), NOW + timedelta(days=14))]


def test_mirrors_outside_cleanup_window_are_left_alone(store) -> None:
    store.add(
        TEAM_1,
        event_payload("far", "Alex - OOO: Sabbatical", start="2026-03-01", end="2026-03-31"),
    )
    rec = Reconciler(store, cleanup_ahead_days=60, clock=lambda: NOW)

    result = rec.reconcile([], [TEAM_1], OWNER)

    assert result.deleted == []


def test_without_pruning_only_cancelled_titles_are_deleted(store, reconciler) -> None:
    _seed_mirror(store, TEAM_1, TITLE, "kept")
    _seed_mirror(store, TEAM_1, "Alex - OOO: Conference", "gone")
    cancelled = make_event("src-2", "Conference", status="cancelled")

    result = reconciler.reconcile([cancelled], [TEAM_1], OWNER, prune_missing=False)

    assert [e.event_id for e in result.deleted] == ["gone"]
    assert store.summaries(TEAM_1) == [TITLE]


def test_cancellation_only_removes_the_mirror_at_its_dates(store, reconciler) -> None:
    _seed_mirror(store, TEAM_1, TITLE, "june")
    store.add(
        TEAM_1,
        event_payload(
            "august", TITLE, start="2025-08-01", end="2025-08-08", transparency="transparent"
        ),
    )

    result = reconciler.reconcile(
        [_vacation(status="cancelled")], [TEAM_1], OWNER, prune_missing=False
    )

    assert [e.event_id for e in result.deleted] == ["june"]
    assert store.summaries(TEAM_1) == [TITLE]


def test_cancelled_event_without_dates_matches_by_title(store, reconciler) -> None:
    _seed_mirror(store, TEAM_1, TITLE, "old")
    bare = SourceEvent(id="src-1", summary="Vacation — Italy", status="cancelled")

    result = reconciler.reconcile([bare], [TEAM_1], OWNER, prune_missing=False)

    assert [e.event_id for e in result.deleted] == ["old"]


def test_pruning_is_limited_to_prune_window(store, reconciler) -> None:
    store.add(
        TEAM_1,
        event_payload("past", "Alex - OOO: Trip", start="2025-05-10", end="2025-05-17"),
    )
    store.add(
        TEAM_1,
        event_payload("far", "Alex - OOO: Sabbatical", start="2025-10-01", end="2025-10-31"),
    )
    _seed_mirror(store, TEAM_1, "Alex - OOO: Old trip", "stale")

    result = reconciler.reconcile(
        [], [TEAM_1], OWNER, prune_window=(NOW, NOW + timedelta(days=90))
    )

    assert [e.event_id for e in result.deleted] == ["stale"]
    assert store.summaries(TEAM_1) == ["Alex - OOO: Sabbatical", "Alex - OOO: Trip"]


def test_dry_run_records_actions_without_writing(store) -> None:
    _seed_mirror(store, TEAM_1, "Alex - OOO: Old trip", "stale")
    rec = Reconciler(store, dry_run=True, clock=lambda: NOW)

    result = rec.reconcile([_vacation()], [TEAM_1], OWNER)

    assert result.created == [SyncEntry(TEAM_1, TITLE, None)]
    assert result.deleted == [SyncEntry(TEAM_1, "Alex - OOO: Old trip", "stale")]
    assert store.inserts == []
    assert store.deletes == []
    assert store.summaries(TEAM_1) == ["Alex - OOO: Old trip"]


def test_duplicate_targets_are_processed_once(store, reconciler) -> None:
    result = reconciler.reconcile([_vacation()], [TEAM_1, TEAM_1], OWNER)

    assert len(result.created) == 1
    assert store.inserts == [(TEAM_1, TITLE)]


def test_timed_event_window_is_used_for_lookup(store, reconciler) -> None:
    ev = make_event(
        "src-3",
        "Doctor (OOO)",
        start="2025-06-02T13:00:00+02:00",
        end="2025-06-02T17:00:00+02:00",
    )
    reconciler.reconcile([ev], [TEAM_1], OWNER)
    store.reset_counters()

    result = reconciler.reconcile([ev], [TEAM_1], OWNER)

    assert len(result.skipped) == 1
    lookup = store.lists[0]
    assert lookup[1:] == ev.window()


def test_concurrent_targets_merge_in_target_order(store) -> None:
    targets = [f"team-cal-{i}" for i in range(1, 6)]
    rec = Reconciler(store, max_workers=4, clock=lambda: NOW)

    result = rec.reconcile([_vacation()], targets, OWNER)

    assert [e.calendar_id for e in result.created] == targets
    for cal in targets:
        assert store.summaries(cal) == [TITLE]
