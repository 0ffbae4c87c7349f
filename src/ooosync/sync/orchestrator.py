"""Top-level sync orchestration.

Responsibilities
- full_sync_process: fetch source events, classify, reconcile (the engine entry point)
- Orchestrator: the calling context around it: single-run lock, SyncState
  load/persist, credentials, client construction, exit code

Exit codes
- 0: success
- 2: partial (failures recorded in the result)
- 3: fatal (lock, configuration, auth, or the source calendar could not be read)
"""

from __future__ import annotations

import errno
import logging
import os
from collections.abc import Sequence
from datetime import UTC, datetime
from types import TracebackType

from ..config import AppConfig
from ..errors import FetchError
from ..google.auth import SCOPES_CALENDAR, get_credentials
from ..google.calendar import CalendarClient
from ..models import FetchParams, ProcessResult, SyncState
from ..state import StateStore
from ..utils.retry import RetryConfig
from .classifier import OOOClassifier
from .planner import SYNC_FULL, advance_state, plan_fetch_window
from .reconciler import EventStore, LookupFailurePolicy, Reconciler

__all__ = ["FileLock", "Orchestrator", "build_calendar_client", "full_sync_process"]

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL = 2
EXIT_FATAL = 3


def full_sync_process(
    client: EventStore,
    fetch_params: FetchParams,
    target_calendars: Sequence[str],
    owner_display_name: str,
    *,
    classifier: OOOClassifier | None = None,
    reconciler: Reconciler | None = None,
    source_calendar_id: str = "primary",
) -> ProcessResult:
    """Fetch, classify and reconcile one owner's OOO events.

    A FetchError on the source calendar propagates: there is nothing to reconcile
    against. Everything after that is reported through the result.
    """
    classifier = classifier or OOOClassifier()
    reconciler = reconciler or Reconciler(client)

    log.info(
        "Searching for OOO events between %s and %s (%s)",
        fetch_params.time_min.isoformat(),
        fetch_params.time_max.isoformat(),
        fetch_params.sync_type,
    )
    events = client.list_events(
        source_calendar_id,
        fetch_params.time_min,
        fetch_params.time_max,
        modified_since=fetch_params.modified_since,
    )
    ooo_events = classifier.filter(events)

    result = reconciler.reconcile(
        ooo_events,
        target_calendars,
        owner_display_name,
        prune_missing=fetch_params.sync_type == SYNC_FULL,
        prune_window=(fetch_params.time_min, fetch_params.time_max),
    )
    return ProcessResult(
        result=result,
        event_count=len(ooo_events),
        sync_type=fetch_params.sync_type,
        fetch_params=fetch_params,
        finished_at=datetime.now(tz=UTC),
    )


def build_calendar_client(cfg: AppConfig, *, allow_interactive: bool = True) -> CalendarClient:
    """Authorize and construct the Google Calendar client from configuration."""
    creds = get_credentials(cfg.google, scopes=SCOPES_CALENDAR, allow_interactive=allow_interactive)
    retry = RetryConfig(
        max_retries=cfg.sync.max_retries,
        backoff_initial_sec=cfg.sync.backoff_initial_sec,
    )
    return CalendarClient(creds, retry=retry, timeout=cfg.sync.request_timeout_sec)


class FileLock:
    """Simple non-blocking PID file lock using O_CREAT|O_EXCL.

    Lock is removed on explicit release; a lock left by a dead process is reclaimed.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._fd: int | None = None

    def _create(self) -> None:
        self._fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        os.write(self._fd, str(os.getpid()).encode("utf-8"))
        os.fsync(self._fd)

    def acquire(self) -> None:
        try:
            self._create()
        except OSError as e:
            if e.errno != errno.EEXIST:
                raise
            if self._is_stale_lock():
                log.warning("Removing stale lock file at %s", self.path)
                try:
                    os.unlink(self.path)
                    self._create()
                    return
                except OSError:
                    # Another process might have created the lock in the meantime
                    pass
            raise RuntimeError(f"Another instance is running (lock exists at {self.path})") from e

    def _is_stale_lock(self) -> bool:
        """True when the lock file holds no PID or the PID of a process that is gone."""
        try:
            with open(self.path, encoding="utf-8") as f:
                pid_str = f.read().strip()
        except (FileNotFoundError, PermissionError):
            return True
        if not pid_str.isdigit():
            return True
        try:
            os.kill(int(pid_str), 0)  # signal 0 only checks existence
        except OSError:
            return True
        return False

    def release(self) -> None:
        if self._fd is not None:
            try:
                os.close(self._fd)
            except OSError:
                pass
            self._fd = None
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass

    def __enter__(self) -> FileLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


class Orchestrator:
    def __init__(self, cfg: AppConfig, *, client: EventStore | None = None) -> None:
        self.cfg = cfg
        self._client = client

    def _owner_key(self) -> str:
        return self.cfg.sync.display_name or ""

    def _build_client(self) -> EventStore:
        if self._client is not None:
            return self._client
        self._client = build_calendar_client(self.cfg)
        return self._client

    def _build_reconciler(self, client: EventStore) -> Reconciler:
        sc = self.cfg.sync
        return Reconciler(
            client,
            policy=LookupFailurePolicy(sc.lookup_failure_policy),
            cleanup_back_days=sc.cleanup_back_days,
            cleanup_ahead_days=sc.cleanup_ahead_days,
            max_workers=sc.max_workers,
            dry_run=sc.dry_run,
            match_any_owner_mirror=sc.match_any_owner_mirror,
        )

    def resolve_state(self, store: StateStore) -> SyncState:
        """Merge the persisted SyncState with configured targets and display name.

        A change of target calendars forgets last_sync so the new targets get a full run.
        """
        sc = self.cfg.sync
        if not sc.display_name:
            raise ValueError("sync.display_name is required")
        stored = store.get(self._owner_key())
        targets = tuple(sc.target_calendar_ids) or (stored.target_calendar_ids if stored else ())
        if not targets:
            raise ValueError("At least one target calendar id is required")
        last_sync = stored.last_sync if stored else None
        if stored and set(stored.target_calendar_ids) != set(targets):
            log.info("target-calendars-changed; forcing full sync")
            last_sync = None
        return SyncState(
            target_calendar_ids=targets, display_name=sc.display_name, last_sync=last_sync
        )

    def run(self, *, force_full: bool = False) -> tuple[int, ProcessResult | None]:
        """Run one sync for the configured owner; returns exit code and result."""
        lock_path = self.cfg.runtime.lock_path
        log.info("acquiring-lock %s", lock_path)
        lock = FileLock(lock_path)
        try:
            lock.acquire()
        except (RuntimeError, OSError) as e:
            log.error("lock-failed %s", e)
            return EXIT_FATAL, None

        try:
            with StateStore(self.cfg.state.db_path) as store:
                try:
                    state = self.resolve_state(store)
                    client = self._build_client()
                except Exception:
                    log.exception("sync-init-failed")
                    return EXIT_FATAL, None

                # last_sync advances to the run start so edits made mid-run are seen next time
                started = datetime.now(tz=UTC)
                params = plan_fetch_window(
                    state.last_sync,
                    force_full,
                    lookahead_days=self.cfg.sync.lookahead_days,
                    now=started,
                )
                try:
                    processed = full_sync_process(
                        client,
                        params,
                        state.target_calendar_ids,
                        state.display_name,
                        classifier=OOOClassifier(self.cfg.sync.ooo_keywords),
                        reconciler=self._build_reconciler(client),
                        source_calendar_id=self.cfg.google.source_calendar_id,
                    )
                except FetchError as e:
                    log.error("source-fetch-failed %s", e)
                    return EXIT_FATAL, None
                except Exception:
                    log.exception("sync-run-failed")
                    return EXIT_FATAL, None

                if not self.cfg.sync.dry_run:
                    store.save(self._owner_key(), advance_state(state, started))
        finally:
            lock.release()

        return (EXIT_OK if not processed.failed else EXIT_PARTIAL), processed
