"""SQLite store for the caller-owned SyncState.

One row per owner (the key is the configured display name unless the caller picks
another): target calendar ids, display name and the last successful sync instant.
The reconciliation engine never touches this store; the orchestrator reads a
SyncState before a run and saves the advanced value afterwards.

Example
  from ooosync.state import StateStore
  with StateStore("/data/state.sqlite") as st:
      st.save("alex", SyncState(("team@group.calendar.google.com",), "Alex"))
      print(st.get("alex"))
"""

from __future__ import annotations

import json
import logging
import sqlite3
import stat
from datetime import UTC, datetime
from pathlib import Path

from .models import SyncState
from .utils.timezones import parse_rfc3339, to_rfc3339

__all__ = ["StateStore"]

log = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return to_rfc3339(datetime.now(tz=UTC))


class StateStore:
    """SQLite-backed SyncState store. Single-process use; not thread-safe."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = self._connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def __enter__(self) -> StateStore:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: object | None,
    ) -> None:
        self.close()

    # -------------
    # Connection
    # -------------

    def _connect(self, db_path: str) -> sqlite3.Connection:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path), timeout=30.0)
        try:
            path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 600
        except OSError as e:
            log.warning(
                "Could not set restrictive permissions on database file %s: %s", path, e
            )
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA busy_timeout=5000;")
        return conn

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("StateStore is closed")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # -------------
    # Schema
    # -------------

    def _init_schema(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sync_state (
              owner TEXT PRIMARY KEY,
              display_name TEXT NOT NULL,
              target_calendar_ids TEXT NOT NULL,   -- JSON array
              last_sync TEXT,                      -- RFC3339 UTC or NULL
              updated_at TEXT NOT NULL
            );
            """
        )
        self.conn.commit()

    # -------------
    # SyncState
    # -------------

    def get(self, owner: str) -> SyncState | None:
        row = self.conn.execute(
            """
            SELECT display_name, target_calendar_ids, last_sync
            FROM sync_state WHERE owner = ?;
            """,
            (owner,),
        ).fetchone()
        if not row:
            return None
        return SyncState(
            target_calendar_ids=tuple(json.loads(row["target_calendar_ids"] or "[]")),
            display_name=row["display_name"],
            last_sync=parse_rfc3339(row["last_sync"]),
        )

    def save(self, owner: str, state: SyncState) -> None:
        self.conn.execute(
            """
            INSERT INTO sync_state(owner, display_name, target_calendar_ids, last_sync, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(owner) DO UPDATE SET
                display_name = excluded.display_name,
                target_calendar_ids = excluded.target_calendar_ids,
                last_sync = excluded.last_sync,
                updated_at = excluded.updated_at;
            """,
            (
                owner,
                state.display_name,
                json.dumps(list(state.target_calendar_ids)),
                to_rfc3339(state.last_sync) if state.last_sync else None,
                _utc_now_iso(),
            ),
        )
        self.conn.commit()

    def reset_last_sync(self, owner: str) -> None:
        """Forget the last sync instant so the next run is a full sync."""
        self.conn.execute(
            "UPDATE sync_state SET last_sync = NULL, updated_at = ? WHERE owner = ?;",
            (_utc_now_iso(), owner),
        )
        self.conn.commit()
