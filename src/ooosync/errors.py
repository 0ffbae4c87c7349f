"""Error kinds raised by the calendar provider layer.

- FetchError: listing events failed. Fatal to a run only when it hits the
  source calendar; on a target calendar it is recorded per calendar/event.
- WriteError: insert/delete failed. Always recorded per event, never fatal.
"""

from __future__ import annotations

__all__ = ["FetchError", "OOOSyncError", "ProviderError", "WriteError"]


class OOOSyncError(RuntimeError):
    pass


class ProviderError(OOOSyncError):
    """Remote calendar provider failure for one calendar."""

    def __init__(self, calendar_id: str, message: str, *, status: int | None = None) -> None:
        self.calendar_id = calendar_id
        self.message = message
        self.status = status
        super().__init__(f"{calendar_id}: {message}")


class FetchError(ProviderError):
    pass


class WriteError(ProviderError):
    pass
