"""Google Calendar API client used as the engine's event store.

Features
- Windowed event listing with pagination, expanded to single instances.
- "Modified since" listing via updatedMin with showDeleted=True, so cancelled
  events are returned and the cleanup pass can act on them.
- Insert/delete of mirrored events.
- Calendar list for choosing target calendars.
- Safe to share across threads: each thread executes requests on its own
  AuthorizedHttp.

Errors
- Listing failures raise FetchError, insert/delete failures raise WriteError;
  both carry the calendar id, provider message and HTTP status.
- Deleting an event that is already gone (404/410) is treated as success.

Refs:
- https://developers.google.com/calendar/api/v3/reference/events/list
- https://developers.google.com/calendar/api/v3/reference/events/insert
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httplib2
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build as gapi_build
from googleapiclient.errors import HttpError

from ..errors import FetchError, WriteError
from ..models import MirrorDraft, MirroredEvent, SourceEvent
from ..utils.retry import RetryConfig, execute_with_retries, http_status
from ..utils.timezones import to_rfc3339

__all__ = ["CalendarClient", "CalendarInfo"]

logger = logging.getLogger(__name__)

_GONE_STATUSES = (404, 410)


@dataclass(frozen=True)
class CalendarInfo:
    id: str
    summary: str
    access_role: str | None
    primary: bool = False


def _error_message(exc: Exception) -> str:
    if isinstance(exc, HttpError):
        reason = getattr(exc, "reason", None)
        if reason:
            return str(reason)
    return str(exc) or type(exc).__name__


class CalendarClient:
    def __init__(
        self,
        credentials: Any,
        *,
        retry: RetryConfig | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.retry = retry or RetryConfig()
        self._credentials = credentials
        self._timeout = timeout
        self._local = threading.local()
        self._svc = gapi_build("calendar", "v3", http=self._http(), cache_discovery=False)

    def _http(self) -> AuthorizedHttp:
        """Return this thread's authorized transport; httplib2.Http is not thread-safe."""
        http = getattr(self._local, "http", None)
        if http is None:
            http = AuthorizedHttp(self._credentials, http=httplib2.Http(timeout=self._timeout))
            self._local.http = http
        return http

    def list_events(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        *,
        modified_since: datetime | None = None,
        query: str | None = None,
        page_size: int = 250,
    ) -> list[SourceEvent]:
        """Return events overlapping [time_min, time_max) on a calendar.

        With `modified_since`, only events updated after that instant are returned,
        cancelled ones included.
        """
        params: dict[str, Any] = {
            "calendarId": calendar_id,
            "timeMin": to_rfc3339(time_min),
            "timeMax": to_rfc3339(time_max),
            "singleEvents": True,
            "orderBy": "startTime",
            "maxResults": page_size,
        }
        if modified_since is not None:
            params["updatedMin"] = to_rfc3339(modified_since)
            params["showDeleted"] = True
        if query:
            params["q"] = query

        events: list[SourceEvent] = []
        page_token: str | None = None
        while True:
            req = self._svc.events().list(pageToken=page_token, **params)
            try:
                resp = execute_with_retries(req, self.retry, http=self._http())
            except Exception as exc:
                raise FetchError(
                    calendar_id, _error_message(exc), status=http_status(exc)
                ) from exc
            for item in resp.get("items", []) or []:
                if not item.get("id"):
                    continue
                events.append(SourceEvent.from_api(item))
            page_token = resp.get("nextPageToken")
            if not page_token:
                break

        logger.debug("listed %d events", len(events), extra={"calendar_id": calendar_id})
        return events

    def insert_event(self, calendar_id: str, draft: MirrorDraft) -> MirroredEvent:
        req = self._svc.events().insert(calendarId=calendar_id, body=draft.to_api())
        try:
            created = execute_with_retries(req, self.retry, http=self._http())
        except Exception as exc:
            raise WriteError(calendar_id, _error_message(exc), status=http_status(exc)) from exc
        return MirroredEvent(
            calendar_id=calendar_id,
            id=str(created.get("id") or ""),
            summary=created.get("summary") or draft.summary,
            start=created.get("start") or dict(draft.start),
            end=created.get("end") or dict(draft.end),
        )

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        req = self._svc.events().delete(calendarId=calendar_id, eventId=event_id)
        try:
            execute_with_retries(req, self.retry, http=self._http())
        except Exception as exc:
            status = http_status(exc)
            if status in _GONE_STATUSES:
                logger.info(
                    "event %s already gone (%s)",
                    event_id,
                    status,
                    extra={"calendar_id": calendar_id},
                )
                return
            raise WriteError(calendar_id, _error_message(exc), status=status) from exc

    def list_calendars(self) -> list[CalendarInfo]:
        out: list[CalendarInfo] = []
        page_token: str | None = None
        while True:
            req = self._svc.calendarList().list(pageToken=page_token)
            try:
                resp = execute_with_retries(req, self.retry, http=self._http())
            except Exception as exc:
                raise FetchError(
                    "calendarList", _error_message(exc), status=http_status(exc)
                ) from exc
            for item in resp.get("items", []) or []:
                out.append(
                    CalendarInfo(
                        id=item.get("id", ""),
                        summary=item.get("summaryOverride") or item.get("summary") or "",
                        access_role=item.get("accessRole"),
                        primary=bool(item.get("primary")),
                    )
                )
            page_token = resp.get("nextPageToken")
            if not page_token:
                break
        return out
