"""Google OAuth credentials for the calendar client.

Responsibilities
- Load the OAuth client secret from GOOGLE_CREDENTIALS_JSON, GOOGLE_CREDENTIALS_FILE
  or google.credentials_file
- Reuse the stored user token (google.token_store), refreshing it headlessly
- Fall back to the installed-app consent flow when allowed

The sync engine only receives the resulting Credentials object; it never reads or
refreshes tokens itself.

Security
- Never log raw tokens; ooosync.logging redacts token-like strings.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from google.oauth2.credentials import Credentials

from ..config import GoogleConfig

__all__ = ["SCOPES_CALENDAR", "get_credentials"]

log = logging.getLogger(__name__)

# Read the owner's calendar, write mirrors on team calendars
SCOPES_CALENDAR: list[str] = [
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
]


def _read_client_config(google_cfg: GoogleConfig) -> dict[str, Any]:
    """Load the OAuth client JSON.

    Priority:
    - GOOGLE_CREDENTIALS_JSON (inline JSON)
    - GOOGLE_CREDENTIALS_FILE (path)
    - google_cfg.credentials_file
    """
    inline = os.getenv("GOOGLE_CREDENTIALS_JSON")
    if inline:
        try:
            return json.loads(inline)
        except json.JSONDecodeError as exc:
            raise ValueError("Invalid JSON in GOOGLE_CREDENTIALS_JSON") from exc

    file_path = os.getenv("GOOGLE_CREDENTIALS_FILE") or google_cfg.credentials_file
    if not file_path:
        raise ValueError(
            "Google credentials not provided. Set GOOGLE_CREDENTIALS_JSON, "
            "GOOGLE_CREDENTIALS_FILE or google.credentials_file"
        )
    p = Path(file_path)
    if not p.exists():
        raise FileNotFoundError(f"Google credentials file not found: {p}")
    with p.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _load_saved_credentials(token_store: str, scopes: Sequence[str]) -> Credentials | None:
    """Return stored Credentials for `scopes`, or None when absent or unreadable."""
    p = Path(token_store)
    if not p.exists():
        return None

    from google.oauth2.credentials import Credentials

    try:
        return Credentials.from_authorized_user_file(str(p), scopes=list(scopes))
    except (ValueError, OSError) as exc:
        log.warning("token-store-unreadable %s: %s", p, exc)
        return None


def _save_credentials(token_store: str, creds: Credentials) -> None:
    p = Path(token_store)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(creds.to_json(), encoding="utf-8")
    try:
        p.chmod(0o600)
    except OSError:
        log.warning("Could not restrict permissions on token store %s", p)


def _interactive_flow(client_config: dict[str, Any], scopes: Sequence[str]) -> Credentials:
    """Run the installed-app consent flow on a local loopback port."""
    from google_auth_oauthlib.flow import InstalledAppFlow

    flow = InstalledAppFlow.from_client_config(client_config, scopes=list(scopes))
    return flow.run_local_server(
        open_browser=True, host="localhost", port=0, authorization_prompt_message=""
    )


def _refresh_if_needed(creds: Credentials) -> None:
    from google.auth.transport.requests import Request

    if getattr(creds, "expired", False) and getattr(creds, "refresh_token", None):
        creds.refresh(Request())


def get_credentials(
    google_cfg: GoogleConfig,
    scopes: Sequence[str] = SCOPES_CALENDAR,
    *,
    allow_interactive: bool = True,
) -> Credentials:
    """Return Credentials usable by CalendarClient.

    - Stored token first, refreshed and written back when needed.
    - Otherwise the interactive consent flow, if allowed; else RuntimeError.
    """
    creds = _load_saved_credentials(google_cfg.token_store, scopes)
    if creds:
        _refresh_if_needed(creds)
        if getattr(creds, "valid", False):
            _save_credentials(google_cfg.token_store, creds)
            return creds
        log.info("stored-token-invalid; consent required")

    if not allow_interactive:
        raise RuntimeError(
            "No valid Google token found and allow_interactive=False. "
            "Run `ooosync calendars` interactively once to create the token store."
        )
    client_config = _read_client_config(google_cfg)
    creds = _interactive_flow(client_config, scopes)
    _save_credentials(google_cfg.token_store, creds)
    return creds
