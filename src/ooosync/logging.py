"""Structured logging with optional JSON output and secret redaction.

Exports:
- setup_logging(level: str = "INFO", json: bool = False) -> None
- mask_pii(text: str) -> str

Redaction:
- Email addresses (calendar ids of personal calendars are e-mail addresses):
  local-part masked except first/last char: a***z@example.com
- Token-like values (access/refresh/id/auth token) are partially masked

Notes:
- Group calendar ids (…@group.calendar.google.com) are masked like any e-mail.
- Event titles are logged as-is; they are the mirror identity and needed for ops.
"""

from __future__ import annotations

import json
import logging
import os
import re
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, ClassVar

__all__ = ["JsonFormatter", "RedactingFilter", "mask_pii", "setup_logging"]


_EMAIL_RE = re.compile(r"(?P<user>[A-Za-z0-9._%+-]{1,64})@(?P<host>[A-Za-z0-9.-]+\.[A-Za-z]{2,})")
_TOKEN_RE = re.compile(
    r"(?i)(?:(?P<prefix>access|refresh|id|auth)(?P<join>[_\- ]?)|)(?P<key>token)(?P<sep>\s*[:=]?\s*)(?P<val>[A-Za-z0-9\-_\.]{10,})"
)


def _mask_email(match: re.Match[str]) -> str:
    user = match.group("user")
    host = match.group("host")
    masked_user = "*" if len(user) <= 2 else f"{user[0]}***{user[-1]}"
    return f"{masked_user}@{host}"


def _mask_token(match: re.Match[str]) -> str:
    val = match.group("val")
    prefix_txt = match.group("prefix") or ""
    join_txt = match.group("join") or ""
    key_txt = match.group("key")
    masked = "********" if len(val) <= 8 else f"{val[:4]}********{val[-4:]}"
    full_key = f"{prefix_txt}{join_txt}{key_txt}"
    return f"{full_key}: {masked}"


def mask_pii(text: str) -> str:
    """Mask e-mail addresses and token values in freeform text."""
    if not text:
        return text
    return _TOKEN_RE.sub(_mask_token, _EMAIL_RE.sub(_mask_email, text))


def _mask_extra_token(val: str) -> str:
    return f"{val[:4]}********{val[-4:]}" if len(val) >= 10 else "********"


class RedactingFilter(logging.Filter):
    """Redacts record messages, their %-args and selected extras."""

    TOKEN_EXTRA_KEYS: ClassVar[set[str]] = {"access_token", "refresh_token", "id_token"}
    TEXT_EXTRA_KEYS: ClassVar[set[str]] = {"email", "calendar_id", "owner"}

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            # Render now so args (calendar ids, summaries) are redacted as well
            try:
                rendered = record.getMessage()
            except (TypeError, ValueError):
                rendered = record.msg
            record.msg = mask_pii(rendered)
            record.args = None
            record._pii_redacted = True

        for key in self.TOKEN_EXTRA_KEYS:
            val = record.__dict__.get(key)
            if isinstance(val, str):
                record.__dict__[key] = _mask_extra_token(val)
        for key in self.TEXT_EXTRA_KEYS:
            val = record.__dict__.get(key)
            if isinstance(val, str):
                record.__dict__[key] = mask_pii(val)
        return True


class JsonFormatter(logging.Formatter):
    """Minimal JSON formatter.

    Fields:
    - ts (ISO8601), level, name, msg, funcName, lineno, module and custom extras.
    """

    _DEFAULT_ATTRS: ClassVar[frozenset[str]] = frozenset(
        vars(logging.LogRecord("", 0, "", 0, "", (), None))
    ) | {"message", "asctime", "_pii_redacted"}

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        base: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "msg": msg if getattr(record, "_pii_redacted", False) else mask_pii(msg),
        }
        for attr in ("funcName", "lineno", "module"):
            base[attr] = getattr(record, attr, None)

        for k, v in record.__dict__.items():
            if k in self._DEFAULT_ATTRS:
                continue
            if isinstance(v, str):
                base[k] = mask_pii(v)
            elif isinstance(v, int | float | bool) or v is None:
                base[k] = v
            elif isinstance(v, Mapping):
                base[k] = {
                    str(kk): (mask_pii(vv) if isinstance(vv, str) else vv)
                    for kk, vv in list(v.items())[:20]
                }
            else:
                base[k] = f"[{type(v).__name__}]"

        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)

        return json.dumps(base, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", json: bool = False) -> None:
    """Configure the root logger for CLI execution.

    - Level from config or CLI flag (DEBUG/INFO/WARNING/ERROR)
    - JSON or console formatting
    - Redaction filter on the handler
    """
    if os.getenv("OOOSYNC_FORCE_JSON_LOGS", "").lower() in {"1", "true", "yes"}:
        json = True

    # Reset handlers in case of repeated setup in tests
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.addFilter(RedactingFilter())

    if json:
        fmt: logging.Formatter = JsonFormatter()
    else:
        fmt = logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    handler.setFormatter(fmt)
    root.addHandler(handler)

    # Reduce noise from third-party libs at default INFO
    for name in ("googleapiclient", "google", "google_auth_httplib2", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)
