import json
import logging
import sys
from io import StringIO
from unittest.mock import patch

import pytest

from ooosync.logging import (
    _EMAIL_RE,
    _TOKEN_RE,
    JsonFormatter,
    RedactingFilter,
    _mask_email,
    _mask_token,
    mask_pii,
    setup_logging,
)


def _record(msg, args=(), name="ooosync.test") -> logging.LogRecord:
    return logging.LogRecord(
        name=name,
        level=logging.INFO,
        pathname="",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None,
    )


class TestMaskPII:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("alex@example.com", "a***x@example.com"),
            ("ab@b.co", "*@b.co"),
            (
                "team-cal@group.calendar.google.com",
                "t***l@group.calendar.google.com",
            ),
            ("Listing for jane.doe@company.com failed", "Listing for j***e@company.com failed"),
        ],
    )
    def test_mask_email_addresses(self, text, expected):
        assert mask_pii(text) == expected

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("access_token: abcd1234567890", "access_token: abcd********7890"),
            ("refresh-token=xyz987654321abc", "refresh-token: xyz9********1abc"),
            ("ID_TOKEN: verylongtokenvalue123", "ID_TOKEN: very********e123"),
            ("token: short", "token: short"),
        ],
    )
    def test_mask_tokens(self, text, expected):
        assert mask_pii(text) == expected

    def test_event_titles_are_left_alone(self):
        assert mask_pii("mirror-created 'Alex - OOO: Vacation'") == (
            "mirror-created 'Alex - OOO: Vacation'"
        )

    def test_mask_empty_or_none(self):
        assert mask_pii("") == ""
        assert mask_pii(None) is None  # type: ignore

    def test_helpers(self):
        email = _EMAIL_RE.search("test.user@example.com")
        assert email is not None
        assert _mask_email(email) == "t***r@example.com"

        token = _TOKEN_RE.search("access_token: abcdef123456")
        assert token is not None
        assert _mask_token(token) == "access_token: abcd********3456"


class TestRedactingFilter:
    def test_filter_masks_rendered_message_and_args(self):
        record = _record("Listing %s for %s", ("alex@example.com", "Alex"))

        assert RedactingFilter().filter(record) is True
        assert record.msg == "Listing a***x@example.com for Alex"
        assert record.args is None
        assert record.getMessage() == "Listing a***x@example.com for Alex"

    def test_filter_masks_known_extras(self):
        record = _record("mirror-created")
        record.calendar_id = "team@group.calendar.google.com"  # type: ignore
        record.access_token = "abc123def456ghi789"  # type: ignore
        record.refresh_token = "short"  # type: ignore
        record.summary = "Alex - OOO: Vacation"  # type: ignore

        RedactingFilter().filter(record)

        assert record.calendar_id == "t***m@group.calendar.google.com"  # type: ignore
        assert record.access_token == "abc1********i789"  # type: ignore
        assert record.refresh_token == "********"  # type: ignore
        assert record.summary == "Alex - OOO: Vacation"  # type: ignore

    def test_filter_ignores_non_string_values(self):
        record = _record(None)
        record.email = 12345  # type: ignore

        assert RedactingFilter().filter(record) is True
        assert record.email == 12345  # type: ignore


class TestJsonFormatter:
    def test_basic_fields(self):
        record = _record("Sync completed: %d created", (1,), name="ooosync.sync.reconciler")
        record.funcName = "reconcile"

        parsed = json.loads(JsonFormatter().format(record))

        assert parsed["level"] == "INFO"
        assert parsed["name"] == "ooosync.sync.reconciler"
        assert parsed["msg"] == "Sync completed: 1 created"
        assert parsed["funcName"] == "reconcile"
        assert parsed["lineno"] == 1
        assert "ts" in parsed

    def test_extras_are_masked_and_typed(self):
        record = _record("cleanup-list-failed")
        record.calendar_id = "team@group.calendar.google.com"  # type: ignore
        record.count = 5  # type: ignore
        record.dry_run = True  # type: ignore
        record.details = {"owner": "alex@example.com"}  # type: ignore
        record.opaque = object()  # type: ignore

        parsed = json.loads(JsonFormatter().format(record))

        assert parsed["calendar_id"] == "t***m@group.calendar.google.com"
        assert parsed["count"] == 5
        assert parsed["dry_run"] is True
        assert parsed["details"] == {"owner": "a***x@example.com"}
        assert parsed["opaque"] == "[object]"

    def test_exception_is_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord(
                "ooosync", logging.ERROR, "", 1, "sync-run-failed", (), sys.exc_info()
            )

        parsed = json.loads(JsonFormatter().format(record))

        assert "RuntimeError: boom" in parsed["exc"]


class TestSetupLogging:
    def test_console_format(self):
        with patch("sys.stdout", new_callable=StringIO):
            setup_logging(level="DEBUG", json=False)

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        handler = root.handlers[0]
        assert any(isinstance(f, RedactingFilter) for f in handler.filters)
        assert not isinstance(handler.formatter, JsonFormatter)

    def test_environment_forces_json(self, monkeypatch):
        monkeypatch.setenv("OOOSYNC_FORCE_JSON_LOGS", "true")

        with patch("sys.stdout", new_callable=StringIO):
            setup_logging(level="INFO", json=False)

        assert isinstance(logging.getLogger().handlers[0].formatter, JsonFormatter)

    def test_end_to_end_redaction(self):
        output = StringIO()

        with patch("sys.stdout", output):
            setup_logging(level="INFO", json=True)
            logging.getLogger("ooosync.test").info(
                "Authorized alex@example.com with token abc123def456"
            )

        parsed = json.loads(output.getvalue().strip().splitlines()[-1])
        assert "a***x@example.com" in parsed["msg"]
        assert "token: abc1********f456" in parsed["msg"]
        assert parsed["name"] == "ooosync.test"

    def test_third_party_levels(self):
        with patch("sys.stdout", new_callable=StringIO):
            setup_logging(level="DEBUG", json=False)

        assert logging.getLogger("googleapiclient").level == logging.WARNING
        assert logging.getLogger("google").level == logging.WARNING
        assert logging.getLogger("urllib3").level == logging.WARNING
