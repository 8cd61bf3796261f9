"""
test_logging_config.py — Log formatting and request binding.

Covers:
    • JSON lines carry delivery trace fields and the bound request
    • Console lines append trace fields as key=value
    • Request binding is released after each request

Run with:
    pytest tests/test_logging_config.py -v
"""

from __future__ import annotations

import json
import logging

from backend.safecheck.core.logging_config import (
    JSONFormatter,
    PrettyFormatter,
    bind_request,
    current_request,
    release_request,
)


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

def _make_record(msg: str = "Queued MSG-1", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="backend.safecheck.alerts.offline_queue",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Formatters
# ═══════════════════════════════════════════════════════════════════════════

class TestJSONFormatter:

    def test_delivery_fields_and_request(self):
        token = bind_request("req-1234567890", "/api/v1/checkins")
        try:
            line = JSONFormatter().format(
                _make_record(check_in_id="CHK-1", channel="queued", attempt_count=0),
            )
        finally:
            release_request(token)

        entry = json.loads(line)
        assert entry["message"] == "Queued MSG-1"
        assert entry["check_in_id"] == "CHK-1"
        assert entry["channel"] == "queued"
        assert entry["attempt_count"] == 0
        assert entry["request"] == {"request_id": "req-1234567890", "endpoint": "/api/v1/checkins"}

    def test_no_request_outside_http(self):
        entry = json.loads(JSONFormatter().format(_make_record()))
        assert "request" not in entry
        assert "check_in_id" not in entry


class TestPrettyFormatter:

    def test_trace_fields_trail_message(self):
        line = PrettyFormatter().format(_make_record(recipient_id="C-42", channel="sms"))
        assert line.endswith("Queued MSG-1 recipient_id=C-42 channel=sms")

    def test_request_id_prefix(self):
        token = bind_request("abcdef0123456789", "/api/v1/queue")
        try:
            line = PrettyFormatter().format(_make_record())
        finally:
            release_request(token)
        assert "[abcdef01]" in line


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Request binding
# ═══════════════════════════════════════════════════════════════════════════

class TestRequestBinding:

    def test_release_restores_previous(self):
        assert current_request() is None
        token = bind_request("r1", "/")
        assert current_request().request_id == "r1"
        release_request(token)
        assert current_request() is None
