"""Tests for failure event construction and reporting."""

import logging
from unittest.mock import AsyncMock

from core.errors import RetrievalError
from core.types import ErrorCategory
from firebase_ingest.events import EventNormalizer
from firebase_ingest.failures import (
    FAILURE_FIELD,
    FAILURE_TAG,
    FailureReporter,
    format_backtrace,
)
from firebase_ingest.queries import QuerySpec

USERS = QuerySpec(name="users", path="users", limitToFirst=5)


def _raised(error: Exception) -> Exception:
    try:
        raise error
    except Exception as e:
        return e


class TestFormatBacktrace:

    def test_never_raised(self):
        assert format_backtrace(ValueError("x")) == []

    def test_raised(self):
        lines = format_backtrace(_raised(ValueError("x")))
        assert lines[0].startswith("Traceback")
        assert lines[-1] == "ValueError: x"


class TestFailureReporter:

    def test_build_failure_event(self, normalizer, queue_sink):
        reporter = FailureReporter(normalizer, queue_sink)
        error = _raised(RetrievalError("HTTP 404: users", category=ErrorCategory.PERMANENT))

        event = reporter.build("users", USERS, error, 1.25)

        assert FAILURE_TAG in event.tags
        failure = event.get(FAILURE_FIELD)
        assert failure["query"] == {"path": "users", "limitToFirst": 5}
        assert failure["query_name"] == "users"
        assert failure["error"] == "HTTP 404: users"
        assert failure["runtime_seconds"] == 1.25
        assert failure["backtrace"][-1].endswith("HTTP 404: users")
        assert event.get("[@metadata][event]") == "error"
        assert event.get("[@metadata][query_name]") == "users"

    def test_unknown_elapsed_is_zero(self, normalizer, queue_sink):
        event = FailureReporter(normalizer, queue_sink).build("users", USERS, ValueError(), None)
        assert event.get(f"[{FAILURE_FIELD}][runtime_seconds]") == 0.0
        assert event.get(f"[{FAILURE_FIELD}][error]") == "ValueError"
        assert event.get("[@metadata][runtime_seconds]") is None

    def test_failure_event_decorated(self, queue_sink):
        normalizer = EventNormalizer(host="h", tags=["firebase"], add_field={"q": "%{[@metadata][query_name]}"})
        event = FailureReporter(normalizer, queue_sink).build("users", USERS, ValueError("x"), 0.1)

        assert event.tags == [FAILURE_TAG, "firebase"]
        assert event.get("q") == "users"

    async def test_report_emits(self, normalizer, queue_sink):
        reporter = FailureReporter(normalizer, queue_sink)

        event = await reporter.report("users", USERS, ValueError("x"), 0.2)

        assert queue_sink.drain() == [event]
        assert reporter.reported == 1
        assert reporter.dropped == 0

    async def test_report_never_raises(self, normalizer, caplog):
        sink = AsyncMock()
        sink.emit.side_effect = RuntimeError("sink closed")
        reporter = FailureReporter(normalizer, sink)

        with caplog.at_level(logging.ERROR):
            result = await reporter.report("users", USERS, ValueError("x"), 0.2)

        assert result is None
        assert reporter.dropped == 1
        assert reporter.reported == 0
        assert "Cannot send Firebase query failure as an event" in caplog.text
