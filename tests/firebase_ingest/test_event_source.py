"""Tests for the SSE parser and EventSource subscription loop."""

import asyncio

import aiohttp
import pytest

from core.errors import StreamError
from core.types import ErrorCategory
from firebase_ingest.client.event_source import EventSource, SSEParser


class FakeContent:
    def __init__(self, lines: list[str]):
        self._lines = [line.encode() + b"\n" for line in lines]

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for line in self._lines:
            yield line


class FakeResponse:
    def __init__(self, lines: list[str]):
        self.content = FakeContent(lines)
        self.released = False

    def release(self):
        self.released = True


class StreamingClient:
    """open_stream returns queued responses or raises queued errors."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.opened = 0
        self.invalidations = 0

    async def open_stream(self, path, query=None):
        self.opened += 1
        if not self.outcomes:
            await asyncio.Event().wait()
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def invalidate_auth(self):
        self.invalidations += 1


def _sse(kind: str, data: str) -> list[str]:
    return [f"event: {kind}", f"data: {data}", ""]


class Recorder:
    def __init__(self):
        self.messages = []
        self.errors = []

    async def on_message(self, kind, data):
        self.messages.append((kind, data))

    async def on_error(self, error):
        self.errors.append(error)


def _source(client, recorder, reconnect=None):
    source = EventSource(client, "users", retry_delay_seconds=0.01)
    source.on_message = recorder.on_message
    source.on_error = recorder.on_error
    if reconnect is not None:
        source.on_reconnect = reconnect
    return source


class TestSSEParser:

    def test_event_with_data(self):
        parser = SSEParser()
        assert parser.feed_line("event: put") is None
        assert parser.feed_line('data: {"path":"/","data":1}') is None
        assert parser.feed_line("") == ("put", '{"path":"/","data":1}')

    def test_multiline_data_and_crlf(self):
        parser = SSEParser()
        parser.feed_line("event: patch\r\n")
        parser.feed_line("data: a\r\n")
        parser.feed_line("data:b\r\n")
        assert parser.feed_line("\r\n") == ("patch", "a\nb")

    def test_comments_and_blank_lines_ignored(self):
        parser = SSEParser()
        assert parser.feed_line(": heartbeat") is None
        assert parser.feed_line("") is None

    def test_default_kind(self):
        parser = SSEParser()
        parser.feed_line("data: x")
        assert parser.feed_line("") == ("message", "x")

    def test_resets_between_events(self):
        parser = SSEParser()
        parser.feed_line("event: put")
        parser.feed_line("data: 1")
        parser.feed_line("")
        parser.feed_line("data: 2")
        assert parser.feed_line("") == ("message", "2")


class TestDispatch:

    async def test_put_and_patch_delivered(self):
        recorder = Recorder()
        source = _source(StreamingClient(), recorder)

        await source.dispatch("put", '{"path": "/", "data": {"a": 1}}')
        await source.dispatch("patch", '{"path": "/a", "data": 2}')

        assert recorder.messages == [
            ("put", {"path": "/", "data": {"a": 1}}),
            ("patch", {"path": "/a", "data": 2}),
        ]

    async def test_keep_alive_ignored(self):
        recorder = Recorder()
        await _source(StreamingClient(), recorder).dispatch("keep-alive", "null")
        assert recorder.messages == []
        assert recorder.errors == []

    async def test_cancel_is_permanent_error(self):
        recorder = Recorder()
        await _source(StreamingClient(), recorder).dispatch("cancel", '"Permission denied"')

        (error,) = recorder.errors
        assert isinstance(error, StreamError)
        assert error.category == ErrorCategory.PERMANENT
        assert "Permission denied" in str(error)

    async def test_auth_revoked_invalidates_auth(self):
        client = StreamingClient()
        recorder = Recorder()
        await _source(client, recorder).dispatch("auth_revoked", '"credential expired"')

        (error,) = recorder.errors
        assert error.category == ErrorCategory.AUTH
        assert client.invalidations == 1

    async def test_malformed_json(self):
        recorder = Recorder()
        await _source(StreamingClient(), recorder).dispatch("put", "{not json")

        (error,) = recorder.errors
        assert error.category == ErrorCategory.PERMANENT
        assert recorder.messages == []

    async def test_unknown_kind_delivered(self):
        recorder = Recorder()
        await _source(StreamingClient(), recorder).dispatch("custom", '{"x": 1}')
        assert recorder.messages == [("custom", {"x": 1})]

    async def test_handler_errors_logged_not_raised(self, caplog):
        source = EventSource(StreamingClient(), "users")

        async def broken(kind, data):
            raise RuntimeError("handler broke")

        source.on_message = broken
        await source.dispatch("put", '{"data": 1}')
        assert "Stream message handler failed" in caplog.text


class TestEventSourceLoop:

    async def test_consumes_stream_then_reconnects(self):
        first = FakeResponse(_sse("put", '{"path": "/", "data": 1}'))
        second = FakeResponse(_sse("patch", '{"path": "/", "data": 2}'))
        client = StreamingClient(first, second)
        recorder = Recorder()
        source = _source(client, recorder)

        source.start()
        for _ in range(100):
            if len(recorder.messages) == 2:
                break
            await asyncio.sleep(0.01)
        await source.close()

        assert [kind for kind, _ in recorder.messages] == ["put", "patch"]
        assert first.released and second.released
        assert source.connections == 2
        assert source.closed

    async def test_connection_error_reported_and_retried(self):
        response = FakeResponse(_sse("put", '{"data": 1}'))
        client = StreamingClient(aiohttp.ClientConnectionError("refused"), response)
        recorder = Recorder()
        source = _source(client, recorder)

        source.start()
        for _ in range(100):
            if recorder.messages:
                break
            await asyncio.sleep(0.01)
        await source.close()

        (error,) = recorder.errors
        assert isinstance(error, StreamError)
        assert error.category == ErrorCategory.TRANSIENT
        assert recorder.messages == [("put", {"data": 1})]

    async def test_stream_error_passed_through(self):
        error = StreamError("HTTP 401", category=ErrorCategory.AUTH, status_code=401)
        recorder = Recorder()
        source = _source(StreamingClient(error), recorder, reconnect=lambda e: False)

        source.start()
        await asyncio.wait_for(source.wait_closed(), timeout=1.0)

        assert recorder.errors == [error]

    async def test_reconnect_false_ends_stream(self):
        client = StreamingClient(FakeResponse([]), FakeResponse([]))
        decisions = []

        def reconnect(error):
            decisions.append(error)
            return False

        source = _source(client, Recorder(), reconnect=reconnect)
        source.start()
        await asyncio.wait_for(source.wait_closed(), timeout=1.0)

        assert client.opened == 1
        assert decisions == [None]
        assert source.running is False

    async def test_reconnect_handler_error_ends_stream(self):
        def reconnect(error):
            raise RuntimeError("bad handler")

        client = StreamingClient(FakeResponse([]))
        source = _source(client, Recorder(), reconnect=reconnect)
        source.start()
        await asyncio.wait_for(source.wait_closed(), timeout=1.0)
        assert client.opened == 1

    async def test_close_cancels_blocked_connect(self):
        client = StreamingClient()
        source = _source(client, Recorder())
        source.start()
        await asyncio.sleep(0.01)

        await asyncio.wait_for(source.close(), timeout=1.0)

        assert source.running is False
        assert client.opened == 1

    async def test_start_and_close_idempotent(self):
        client = StreamingClient()
        source = _source(client, Recorder())
        source.start()
        source.start()
        await asyncio.sleep(0.01)
        await source.close()
        await source.close()
        source.start()

        assert client.opened == 1
