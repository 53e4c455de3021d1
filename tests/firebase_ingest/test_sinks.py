"""Tests for event sinks."""

import asyncio
import io
import json

import pytest

from core.errors import SinkFullError
from firebase_ingest.events import Event
from firebase_ingest.sinks import (
    EventSink,
    JsonFileSink,
    JsonFileSinkConfig,
    QueueSink,
    StdoutSink,
    create_json_sink,
)


class TestProtocol:

    def test_sinks_satisfy_protocol(self, tmp_path):
        assert isinstance(QueueSink(), EventSink)
        assert isinstance(StdoutSink(), EventSink)
        assert isinstance(create_json_sink(tmp_path / "e.jsonl"), EventSink)


class TestQueueSink:

    async def test_emit_and_get(self):
        sink = QueueSink()
        event = Event({"a": 1})

        await sink.emit(event)

        assert await sink.get() is event
        assert sink.stats == {"events_emitted": 1, "events_forwarded": 0, "queue_size": 0}

    async def test_drain(self):
        sink = QueueSink()
        for i in range(3):
            await sink.emit(Event({"i": i}))
        assert [e.get("i") for e in sink.drain()] == [0, 1, 2]
        assert sink.drain() == []

    async def test_full_queue_times_out(self):
        sink = QueueSink(maxsize=1, enqueue_timeout_seconds=0.01)
        await sink.emit(Event())

        with pytest.raises(SinkFullError) as exc_info:
            await sink.emit(Event())
        assert exc_info.value.context["queue_size"] == 1

    async def test_waits_for_room(self):
        sink = QueueSink(maxsize=1, enqueue_timeout_seconds=1.0)
        await sink.emit(Event({"i": 0}))

        async def consume_later():
            await asyncio.sleep(0.02)
            return await sink.get()

        consumer = asyncio.create_task(consume_later())
        await sink.emit(Event({"i": 1}))

        assert (await consumer).get("i") == 0
        assert sink.stats["events_emitted"] == 2


class TestQueueSinkForwarding:

    async def test_forwards_in_order(self):
        stream = io.StringIO()
        sink = QueueSink(maxsize=10, enqueue_timeout_seconds=0.1, downstream=StdoutSink(stream=stream))
        await sink.start()
        for i in range(3):
            await sink.emit(Event({"i": i}))
        await sink.stop()

        assert [json.loads(line)["i"] for line in stream.getvalue().splitlines()] == [0, 1, 2]
        assert sink.stats == {"events_emitted": 3, "events_forwarded": 3, "queue_size": 0}

    async def test_stop_drains_into_file(self, tmp_path):
        path = tmp_path / "events.jsonl"
        sink = QueueSink(downstream=create_json_sink(path))
        await sink.start()
        await sink.emit(Event({"a": 1}))
        await sink.stop()

        assert json.loads(path.read_text())["a"] == 1

    async def test_slow_downstream_times_out_emit(self):
        release = asyncio.Event()

        class BlockedSink(StdoutSink):
            async def emit(self, event):
                await release.wait()

        sink = QueueSink(maxsize=1, enqueue_timeout_seconds=0.01, downstream=BlockedSink(stream=io.StringIO()))
        await sink.start()
        await sink.emit(Event({"i": 0}))
        await sink.emit(Event({"i": 1}))

        with pytest.raises(SinkFullError):
            await sink.emit(Event({"i": 2}))

        release.set()
        await sink.stop()
        assert sink.stats["events_forwarded"] == 2

    async def test_downstream_error_does_not_stop_forwarding(self):
        stream = io.StringIO()

        class FlakySink(StdoutSink):
            async def emit(self, event):
                if event.get("i") == 0:
                    raise OSError("disk full")
                await super().emit(event)

        sink = QueueSink(downstream=FlakySink(stream=stream))
        await sink.start()
        await sink.emit(Event({"i": 0}))
        await sink.emit(Event({"i": 1}))
        await sink.stop()

        assert [json.loads(line)["i"] for line in stream.getvalue().splitlines()] == [1]
        assert sink.stats["events_forwarded"] == 1


class TestJsonFileSink:

    async def test_writes_json_lines(self, tmp_path):
        path = tmp_path / "out" / "events.jsonl"
        sink = create_json_sink(path)
        await sink.start()
        await sink.emit(Event({"a": 1}))
        await sink.emit(Event({"b": [1, 2]}))
        await sink.stop()

        lines = [json.loads(line) for line in path.read_text().splitlines()]
        assert [line.get("a") for line in lines] == [1, None]
        assert lines[1]["b"] == [1, 2]
        assert all("@timestamp" in line for line in lines)
        assert sink.stats["events_written"] == 2

    async def test_emit_before_start(self, tmp_path):
        sink = create_json_sink(tmp_path / "events.jsonl")
        with pytest.raises(RuntimeError, match="not started"):
            await sink.emit(Event())

    async def test_buffer_size_triggers_flush(self, tmp_path):
        path = tmp_path / "events.jsonl"
        sink = JsonFileSink(JsonFileSinkConfig(output_path=path, buffer_size=2))
        await sink.start()
        await sink.emit(Event({"i": 0}))
        await sink.emit(Event({"i": 1}))

        assert len(path.read_text().splitlines()) == 2
        await sink.stop()

    async def test_rotation(self, tmp_path):
        path = tmp_path / "events.jsonl"
        sink = JsonFileSink(
            JsonFileSinkConfig(output_path=path, buffer_size=1, rotate_size_bytes=1)
        )
        await sink.start()
        await sink.emit(Event({"i": 0}))
        await sink.emit(Event({"i": 1}))
        await sink.stop()

        assert path.exists()
        assert (tmp_path / "events.001.jsonl").exists()
        assert sink.stats["file_index"] == 1

    async def test_appends_to_existing(self, tmp_path):
        path = tmp_path / "events.jsonl"
        path.write_text('{"old": true}\n')
        sink = create_json_sink(path)
        await sink.start()
        await sink.emit(Event({"new": True}))
        await sink.stop()

        assert len(path.read_text().splitlines()) == 2


class TestStdoutSink:

    async def test_one_document_per_line(self):
        stream = io.StringIO()
        sink = StdoutSink(stream=stream)
        await sink.start()
        await sink.emit(Event({"a": 1}))
        await sink.emit(Event({"b": 2}))
        await sink.stop()

        lines = stream.getvalue().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["a"] == 1
