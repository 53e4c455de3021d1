"""
Event sink abstractions for decoupling event output from retrieval.

Provides a Protocol-based interface for event sinks, allowing the input to
hand events to different destinations (an in-process queue, JSON Lines
files, stdout) without coupling to any of them.
"""

import asyncio
import contextlib
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, TextIO, runtime_checkable

from core.errors import SinkFullError
from core.logging import log_exception
from core.utils import json_serializer
from firebase_ingest.events import Event

logger = logging.getLogger(__name__)


@runtime_checkable
class EventSink(Protocol):
    """
    Protocol for sinks that receive emitted events.

    Ownership of the event transfers to the sink on ``emit``.
    """

    async def start(self) -> None:
        """Initialize the sink (open files, etc.)."""
        ...

    async def stop(self) -> None:
        """Gracefully shutdown the sink (flush buffers, close files)."""
        ...

    async def emit(self, event: Event) -> None:
        """Hand a single event to the sink."""
        ...


class QueueSink:
    """
    Bounded in-process hand-off to a downstream consumer.

    ``emit`` waits at most ``enqueue_timeout_seconds`` for room in the queue
    and raises SinkFullError past it.

    With a ``downstream`` sink, a forwarding task delivers queued events to
    it in order, so a slow writer never holds up retrieval for longer than
    the enqueue timeout. ``stop()`` delivers what is already queued before
    stopping the downstream sink. Without one, consumers call ``get()``.
    """

    def __init__(
        self,
        maxsize: int = 1000,
        enqueue_timeout_seconds: float = 5.0,
        downstream: EventSink | None = None,
    ):
        self.queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)
        self.enqueue_timeout_seconds = enqueue_timeout_seconds
        self.downstream = downstream
        self._forward_task: asyncio.Task | None = None
        self._events_emitted = 0
        self._events_forwarded = 0

    async def start(self) -> None:
        if self.downstream is None or self._forward_task is not None:
            return
        await self.downstream.start()
        self._forward_task = asyncio.create_task(self._forward(), name="queue-sink-forward")

    async def stop(self) -> None:
        if self._forward_task is not None:
            await self.queue.join()
            self._forward_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._forward_task
            self._forward_task = None
            await self.downstream.stop()

    async def _forward(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self.downstream.emit(event)
                self._events_forwarded += 1
            except Exception as e:
                log_exception(
                    logger,
                    e,
                    "Failed to forward event",
                    level=logging.WARNING,
                    include_traceback=False,
                    sink_type=type(self.downstream).__name__,
                )
            finally:
                self.queue.task_done()

    async def emit(self, event: Event) -> None:
        try:
            await asyncio.wait_for(
                self.queue.put(event), timeout=self.enqueue_timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise SinkFullError(
                f"Queue full, event not accepted within {self.enqueue_timeout_seconds}s",
                cause=e,
                context={"queue_size": self.queue.qsize()},
            ) from e
        self._events_emitted += 1

    async def get(self) -> Event:
        return await self.queue.get()

    def drain(self) -> list[Event]:
        """Remove and return every queued event without waiting."""
        events = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "events_emitted": self._events_emitted,
            "events_forwarded": self._events_forwarded,
            "queue_size": self.queue.qsize(),
        }


@dataclass
class JsonFileSinkConfig:
    """Configuration for JSON file sink."""

    output_path: Path
    rotate_size_bytes: int = 100 * 1024 * 1024  # 100 MB default
    pretty_print: bool = False
    flush_interval_seconds: float = 5.0
    buffer_size: int = 100  # Number of events to buffer before auto-flush


class JsonFileSink:
    """
    Event sink that writes events to JSON Lines (.jsonl) files.

    Features:
    - JSON Lines format (one JSON object per line)
    - Optional file rotation by size
    - Buffered writes with configurable flush interval
    """

    def __init__(self, config: JsonFileSinkConfig):
        self.config = config
        self._file = None
        self._current_path: Path | None = None
        self._current_size = 0
        self._file_index = 0
        self._buffer: list[dict[str, Any]] = []
        self._flush_task: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self._running = False
        self._events_written = 0

    async def start(self) -> None:
        """Open output file and start flush task."""
        self._running = True
        self._current_path = self._get_output_path()
        self._current_path.parent.mkdir(parents=True, exist_ok=True)

        if self._current_path.exists():
            self._current_size = self._current_path.stat().st_size
        else:
            self._current_size = 0

        self._file = open(self._current_path, "a", encoding="utf-8")

        self._flush_task = asyncio.create_task(self._periodic_flush())

        logger.info(
            "JsonFileSink started",
            extra={"output_path": str(self._current_path)},
        )

    async def stop(self) -> None:
        """Flush remaining buffer and close file."""
        self._running = False

        if self._flush_task:
            self._flush_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._flush_task
            self._flush_task = None

        await self.flush()

        if self._file:
            self._file.close()
            self._file = None

        logger.info(
            "JsonFileSink stopped",
            extra={
                "events_written": self._events_written,
                "output_path": str(self._current_path),
            },
        )

    async def emit(self, event: Event) -> None:
        """Buffer event for writing."""
        if not self._running:
            raise RuntimeError("JsonFileSink not started. Call start() first.")

        record = event.to_dict()

        async with self._lock:
            self._buffer.append(record)

            if len(self._buffer) >= self.config.buffer_size:
                await self._flush_buffer()

    async def flush(self) -> None:
        """Flush buffered events to file."""
        async with self._lock:
            await self._flush_buffer()

    async def _flush_buffer(self) -> None:
        """Internal flush (must hold lock)."""
        if not self._buffer or not self._file:
            return

        if self._current_size >= self.config.rotate_size_bytes:
            await self._rotate_file()

        indent = 2 if self.config.pretty_print else None
        lines = [
            json.dumps(record, indent=indent, default=json_serializer)
            for record in self._buffer
        ]

        content = "\n".join(lines) + "\n"
        self._file.write(content)
        self._file.flush()
        os.fsync(self._file.fileno())

        self._current_size += len(content.encode("utf-8"))
        self._events_written += len(self._buffer)

        logger.debug(
            "Flushed events to file",
            extra={"events_written": self._events_written},
        )

        self._buffer.clear()

    async def _rotate_file(self) -> None:
        """Rotate to a new output file."""
        if self._file:
            self._file.close()

        self._file_index += 1
        self._current_path = self._get_output_path()
        self._current_size = 0
        self._file = open(self._current_path, "a", encoding="utf-8")

        logger.info(
            "Rotated output file",
            extra={"output_path": str(self._current_path)},
        )

    async def _periodic_flush(self) -> None:
        """Background task to periodically flush buffer."""
        while self._running:
            try:
                await asyncio.sleep(self.config.flush_interval_seconds)
                if self._buffer:
                    await self.flush()
            except asyncio.CancelledError:
                break
            except OSError as e:
                logger.error("Error in periodic flush", extra={"error": str(e)})

    def _get_output_path(self) -> Path:
        """Generate output path, optionally with rotation index."""
        base_path = self.config.output_path

        if self._file_index == 0:
            return base_path

        # events.jsonl -> events.001.jsonl
        return base_path.parent / f"{base_path.stem}.{self._file_index:03d}{base_path.suffix}"

    @property
    def stats(self) -> dict[str, Any]:
        """Return sink statistics."""
        return {
            "events_written": self._events_written,
            "current_file": str(self._current_path),
            "current_size_bytes": self._current_size,
            "buffer_size": len(self._buffer),
            "file_index": self._file_index,
        }


class StdoutSink:
    """Writes one JSON document per line to a text stream (stdout by default)."""

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream
        self._events_written = 0

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stdout

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        self.stream.flush()

    async def emit(self, event: Event) -> None:
        self.stream.write(json.dumps(event.to_dict(), default=json_serializer) + "\n")
        self.stream.flush()
        self._events_written += 1


def create_json_sink(
    output_path: str | Path,
    rotate_size_mb: float = 100.0,
    pretty_print: bool = False,
) -> JsonFileSink:
    """
    Factory function to create a JsonFileSink.

    Args:
        output_path: Path to output file (will create parent directories)
        rotate_size_mb: Rotate file when it reaches this size in MB
        pretty_print: Format JSON with indentation (larger files)
    """
    config = JsonFileSinkConfig(
        output_path=Path(output_path),
        rotate_size_bytes=int(rotate_size_mb * 1024 * 1024),
        pretty_print=pretty_print,
    )
    return JsonFileSink(config)


__all__ = [
    "EventSink",
    "QueueSink",
    "JsonFileSink",
    "JsonFileSinkConfig",
    "StdoutSink",
    "create_json_sink",
]
