"""
Retrieval coordinator: runs queries, normalizes results, emits events.

Pull mode calls ``run_once`` on every schedule trigger. Push mode feeds
``handle_message`` and ``handle_error`` from stream subscriptions.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

from core.logging import (
    LogContext,
    format_cycle_output,
    generate_cycle_id,
    log_exception,
    log_with_context,
)
from firebase_ingest.events import Event, EventNormalizer
from firebase_ingest.failures import FailureReporter
from firebase_ingest.queries import QueryRegistry, QuerySpec
from firebase_ingest.sinks import EventSink

logger = logging.getLogger(__name__)

PULL_EVENT_KIND = "get"


class DataFetcher(Protocol):
    async def fetch(self, path: str, query: QuerySpec | None = None) -> Any: ...


@dataclass
class CycleResult:
    """Outcome of one pull cycle."""

    cycle_id: str
    succeeded: int = 0
    failed: int = 0
    duration_seconds: float = 0.0

    @property
    def total(self) -> int:
        return self.succeeded + self.failed


class RetrievalCoordinator:
    """Owns the per-query retrieval flow for both modes.

    A failure of one query never prevents the others from running; it
    becomes a failure event instead.
    """

    def __init__(
        self,
        registry: QueryRegistry,
        client: DataFetcher,
        normalizer: EventNormalizer,
        reporter: FailureReporter,
        sink: EventSink,
    ):
        self.registry = registry
        self.client = client
        self.normalizer = normalizer
        self.reporter = reporter
        self.sink = sink

        self._cycles = 0
        self._succeeded = 0
        self._failed = 0

    async def run_once(self) -> CycleResult:
        """Fetch every query once, sequentially, in registry order."""
        self._cycles += 1
        result = CycleResult(cycle_id=generate_cycle_id())
        started = time.monotonic()

        with LogContext(cycle_id=result.cycle_id, stage="poll"):
            for spec in self.registry:
                if await self.query(spec):
                    result.succeeded += 1
                else:
                    result.failed += 1

            result.duration_seconds = time.monotonic() - started
            logger.info(
                format_cycle_output(
                    self._cycles, result.succeeded, result.failed, result.duration_seconds
                ),
                extra={
                    "cycle": self._cycles,
                    "records_succeeded": result.succeeded,
                    "records_failed": result.failed,
                    "elapsed_seconds": result.duration_seconds,
                },
            )
        return result

    async def query(self, spec: QuerySpec) -> bool:
        """Fetch one query and emit its event. Returns True on success."""
        log_with_context(
            logger, logging.DEBUG, "Querying Firebase", query_name=spec.name, path=spec.path
        )
        started = time.monotonic()
        try:
            data = await self.client.fetch(spec.path, spec)
        except Exception as e:
            elapsed = time.monotonic() - started
            log_exception(
                logger,
                e,
                "Error while querying Firebase",
                include_traceback=False,
                query_name=spec.name,
                path=spec.path,
                runtime_seconds=elapsed,
            )
            await self._report(spec, e, elapsed)
            return False

        elapsed = time.monotonic() - started
        event = self.normalizer.normalize(spec.name, spec, PULL_EVENT_KIND, data, elapsed)
        return await self._emit(spec, event)

    async def handle_message(self, spec: QuerySpec, kind: str, data: Any) -> bool:
        """Push path: normalize a received change and emit it immediately."""
        event = self.normalizer.normalize(spec.name, spec, kind, data, None)
        return await self._emit(spec, event)

    async def handle_error(
        self, spec: QuerySpec, error: BaseException, elapsed: float | None
    ) -> Event | None:
        """Push path: turn a subscription error into a failure event."""
        log_exception(
            logger,
            error,
            "Error on Firebase stream",
            level=logging.WARNING,
            include_traceback=False,
            query_name=spec.name,
            path=spec.path,
            runtime_seconds=elapsed,
        )
        return await self._report(spec, error, elapsed)

    async def _emit(self, spec: QuerySpec, event: Event) -> bool:
        try:
            await self.sink.emit(event)
        except Exception as e:
            self._failed += 1
            log_exception(
                logger,
                e,
                "Failed to emit event",
                query_name=spec.name,
                path=spec.path,
            )
            return False
        self._succeeded += 1
        return True

    async def _report(
        self, spec: QuerySpec, error: BaseException, elapsed: float | None
    ) -> Event | None:
        self._failed += 1
        return await self.reporter.report(spec.name, spec, error, elapsed)

    @property
    def stats(self) -> dict[str, int]:
        return {
            "cycles": self._cycles,
            "succeeded": self._succeeded,
            "failed": self._failed,
            "failure_events": self.reporter.reported,
            "failure_events_dropped": self.reporter.dropped,
        }
