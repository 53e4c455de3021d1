"""Conversion of retrieval errors into tagged failure events."""

import logging
import traceback

from core.errors import ReportingError
from core.logging import log_exception
from firebase_ingest.events import Event, EventNormalizer
from firebase_ingest.queries import QuerySpec
from firebase_ingest.schemas import FailureRecord
from firebase_ingest.sinks import EventSink

logger = logging.getLogger(__name__)

FAILURE_TAG = "_firebase_failure"
FAILURE_FIELD = "firebase_failure"
FAILURE_EVENT_KIND = "error"


def format_backtrace(error: BaseException) -> list[str]:
    """Formatted traceback lines of ``error``, empty when it was never raised."""
    if error.__traceback__ is None:
        return []
    lines = traceback.format_exception(type(error), error, error.__traceback__)
    return [line.rstrip("\n") for line in lines]


class FailureReporter:
    """Builds failure events and emits them to the sink.

    ``report`` never raises: a failure to build or emit the failure event is
    logged and swallowed so the caller keeps running.
    """

    def __init__(self, normalizer: EventNormalizer, sink: EventSink):
        self.normalizer = normalizer
        self.sink = sink
        self.reported = 0
        self.dropped = 0

    def build(
        self,
        name: str,
        query: QuerySpec,
        error: BaseException,
        elapsed: float | None,
    ) -> Event:
        record = FailureRecord(
            query=query.structured(),
            query_name=name,
            error=str(error) or type(error).__name__,
            backtrace=format_backtrace(error),
            runtime_seconds=elapsed if elapsed is not None else 0.0,
        )

        event = Event()
        self.normalizer.apply_metadata(event, name, query, FAILURE_EVENT_KIND, elapsed)
        event.tag(FAILURE_TAG)
        event.set(f"[{FAILURE_FIELD}]", record.model_dump())
        self.normalizer.decorate(event)
        return event

    async def report(
        self,
        name: str,
        query: QuerySpec,
        error: BaseException,
        elapsed: float | None,
    ) -> Event | None:
        try:
            try:
                event = self.build(name, query, error, elapsed)
                await self.sink.emit(event)
            except Exception as e:
                raise ReportingError("Cannot build or emit failure event", cause=e) from e
        except ReportingError as e:
            self.dropped += 1
            log_exception(
                logger,
                e,
                "Cannot send Firebase query failure as an event",
                query_name=name,
                path=query.path,
                error=str(error)[:200],
            )
            return None

        self.reported += 1
        return event
