"""
Firebase Realtime Database input.

Retrieves named database references either on a schedule (pull mode) or as
they change through streaming subscriptions (push mode), and hands each
result to a sink as a normalized event with provenance metadata.
"""

from firebase_ingest.coordinator import CycleResult, RetrievalCoordinator
from firebase_ingest.events import Event, EventNormalizer
from firebase_ingest.failures import FAILURE_FIELD, FAILURE_TAG, FailureReporter
from firebase_ingest.plugin import FirebaseInput, InputState
from firebase_ingest.queries import QueryRegistry, QuerySpec
from firebase_ingest.schedule import ScheduleEngine, ScheduleSpec
from firebase_ingest.sinks import EventSink, JsonFileSink, QueueSink, StdoutSink
from firebase_ingest.streaming import StreamSupervisor

__all__ = [
    "FirebaseInput",
    "InputState",
    "RetrievalCoordinator",
    "CycleResult",
    "Event",
    "EventNormalizer",
    "FailureReporter",
    "FAILURE_TAG",
    "FAILURE_FIELD",
    "QueryRegistry",
    "QuerySpec",
    "ScheduleEngine",
    "ScheduleSpec",
    "StreamSupervisor",
    "EventSink",
    "QueueSink",
    "JsonFileSink",
    "StdoutSink",
]
