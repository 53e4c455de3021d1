"""Firebase Realtime Database access: single-shot REST fetches and SSE streams."""

from firebase_ingest.client.event_source import EventSource, SSEParser
from firebase_ingest.client.rest_client import (
    FirebaseClient,
    classify_response_error,
    redact_auth,
)

__all__ = [
    "FirebaseClient",
    "EventSource",
    "SSEParser",
    "classify_response_error",
    "redact_auth",
]
