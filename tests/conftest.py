"""
pytest configuration for firebase_ingest tests.

Adds src directory to Python path for imports and provides shared fakes
for the remote database so no test touches the network.
"""

import sys
from pathlib import Path
from typing import Any

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from core.logging.context import clear_log_context  # noqa: E402
from firebase_ingest.events import EventNormalizer  # noqa: E402
from firebase_ingest.queries import QueryRegistry  # noqa: E402
from firebase_ingest.sinks import QueueSink  # noqa: E402


class FakeFirebaseClient:
    """In-memory stand-in for FirebaseClient.

    ``responses`` maps a path to either a value (returned) or an exception
    instance (raised) on fetch.
    """

    def __init__(self, responses: dict[str, Any] | None = None):
        self.responses = dict(responses or {})
        self.fetches: list[tuple[str, Any]] = []
        self.invalidations = 0
        self.closed = False
        self.sources: list[Any] = []

    async def fetch(self, path: str, query=None) -> Any:
        self.fetches.append((path, query))
        result = self.responses.get(path)
        if isinstance(result, BaseException):
            raise result
        return result

    def invalidate_auth(self) -> None:
        self.invalidations += 1

    async def close(self) -> None:
        self.closed = True

    def event_source(self, path: str, query=None, retry_delay_seconds: float = 1.0):
        source = FakeEventSource(path, query)
        self.sources.append(source)
        return source


class FakeEventSource:
    """EventSource stand-in driven directly by tests."""

    def __init__(self, path: str, query=None, fail_on_close: bool = False):
        self.path = path
        self.query = query
        self.fail_on_close = fail_on_close
        self.on_message = None
        self.on_error = None
        self.on_reconnect = None
        self.started = False
        self.closed = False

    def start(self) -> None:
        self.started = True

    async def close(self) -> None:
        self.closed = True
        if self.fail_on_close:
            raise RuntimeError(f"close failed for {self.path}")


@pytest.fixture(autouse=True)
def reset_log_context():
    clear_log_context()
    yield
    clear_log_context()


@pytest.fixture
def refs() -> dict[str, Any]:
    return {
        "users": {"path": "users", "orderBy": "$key", "limitToFirst": 2},
        "settings": {"path": "app/settings"},
    }


@pytest.fixture
def registry(refs) -> QueryRegistry:
    return QueryRegistry.from_refs(refs)


@pytest.fixture
def normalizer() -> EventNormalizer:
    return EventNormalizer(host="test-host")


@pytest.fixture
def queue_sink() -> QueueSink:
    return QueueSink(maxsize=100, enqueue_timeout_seconds=0.1)


@pytest.fixture
def make_client():
    return FakeFirebaseClient


@pytest.fixture
def fake_client() -> FakeFirebaseClient:
    return FakeFirebaseClient()
