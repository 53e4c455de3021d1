"""Stream supervisor: one subscription per query for push mode."""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from core.logging import log_exception
from firebase_ingest.client import EventSource
from firebase_ingest.coordinator import RetrievalCoordinator
from firebase_ingest.queries import QuerySpec

logger = logging.getLogger(__name__)


class StreamFactory(Protocol):
    def event_source(
        self, path: str, query: QuerySpec | None = None, retry_delay_seconds: float = 1.0
    ) -> EventSource: ...


@dataclass
class Subscription:
    """A live EventSource and the query it serves."""

    spec: QuerySpec
    source: Any
    subscribe_time: float = field(default_factory=time.monotonic)


class StreamSupervisor:
    """Opens, tracks and closes one EventSource per query.

    The reconnect flag is a ``threading.Event`` (set means keep
    reconnecting) read by every connection's reconnect handler and written
    only by ``stop()``. The live subscription list is lock-guarded.
    """

    def __init__(
        self,
        coordinator: RetrievalCoordinator,
        client: StreamFactory,
        retry_delay_seconds: float = 1.0,
    ):
        self.coordinator = coordinator
        self.client = client
        self.retry_delay_seconds = retry_delay_seconds

        self.reconnect = threading.Event()
        self._lock = threading.Lock()
        self._subscriptions: list[Subscription] = []
        self._stopped: asyncio.Event | None = None
        self._started = False

    @property
    def subscriptions(self) -> list[Subscription]:
        with self._lock:
            return list(self._subscriptions)

    def start(self) -> None:
        """Subscribe to every query in the coordinator's registry."""
        if self._started:
            raise RuntimeError("StreamSupervisor already started")
        self._started = True
        self._stopped = asyncio.Event()
        self.reconnect.set()

        for spec in self.coordinator.registry:
            self.subscribe(spec)

        logger.info("Streaming started", extra={"streams": len(self.subscriptions)})

    def subscribe(self, spec: QuerySpec) -> Subscription:
        logger.info(
            "Setting up streaming", extra={"query_name": spec.name, "path": spec.path}
        )
        source = self.client.event_source(
            spec.path, spec, retry_delay_seconds=self.retry_delay_seconds
        )
        subscription = Subscription(spec=spec, source=source)

        async def on_message(kind: str, data: Any) -> None:
            await self.coordinator.handle_message(spec, kind, data)

        async def on_error(error: Exception) -> None:
            elapsed = time.monotonic() - subscription.subscribe_time
            await self.coordinator.handle_error(spec, error, elapsed)

        def on_reconnect(error: Exception | None) -> bool:
            return self.reconnect.is_set()

        source.on_message = on_message
        source.on_error = on_error
        source.on_reconnect = on_reconnect
        source.start()

        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    async def stop(self) -> None:
        """Stop reconnecting and close every subscription. Idempotent.

        Each close is attempted even if an earlier one failed.
        """
        self.reconnect.clear()

        with self._lock:
            subscriptions = list(self._subscriptions)
            self._subscriptions.clear()

        for subscription in subscriptions:
            try:
                await subscription.source.close()
            except Exception as e:
                log_exception(
                    logger,
                    e,
                    "Failed to close stream",
                    level=logging.WARNING,
                    query_name=subscription.spec.name,
                    path=subscription.spec.path,
                )

        if subscriptions:
            logger.info("Streaming stopped", extra={"streams": len(subscriptions)})

        if self._stopped is not None:
            self._stopped.set()

    async def join(self) -> None:
        """Block until ``stop()`` has been called."""
        if self._stopped is None:
            raise RuntimeError("StreamSupervisor not started")
        await self._stopped.wait()
