"""
Firebase input lifecycle.

Wires configuration into the client, registry, normalizer, failure reporter
and coordinator, then runs exactly one mode for the lifetime of the
instance: a schedule (pull) or stream subscriptions (push).

Usage:
    firebase_input = FirebaseInput(config, sink)
    firebase_input.start()
    await firebase_input.run()      # returns after stop()
"""

import enum
import logging
import socket

from config import FirebaseInputConfig
from core.errors import ConfigurationError
from core.logging import log_exception, set_log_context
from firebase_ingest.client import FirebaseClient
from firebase_ingest.coordinator import RetrievalCoordinator
from firebase_ingest.events import EventNormalizer
from firebase_ingest.failures import FailureReporter
from firebase_ingest.queries import QueryRegistry
from firebase_ingest.schedule import ScheduleEngine, ScheduleSpec
from firebase_ingest.sinks import EventSink
from firebase_ingest.streaming import StreamSupervisor

logger = logging.getLogger(__name__)

MODE_SCHEDULE = "schedule"
MODE_STREAM = "stream"


class InputState(enum.Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    RUNNING = "running"
    STOPPED = "stopped"


class FirebaseInput:
    """Retrieves Firebase references on a schedule or as they change.

    Args:
        config: Validated input configuration
        sink: Destination for emitted events
        client: Optional client; one is built from ``config`` otherwise
            and then closed on stop
        host: Host name recorded in event metadata (default: this machine)
    """

    def __init__(
        self,
        config: FirebaseInputConfig,
        sink: EventSink,
        client: FirebaseClient | None = None,
        host: str | None = None,
    ):
        self.config = config
        self.sink = sink
        self.host = host or socket.gethostname()
        self.state = InputState.UNREGISTERED

        self.client = client
        self._owns_client = client is None

        self.registry: QueryRegistry | None = None
        self.schedule: ScheduleSpec | None = None
        self.coordinator: RetrievalCoordinator | None = None
        self.engine: ScheduleEngine | None = None
        self.supervisor: StreamSupervisor | None = None

    @property
    def mode(self) -> str:
        return MODE_SCHEDULE if self.config.schedule is not None else MODE_STREAM

    def start(self) -> None:
        """Validate configuration and build components. No I/O.

        Only ConfigurationError escapes.
        """
        if self.state is not InputState.UNREGISTERED:
            raise RuntimeError(f"Cannot start input in state {self.state.value}")

        logger.info(
            "Registering Firebase input",
            extra={"url": self.config.url, "schedule": str(self.config.schedule)},
        )

        try:
            self.config.validate()
            self.registry = QueryRegistry.from_refs(self.config.refs)
            if self.config.schedule is not None:
                self.schedule = ScheduleSpec.parse(self.config.schedule)

            if self.client is None:
                self.client = FirebaseClient(
                    self.config.url,
                    secret=self.config.secret,
                    timeout_seconds=self.config.timeout_seconds,
                    max_retries=self.config.max_retries,
                    auth_ttl_seconds=self.config.auth_ttl_seconds,
                )
        except ConfigurationError:
            raise
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid firebase configuration: {e}", cause=e) from e

        normalizer = EventNormalizer(
            host=self.host,
            target=self.config.target,
            metadata_target=self.config.metadata_target,
            tags=self.config.tags,
            add_field=self.config.add_field,
        )
        reporter = FailureReporter(normalizer, self.sink)
        self.coordinator = RetrievalCoordinator(
            self.registry, self.client, normalizer, reporter, self.sink
        )

        set_log_context(mode=self.mode)
        self.state = InputState.REGISTERED

    async def run(self) -> None:
        """Run the configured mode until ``stop()``."""
        if self.state is InputState.STOPPED:
            raise RuntimeError("Input is stopped and cannot be run again")
        if self.state is not InputState.REGISTERED:
            raise RuntimeError(f"Cannot run input in state {self.state.value}")

        self.state = InputState.RUNNING
        if self.schedule is not None:
            logger.info("Setting up schedule", extra={"schedule": str(self.schedule.describe())})
            self.engine = ScheduleEngine()
            self.engine.start(self.schedule, self.coordinator.run_once)
            await self.engine.join()
        else:
            self.supervisor = StreamSupervisor(
                self.coordinator,
                self.client,
                retry_delay_seconds=self.config.stream_retry_seconds,
            )
            self.supervisor.start()
            await self.supervisor.join()

    async def stop(self) -> None:
        """Best-effort shutdown; every step is attempted even if one fails."""
        if self.state is InputState.STOPPED:
            return
        self.state = InputState.STOPPED
        logger.info("Stopping Firebase input")

        if self.engine is not None:
            try:
                self.engine.stop()
            except Exception as e:
                log_exception(logger, e, "Failed to stop schedule")
            else:
                # The client stays open until an in-flight trigger has finished
                try:
                    await self.engine.join()
                except Exception as e:
                    log_exception(logger, e, "Schedule worker failed during shutdown")

        if self.supervisor is not None:
            try:
                await self.supervisor.stop()
            except Exception as e:
                log_exception(logger, e, "Failed to stop streams")

        if self.client is not None:
            try:
                self.client.invalidate_auth()
            except Exception as e:
                log_exception(logger, e, "Failed to invalidate auth token")

            if self._owns_client:
                try:
                    await self.client.close()
                except Exception as e:
                    log_exception(logger, e, "Failed to close Firebase client")

    @property
    def stats(self) -> dict:
        stats = {"state": self.state.value, "mode": self.mode}
        if self.coordinator is not None:
            stats.update(self.coordinator.stats)
        if self.engine is not None:
            stats["triggers"] = self.engine.trigger_count
        return stats
