"""
Server-sent events subscription against a Firebase reference.

Firebase streams ``put`` and ``patch`` events carrying a JSON payload
(``{"path": ..., "data": ...}``), ``keep-alive`` events with a null payload,
and ``cancel`` / ``auth_revoked`` when the server ends the subscription.
"""

import asyncio
import contextlib
import json
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import aiohttp

from core.errors import PipelineError, StreamError
from core.logging import log_exception
from core.types import ErrorCategory

if TYPE_CHECKING:
    from firebase_ingest.client.rest_client import FirebaseClient
    from firebase_ingest.queries import QuerySpec

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, Any], Awaitable[None]]
ErrorHandler = Callable[[Exception], Awaitable[None]]
ReconnectHandler = Callable[[Exception | None], bool]

DEFAULT_EVENT_KIND = "message"


class SSEParser:
    """Incremental line parser for the text/event-stream format."""

    def __init__(self):
        self._kind: str | None = None
        self._data: list[str] = []

    def feed_line(self, line: str) -> tuple[str, str] | None:
        """Consume one line; returns (kind, data) when an event is complete."""
        line = line.rstrip("\r\n")
        if not line:
            if self._kind is None and not self._data:
                return None
            event = (self._kind or DEFAULT_EVENT_KIND, "\n".join(self._data))
            self._kind = None
            self._data = []
            return event

        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._kind = value
        elif field == "data":
            self._data.append(value)
        return None


class EventSource:
    """One persistent subscription to a reference.

    Handlers:
        on_message(kind, data): awaited for every data-carrying event
        on_error(error): awaited for subscription-level failures
        on_reconnect(error) -> bool: asked after the connection ends;
            False ends the stream. Defaults to reconnecting.

    Handler exceptions are logged and never end the stream.
    """

    def __init__(
        self,
        client: "FirebaseClient",
        path: str,
        query: "QuerySpec | None" = None,
        retry_delay_seconds: float = 1.0,
    ):
        self.client = client
        self.path = path
        self.query = query
        self.retry_delay_seconds = retry_delay_seconds

        self.on_message: MessageHandler | None = None
        self.on_error: ErrorHandler | None = None
        self.on_reconnect: ReconnectHandler | None = None

        self.connections = 0
        self._task: asyncio.Task | None = None
        self._closed = False

        self._dispatch_table: dict[str, Callable[[str, Any], Awaitable[None]]] = {
            "put": self._handle_data,
            "patch": self._handle_data,
            "keep-alive": self._handle_keep_alive,
            "cancel": self._handle_cancel,
            "auth_revoked": self._handle_auth_revoked,
        }

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        if self._task is not None or self._closed:
            return
        self._task = asyncio.create_task(self._run(), name=f"event-source:{self.path}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def wait_closed(self) -> None:
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def dispatch(self, kind: str, raw_data: str) -> None:
        """Route one parsed event to its handler by kind."""
        try:
            data = json.loads(raw_data) if raw_data else None
        except ValueError as e:
            await self._emit_error(
                StreamError(
                    f"Malformed '{kind}' payload on {self.path}",
                    category=ErrorCategory.PERMANENT,
                    cause=e,
                )
            )
            return

        handler = self._dispatch_table.get(kind, self._handle_data)
        await handler(kind, data)

    async def _handle_data(self, kind: str, data: Any) -> None:
        if self.on_message is None:
            return
        try:
            await self.on_message(kind, data)
        except Exception as e:
            log_exception(logger, e, "Stream message handler failed", path=self.path, event_kind=kind)

    async def _handle_keep_alive(self, kind: str, data: Any) -> None:
        logger.debug("Stream keep-alive", extra={"path": self.path})

    async def _handle_cancel(self, kind: str, data: Any) -> None:
        await self._emit_error(
            StreamError(
                f"Stream cancelled by server: {data or self.path}",
                category=ErrorCategory.PERMANENT,
            )
        )

    async def _handle_auth_revoked(self, kind: str, data: Any) -> None:
        self.client.invalidate_auth()
        await self._emit_error(
            StreamError(
                f"Stream auth revoked: {data or self.path}",
                category=ErrorCategory.AUTH,
            )
        )

    async def _emit_error(self, error: Exception) -> None:
        if self.on_error is None:
            return
        try:
            await self.on_error(error)
        except Exception as e:
            log_exception(logger, e, "Stream error handler failed", path=self.path)

    def _should_reconnect(self, error: Exception | None) -> bool:
        if self._closed:
            return False
        if self.on_reconnect is None:
            return True
        try:
            return bool(self.on_reconnect(error))
        except Exception as e:
            log_exception(logger, e, "Stream reconnect handler failed", path=self.path)
            return False

    async def _consume(self, response: aiohttp.ClientResponse) -> None:
        parser = SSEParser()
        async for raw_line in response.content:
            event = parser.feed_line(raw_line.decode("utf-8", errors="replace"))
            if event is not None:
                await self.dispatch(*event)

    async def _run(self) -> None:
        while not self._closed:
            error: Exception | None = None
            try:
                response = await self.client.open_stream(self.path, self.query)
                self.connections += 1
                logger.info("Stream connected", extra={"path": self.path})
                try:
                    await self._consume(response)
                finally:
                    response.release()
            except PipelineError as e:
                error = e
            except (aiohttp.ClientError, OSError, RuntimeError) as e:
                error = StreamError(
                    f"Stream connection failed: {type(e).__name__}",
                    category=ErrorCategory.TRANSIENT,
                    context={"error_type": type(e).__name__},
                )

            if self._closed:
                return

            if error is not None:
                logger.warning(
                    "Stream error",
                    extra={"path": self.path, "error_message": str(error)[:200]},
                )
                await self._emit_error(error)

            if not self._should_reconnect(error):
                logger.info("Stream ended", extra={"path": self.path})
                return

            await asyncio.sleep(self.retry_delay_seconds)
