"""Firebase Realtime Database REST client with bounded retry and auth caching."""

import asyncio
import json
import logging
import re
from typing import Any

import aiohttp

from core.auth import DEFAULT_AUTH_TTL_SECONDS, TokenCache
from core.errors import (
    ConfigurationError,
    RetrievalError,
    StreamError,
    classify_http_status,
)
from core.logging.context import get_log_context
from core.resilience import RetryConfig, with_retry_async
from core.types import ErrorCategory
from firebase_ingest.client.event_source import EventSource
from firebase_ingest.queries import QuerySpec

logger = logging.getLogger(__name__)

# Exceptions retried regardless of classification
RETRY_EXCEPTIONS = {aiohttp.ClientError, OSError, asyncio.TimeoutError}

_AUTH_PARAM = re.compile(r"(auth=)[^&\s'\"]*")


def redact_auth(text: str) -> str:
    """Mask the auth parameter in URLs embedded in error messages."""
    return _AUTH_PARAM.sub(r"\1[REDACTED]", text)


def classify_response_error(
    status: int, url: str, body: str = "", error_class: type = RetrievalError
) -> RetrievalError:
    """Build a classified error for a non-200 response."""
    category = classify_http_status(status)
    if category == ErrorCategory.UNKNOWN:
        category = ErrorCategory.TRANSIENT

    message = f"HTTP {status}: {url}"
    detail = _error_detail(body)
    if detail:
        message = f"{message} ({detail})"

    return error_class(message, category=category, status_code=status)


def _error_detail(body: str) -> str:
    """Extract the ``error`` member Firebase puts in error bodies."""
    if not body:
        return ""
    try:
        payload = json.loads(body)
    except ValueError:
        return body[:200]
    if isinstance(payload, dict) and "error" in payload:
        return str(payload["error"])[:200]
    return body[:200]


class FirebaseClient:
    """Async client for the Firebase Realtime Database REST API.

    Args:
        url: Database root, e.g. https://my-app.firebaseio.com
        secret: Database secret sent as the ``auth`` parameter
        timeout_seconds: Per-request timeout
        max_retries: Retries after the first attempt for retryable failures
        auth_ttl_seconds: Age after which the cached auth value is re-derived
        session: Optional externally owned aiohttp session
    """

    def __init__(
        self,
        url: str,
        secret: str | None = None,
        timeout_seconds: float = 10,
        max_retries: int = 3,
        auth_ttl_seconds: float = DEFAULT_AUTH_TTL_SECONDS,
        session: aiohttp.ClientSession | None = None,
    ):
        if not url or not url.startswith(("http://", "https://")):
            raise ConfigurationError(
                f"FirebaseClient url must start with http:// or https://, got: {url!r}"
            )

        self.url = url.rstrip("/")
        self._secret = secret
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self._token_cache = TokenCache(ttl_seconds=auth_ttl_seconds)

        self._session = session
        self._owns_session = session is None
        self._closed = False

        self.retry_config = RetryConfig(
            max_attempts=max_retries + 1,
            always_retry=set(RETRY_EXCEPTIONS),
        )
        self.fetch = with_retry_async(
            self.retry_config, on_auth_error=self.invalidate_auth
        )(self._fetch_once)

        logger.info(
            "FirebaseClient initialized",
            extra={
                "url": self.url,
                "max_attempts": self.retry_config.max_attempts,
            },
        )

    async def __aenter__(self) -> "FirebaseClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._closed:
            raise RuntimeError("FirebaseClient is closed, cannot create new session")
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"Accept": "application/json"})
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        self._closed = True
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            await asyncio.sleep(0)
        self._session = None

    def auth_token(self) -> str | None:
        """Cached auth value, re-derived from the secret once it expires."""
        if not self._secret:
            return None
        token = self._token_cache.get(self.url)
        if token is None:
            token = self._secret
            self._token_cache.set(self.url, token)
            logger.debug("Auth token refreshed", extra={"url": self.url})
        return token

    def invalidate_auth(self) -> None:
        self._token_cache.clear()

    def endpoint(self, path: str) -> str:
        return f"{self.url}/{path.strip('/')}.json"

    def build_params(self, query: QuerySpec | None = None) -> dict[str, str]:
        params: dict[str, str] = {}
        token = self.auth_token()
        if token:
            params["auth"] = token
        if query is not None:
            if query.order_by is not None:
                # Firebase expects the orderBy value as a JSON string
                params["orderBy"] = json.dumps(query.order_by)
            if query.limit_to_first is not None:
                params["limitToFirst"] = str(query.limit_to_first)
        return params

    @staticmethod
    def _get_context_ids() -> dict[str, str]:
        return {k: v for k, v in get_log_context().items() if v}

    async def _fetch_once(self, path: str, query: QuerySpec | None = None) -> Any:
        session = await self._ensure_session()
        url = self.endpoint(path)
        params = self.build_params(query)
        ctx = self._get_context_ids()

        logger.debug("Firebase request starting", extra={**ctx, "url": url, "path": path})

        loop = asyncio.get_running_loop()
        start_time = loop.time()
        try:
            async with session.get(
                url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                duration = loop.time() - start_time
                if response.status != 200:
                    body = await response.text()
                    error = classify_response_error(response.status, url, body)
                    logger.warning(
                        "Firebase request failed",
                        extra={
                            **ctx,
                            "url": url,
                            "http_status": response.status,
                            "error_category": error.category.value,
                            "duration_ms": round(duration * 1000, 2),
                        },
                    )
                    raise error

                data = await response.json(content_type=None)

        except asyncio.TimeoutError as e:
            raise RetrievalError(
                f"Timeout after {self.timeout_seconds}s: {url}",
                category=ErrorCategory.TRANSIENT,
                context={"error_type": "timeout"},
            ) from e
        except (aiohttp.ClientError, OSError) as e:
            # Not chained: aiohttp messages carry the request URL with its auth param
            raise RetrievalError(
                f"Connection error: {redact_auth(str(e))}",
                category=ErrorCategory.TRANSIENT,
                context={"error_type": type(e).__name__},
            ) from None
        except ValueError as e:
            raise RetrievalError(
                f"Invalid JSON response from {url}", category=ErrorCategory.PERMANENT, cause=e
            ) from e

        logger.debug(
            "Firebase request succeeded",
            extra={
                **ctx,
                "path": path,
                "http_status": 200,
                "duration_ms": round(duration * 1000, 2),
            },
        )
        return data

    async def open_stream(
        self, path: str, query: QuerySpec | None = None
    ) -> aiohttp.ClientResponse:
        """Open a server-sent events response for ``path``.

        The caller owns the returned response and must release it.
        """
        session = await self._ensure_session()
        url = self.endpoint(path)
        response = await session.get(
            url,
            params=self.build_params(query),
            headers={"Accept": "text/event-stream"},
            timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.timeout_seconds),
        )
        if response.status != 200:
            body = await response.text()
            response.release()
            error = classify_response_error(response.status, url, body, StreamError)
            if error.should_refresh_auth:
                self.invalidate_auth()
            raise error
        return response

    def event_source(
        self,
        path: str,
        query: QuerySpec | None = None,
        retry_delay_seconds: float = 1.0,
    ) -> EventSource:
        return EventSource(self, path, query, retry_delay_seconds=retry_delay_seconds)

